"""Error types for remotekit."""

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of failure a caller can branch on."""

    NOT_SPECIFIED = "not_specified"
    INVALID_PORT = "invalid_port"
    INVALID_TUNNEL_SPEC = "invalid_tunnel_spec"
    CONFLICTING_OPTIONS = "conflicting_options"
    IDENTITY_FILE_NOT_FOUND = "identity_file_not_found"
    MISSING_CREDENTIALS = "missing_credentials"
    ACCESS_DENIED = "access_denied"
    HOST_KEY = "host_key"
    ALREADY_RUNNING = "already_running"
    BUSY = "busy"
    KILL_FAILED = "kill_failed"
    EXECUTION_FAILED = "execution_failed"
    DOUBLE_ACQUIRE = "double_acquire"
    RELEASE_WITHOUT_ACQUIRE = "release_without_acquire"


class RemotekitError(Exception):
    """Base class for every error raised by remotekit."""

    kind: ErrorKind = ErrorKind.EXECUTION_FAILED


# Malformed connection descriptors. The command builder raises these and
# nothing inside remotekit catches them.


class DescriptorError(RemotekitError):
    """The connection descriptor cannot be rendered into a command."""


class NotSpecified(DescriptorError):
    kind = ErrorKind.NOT_SPECIFIED


class InvalidPort(DescriptorError):
    kind = ErrorKind.INVALID_PORT


class InvalidTunnelSpec(DescriptorError):
    kind = ErrorKind.INVALID_TUNNEL_SPEC


class ConflictingOptions(DescriptorError):
    kind = ErrorKind.CONFLICTING_OPTIONS


# Credentials


class CredentialError(RemotekitError):
    """Problem with the identity used to log in."""


class IdentityFileNotFound(CredentialError, DescriptorError):
    kind = ErrorKind.IDENTITY_FILE_NOT_FOUND


class MissingCredentials(CredentialError):
    kind = ErrorKind.MISSING_CREDENTIALS


class AccessDenied(CredentialError):
    kind = ErrorKind.ACCESS_DENIED


class HostKeyError(RemotekitError):
    """Host key could not be scanned or does not verify."""

    kind = ErrorKind.HOST_KEY


# Process coordination


class AlreadyRunning(RemotekitError):
    """Another live instance of this script holds the lock."""

    kind = ErrorKind.ALREADY_RUNNING

    def __init__(self, script: str, pid: int | None = None):
        self.script = script
        self.pid = pid
        detail = f" (pid {pid})" if pid else ""
        super().__init__(f"Script '{script}' is already running{detail}")


class Busy(RemotekitError):
    """The target path is occupied by another command instance."""

    kind = ErrorKind.BUSY

    def __init__(self, path: str, pids: list[int], retries: int):
        self.path = path
        self.pids = pids
        self.retries = retries
        super().__init__(
            f"Path '{path}' is busy with process(es) {pids} after {retries} retries"
        )


class KillFailed(RemotekitError):
    kind = ErrorKind.KILL_FAILED

    def __init__(self, target: int | str):
        self.target = target
        super().__init__(f"Failed to kill '{target}'")


class ExecutionFailed(RemotekitError):
    """A spawned process exited with a code that was not accepted."""

    kind = ErrorKind.EXECUTION_FAILED

    def __init__(self, command: str, exit_code: int | None, output: list[str] | None = None):
        self.command = command
        self.exit_code = exit_code
        self.output = output or []
        if exit_code is None:
            message = f"Command '{command}' did not complete"
        else:
            message = f"Command '{command}' exited with code {exit_code}"
        if self.output:
            message = f"{message}: {self.output[-1]}"
        super().__init__(message)


class RemoteExecutionError(RemotekitError):
    """Failure of a remote call, wrapping the underlying cause."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        self.kind = getattr(cause, "kind", ErrorKind.EXECUTION_FAILED)
        super().__init__(f"{operation} failed: {cause}")


# Single-instance lock state machine


class LockStateError(RemotekitError):
    """The lock was used out of order."""


class DoubleAcquire(LockStateError):
    kind = ErrorKind.DOUBLE_ACQUIRE


class ReleaseWithoutAcquire(LockStateError):
    kind = ErrorKind.RELEASE_WITHOUT_ACQUIRE
