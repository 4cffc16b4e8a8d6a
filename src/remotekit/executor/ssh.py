"""Remote command execution through the local ssh binary."""

import logging
import re
from pathlib import Path
from typing import Sequence

from remotekit.config import RemotekitConfig
from remotekit.errors import (
    AccessDenied,
    CredentialError,
    DescriptorError,
    ExecutionFailed,
    HostKeyError,
    MissingCredentials,
    RemoteExecutionError,
    RemotekitError,
)
from remotekit.executor.base import Command, CommandRunner
from remotekit.executor.local import LocalExecutor
from remotekit.process.signals import SignalEscalator
from remotekit.result import Result, capture
from remotekit.shutdown import ShutdownHooks, default_hooks
from remotekit.ssh.command import SSHCommandBuilder, SSHTool
from remotekit.ssh.config_import import lookup_host
from remotekit.ssh.identity import IdentityStore
from remotekit.ssh.known_hosts import KnownHosts
from remotekit.types import ConnectionDescriptor

logger = logging.getLogger(__name__)

KNOWN_HOST_WARNING = re.compile(r"^Warning: Permanently added .+ to the list of known hosts\.?$")
HOST_KEY_FAILED = "host key verification failed"

Target = ConnectionDescriptor | str | None


def strip_known_host_warning(output: list[str]) -> list[str]:
    """Drop ssh's "Permanently added ... to the list of known hosts" line."""
    if output and KNOWN_HOST_WARNING.match(output[0].strip()):
        return output[1:]
    return output


class RemoteExecutor:
    """Runs commands on a target host, or locally when there is no host.

    Each call is strictly sequential: credentials, command line, execution,
    cleanup. Identity files written from inline keys are removed when the
    call finishes, fails, or (for background commands) at shutdown.
    """

    def __init__(
        self,
        config: RemotekitConfig | None = None,
        runner: CommandRunner | None = None,
        known_hosts: KnownHosts | None = None,
        identities: IdentityStore | None = None,
        escalator: SignalEscalator | None = None,
        hooks: ShutdownHooks | None = None,
        ssh_config_path: Path | None = None,
    ):
        self.config = config or RemotekitConfig()
        self.runner = runner or LocalExecutor(default_timeout=self.config.exec.timeout)
        self.hooks = hooks or default_hooks()
        self.known_hosts = known_hosts or KnownHosts(self.config.known_hosts_file, self.runner)
        self.identities = identities or IdentityStore(self.config.keys_dir, self.hooks)
        self.escalator = escalator or SignalEscalator(
            self.runner, poll_interval=self.config.kill.poll_interval
        )
        self.builder = SSHCommandBuilder(self.config, self.known_hosts)
        self.ssh_config_path = ssh_config_path
        self._tunnels: dict[int, int] = {}

    def resolve(self, target: Target) -> ConnectionDescriptor | None:
        """Descriptor for target, None meaning "run locally".

        target may be a descriptor, a configured server name, a ~/.ssh/config
        alias or "[user@]host[:port]".
        """
        if isinstance(target, ConnectionDescriptor):
            return None if target.is_local else target.model_copy(deep=True)
        if not target:
            return None

        if target in self.config.servers:
            return self.config.servers[target].model_copy(deep=True)

        host = lookup_host(target, self.ssh_config_path)
        if host is not None:
            return host.to_descriptor()

        user, _, rest = target.rpartition("@")
        hostname, sep, port = rest.partition(":")
        return ConnectionDescriptor(
            hostname=hostname,
            username=user or None,
            port=int(port) if sep and port.isdigit() else None,
        )

    def exec(
        self,
        target: Target,
        command: Command | None = None,
        timeout: float | None = None,
        ok_exit_codes: Sequence[int] = (0,),
    ) -> list[str]:
        """Run command on target and return its output lines.

        Background commands and tunnels return a single line holding the PID
        of the ssh process.
        """
        descriptor = self.resolve(target)
        if descriptor is None:
            return self.runner.run(command or "", timeout=timeout, ok_exit_codes=ok_exit_codes)

        self._check_credentials(descriptor)
        return self._with_identity(
            descriptor,
            lambda: self._run(descriptor, command, timeout, ok_exit_codes),
            f"Executing on '{descriptor.label()}'",
        )

    def try_exec(
        self,
        target: Target,
        command: Command | None = None,
        timeout: float | None = None,
        ok_exit_codes: Sequence[int] = (0,),
    ) -> Result:
        return capture(self.exec, target, command, timeout, ok_exit_codes)

    def upload(self, target: Target, local_path: str | Path, remote_path: str) -> list[str]:
        """Copy a local file to target with scp."""
        return self._copy(target, lambda remote: [str(local_path), remote(remote_path)])

    def download(self, target: Target, remote_path: str, local_path: str | Path) -> list[str]:
        """Copy a file from target to this machine with scp."""
        return self._copy(target, lambda remote: [remote(remote_path), str(local_path)])

    def close_tunnel(self, pid: int) -> bool:
        """Stop a tunnel process and forget its shutdown hook."""
        handle = self._tunnels.pop(pid, None)
        if handle is not None:
            self.hooks.unregister(handle)
        return self.escalator.kill(pid)

    def _check_credentials(self, descriptor: ConnectionDescriptor) -> None:
        if not descriptor.username:
            raise MissingCredentials(f"No username specified for '{descriptor.hostname}'")
        if not descriptor.has_credentials:
            raise MissingCredentials(
                f"No identity file or ssh key available for '{descriptor.hostname}'"
            )

    def _with_identity(self, descriptor: ConnectionDescriptor, call, operation: str) -> list[str]:
        materialized = None
        try:
            if not descriptor.identity_file:
                materialized = self.identities.materialize(descriptor)
            output = call()
        except (DescriptorError, CredentialError):
            self._discard(materialized)
            raise
        except RemotekitError as e:
            self._discard(materialized)
            raise RemoteExecutionError(operation, e) from e
        except OSError as e:
            self._discard(materialized)
            raise RemoteExecutionError(operation, e) from e

        # Background ssh reads the key after we return; its file goes at shutdown
        if not descriptor.background and descriptor.tunnel is None:
            self._discard(materialized)
        return output

    def _discard(self, identity_file: Path | None) -> None:
        if identity_file is None:
            return
        try:
            self.identities.remove(identity_file)
        except OSError as e:
            logger.warning(f"Failed to remove identity file {identity_file}: {e}")

    def _run(
        self,
        descriptor: ConnectionDescriptor,
        command: Command | None,
        timeout: float | None,
        ok_exit_codes: Sequence[int],
    ) -> list[str]:
        ssh_command = self.builder.build(descriptor, command)
        if descriptor.persistent:
            self.config.control_dir.mkdir(parents=True, exist_ok=True)

        if ssh_command.background:
            pid = self.runner.spawn(ssh_command.argv, log_path=self.config.exec.output_log)
            self._track_tunnel(descriptor, pid)
            return [str(pid)]

        retried = False
        while True:
            try:
                output = self.runner.run(ssh_command.argv, timeout=timeout, ok_exit_codes=ok_exit_codes)
            except ExecutionFailed as e:
                if self._access_denied(e):
                    raise AccessDenied(f"Access denied connecting to '{descriptor.label()}'") from e
                if not retried and self._should_register_host_key(e):
                    self._register_host_key(descriptor)
                    retried = True
                    continue
                raise
            return strip_known_host_warning(output)

    @staticmethod
    def _access_denied(error: ExecutionFailed) -> bool:
        if not error.output:
            return False
        last = error.output[-1].strip().lower()
        # "bash: ...: Permission denied" comes from the remote command, not from ssh
        return "permission denied" in last and not last.startswith("bash:")

    def _should_register_host_key(self, error: ExecutionFailed) -> bool:
        if not self.config.ssh.auto_register_host_keys:
            return False
        return any(HOST_KEY_FAILED in line.lower() for line in error.output)

    def _register_host_key(self, descriptor: ConnectionDescriptor) -> None:
        port = int(descriptor.port or self.config.ssh.default_port)
        added = self.known_hosts.add(descriptor.hostname, port)
        if not added:
            raise HostKeyError(
                f"Host key of '{descriptor.hostname}:{port}' does not match {self.known_hosts.path}"
            )
        logger.warning(f"Registered {added} host key(s) for '{descriptor.hostname}:{port}', retrying")

    def _track_tunnel(self, descriptor: ConnectionDescriptor, pid: int) -> None:
        tunnel = descriptor.tunnel
        if tunnel is None:
            return

        spec = f"{tunnel.source_port}:{tunnel.target_host}:{tunnel.target_port}"
        if tunnel.persist:
            logger.info(f"Created PERSISTENT ssh tunnel {spec} to '{descriptor.hostname}' (pid {pid})")
            return

        logger.info(f"Created ssh tunnel {spec} to '{descriptor.hostname}' (pid {pid})")
        self._tunnels[pid] = self.hooks.register("close ssh tunnel", self.escalator.kill, pid)

    def _copy(self, target: Target, operands) -> list[str]:
        descriptor = self.resolve(target)
        if descriptor is None:
            raise DescriptorError("scp needs a remote target")
        self._check_credentials(descriptor)

        def remote(path: str) -> str:
            user = f"{descriptor.username}@" if descriptor.username else ""
            return f"{user}{descriptor.hostname}:{path}"

        def call() -> list[str]:
            copy = descriptor.model_copy(update={"tunnel": None, "background": False})
            scp = self.builder.build(copy, tool=SSHTool.SCP, operands=operands(remote))
            return strip_known_host_warning(self.runner.run(scp.argv))

        return self._with_identity(descriptor, call, f"Copying with '{descriptor.label()}'")
