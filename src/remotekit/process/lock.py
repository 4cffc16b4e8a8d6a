"""Single-instance execution through PID lock files."""

import logging
import os
import signal
import sys
from enum import Enum
from pathlib import Path

from remotekit.errors import AlreadyRunning, DoubleAcquire, ReleaseWithoutAcquire
from remotekit.process.registry import ProcessRegistry
from remotekit.process.signals import SignalEscalator
from remotekit.result import Result, capture
from remotekit.shutdown import ShutdownHooks, default_hooks
from remotekit.types import ProcessRecord

logger = logging.getLogger(__name__)

# Linux PID_MAX_LIMIT; anything above cannot be a real pid
PID_MAX = 4194304

# Lost creation races tolerated before giving up
CREATE_ATTEMPTS = 3


class LockState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


def current_script() -> str:
    """Name this process was invoked as."""
    name = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else ""
    return name or "python"


def runs_script(args: str, script: str) -> bool:
    """True if a command line invokes script (directly or through an interpreter)."""
    return any(Path(arg).name == script for arg in args.split())


def _matches(record: ProcessRecord, script: str) -> bool:
    return record.command == script or runs_script(record.args, script)


class SingleInstanceLock:
    """Keeps a script from running twice on this machine.

    The lock file lives at <run_dir>/<script> and holds the owner's PID. A
    file left behind by a crashed run is discarded when its PID is gone or
    now belongs to a different program.
    """

    def __init__(
        self,
        run_dir: str | Path,
        script: str | None = None,
        registry: ProcessRegistry | None = None,
        hooks: ShutdownHooks | None = None,
    ):
        self.run_dir = Path(run_dir)
        self.script = script or current_script()
        self.registry = registry or ProcessRegistry()
        self.hooks = hooks or default_hooks()
        self.state = LockState.CLOSED
        self._hook: int | None = None

    @property
    def path(self) -> Path:
        return self.run_dir / self.script

    def acquire(self) -> Path:
        """Take the lock. Raises AlreadyRunning if a live instance holds it."""
        if self.state is LockState.OPEN:
            raise DoubleAcquire(f"Lock for '{self.script}' acquired twice without release")

        self.run_dir.mkdir(parents=True, exist_ok=True)
        for _ in range(CREATE_ATTEMPTS):
            if self.path.exists():
                self._discard_stale()
            if self._create():
                break
            logger.debug(f"Lock {self.path} was created concurrently, checking its holder again")
        else:
            raise AlreadyRunning(self.script, self._stored_pid())

        self.state = LockState.OPEN
        self._hook = self.hooks.register(f"release lock {self.script}", self._release_at_exit)
        logger.debug(f"Acquired lock {self.path}")
        return self.path

    def try_acquire(self) -> Result:
        return capture(self.acquire)

    def release(self) -> None:
        if self.state is LockState.CLOSED:
            raise ReleaseWithoutAcquire(f"Lock for '{self.script}' released but never acquired")

        self.path.unlink(missing_ok=True)
        self.state = LockState.CLOSED
        if self._hook is not None:
            self.hooks.unregister(self._hook)
            self._hook = None
        logger.debug(f"Released lock {self.path}")

    def _create(self) -> bool:
        """Atomically create the lock file holding our PID. False if it exists."""
        staging = self.run_dir / f".{self.script}.{os.getpid()}"
        staging.write_text(str(os.getpid()))
        try:
            os.link(staging, self.path)
        except FileExistsError:
            return False
        finally:
            staging.unlink(missing_ok=True)
        return True

    def _release_at_exit(self) -> None:
        if self.state is LockState.OPEN:
            self.release()

    def _discard_stale(self) -> None:
        """Raise AlreadyRunning for a live holder, otherwise remove the file."""
        pid = self._stored_pid()
        if pid is not None:
            try:
                record = self.registry.describe(pid)
            except Exception as e:
                logger.warning(
                    f"Could not look up pid {pid} from {self.path}, treating it as not running: {e}"
                )
                record = None
            if record is not None and _matches(record, self.script):
                raise AlreadyRunning(self.script, pid)

        logger.info(f"Stale lock discarded: {self.path} (pid {pid})")
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove stale lock {self.path}: {e}")

    def _stored_pid(self) -> int | None:
        try:
            raw = self.path.read_text().strip()
        except OSError as e:
            logger.warning(f"Cannot read lock file {self.path}: {e}")
            return None
        if not raw.isdigit() or not 0 < int(raw) <= PID_MAX:
            logger.warning(f"Lock file {self.path} contains invalid data, ignoring")
            return None
        return int(raw)

    def __enter__(self) -> "SingleInstanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.state is LockState.OPEN:
            self.release()


def ensure_exclusive(
    registry: ProcessRegistry,
    escalator: SignalEscalator | None = None,
    script: str | None = None,
    action: str = "exception",
    force: bool = False,
) -> bool:
    """Check the process table for other instances of script.

    With action="exception" another instance raises AlreadyRunning. With
    action="kill" the other instances are stopped (SIGKILL when force) and
    True is returned. False means no other instance was running.
    """
    if action not in ("exception", "kill"):
        raise ValueError(f"Unknown action '{action}'")

    script = script or current_script()
    own = os.getpid()
    others = [
        pid
        for pid, args in registry.list_processes([script]).items()
        if pid != own and runs_script(args, script)
    ]
    if not others:
        return False

    if action == "exception":
        raise AlreadyRunning(script, others[0])

    escalator = escalator or SignalEscalator(registry.runner, registry)
    sig = signal.SIGKILL if force else signal.SIGTERM
    for pid in others:
        logger.info(f"Stopping other instance of '{script}' (pid {pid})")
        escalator.kill(pid, signal=sig)
    return True
