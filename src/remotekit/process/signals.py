"""Stop processes, escalating from SIGTERM to SIGKILL."""

import logging
import signal as signals
import time
from typing import Callable

from remotekit.errors import ExecutionFailed, KillFailed
from remotekit.executor.base import CommandRunner
from remotekit.executor.local import LocalExecutor
from remotekit.process.registry import ProcessRegistry

logger = logging.getLogger(__name__)


class SignalEscalator:
    """Signals a PID or a process name and verifies that it died.

    verify counts the liveness checks made after signalling. A negative value
    makes the same number of checks and then escalates to SIGKILL when the
    target survived them; zero sends the signal and returns.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        registry: ProcessRegistry | None = None,
        poll_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner or LocalExecutor()
        self.registry = registry or ProcessRegistry(self.runner)
        self.poll_interval = poll_interval
        self._sleep = sleep

    def terminate(
        self,
        target: int | str,
        signal: int = signals.SIGTERM,
        verify: int = -20,
        sudo: bool = False,
    ) -> bool:
        """Stop a PID (int) or every process with a name (str)."""
        if isinstance(target, int):
            return self.kill(target, signal=signal, verify=verify, sudo=sudo)
        if target.isdigit():
            return self.kill(int(target), signal=signal, verify=verify, sudo=sudo)
        return self.pkill(target, signal=signal, verify=abs(verify), sigkill=verify < 0, sudo=sudo)

    def kill(
        self,
        pid: int,
        signal: int = signals.SIGTERM,
        verify: int = -20,
        sudo: bool = False,
    ) -> bool:
        """Signal pid. Returns False if it was already gone, True otherwise."""
        if not pid or pid < 0:
            raise ValueError(f"Invalid pid {pid!r}")
        signal = int(signal or signals.SIGTERM)

        if not self._send(["kill", f"-{signal}", str(pid)], sudo):
            logger.warning(f"Could not kill pid {pid}, it does not exist")
            return False

        if not verify:
            return True

        if self._wait_gone(lambda: self.registry.is_alive(pid), abs(verify), f"pid {pid}"):
            return True

        if verify < 0:
            logger.info(f"Killing pid {pid} with signal {signals.SIGKILL.value}")
            self._send(["kill", f"-{signals.SIGKILL.value}", str(pid)], sudo)
            if self._wait_gone(lambda: self.registry.is_alive(pid), abs(verify), f"pid {pid}"):
                return True

        raise KillFailed(pid)

    def pkill(
        self,
        name: str,
        signal: int = signals.SIGTERM,
        verify: int = 3,
        sigkill: bool = True,
        sudo: bool = False,
    ) -> bool:
        """Signal every process named name. Returns False if none was running."""
        if not name:
            raise ValueError("No process name specified")
        signal = int(signal or signals.SIGTERM)

        if not self._send(["pkill", f"-{signal}", name], sudo):
            logger.debug(f"No process named '{name}' to kill")
            return False

        if not verify:
            return True

        if self._wait_gone(lambda: bool(self.registry.find_by_name(name)), verify, f"'{name}'"):
            return True

        if sigkill:
            logger.info(f"Killing '{name}' with signal {signals.SIGKILL.value}")
            self._send(["pkill", f"-{signals.SIGKILL.value}", name], sudo)
            if self._wait_gone(lambda: bool(self.registry.find_by_name(name)), verify, f"'{name}'"):
                return True

        raise KillFailed(name)

    def _send(self, argv: list[str], sudo: bool) -> bool:
        """Deliver a signal. False means there was no such process."""
        logger.debug(f"Sending {argv[1]} to {argv[2]}")
        try:
            self.runner.run(argv, sudo=sudo)
        except ExecutionFailed as e:
            if e.exit_code != 1:
                raise
            # pkill exits 1 silently when nothing matched, kill says so
            if argv[0] == "pkill" and not e.output:
                return False
            if any("no such process" in line.lower() for line in e.output):
                return False
            raise
        return True

    def _wait_gone(self, alive: Callable[[], bool], attempts: int, label: str) -> bool:
        for _ in range(attempts):
            self._sleep(self.poll_interval)
            if not alive():
                return True
            logger.info(f"Waiting for {label} to die...")
            self._sleep(self.poll_interval)
        return False
