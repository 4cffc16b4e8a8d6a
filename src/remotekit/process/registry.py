"""Read-only queries against the OS process table."""

import logging

import psutil

from remotekit.executor.base import CommandRunner
from remotekit.executor.local import LocalExecutor
from remotekit.types import ProcessRecord

logger = logging.getLogger(__name__)

LIST_COMMAND = ["ps", "ax", "-o", "pid=,args="]


class ProcessRegistry:
    """Finds and describes processes. Every call is a fresh snapshot."""

    def __init__(self, runner: CommandRunner | None = None):
        self.runner = runner or LocalExecutor()

    def find_by_name(self, pattern: str, full: bool = False) -> list[int]:
        """PIDs whose name (or full command line with full=True) matches pattern."""
        argv = ["pgrep", "-f", pattern] if full else ["pgrep", pattern]
        output = self.runner.run(argv, ok_exit_codes=(0, 1))
        return [int(line) for line in output if line.strip().isdigit()]

    def describe(self, pid: int) -> ProcessRecord | None:
        """Live process info for pid, or None if it does not exist."""
        if pid <= 0:
            return None

        command = self._ps_field(pid, "comm")
        if command is None:
            return None
        args = self._ps_field(pid, "args")
        if args is None:
            return None
        return ProcessRecord(pid=pid, command=command, args=args)

    def _ps_field(self, pid: int, field: str) -> str | None:
        output = self.runner.run(["ps", "-p", str(pid), "-o", f"{field}="], ok_exit_codes=(0, 1))
        lines = [line.strip() for line in output if line.strip()]
        return lines[-1] if lines else None

    def is_alive(self, pid: int) -> bool:
        return self.describe(pid) is not None

    def list_processes(self, filters: list[str] | str | None = None) -> dict[int, str]:
        """Map of pid to command line for processes containing every filter."""
        if isinstance(filters, str):
            filters = [filters]
        filters = filters or []
        own_listing = " ".join(LIST_COMMAND)

        processes = {}
        for line in self.runner.run(LIST_COMMAND):
            parts = line.strip().split(None, 1)
            if len(parts) != 2 or not parts[0].isdigit():
                continue
            pid, args = int(parts[0]), parts[1]
            if args == own_listing:
                continue
            if all(f in args for f in filters):
                processes[pid] = args
        return processes

    def pid_exists(self, pid: int) -> bool:
        """Cheap liveness check that does not start a ps process."""
        if pid <= 0:
            return False
        return psutil.pid_exists(pid)

    def cwd(self, pid: int) -> str | None:
        """Working directory of pid, None if gone or not readable."""
        try:
            return psutil.Process(pid).cwd()
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logger.debug(f"Cannot read cwd of pid {pid}: {e}")
            return None
