"""Protocol for the process-spawn primitive everything else is built on."""

from pathlib import Path
from typing import Protocol, Sequence

Command = str | Sequence[str]


class CommandRunner(Protocol):
    """Runs OS commands on this machine."""

    def run(
        self,
        command: Command,
        timeout: float | None = None,
        ok_exit_codes: Sequence[int] = (0,),
        sudo: bool = False,
        input: str | None = None,
    ) -> list[str]:
        """Run to completion. Returns output lines (stdout and stderr merged).

        A string is run through the shell, a sequence is run as an argument
        vector. Raises ExecutionFailed for exit codes not in ok_exit_codes or
        when the timeout elapses.
        """
        ...

    def spawn(self, command: Command, log_path: str | Path | None = None) -> int:
        """Start in the background without waiting. Returns the PID."""
        ...
