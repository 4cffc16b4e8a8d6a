"""Local command execution."""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Sequence

from remotekit.errors import ExecutionFailed
from remotekit.executor.base import Command

logger = logging.getLogger(__name__)


def describe_command(command: Command) -> str:
    """Printable form of a command for logs and errors."""
    if isinstance(command, str):
        return command
    return shlex.join(command)


class LocalExecutor:
    """Runs commands on this machine with subprocess."""

    def __init__(self, work_dir: str | Path | None = None, default_timeout: float | None = None):
        self._work_dir = Path(work_dir).expanduser().resolve() if work_dir else None
        self.default_timeout = default_timeout

    def _prepare(self, command: Command, sudo: bool) -> tuple[str | list[str], bool]:
        if isinstance(command, str):
            return (f"sudo {command}" if sudo else command), True
        argv = list(command)
        if sudo:
            argv = ["sudo", *argv]
        return argv, False

    def run(
        self,
        command: Command,
        timeout: float | None = None,
        ok_exit_codes: Sequence[int] = (0,),
        sudo: bool = False,
        input: str | None = None,
    ) -> list[str]:
        """Run a command locally and return its output lines."""
        prepared, shell = self._prepare(command, sudo)
        printable = describe_command(prepared)
        if timeout is None:
            timeout = self.default_timeout

        logger.debug(f"Executing: {printable}")
        try:
            result = subprocess.run(
                prepared,
                shell=shell,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                input=input,
                text=True,
                timeout=timeout,
                cwd=self._work_dir,
            )
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            raise ExecutionFailed(printable, None, output.splitlines()) from e
        except FileNotFoundError as e:
            raise ExecutionFailed(printable, 127, [str(e)]) from e

        lines = result.stdout.splitlines()
        if result.returncode not in ok_exit_codes:
            raise ExecutionFailed(printable, result.returncode, lines)
        return lines

    def spawn(self, command: Command, log_path: str | Path | None = None) -> int:
        """Start a command in the background, detached from our session."""
        prepared, shell = self._prepare(command, False)
        logger.debug(f"Spawning: {describe_command(prepared)}")

        log = open(log_path or "/dev/null", "ab")
        try:
            process = subprocess.Popen(
                prepared,
                shell=shell,
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                cwd=self._work_dir,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise ExecutionFailed(describe_command(prepared), 127, [str(e)]) from e
        finally:
            log.close()
        return process.pid
