"""git commands that wait for exclusive use of the working tree."""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Sequence

from remotekit.errors import Busy, ExecutionFailed
from remotekit.executor.base import CommandRunner
from remotekit.executor.local import LocalExecutor
from remotekit.process.registry import ProcessRegistry

logger = logging.getLogger(__name__)


def parse_porcelain(lines: list[str]) -> dict[str, str]:
    """`git status --porcelain` output as {path: status code}."""
    status = {}
    for line in lines:
        if len(line) < 4:
            continue
        code, path = line[:2].strip(), line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        status[path.strip('"')] = code
    return status


class GitRepository:
    """A git working tree at path.

    Every operation first waits until no other git process works on the same
    path, so concurrent scripts don't trip over index.lock.
    """

    def __init__(
        self,
        path: str | Path,
        runner: CommandRunner | None = None,
        registry: ProcessRegistry | None = None,
        retries: int = 5,
        delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.path = Path(path).expanduser().resolve()
        self.runner = runner or LocalExecutor()
        self.registry = registry or ProcessRegistry(self.runner)
        self.retries = retries
        self.delay = delay
        self._sleep = sleep

    def busy_pids(self) -> list[int]:
        """PIDs of other git processes working on this path."""
        own = os.getpid()
        path = str(self.path)
        pids = []
        for pid, args in self.registry.list_processes("git").items():
            if pid == own or Path(args.split()[0]).name != "git":
                continue
            if path in args or self.registry.cwd(pid) == path:
                pids.append(pid)
        return pids

    def wait_no_process(self) -> None:
        """Block until the path is free. Raises Busy after the last retry."""
        pids = []
        for attempt in range(self.retries + 1):
            pids = self.busy_pids()
            if not pids:
                return
            if attempt < self.retries:
                logger.warning(
                    f"Path {self.path} busy with git process(es) {pids}, "
                    f"retry {attempt + 1}/{self.retries} in {self.delay}s"
                )
                self._sleep(self.delay)
        raise Busy(str(self.path), pids, self.retries)

    def _git(self, *args: str, ok_exit_codes: Sequence[int] = (0,)) -> list[str]:
        self.wait_no_process()
        return self.runner.run(["git", "-C", str(self.path), *args], ok_exit_codes=ok_exit_codes)

    def is_available(self) -> bool:
        """Whether the git binary can be run at all."""
        try:
            self.runner.run(["git", "--version"])
        except ExecutionFailed:
            return False
        return True

    def is_repository(self) -> bool:
        output = self._git("rev-parse", "--is-inside-work-tree", ok_exit_codes=(0, 128))
        return output[-1:] == ["true"]

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD")[0].strip()

    def list_branches(self, remote: bool = False) -> list[str]:
        args = ["branch", "--format=%(refname:short)"]
        if remote:
            args.append("-r")
        return [line.strip() for line in self._git(*args) if line.strip()]

    def checkout(self, branch: str, create: bool = False) -> list[str]:
        return self._git("checkout", "-b", branch) if create else self._git("checkout", branch)

    def fetch(self, remote: str | None = None, all_remotes: bool = False) -> list[str]:
        if all_remotes:
            return self._git("fetch", "--all")
        return self._git("fetch", remote) if remote else self._git("fetch")

    def pull(self, remote: str | None = None, branch: str | None = None) -> list[str]:
        args = ["pull"]
        if remote:
            args.append(remote)
            if branch:
                args.append(branch)
        return self._git(*args)

    def reset(self, ref: str = "HEAD", hard: bool = False) -> list[str]:
        return self._git("reset", "--hard" if hard else "--mixed", ref)

    def status(self) -> dict[str, str]:
        return parse_porcelain(self._git("status", "--porcelain"))

    def add(self, paths: Sequence[str] | str = ".") -> list[str]:
        if isinstance(paths, str):
            paths = [paths]
        return self._git("add", "--", *paths)

    def commit(self, message: str, all_changes: bool = False) -> list[str]:
        args = ["commit", "-m", message]
        if all_changes:
            args.insert(1, "-a")
        return self._git(*args)

    def stash(self) -> list[str]:
        return self._git("stash")

    def stash_pop(self) -> list[str]:
        return self._git("stash", "pop")

    def clean(self, directories: bool = True, ignored: bool = False) -> list[str]:
        flags = "-f" + ("d" if directories else "") + ("x" if ignored else "")
        return self._git("clean", flags)
