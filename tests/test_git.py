"""Tests for the path-exclusive git wrapper."""

import os

import pytest

from remotekit.errors import Busy, ErrorKind
from remotekit.git import GitRepository, parse_porcelain
from remotekit.process.registry import ProcessRegistry


@pytest.fixture
def repo_path(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path.resolve()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def repo(repo_path, runner, sleeps):
    registry = ProcessRegistry(runner)
    return GitRepository(repo_path, runner, registry, retries=3, delay=2.0, sleep=sleeps.append)


def git_call(repo_path, *args):
    return ["git", "-C", str(repo_path), *args]


class TestWaitNoProcess:
    def test_free_path(self, repo, runner, sleeps):
        runner.on(["ps", "ax"], [" 10 vim notes.txt"])
        repo.wait_no_process()
        assert sleeps == []

    def test_busy_then_free(self, repo, repo_path, runner, sleeps):
        runner.on(["ps", "ax"], [])
        runner.on(["ps", "ax"], [f" 500 git -C {repo_path} fetch"], once=True)

        repo.wait_no_process()

        assert sleeps == [2.0]

    def test_busy_raises_after_retries(self, repo, repo_path, runner, sleeps):
        runner.on(["ps", "ax"], [f" 500 git -C {repo_path} gc"])

        with pytest.raises(Busy) as exc:
            repo.wait_no_process()

        assert exc.value.kind is ErrorKind.BUSY
        assert exc.value.pids == [500]
        assert sleeps == [2.0, 2.0, 2.0]
        assert len(runner.commands("ps")) == 4

    def test_matches_working_directory(self, repo, repo_path, runner, monkeypatch):
        monkeypatch.setattr(ProcessRegistry, "cwd", lambda self, pid: str(repo_path) if pid == 600 else None)
        runner.on(["ps", "ax"], [" 600 git status"])

        assert repo.busy_pids() == [600]

    def test_ignores_other_paths_and_programs(self, repo, runner, tmp_path):
        runner.on(
            ["ps", "ax"],
            [
                f" 700 git -C {tmp_path / 'elsewhere'} fetch",
                f" 701 vim {repo.path}/README",
                f" {os.getpid()} git -C {repo.path} status",
            ],
        )
        assert repo.busy_pids() == []


class TestOperations:
    def test_commands_wait_first(self, repo, repo_path, runner):
        repo.fetch("origin")
        assert runner.calls[-2][:2] == ["ps", "ax"]
        assert runner.calls[-1] == git_call(repo_path, "fetch", "origin")

    def test_current_branch(self, repo, repo_path, runner):
        runner.on(git_call(repo_path, "rev-parse", "--abbrev-ref", "HEAD"), ["main"])
        assert repo.current_branch() == "main"

    def test_list_branches(self, repo, repo_path, runner):
        runner.on(git_call(repo_path, "branch"), ["main", "feature/x", ""])
        assert repo.list_branches() == ["main", "feature/x"]

    def test_is_repository(self, repo, repo_path, runner):
        runner.on(git_call(repo_path, "rev-parse"), ["fatal: not a git repository"], exit_code=128)
        assert repo.is_repository() is False

        runner.on(git_call(repo_path, "rev-parse"), ["true"])
        assert repo.is_repository() is True

    def test_is_available(self, repo, runner):
        assert repo.is_available() is True
        runner.on(["git", "--version"], ["not found"], exit_code=127)
        assert repo.is_available() is False

    def test_checkout_and_commit(self, repo, repo_path, runner):
        repo.checkout("release", create=True)
        repo.add(["a.py", "b.py"])
        repo.commit("Bump version", all_changes=True)

        git_calls = runner.commands("git")
        assert git_calls == [
            git_call(repo_path, "checkout", "-b", "release"),
            git_call(repo_path, "add", "--", "a.py", "b.py"),
            git_call(repo_path, "commit", "-a", "-m", "Bump version"),
        ]

    def test_pull_reset_stash_clean(self, repo, repo_path, runner):
        repo.pull("origin", "main")
        repo.reset(hard=True)
        repo.stash()
        repo.stash_pop()
        repo.clean()

        assert runner.commands("git") == [
            git_call(repo_path, "pull", "origin", "main"),
            git_call(repo_path, "reset", "--hard", "HEAD"),
            git_call(repo_path, "stash"),
            git_call(repo_path, "stash", "pop"),
            git_call(repo_path, "clean", "-fd"),
        ]

    def test_status(self, repo, repo_path, runner):
        runner.on(git_call(repo_path, "status"), [" M src/app.py", "?? notes.txt", "R  old.py -> new.py"])
        assert repo.status() == {"src/app.py": "M", "notes.txt": "??", "new.py": "R"}


class TestPorcelain:
    def test_quoted_path(self):
        assert parse_porcelain(['A  "with space.txt"']) == {"with space.txt": "A"}

    def test_short_lines_ignored(self):
        assert parse_porcelain(["", "M"]) == {}
