"""Executor module for local and remote command execution.

RemoteExecutor lives in remotekit.executor.ssh; it depends on the process
and ssh packages, which themselves run commands through LocalExecutor.
"""

from remotekit.executor.base import Command, CommandRunner
from remotekit.executor.local import LocalExecutor, describe_command

__all__ = [
    "Command",
    "CommandRunner",
    "LocalExecutor",
    "describe_command",
]
