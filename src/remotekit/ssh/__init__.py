"""ssh command lines, identity files, known hosts and tunnels."""

from remotekit.ssh.command import SSHCommand, SSHCommandBuilder, SSHTool
from remotekit.ssh.identity import IdentityStore
from remotekit.ssh.known_hosts import Fingerprint, KnownHosts

__all__ = [
    "Fingerprint",
    "IdentityStore",
    "KnownHosts",
    "SSHCommand",
    "SSHCommandBuilder",
    "SSHTool",
]
