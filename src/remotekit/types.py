"""Core type definitions for remotekit."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, SecretStr


class SSHOptions(BaseModel):
    """`-o` options passed to every ssh invocation."""

    model_config = ConfigDict(extra="forbid")

    connect_timeout: int | None = None
    check_host_ip: bool | None = None
    strict_host_key_checking: bool | None = None
    user_known_hosts_file: str | None = None
    check_hostkey: bool | None = None  # False disables both host checks


class TunnelSpec(BaseModel):
    """Local port forward: source_port on this machine to target_host:target_port."""

    source_port: int | None = None
    target_port: int | None = None
    target_host: str | None = "localhost"
    persist: bool = False


class ConnectionDescriptor(BaseModel):
    """One remote target and how to reach it."""

    hostname: str | None = None
    port: int | str | None = None
    username: str | None = None
    identity_file: str | None = None
    ssh_key: SecretStr | None = None
    options: SSHOptions | None = None
    tunnel: TunnelSpec | None = None
    proxies: list[ConnectionDescriptor] = []

    background: bool = False
    no_command: bool = False
    remote_connect: bool = False
    force_terminal: bool = False
    disable_terminal: bool = False
    persistent: bool = False  # ControlMaster connection sharing
    log_file: str | None = None

    @property
    def is_local(self) -> bool:
        return not self.hostname

    @property
    def has_credentials(self) -> bool:
        return bool(self.identity_file or self.ssh_key)

    def label(self) -> str:
        """user@host:port for log messages."""
        user = f"{self.username}@" if self.username else ""
        port = f":{self.port}" if self.port else ""
        return f"{user}{self.hostname}{port}"


ConnectionDescriptor.model_rebuild()


@dataclass
class ProcessRecord:
    """Point-in-time view of one OS process."""

    pid: int
    command: str
    args: str


@dataclass
class Tunnel:
    """A running ssh port forward."""

    pid: int
    source_port: int
    target_host: str
    target_port: int
    persist: bool = False
