"""Configuration models for remotekit."""

from pathlib import Path

import yaml
from pydantic import BaseModel, field_validator

from remotekit.types import ConnectionDescriptor, SSHOptions

CONFIG_FILE = "remotekit.yaml"


class SSHSettings(BaseModel):
    """Defaults applied to every ssh command line."""

    default_port: int = 22
    options: SSHOptions = SSHOptions(
        connect_timeout=30,
        check_host_ip=True,
        strict_host_key_checking=True,
    )
    persist_timeout: int = 3600
    proxy_relay: list[str] = ["nc"]
    auto_register_host_keys: bool = True

    @field_validator("default_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"ssh.default_port must be 1-65535, got {v}")
        return v

    @field_validator("persist_timeout", mode="before")
    @classmethod
    def validate_persist_timeout(cls, v: int | str) -> int:
        if isinstance(v, str):
            return parse_duration(v)
        return v

    @field_validator("proxy_relay")
    @classmethod
    def validate_relay(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("ssh.proxy_relay must name a command")
        return v


class ExecSettings(BaseModel):
    """Local process spawning."""

    timeout: int | None = None  # seconds, None for no limit
    output_log: str = "/dev/null"  # where background commands write

    @field_validator("timeout", mode="before")
    @classmethod
    def validate_timeout(cls, v: int | str | None) -> int | None:
        if isinstance(v, str):
            return parse_duration(v)
        return v


class KillSettings(BaseModel):
    """Signal escalation."""

    poll_interval: float = 0.1
    verify: int = -20  # negative escalates to SIGKILL
    pkill_verify: int = 3


class GitSettings(BaseModel):
    """Waiting for concurrent git processes on the same path."""

    busy_retries: int = 5
    busy_delay: float = 2.0


class RemotekitConfig(BaseModel):
    """Main remotekit configuration."""

    data_dir: str = "data"
    ssh: SSHSettings = SSHSettings()
    exec: ExecSettings = ExecSettings()
    kill: KillSettings = KillSettings()
    git: GitSettings = GitSettings()
    servers: dict[str, ConnectionDescriptor] = {}

    @field_validator("servers", mode="before")
    @classmethod
    def validate_servers(cls, v: dict | None) -> dict:
        return {} if v is None else v

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def run_dir(self) -> Path:
        return self.data_path / "run"

    @property
    def control_dir(self) -> Path:
        return self.run_dir / "ssh"

    @property
    def keys_dir(self) -> Path:
        return self.data_path / "ssh" / "keys"

    @property
    def known_hosts_file(self) -> Path:
        return self.data_path / "ssh" / "known_hosts"


def parse_duration(duration_str: str) -> int:
    """Parse duration string to seconds. Supports: 30s, 5m, 2h, 1d."""
    duration_str = duration_str.strip().lower()
    if not duration_str:
        raise ValueError("Empty duration string")

    multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}
    unit = duration_str[-1]

    if unit not in multipliers:
        raise ValueError(f"Invalid duration unit: {unit}. Use s, m, h, or d.")

    try:
        value = int(duration_str[:-1])
    except ValueError:
        raise ValueError(f"Invalid duration value: {duration_str[:-1]}")

    return value * multipliers[unit]


def load_config(path: Path | None = None) -> RemotekitConfig:
    """Load configuration from YAML file. Missing default file gives defaults."""
    if path is None:
        path = Path(CONFIG_FILE)
        if not path.exists():
            return RemotekitConfig()
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return RemotekitConfig(**data)


def get_config_template() -> str:
    """Get the default configuration template."""
    return """# remotekit configuration

# Lock files go to <data_dir>/run, identity files to <data_dir>/ssh/keys,
# host keys to <data_dir>/ssh/known_hosts.
data_dir: data

ssh:
  default_port: 22
  options:
    connect_timeout: 30
    check_host_ip: true
    strict_host_key_checking: true
    # user_known_hosts_file: /etc/ssh/ssh_known_hosts
  persist_timeout: 1h  # ControlPersist for persistent connections
  proxy_relay: [nc]      # command run on each proxy hop to reach the next
  auto_register_host_keys: true

exec:
  # timeout: 5m
  output_log: /dev/null

kill:
  poll_interval: 0.1
  verify: -20
  pkill_verify: 3

git:
  busy_retries: 5
  busy_delay: 2.0

servers: {}
  # db1:
  #   hostname: db1.example.com
  #   port: 22
  #   username: ops
  #   identity_file: ~/.ssh/ops.pem
  #   proxies:
  #     - hostname: bastion.example.com
  #       port: 40220
"""
