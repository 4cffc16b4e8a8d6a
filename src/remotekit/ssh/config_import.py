"""~/.ssh/config parsing, used to resolve host aliases."""

from dataclasses import dataclass
from pathlib import Path

from paramiko.config import SSHConfig

from remotekit.types import ConnectionDescriptor


@dataclass
class SSHHost:
    """Parsed SSH host configuration."""

    name: str
    hostname: str
    user: str | None = None
    port: int = 22
    identity_file: str | None = None
    proxy_jump: str | None = None

    def to_descriptor(self) -> ConnectionDescriptor:
        return ConnectionDescriptor(
            hostname=self.hostname,
            port=self.port,
            username=self.user,
            identity_file=self.identity_file,
            proxies=parse_proxy_jump(self.proxy_jump),
        )


def parse_proxy_jump(value: str | None) -> list[ConnectionDescriptor]:
    """ProxyJump "[user@]host[:port],..." as proxy descriptors, first hop first."""
    if not value or value.lower() == "none":
        return []

    proxies = []
    for hop in value.split(","):
        hop = hop.strip()
        user, _, rest = hop.rpartition("@")
        host, sep, port = rest.partition(":")
        proxies.append(
            ConnectionDescriptor(
                hostname=host,
                port=int(port) if sep and port.isdigit() else None,
                username=user or None,
            )
        )
    return proxies


def _load(config_path: Path) -> SSHConfig | None:
    if not config_path.exists():
        return None
    config = SSHConfig()
    with open(config_path) as f:
        config.parse(f)
    return config


def _host_from_lookup(name: str, host_config: dict) -> SSHHost:
    port = 22
    if "port" in host_config:
        try:
            port = int(host_config["port"])
        except ValueError:
            pass

    identity_files = host_config.get("identityfile", [])
    return SSHHost(
        name=name,
        hostname=host_config.get("hostname", name),
        user=host_config.get("user"),
        port=port,
        identity_file=identity_files[0] if identity_files else None,
        proxy_jump=host_config.get("proxyjump"),
    )


def parse_ssh_config(config_path: Path | None = None) -> list[SSHHost]:
    """Parse ~/.ssh/config and return the concrete (non-wildcard) hosts."""
    config = _load(config_path or Path.home() / ".ssh" / "config")
    if config is None:
        return []

    hosts = []
    for name in sorted(config.get_hostnames()):
        if "*" in name or "?" in name or name.startswith("!"):
            continue
        hosts.append(_host_from_lookup(name, config.lookup(name)))
    return hosts


def lookup_host(alias: str, config_path: Path | None = None) -> SSHHost | None:
    """The ~/.ssh/config entry declaring alias, or None."""
    config = _load(config_path or Path.home() / ".ssh" / "config")
    if config is None or alias not in config.get_hostnames():
        return None
    return _host_from_lookup(alias, config.lookup(alias))
