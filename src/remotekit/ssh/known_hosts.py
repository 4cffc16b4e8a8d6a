"""Registration of remote host keys in our own known_hosts file."""

import ipaddress
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from paramiko.hostkeys import HostKeyEntry, HostKeys, InvalidHostKey
from paramiko.ssh_exception import SSHException

from remotekit.errors import HostKeyError
from remotekit.executor.base import CommandRunner
from remotekit.executor.local import LocalExecutor

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*\.?$"
)
_TOKEN_RE = re.compile(r"^\[(?P<host>.+)\]:(?P<port>\d{1,5})$")


def host_token(host: str, port: int = DEFAULT_PORT) -> str:
    """Host as ssh writes it in known_hosts: bare for port 22, [host]:port otherwise."""
    if int(port) == DEFAULT_PORT:
        return host
    return f"[{host}]:{port}"


def is_valid_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return bool(_DOMAIN_RE.match(host))


@dataclass(frozen=True)
class Fingerprint:
    host: str
    port: int
    algorithm: str
    key: str  # base64 public key

    @property
    def line(self) -> str:
        return f"{host_token(self.host, self.port)} {self.algorithm} {self.key}"


class KnownHosts:
    """Appends host keys to a known_hosts file. Existing lines are never rewritten."""

    def __init__(self, path: str | Path, runner: CommandRunner | None = None):
        self.path = Path(path)
        self.runner = runner or LocalExecutor()

    def scan(self, host: str, port: int = DEFAULT_PORT) -> list[Fingerprint]:
        """Public host keys reported by ssh-keyscan."""
        if not host:
            raise HostKeyError("No host specified")

        output = self.runner.run(["ssh-keyscan", "-p", str(port), host], ok_exit_codes=(0, 1))
        fingerprints = []
        for line in output:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                entry = HostKeyEntry.from_line(line)
            except (InvalidHostKey, SSHException, ValueError) as e:
                logger.debug(f"Skipping unparsable ssh-keyscan line: {e}")
                continue
            if entry is None or entry.key is None:
                continue

            scanned_host, scanned_port = self._split_token(entry.hostnames[0])
            if not is_valid_host(scanned_host):
                raise HostKeyError(f"ssh-keyscan returned invalid host name '{scanned_host}'")
            fingerprints.append(
                Fingerprint(
                    host=scanned_host,
                    port=scanned_port,
                    algorithm=entry.key.get_name(),
                    key=entry.key.get_base64(),
                )
            )
        return fingerprints

    @staticmethod
    def _split_token(token: str) -> tuple[str, int]:
        match = _TOKEN_RE.match(token)
        if match:
            return match.group("host"), int(match.group("port"))
        return token, DEFAULT_PORT

    def is_known(self, host: str, port: int = DEFAULT_PORT) -> bool:
        if not self.path.exists():
            return False
        try:
            keys = HostKeys(str(self.path))
        except (OSError, SSHException) as e:
            logger.warning(f"Cannot read {self.path}: {e}")
            return False
        return keys.lookup(host_token(host, port)) is not None

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch(mode=0o640)

    def append(self, fingerprint: Fingerprint) -> bool:
        """Add one key. Returns False if the exact line is already present."""
        self._ensure_file()
        existing = self.path.read_text().splitlines()
        if fingerprint.line in existing:
            logger.debug(
                f"Skipping {fingerprint.algorithm} key for {fingerprint.host}, already in {self.path}"
            )
            return False

        logger.info(f"Adding {fingerprint.algorithm} key for {fingerprint.host} to {self.path}")
        with open(self.path, "a") as f:
            f.write(fingerprint.line + "\n")
        return True

    def add(self, host: str, port: int = DEFAULT_PORT) -> int:
        """Scan host and append its keys. Returns the number of new lines."""
        fingerprints = self.scan(host, port)
        if not fingerprints:
            raise HostKeyError(f"ssh-keyscan found no public keys for '{host}:{port}'")
        return sum(1 for fp in fingerprints if self.append(fp))

    def register(self, host: str, port: int = DEFAULT_PORT) -> int:
        """Like add(), but does nothing for hosts that are already known."""
        if self.is_known(host, port):
            return 0
        return self.add(host, port)

    def remove(self, host: str, port: int = DEFAULT_PORT) -> None:
        if not self.path.exists():
            return
        self.runner.run(
            ["ssh-keygen", "-f", str(self.path), "-R", host_token(host, port)],
            ok_exit_codes=(0, 1),
        )
