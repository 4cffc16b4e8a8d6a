"""One-off identity files written from inline key material."""

import logging
import os
import secrets
import string
from pathlib import Path

from remotekit.errors import MissingCredentials
from remotekit.shutdown import ShutdownHooks, default_hooks
from remotekit.types import ConnectionDescriptor

logger = logging.getLogger(__name__)

NAME_ALPHABET = string.ascii_letters + string.digits
NAME_LENGTH = 8


class IdentityStore:
    """Writes private keys to owner-only files and removes them again.

    Every materialized file gets a shutdown hook, so it is removed even when
    the call that created it never reaches its own cleanup.
    """

    def __init__(self, keys_dir: str | Path, hooks: ShutdownHooks | None = None):
        self.keys_dir = Path(keys_dir)
        self.hooks = hooks or default_hooks()
        self._handles: dict[Path, int] = {}

    def _ensure_dir(self) -> None:
        self.keys_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        self.keys_dir.chmod(0o700)
        self.keys_dir.parent.chmod(0o700)

    def materialize(self, descriptor: ConnectionDescriptor) -> Path:
        """Write descriptor.ssh_key to a new file and point identity_file at it.

        The key is dropped from the descriptor afterwards.
        """
        if descriptor.ssh_key is None:
            raise MissingCredentials(f"No ssh key available for '{descriptor.hostname}'")

        self._ensure_dir()
        while True:
            name = "".join(secrets.choice(NAME_ALPHABET) for _ in range(NAME_LENGTH))
            path = self.keys_dir / name
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                break
            except FileExistsError:
                continue

        try:
            with os.fdopen(fd, "w") as f:
                f.write(descriptor.ssh_key.get_secret_value())
            path.chmod(0o400)
        except OSError:
            self._unlink(path)
            raise

        descriptor.ssh_key = None
        descriptor.identity_file = str(path)
        self._handles[path] = self.hooks.register("remove identity file", self.remove, path)
        logger.debug(f"Created identity file {path}")
        return path

    def remove(self, path: str | Path) -> bool:
        """Delete an identity file. Returns False if it was already gone."""
        path = Path(path)
        handle = self._handles.pop(path, None)
        if handle is not None:
            self.hooks.unregister(handle)

        if not path.exists():
            return False
        self._unlink(path)
        logger.debug(f"Removed identity file {path}")
        return True

    @staticmethod
    def _unlink(path: Path) -> None:
        path.chmod(0o600)
        path.unlink(missing_ok=True)
