"""Cleanup callbacks that must run even when the process exits on an error."""

import atexit
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class _Hook:
    name: str
    callback: Callable[..., Any]
    args: tuple = field(default_factory=tuple)


class ShutdownHooks:
    """Named cleanup callbacks, run in reverse registration order."""

    def __init__(self, install_atexit: bool = False):
        self._hooks: dict[int, _Hook] = {}
        self._next_handle = 1
        self._lock = threading.Lock()
        if install_atexit:
            atexit.register(self.run)

    def register(self, name: str, callback: Callable[..., Any], *args) -> int:
        """Register a callback. Returns a handle for unregister()."""
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._hooks[handle] = _Hook(name=name, callback=callback, args=args)
        logger.debug(f"Registered shutdown hook '{name}' ({handle})")
        return handle

    def unregister(self, handle: int) -> bool:
        with self._lock:
            return self._hooks.pop(handle, None) is not None

    def registered(self, name: str | None = None) -> list[int]:
        """Handles of pending hooks, optionally filtered by name."""
        with self._lock:
            return [h for h, hook in self._hooks.items() if name is None or hook.name == name]

    def run(self) -> int:
        """Run and clear all pending hooks. Returns how many ran cleanly."""
        with self._lock:
            pending = sorted(self._hooks.items(), reverse=True)
            self._hooks.clear()

        clean = 0
        for handle, hook in pending:
            try:
                hook.callback(*hook.args)
                clean += 1
            except Exception as e:
                logger.warning(f"Shutdown hook '{hook.name}' ({handle}) failed: {e}")
        return clean


_default_hooks: ShutdownHooks | None = None


def default_hooks() -> ShutdownHooks:
    """Process-wide hooks, run at interpreter exit."""
    global _default_hooks
    if _default_hooks is None:
        _default_hooks = ShutdownHooks(install_atexit=True)
    return _default_hooks
