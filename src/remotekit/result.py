"""Tagged results for callers that prefer matching over try/except."""

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from remotekit.errors import ErrorKind, RemotekitError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome with the kind of failure and the original error."""

    kind: ErrorKind
    error: RemotekitError

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return str(self.error)


Result = Ok[T] | Err


def capture(func: Callable[..., T], *args, **kwargs) -> "Result[T]":
    """Call func and turn a RemotekitError into an Err."""
    try:
        return Ok(func(*args, **kwargs))
    except RemotekitError as e:
        return Err(kind=e.kind, error=e)
