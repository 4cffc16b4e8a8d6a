"""Remote command execution over ssh and single-instance process control."""

from remotekit.errors import ErrorKind, RemotekitError
from remotekit.result import Err, Ok, Result
from remotekit.types import ConnectionDescriptor, SSHOptions, Tunnel, TunnelSpec

__version__ = "0.1.0"

__all__ = [
    "ConnectionDescriptor",
    "Err",
    "ErrorKind",
    "Ok",
    "RemotekitError",
    "Result",
    "SSHOptions",
    "Tunnel",
    "TunnelSpec",
    "__version__",
]
