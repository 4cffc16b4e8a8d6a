"""ssh port forwards: open, find and close."""

import logging
import socket
import time
from typing import Callable

from remotekit.errors import ExecutionFailed, NotSpecified
from remotekit.executor.ssh import RemoteExecutor, Target
from remotekit.process.registry import ProcessRegistry
from remotekit.types import Tunnel, TunnelSpec

logger = logging.getLogger(__name__)

LOCAL_NAMES = {"localhost", "127.0.0.1"}


def free_port() -> int:
    """A local TCP port nobody is listening on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def port_open(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def open_tunnel(
    executor: RemoteExecutor,
    target: Target,
    target_port: int,
    source_port: int | None = None,
    target_host: str = "localhost",
    persist: bool = False,
    test_tries: int = 50,
    test_interval: float = 0.1,
    probe: Callable[[int], bool] = port_open,
    sleep: Callable[[float], None] = time.sleep,
) -> Tunnel:
    """Forward local source_port to target_host:target_port as seen from target.

    With test_tries > 0 the call waits until the local port accepts
    connections, failing early if the ssh process dies.
    """
    descriptor = executor.resolve(target)
    if descriptor is None:
        raise NotSpecified("A tunnel needs a remote host")

    source_port = source_port or free_port()
    spec = TunnelSpec(
        source_port=source_port,
        target_port=target_port,
        target_host=target_host,
        persist=persist,
    )
    output = executor.exec(descriptor.model_copy(update={"tunnel": spec}))
    tunnel = Tunnel(
        pid=int(output[0]),
        source_port=source_port,
        target_host=target_host,
        target_port=target_port,
        persist=persist,
    )

    if test_tries > 0:
        _wait_listening(executor, tunnel, test_tries, test_interval, probe, sleep)
    return tunnel


def _wait_listening(
    executor: RemoteExecutor,
    tunnel: Tunnel,
    tries: int,
    interval: float,
    probe: Callable[[int], bool],
    sleep: Callable[[float], None],
) -> None:
    registry = executor.escalator.registry
    description = f"ssh tunnel {tunnel.source_port}:{tunnel.target_host}:{tunnel.target_port}"

    for _ in range(tries):
        if not registry.pid_exists(tunnel.pid):
            raise ExecutionFailed(description, None, [f"ssh process {tunnel.pid} exited"])
        if probe(tunnel.source_port):
            logger.debug(f"Tunnel on port {tunnel.source_port} is up")
            return
        sleep(interval)

    executor.close_tunnel(tunnel.pid)
    raise ExecutionFailed(
        description, None, [f"port {tunnel.source_port} not listening after {tries} tries"]
    )


def _parse_forward(args: str) -> tuple[int, str, int] | None:
    """source, host and port of the -L argument in an ssh command line."""
    parts = args.split()
    for index, part in enumerate(parts):
        if part == "-L" and index + 1 < len(parts):
            value = parts[index + 1]
        elif part.startswith("-L") and len(part) > 2:
            value = part[2:]
        else:
            continue
        fields = value.split(":")
        if len(fields) != 3 or not fields[0].isdigit() or not fields[2].isdigit():
            return None
        return int(fields[0]), fields[1], int(fields[2])
    return None


def _same_host(a: str, b: str) -> bool:
    if a in LOCAL_NAMES and b in LOCAL_NAMES:
        return True
    return a == b


def find_tunnel(
    registry: ProcessRegistry,
    hostname: str,
    target_port: int,
    target_host: str = "localhost",
) -> Tunnel | None:
    """A running tunnel through hostname to target_host:target_port, if any."""
    for pid, args in registry.list_processes(["ssh", "-L"]).items():
        if hostname not in args.split() and not any(
            part.endswith(f"@{hostname}") for part in args.split()
        ):
            continue
        forward = _parse_forward(args)
        if forward is None:
            continue
        source_port, forward_host, forward_port = forward
        if forward_port == target_port and _same_host(forward_host, target_host):
            return Tunnel(
                pid=pid,
                source_port=source_port,
                target_host=forward_host,
                target_port=forward_port,
            )
    return None


def close_tunnel(executor: RemoteExecutor, pid: int) -> bool:
    """Stop the tunnel process pid. Returns False if it was already gone."""
    closed = executor.close_tunnel(pid)
    logger.info(f"Closed ssh tunnel (pid {pid})" if closed else f"ssh tunnel pid {pid} was not running")
    return closed
