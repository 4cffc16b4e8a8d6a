"""remotekit CLI."""

import logging
import signal
import subprocess
import time
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from remotekit.config import CONFIG_FILE, RemotekitConfig, get_config_template, load_config
from remotekit.errors import ErrorKind, RemotekitError
from remotekit.executor.local import LocalExecutor
from remotekit.executor.ssh import RemoteExecutor
from remotekit.git import GitRepository
from remotekit.process.lock import SingleInstanceLock
from remotekit.process.registry import ProcessRegistry
from remotekit.process.signals import SignalEscalator
from remotekit.shutdown import default_hooks
from remotekit.ssh.known_hosts import KnownHosts
from remotekit.ssh.tunnel import close_tunnel as stop_tunnel
from remotekit.ssh.tunnel import open_tunnel

app = typer.Typer(help="remotekit - remote commands over ssh and single-instance scripts")
console = Console()

# Values over 200 are warnings rather than failures
EXIT_CODES = {
    ErrorKind.ALREADY_RUNNING: 201,
    ErrorKind.BUSY: 202,
}

state = {"config_path": None}


def setup_logging(verbose: bool = False):
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def fail(error: RemotekitError) -> NoReturn:
    """Print error and exit with the code for its kind."""
    code = EXIT_CODES.get(error.kind, 1)
    if code > 200:
        console.print(f"[yellow]Warning:[/yellow] {error}")
    else:
        console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(code)


def get_config() -> RemotekitConfig:
    try:
        return load_config(state["config_path"])
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Config file {state['config_path']} not found.")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error:[/red] Invalid config: {e}")
        raise typer.Exit(1)


def get_executor(config: RemotekitConfig) -> RemoteExecutor:
    return RemoteExecutor(config=config, runner=LocalExecutor(default_timeout=config.exec.timeout))


@app.callback()
def main(
    config: Path = typer.Option(None, "--config", "-c", help=f"Config file (default: {CONFIG_FILE})"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    setup_logging(verbose)
    state["config_path"] = config


@app.command()
def init():
    """Write a config template and create the data directories."""
    config_file = Path(CONFIG_FILE)

    if config_file.exists():
        console.print(f"[yellow]Warning:[/yellow] {CONFIG_FILE} already exists.")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit(0)

    config_file.write_text(get_config_template())
    config = load_config(config_file)

    config.run_dir.mkdir(parents=True, exist_ok=True)
    config.keys_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    config.known_hosts_file.parent.chmod(0o700)

    console.print("[green]Initialized remotekit.[/green]")
    console.print(f"  Config: {CONFIG_FILE}")
    console.print(f"  Data: {config.data_path}")


@app.command("exec")
def exec_command(
    target: str = typer.Argument(..., help="Server name, ssh alias or [user@]host[:port]"),
    command: list[str] = typer.Argument(..., help="Command to run remotely"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Timeout in seconds"),
):
    """Run a command on a remote host."""
    config = get_config()
    try:
        output = get_executor(config).exec(target, command, timeout=timeout)
    except RemotekitError as e:
        fail(e)

    for line in output:
        console.print(line, markup=False, highlight=False)


@app.command()
def copy(
    target: str = typer.Argument(..., help="Server name, ssh alias or [user@]host[:port]"),
    source: str = typer.Argument(..., help="Source path"),
    destination: str = typer.Argument(..., help="Destination path"),
    download: bool = typer.Option(False, "--download", "-d", help="Copy from the remote host"),
):
    """Copy a file to (or with --download, from) a remote host."""
    executor = get_executor(get_config())
    try:
        if download:
            executor.download(target, source, destination)
        else:
            executor.upload(target, source, destination)
    except RemotekitError as e:
        fail(e)

    console.print(f"[green]Copied[/green] {source} -> {destination}")


@app.command()
def tunnel(
    target: str = typer.Argument(..., help="Server name, ssh alias or [user@]host[:port]"),
    target_port: int = typer.Argument(..., help="Port to reach on the far side"),
    source_port: int = typer.Option(None, "--source-port", "-s", help="Local port (default: any free port)"),
    target_host: str = typer.Option("localhost", "--target-host", help="Host as seen from target"),
    persist: bool = typer.Option(False, "--persist", help="Leave the tunnel running on exit"),
):
    """Forward a local port through a remote host."""
    executor = get_executor(get_config())
    try:
        opened = open_tunnel(
            executor,
            target,
            target_port,
            source_port=source_port,
            target_host=target_host,
            persist=persist,
        )
    except RemotekitError as e:
        fail(e)

    console.print(
        f"[green]Tunnel open:[/green] localhost:{opened.source_port} -> "
        f"{opened.target_host}:{opened.target_port} (pid {opened.pid})"
    )
    if persist:
        return

    console.print("Press Ctrl+C to close.")
    try:
        while executor.escalator.registry.pid_exists(opened.pid):
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    stop_tunnel(executor, opened.pid)


@app.command("close-tunnel")
def close_tunnel(pid: int = typer.Argument(..., help="PID of the tunnel's ssh process")):
    """Close a tunnel left running with --persist."""
    executor = get_executor(get_config())
    try:
        closed = stop_tunnel(executor, pid)
    except RemotekitError as e:
        fail(e)

    if not closed:
        console.print(f"No tunnel with pid {pid} is running.")


@app.command()
def ps(filters: list[str] = typer.Argument(None, help="Only show command lines containing all of these")):
    """List processes."""
    registry = ProcessRegistry()
    try:
        processes = registry.list_processes(filters or [])
    except RemotekitError as e:
        fail(e)

    table = Table()
    table.add_column("PID", justify="right")
    table.add_column("Command")
    for pid, args in sorted(processes.items()):
        table.add_row(str(pid), args)
    console.print(table)


@app.command()
def kill(
    target: str = typer.Argument(..., help="PID or process name"),
    sig: int = typer.Option(int(signal.SIGTERM), "--signal", "-s", help="Signal number"),
    verify: int = typer.Option(None, "--verify", help="Liveness checks, negative escalates to SIGKILL"),
    sudo: bool = typer.Option(False, "--sudo", help="Signal with sudo"),
):
    """Stop a process, escalating to SIGKILL if it does not die."""
    config = get_config()
    escalator = SignalEscalator(poll_interval=config.kill.poll_interval)
    if verify is None:
        verify = config.kill.verify if target.isdigit() else -config.kill.pkill_verify
    try:
        killed = escalator.terminate(target, signal=sig, verify=verify, sudo=sudo)
    except RemotekitError as e:
        fail(e)

    if killed:
        console.print(f"[green]Stopped[/green] {target}")
    else:
        console.print(f"{target} was not running.")


@app.command("add-host")
def add_host(
    host: str = typer.Argument(..., help="Hostname or IP address"),
    port: int = typer.Option(22, "--port", "-p", help="ssh port"),
):
    """Scan a host's keys and add them to the known hosts file."""
    known_hosts = KnownHosts(get_config().known_hosts_file)
    try:
        added = known_hosts.add(host, port)
    except RemotekitError as e:
        fail(e)

    console.print(f"Added {added} key(s) for {host}:{port} to {known_hosts.path}")


@app.command("remove-host")
def remove_host(
    host: str = typer.Argument(..., help="Hostname or IP address"),
    port: int = typer.Option(22, "--port", "-p", help="ssh port"),
):
    """Remove a host's keys from the known hosts file."""
    known_hosts = KnownHosts(get_config().known_hosts_file)
    try:
        known_hosts.remove(host, port)
    except RemotekitError as e:
        fail(e)

    console.print(f"Removed {host}:{port} from {known_hosts.path}")


@app.command("git-wait")
def git_wait(path: Path = typer.Argument(Path("."), help="git working tree")):
    """Wait until no other git process works on path."""
    config = get_config()
    repository = GitRepository(path, retries=config.git.busy_retries, delay=config.git.busy_delay)
    try:
        repository.wait_no_process()
    except RemotekitError as e:
        fail(e)

    console.print(f"{path} is free.")


@app.command("run-once", context_settings={"allow_extra_args": True, "ignore_unknown_options": True})
def run_once(
    command: list[str] = typer.Argument(..., help="Command to run"),
    name: str = typer.Option(None, "--name", "-n", help="Lock name (default: the command's basename)"),
):
    """Run a command unless another instance holding the same lock is alive."""
    config = get_config()
    script = name or Path(command[0]).name
    lock = SingleInstanceLock(config.run_dir, script=script, hooks=default_hooks())
    try:
        lock.acquire()
    except RemotekitError as e:
        fail(e)

    try:
        result = subprocess.run(command)
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Command {command[0]} not found.")
        raise typer.Exit(127)
    finally:
        lock.release()
    raise typer.Exit(result.returncode)


if __name__ == "__main__":
    app()
