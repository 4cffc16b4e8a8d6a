"""Tests for ssh tunnels."""

import socket

import pytest

from remotekit.errors import ExecutionFailed, NotSpecified
from remotekit.executor.ssh import RemoteExecutor
from remotekit.process.registry import ProcessRegistry
from remotekit.process.signals import SignalEscalator
from remotekit.ssh.tunnel import close_tunnel, find_tunnel, free_port, open_tunnel, port_open
from remotekit.types import ConnectionDescriptor


@pytest.fixture
def alive(live_pids):
    live_pids.add(4242)
    return live_pids


@pytest.fixture
def executor(config, runner, hooks, tmp_path, alive):
    registry = ProcessRegistry(runner)
    return RemoteExecutor(
        config=config,
        runner=runner,
        hooks=hooks,
        escalator=SignalEscalator(runner, registry, sleep=lambda _: None),
        ssh_config_path=tmp_path / "ssh_config",
    )


@pytest.fixture
def target(key_file):
    return ConnectionDescriptor(hostname="db.example.com", username="ops", identity_file=str(key_file))


class TestPorts:
    def test_free_port(self):
        port = free_port()
        assert 1024 <= port <= 65535

    def test_port_open(self):
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            server.listen()
            assert port_open(server.getsockname()[1])

    def test_port_closed(self):
        assert not port_open(free_port())


class TestOpenTunnel:
    def test_open(self, executor, runner, target, hooks):
        tunnel = open_tunnel(executor, target, 5432, source_port=15432, probe=lambda port: True)

        assert tunnel.pid == 4242
        assert tunnel.source_port == 15432
        assert tunnel.target_port == 5432
        argv = runner.spawned[0]
        assert argv[argv.index("-L") + 1] == "15432:localhost:5432"
        assert "-N" in argv
        assert len(hooks.registered("close ssh tunnel")) == 1

    def test_picks_free_port(self, executor, target):
        tunnel = open_tunnel(executor, target, 80, test_tries=0)
        assert tunnel.source_port > 0

    def test_waits_for_port(self, executor, target):
        answers = iter([False, False, True])
        sleeps = []

        open_tunnel(
            executor,
            target,
            80,
            source_port=8080,
            probe=lambda port: next(answers),
            sleep=sleeps.append,
        )

        assert len(sleeps) == 2

    def test_ssh_died(self, executor, target, alive):
        alive.discard(4242)
        with pytest.raises(ExecutionFailed, match="exited"):
            open_tunnel(executor, target, 80, source_port=8080, probe=lambda port: False)

    def test_never_listens(self, executor, runner, target, hooks):
        with pytest.raises(ExecutionFailed, match="not listening"):
            open_tunnel(
                executor,
                target,
                80,
                source_port=8080,
                test_tries=3,
                probe=lambda port: False,
                sleep=lambda _: None,
            )

        assert ["kill", "-15", "4242"] in runner.calls
        assert hooks.registered("close ssh tunnel") == []

    def test_needs_remote_host(self, executor):
        with pytest.raises(NotSpecified):
            open_tunnel(executor, None, 80)


class TestFindTunnel:
    @pytest.fixture
    def registry(self, runner):
        runner.on(
            ["ps", "ax"],
            [
                " 100 ssh -o ConnectTimeout=30 -p 22 -g -N -L 15432:localhost:5432 -i /k ops@db.example.com",
                " 101 ssh -p 22 -g -N -L 8080:127.0.0.1:80 ops@web.example.com",
                " 102 ssh -p 22 ops@db.example.com uptime",
            ],
        )
        return ProcessRegistry(runner)

    def test_found(self, registry):
        tunnel = find_tunnel(registry, "db.example.com", 5432)
        assert (tunnel.pid, tunnel.source_port, tunnel.target_port) == (100, 15432, 5432)

    def test_localhost_equals_loopback(self, registry):
        assert find_tunnel(registry, "web.example.com", 80).pid == 101
        assert find_tunnel(registry, "db.example.com", 5432, target_host="127.0.0.1").pid == 100

    def test_not_found(self, registry):
        assert find_tunnel(registry, "db.example.com", 3306) is None
        assert find_tunnel(registry, "other.example.com", 5432) is None
        assert find_tunnel(registry, "db.example.com", 5432, target_host="10.0.0.5") is None


class TestCloseTunnel:
    def test_close(self, executor, runner, target, hooks):
        opened = open_tunnel(executor, target, 80, source_port=8080, test_tries=0)

        assert close_tunnel(executor, opened.pid) is True

        assert hooks.registered("close ssh tunnel") == []
        assert runner.commands("kill") == [["kill", "-15", "4242"]]

    def test_already_gone(self, executor, runner):
        runner.on(["kill"], ["kill: (4242) - No such process"], exit_code=1)
        assert close_tunnel(executor, 4242) is False
