"""Render connection descriptors into ssh, scp, ssh-copy-id and autossh command lines.

Commands are built as argument vectors. The only place a command has to be
embedded in a string is a ProxyCommand, whose value ssh hands to a shell;
every hop of a proxy chain is joined with shlex.join, so each extra hop adds
exactly one level of shell quoting.
"""

import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Sequence

from remotekit.config import RemotekitConfig
from remotekit.errors import (
    ConflictingOptions,
    DescriptorError,
    IdentityFileNotFound,
    InvalidPort,
    InvalidTunnelSpec,
    NotSpecified,
)
from remotekit.ssh.known_hosts import KnownHosts
from remotekit.types import ConnectionDescriptor, SSHOptions

logger = logging.getLogger(__name__)

# Placeholders of the proxy template, filled in once per hop
PROXY_HOST = ":proxy_host"
PROXY_PORT = ":proxy_port"
PROXY_USER = ":proxy_user"
PROXY_RELAY = ":proxy_relay"
PROXY_TEMPLATE = ":proxy_template"

MAX_HOST_LENGTH = 253


class SSHTool(str, Enum):
    SSH = "ssh"
    SCP = "scp"
    SSH_COPY_ID = "ssh-copy-id"
    AUTOSSH = "autossh"

    @property
    def port_flag(self) -> str:
        return "-P" if self is SSHTool.SCP else "-p"


@dataclass
class SSHCommand:
    """A rendered command line."""

    argv: list[str] = field(default_factory=list)
    background: bool = False

    def render(self) -> str:
        command = shlex.join(self.argv)
        return f"{command} &" if self.background else command

    def __str__(self) -> str:
        return self.render()


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


class SSHCommandBuilder:
    """Turns a ConnectionDescriptor into an SSHCommand.

    Building is deterministic apart from one side effect: every proxy hop's
    host key is registered with known_hosts (when one is given), so the
    nested ssh invocations can verify the hops they pass through.
    """

    def __init__(self, config: RemotekitConfig | None = None, known_hosts: KnownHosts | None = None):
        self.config = config or RemotekitConfig()
        self.settings = self.config.ssh
        self.known_hosts = known_hosts

    def build(
        self,
        descriptor: ConnectionDescriptor,
        command: str | Sequence[str] | None = None,
        tool: SSHTool | str = SSHTool.SSH,
        operands: Sequence[str] | None = None,
    ) -> SSHCommand:
        """Build the command line for descriptor.

        operands replace the trailing user@host (scp source and target).
        """
        tool = SSHTool(tool)
        if descriptor.tunnel is not None:
            # A tunnel only forwards ports: it runs in the background, executes
            # nothing remotely and lets remote hosts connect to the forward.
            descriptor = descriptor.model_copy(
                update={"background": True, "no_command": True, "remote_connect": True}
            )

        self._validate(descriptor)
        proxy_option = self._proxy_chain(descriptor)
        argv = self._argv(descriptor, tool, proxy_option)

        if operands:
            argv.extend(operands)
        else:
            argv.append(self._user_host(descriptor.username, descriptor.hostname))

        # -N runs nothing remotely
        if command and not descriptor.no_command:
            argv.append(command if isinstance(command, str) else shlex.join(command))

        return SSHCommand(argv=argv, background=descriptor.background)

    def build_options(self, options: SSHOptions | None = None) -> list[str]:
        """`-o` arguments from the configured defaults overridden by options."""
        merged = self.settings.options.model_dump(exclude_none=True)
        if options is not None:
            merged.update(options.model_dump(exclude_none=True))

        # Shortcut to disable both host checks
        if merged.pop("check_hostkey", True) is False:
            merged["check_host_ip"] = False
            merged["strict_host_key_checking"] = False

        known_hosts_file = merged.pop("user_known_hosts_file", None) or str(
            self.config.known_hosts_file
        )
        argv = ["-o", f"UserKnownHostsFile={known_hosts_file}"]

        if merged.get("connect_timeout"):
            argv += ["-o", f"ConnectTimeout={merged['connect_timeout']}"]
        if "check_host_ip" in merged:
            argv += ["-o", f"CheckHostIP={_yes_no(merged['check_host_ip'])}"]
        if "strict_host_key_checking" in merged:
            argv += ["-o", f"StrictHostKeyChecking={_yes_no(merged['strict_host_key_checking'])}"]
        return argv

    def _validate(self, descriptor: ConnectionDescriptor) -> None:
        if not descriptor.hostname:
            raise NotSpecified("No hostname specified")

        if descriptor.force_terminal and descriptor.disable_terminal:
            raise ConflictingOptions(
                "Both force_terminal and disable_terminal were specified, use only one"
            )

        tunnel = descriptor.tunnel
        if tunnel is None:
            return

        if not tunnel.persist and descriptor.proxies:
            raise ConflictingOptions(
                "A non persistent tunnel cannot go through proxies: the proxy ssh "
                "processes have unknown pids and could not be closed afterwards. "
                "Use a persistent tunnel or drop the proxies"
            )

        for name in ("source_port", "target_port"):
            value = getattr(tunnel, name)
            if not value:
                raise InvalidTunnelSpec(f"No tunnel {name} specified, should be 1-65535")
            if not 1 <= value <= 65535:
                raise InvalidTunnelSpec(f"Invalid tunnel {name} {value}, should be 1-65535")

        if not tunnel.target_host:
            raise InvalidTunnelSpec("No tunnel target_host specified")
        if len(tunnel.target_host) > MAX_HOST_LENGTH:
            raise InvalidTunnelSpec(
                f"Tunnel target_host must be 1-{MAX_HOST_LENGTH} characters long"
            )

    def _port(self, value: int | str | None) -> str:
        if value is None or value == "":
            value = self.settings.default_port
        if value == PROXY_PORT:
            return value
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise InvalidPort(f"Port must be a number 1-65535, got '{value}'")
            value = int(value)
        if isinstance(value, bool) or not 1 <= value <= 65535:
            raise InvalidPort(f"Port must be a number 1-65535, got '{value}'")
        return str(value)

    @staticmethod
    def _user_host(username: str | None, hostname: str | None) -> str:
        return f"{username}@{hostname}" if username else str(hostname)

    def _argv(
        self,
        descriptor: ConnectionDescriptor,
        tool: SSHTool,
        proxy_option: list[str],
    ) -> list[str]:
        argv = [tool.value, *self.build_options(descriptor.options)]
        port = self._port(descriptor.port)
        argv += [tool.port_flag, port]

        if descriptor.log_file:
            log_dir = Path(descriptor.log_file).expanduser().parent
            if not log_dir.is_dir():
                raise DescriptorError(f"Log file directory '{log_dir}' does not exist")
            argv += ["-E", str(Path(descriptor.log_file).expanduser())]

        if descriptor.remote_connect:
            argv.append("-g")
        if descriptor.no_command:
            argv.append("-N")

        if descriptor.tunnel is not None:
            tunnel = descriptor.tunnel
            argv += ["-L", f"{tunnel.source_port}:{tunnel.target_host}:{tunnel.target_port}"]

        if descriptor.identity_file:
            identity_file = Path(descriptor.identity_file).expanduser()
            if not identity_file.exists():
                raise IdentityFileNotFound(f"Identity file '{identity_file}' does not exist")
            argv += ["-i", str(identity_file)]

        argv += proxy_option

        if descriptor.force_terminal:
            argv.append("-t")
        if descriptor.disable_terminal:
            argv.append("-T")

        if descriptor.persistent:
            socket = self.config.control_dir / (
                f"{descriptor.username}@{descriptor.hostname}:{port}"
                f"{'T' if descriptor.tunnel is not None else ''}"
            )
            argv += [
                "-o", "ControlMaster=auto",
                "-o", f"ControlPersist={self.settings.persist_timeout}",
                "-o", f"ControlPath={socket}",
            ]
        return argv

    def _proxy_template(
        self, descriptor: ConnectionDescriptor, proxy: ConnectionDescriptor | None = None
    ) -> list[str]:
        """ssh invocation of one hop, with placeholders for the hop's values.

        The hop's own identity_file and options win over the target's.
        """
        proxy = proxy or ConnectionDescriptor()
        hop = ConnectionDescriptor(
            hostname=PROXY_HOST,
            port=PROXY_PORT,
            username=PROXY_USER,
            identity_file=proxy.identity_file or descriptor.identity_file,
            options=proxy.options or descriptor.options,
        )
        argv = self._argv(hop, SSHTool.SSH, ["-o", PROXY_TEMPLATE])
        argv += [self._user_host(PROXY_USER, PROXY_HOST), PROXY_RELAY]
        return argv

    def _proxy_chain(self, descriptor: ConnectionDescriptor) -> list[str]:
        """`-o ProxyCommand=...` reaching descriptor through all of its proxies.

        proxies[0] is the first hop from this machine, proxies[-1] the hop
        next to the target. The chain is assembled from the nearest hop
        outwards; each hop's command becomes the ProxyCommand of the next.

        A hop logs in with its own identity_file and options when it has
        them, otherwise with the target's. Inline ssh_key material is only
        used for the target, a hop carrying one is rejected.
        """
        if not descriptor.proxies:
            return []

        template = self._proxy_template(descriptor)
        hops = descriptor.proxies
        chain: str | None = None

        for index, proxy in enumerate(hops):
            if not proxy.hostname:
                raise NotSpecified(f"No hostname specified for proxy {index}")
            if proxy.ssh_key is not None:
                raise ConflictingOptions(
                    f"Proxy {index} has an inline ssh_key, give it an identity_file instead"
                )
            hop_template = template
            if proxy.identity_file or proxy.options:
                hop_template = self._proxy_template(descriptor, proxy)
            port = self._port(proxy.port)

            if index + 1 < len(hops):
                next_host = hops[index + 1].hostname
                next_port = self._port(hops[index + 1].port)
            else:
                next_host = descriptor.hostname
                next_port = self._port(descriptor.port)
            relay = shlex.join([*self.settings.proxy_relay, str(next_host), next_port])

            argv = []
            for arg in hop_template:
                if arg == PROXY_PORT:
                    arg = port
                elif arg == PROXY_RELAY:
                    arg = relay
                elif arg == self._user_host(PROXY_USER, PROXY_HOST):
                    arg = self._user_host(proxy.username or descriptor.username, proxy.hostname)
                argv.append(arg)

            position = argv.index(PROXY_TEMPLATE)
            if chain is None:
                del argv[position - 1 : position + 1]
            else:
                argv[position] = f"ProxyCommand={chain}"
            chain = shlex.join(argv)

            if self.known_hosts is not None:
                self.known_hosts.register(proxy.hostname, int(port))
            logger.debug(f"Added proxy hop {index} {proxy.hostname}:{port}")

        return ["-o", f"ProxyCommand={chain}"]
