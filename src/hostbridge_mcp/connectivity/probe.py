"""Network probes used for database host discovery.

A probe answers one question per discovery tier. ``LinuxNetworkProbe`` reads
``ip route`` and ``/etc/resolv.conf``; other platforms can plug in their own
``NetworkProbe`` without touching discovery or recovery.
"""
from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

STATIC_FALLBACKS = ("localhost", "127.0.0.1", "host.docker.internal")

_IPV4 = r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}"
_DEFAULT_ROUTE_RE = re.compile(rf"default via ({_IPV4})")
_KERNEL_ROUTE_RE = re.compile(
    rf"({_IPV4})/\d+ dev (\S+) proto kernel scope link src ({_IPV4})"
)
_NAMESERVER_RE = re.compile(rf"^\s*nameserver\s+({_IPV4})\s*$")


def parse_default_route(output: str) -> list[str]:
    """Extract next-hop addresses from ``ip route show default`` output."""
    return [m.group(1) for m in _DEFAULT_ROUTE_RE.finditer(output)]


def parse_bridge_peers(output: str) -> list[str]:
    """Infer bridge peer addresses from ``ip route`` output.

    For each kernel-installed subnet route on a local interface, the
    conventional first host of that subnet (``a.b.c.1``) is taken as the
    likely host side of the bridge.

    Example:
        ``172.20.16.0/20 dev eth0 proto kernel scope link src 172.20.20.5``
        yields ``172.20.16.1``.
    """
    peers: list[str] = []
    for line in output.splitlines():
        match = _KERNEL_ROUTE_RE.search(line)
        if match is None:
            continue
        octets = match.group(1).split(".")
        peer = ".".join(octets[:3]) + ".1"
        if peer not in peers:
            peers.append(peer)
    return peers


def parse_nameservers(content: str) -> list[str]:
    """Extract IPv4 nameserver entries from resolv.conf content."""
    servers: list[str] = []
    for line in content.splitlines():
        match = _NAMESERVER_RE.match(line)
        if match and match.group(1) not in servers:
            servers.append(match.group(1))
    return servers


class NetworkProbe:
    """Strategy interface, one method per discovery tier.

    Every method may raise; discovery treats each tier as independently
    fallible.
    """

    def default_gateways(self) -> list[str]:
        raise NotImplementedError

    def bridge_peers(self) -> list[str]:
        raise NotImplementedError

    def resolver_nameservers(self) -> list[str]:
        raise NotImplementedError

    def static_fallbacks(self) -> list[str]:
        return list(STATIC_FALLBACKS)


class LinuxNetworkProbe(NetworkProbe):
    """Probe backed by iproute2 and the local resolver configuration."""

    def __init__(
        self,
        resolv_conf: str | Path = "/etc/resolv.conf",
        command_timeout: float = 2.0
    ):
        self.resolv_conf = Path(resolv_conf)
        self.command_timeout = command_timeout

    def _run(self, args: list[str]) -> str:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=True,
            timeout=self.command_timeout
        )
        return result.stdout

    def default_gateways(self) -> list[str]:
        return parse_default_route(self._run(["ip", "route", "show", "default"]))

    def bridge_peers(self) -> list[str]:
        return parse_bridge_peers(self._run(["ip", "route"]))

    def resolver_nameservers(self) -> list[str]:
        return parse_nameservers(self.resolv_conf.read_text())
