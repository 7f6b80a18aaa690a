"""Tests for candidate host discovery and the probe parsers."""
import subprocess
from unittest.mock import MagicMock, patch

from hostbridge_mcp.connectivity import STATIC_FALLBACKS, LinuxNetworkProbe, discover
from hostbridge_mcp.connectivity.probe import (
    parse_bridge_peers,
    parse_default_route,
    parse_nameservers,
)

from conftest import FakeProbe

IP_ROUTE = """\
default via 172.20.16.1 dev eth0 proto kernel
172.20.16.0/20 dev eth0 proto kernel scope link src 172.20.20.5
172.17.0.0/16 dev docker0 proto kernel scope link src 172.17.0.1 linkdown
10.8.0.0/24 via 10.8.0.254 dev tun0
"""

RESOLV_CONF = """\
# This file was automatically generated by WSL.
nameserver 10.255.255.254
nameserver 10.255.255.254
search example.internal
nameserver fe80::1
"""


def test_parse_default_route():
    assert parse_default_route(IP_ROUTE) == ["172.20.16.1"]
    assert parse_default_route("") == []


def test_parse_bridge_peers_takes_first_host_of_kernel_subnets():
    assert parse_bridge_peers(IP_ROUTE) == ["172.20.16.1", "172.17.0.1"]


def test_parse_nameservers_ipv4_only_and_deduplicated():
    assert parse_nameservers(RESOLV_CONF) == ["10.255.255.254"]


def test_discover_orders_tiers_and_ends_with_fallbacks():
    probe = FakeProbe(
        gateways=["172.20.16.1"],
        peers=["172.20.16.1", "172.17.0.1"],
        nameservers=["10.255.255.254"],
    )

    candidates = discover(probe)

    assert candidates == [
        "172.20.16.1",
        "172.17.0.1",
        "10.255.255.254",
        *STATIC_FALLBACKS,
    ]


def test_discover_has_no_duplicates_and_fallbacks_stay_last():
    # A tier reporting a fallback address must not pull it out of the suffix
    probe = FakeProbe(gateways=["127.0.0.1"], peers=["10.0.0.1"], nameservers=["localhost"])

    candidates = discover(probe)

    assert len(candidates) == len(set(candidates))
    assert candidates[-len(STATIC_FALLBACKS):] == list(STATIC_FALLBACKS)
    assert candidates[0] == "10.0.0.1"


def test_discover_survives_every_tier_failing():
    probe = FakeProbe(
        gateways=RuntimeError("no ip binary"),
        peers=subprocess.TimeoutExpired("ip", 2),
        nameservers=FileNotFoundError("/etc/resolv.conf"),
    )

    assert discover(probe) == list(STATIC_FALLBACKS)


def test_discover_keeps_probe_fallbacks_before_stock_ones():
    probe = FakeProbe(fallbacks=["db.internal", "localhost"])

    candidates = discover(probe)

    assert candidates == ["db.internal", "localhost", "127.0.0.1", "host.docker.internal"]


def test_discover_is_repeatable():
    probe = FakeProbe(gateways=["172.20.16.1"], nameservers=["10.255.255.254"])
    assert discover(probe) == discover(probe)


def test_linux_probe_reads_ip_route_and_resolv_conf(tmp_path):
    resolv = tmp_path / "resolv.conf"
    resolv.write_text(RESOLV_CONF)
    probe = LinuxNetworkProbe(resolv_conf=resolv)

    completed = MagicMock(stdout=IP_ROUTE)
    with patch("hostbridge_mcp.connectivity.probe.subprocess.run", return_value=completed) as run:
        candidates = discover(probe)

    assert candidates[:3] == ["172.20.16.1", "172.17.0.1", "10.255.255.254"]
    assert run.call_args_list[0].args[0] == ["ip", "route", "show", "default"]


def test_linux_probe_missing_resolv_conf_is_skipped(tmp_path):
    probe = LinuxNetworkProbe(resolv_conf=tmp_path / "missing")

    with patch(
        "hostbridge_mcp.connectivity.probe.subprocess.run",
        side_effect=FileNotFoundError("ip"),
    ):
        assert discover(probe) == list(STATIC_FALLBACKS)
