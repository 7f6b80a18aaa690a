"""Candidate address discovery for the database host.

Produces a fresh, ordered, de-duplicated list of addresses on every call:

1. default route next hop
2. inferred bridge/subnet peer
3. resolver nameservers
4. static fallbacks (always present, always last)

A tier that raises is skipped; discovery itself never fails.
"""
from __future__ import annotations

import logging

from .probe import STATIC_FALLBACKS, LinuxNetworkProbe, NetworkProbe

logger = logging.getLogger(__name__)

TIERS = (
    ("default_gateways", "default gateway"),
    ("bridge_peers", "bridge peers"),
    ("resolver_nameservers", "resolver nameservers"),
)


def discover(probe: NetworkProbe | None = None) -> list[str]:
    """Return candidate database host addresses in priority order.

    Args:
        probe: Network probe to query (defaults to ``LinuxNetworkProbe``)

    Returns:
        Ordered list of unique addresses ending with the static fallbacks
    """
    probe = probe or LinuxNetworkProbe()
    candidates: list[str] = []

    for method_name, label in TIERS:
        try:
            found = getattr(probe, method_name)()
        except Exception as e:
            logger.debug(f"Failed to detect {label}: {e}")
            continue
        for address in found:
            if address and address not in candidates:
                candidates.append(address)

    try:
        fallbacks = list(probe.static_fallbacks())
    except Exception as e:
        logger.debug(f"Probe static fallbacks failed, using defaults: {e}")
        fallbacks = []

    # Fallbacks form the suffix even when a detection tier also reported one.
    suffix: list[str] = []
    for address in [*fallbacks, *STATIC_FALLBACKS]:
        if address not in suffix:
            suffix.append(address)

    return [a for a in candidates if a not in suffix] + suffix
