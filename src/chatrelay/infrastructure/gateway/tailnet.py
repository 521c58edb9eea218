"""Tailnet address discovery via the ``tailscale`` CLI."""

from __future__ import annotations

import ipaddress
import subprocess

import structlog

logger = structlog.get_logger(__name__)

TAILNET_NETWORK = ipaddress.ip_network("100.64.0.0/10")


def pick_primary_tailnet_ipv4(command: tuple[str, ...] = ("tailscale", "ip", "-4")) -> str | None:
    """Return this host's first tailnet IPv4 address, or None.

    None is returned when the CLI is missing, fails, times out, or reports
    no address inside ``100.64.0.0/10``.
    """
    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("tailnet.lookup_unavailable", error=str(exc))
        return None

    if result.returncode != 0:
        logger.debug("tailnet.lookup_failed", returncode=result.returncode)
        return None

    for line in result.stdout.splitlines():
        candidate = line.strip()
        try:
            address = ipaddress.ip_address(candidate)
        except ValueError:
            continue
        if address.version == 4 and address in TAILNET_NETWORK:
            return candidate
    return None
