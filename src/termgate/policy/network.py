"""Source address allow-lists.

Entries are literal addresses (``10.1.2.3``) or CIDR ranges
(``192.168.1.0/24``). IPv4-mapped IPv6 sources (``::ffff:10.1.2.3``, as
reported by dual-stack listeners) are treated as their IPv4 address.
IPv6 ranges match IPv6 sources; a version mismatch or an unparsable
address never matches, so a source we cannot read is denied whenever an
allow-list is in force.
"""

from __future__ import annotations

import ipaddress
import logging

from termgate.domain.models import PolicyConfig

logger = logging.getLogger(__name__)

Address = ipaddress.IPv4Address | ipaddress.IPv6Address


def _parse_address(value: str) -> Address | None:
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def in_range(source_ip: str, cidr: str) -> bool:
    """CIDR containment: the masked source equals the masked range base."""
    address = _parse_address(source_ip)
    if address is None:
        return False
    try:
        network = ipaddress.ip_network(cidr.strip(), strict=False)
    except ValueError:
        logger.warning("Ignoring malformed range %r in allow-list", cidr)
        return False
    if address.version != network.version:
        return False
    return address in network


def address_in_list(source_ip: str, entries: list[str]) -> bool:
    """True if ``source_ip`` equals a literal entry or falls in a range entry."""
    address = _parse_address(source_ip)
    for entry in entries:
        if "/" in entry:
            if in_range(source_ip, entry):
                return True
        elif entry.strip() == source_ip.strip():
            return True
        elif address is not None and _parse_address(entry) == address:
            return True
    return False


def ip_allowed(policy: PolicyConfig, target_id: str, source_ip: str) -> bool:
    """Decide whether ``source_ip`` may reach ``target_id``.

    The global allow-list, when enabled, must admit the source. A target
    that defines its own ``allowed_ips`` list is then judged against that
    list alone.
    """
    allowlist = policy.network_allowlist
    if allowlist.enabled:
        if not address_in_list(source_ip, [*allowlist.ips, *allowlist.cidr_ranges]):
            return False

    target_policy = policy.for_target(target_id)
    if target_policy is not None and target_policy.allowed_ips is not None:
        return address_in_list(source_ip, target_policy.allowed_ips)

    return True
