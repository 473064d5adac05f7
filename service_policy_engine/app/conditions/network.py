"""
IPv4 address and CIDR helpers for IP conditions.

Only IPv4 is supported. Addresses are handled as big-endian 32-bit integers
and CIDR membership is computed with an explicit prefix mask.
"""

import ipaddress
from typing import Optional

from shared.logging import get_logger

logger = get_logger("policy_engine.conditions.network")

IPV4_MAX = 0xFFFFFFFF


def ip_to_int(ip: str) -> int:
    """Parse a dotted-quad IPv4 address into a 32-bit integer."""
    return int(ipaddress.IPv4Address(ip.strip()))


def prefix_mask(prefix_length: int) -> int:
    """Network mask for a prefix length in [0, 32]."""
    if prefix_length < 0 or prefix_length > 32:
        raise ValueError(f"invalid prefix length: {prefix_length}")
    return (IPV4_MAX << (32 - prefix_length)) & IPV4_MAX


def is_ip_in_cidr(ip: Optional[str], cidr: Optional[str]) -> bool:
    """Check whether ``ip`` falls inside ``cidr`` (``network/prefixLen``).

    Network and broadcast addresses match like any other address. Any
    malformed input yields False.
    """
    if not ip or not cidr:
        return False
    try:
        network, _, prefix = cidr.strip().partition("/")
        if not prefix:
            return False
        mask = prefix_mask(int(prefix))
        return (ip_to_int(ip) & mask) == (ip_to_int(network) & mask)
    except ValueError as e:
        logger.debug("CIDR check failed", ip=ip, cidr=cidr, error=str(e))
        return False
