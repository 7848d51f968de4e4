# classroll/backend/tools/network_verifier.py

import ipaddress
from typing import Optional

IPV4_MAPPED_PREFIX = "::ffff:"


def normalize_ip(ip_address: Optional[str]) -> str:
    """Strips whitespace and the IPv4-mapped IPv6 prefix some proxies add."""
    if not ip_address:
        return ""
    value = ip_address.strip()
    if value.lower().startswith(IPV4_MAPPED_PREFIX):
        value = value[len(IPV4_MAPPED_PREFIX):]
    return value


def verify_school_network(allowed_ip: Optional[str], client_ip: Optional[str]) -> bool:
    """
    Checks whether the client IP belongs to the school network.

    Args:
        allowed_ip: The school's public IP address. When empty, the check is disabled.
        client_ip: The IP address the request came from.

    Returns:
        bool: True if the check is disabled or the client is on the same network.
    """
    school_ip = normalize_ip(allowed_ip)
    if not school_ip:
        return True

    student_ip = normalize_ip(client_ip)
    if not student_ip:
        return False

    # Exact match (fastest check)
    if school_ip == student_ip:
        return True

    try:
        school_addr = ipaddress.ip_address(school_ip)
        student_addr = ipaddress.ip_address(student_ip)

        # Both IPv6: same /64 subnet
        if isinstance(school_addr, ipaddress.IPv6Address) and isinstance(student_addr, ipaddress.IPv6Address):
            return student_addr in ipaddress.IPv6Network(f"{school_addr}/64", strict=False)

        # Both IPv4: same /24 subnet
        if isinstance(school_addr, ipaddress.IPv4Address) and isinstance(student_addr, ipaddress.IPv4Address):
            return student_addr in ipaddress.IPv4Network(f"{school_addr}/24", strict=False)

        # Different IP versions are different networks
        return False

    except ValueError:
        # Unparseable addresses only match exactly, which already failed above.
        return False
