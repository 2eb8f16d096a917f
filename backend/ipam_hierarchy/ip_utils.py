"""
IPv4 address arithmetic for the 10.X.Y.Z allocation scheme.

Predicates (is_valid_ipv4, is_valid_cidr, validate_ip) never raise.
Arithmetic helpers raise InvalidAddressError / InvalidCIDRError on
malformed input instead of returning a plausible but wrong answer.
"""
import ipaddress
import re
from typing import Iterable, NamedTuple, Optional, Tuple

from .exceptions import InvalidAddressError, InvalidCIDRError

SUPERNET_OCTET = 10
MAX_IPV4 = 2**32 - 1
MIN_HOST_OCTET = 1
MAX_HOST_OCTET = 254
REGION_CAPACITY = MAX_HOST_OCTET - MIN_HOST_OCTET + 1
REGION_PREFIX = 24

# ASCII digits only; str.isdigit() also accepts things like "²"
_DECIMAL = re.compile(r"[0-9]+")
_CIDR_SHAPE = re.compile(r"([0-9]+\.[0-9]+\.[0-9]+\.[0-9]+)/([0-9]+)")


class IPRange(NamedTuple):
    start: str
    end: str
    total: int


def _parse_octet(part: str) -> Optional[int]:
    if not _DECIMAL.fullmatch(part):
        return None
    value = int(part)
    # "0" is the only component allowed to start with a zero
    if str(value) != part or value > 255:
        return None
    return value


def is_valid_ipv4(ip) -> bool:
    """True iff ip is a dotted quad with canonical decimal octets in 0-255."""
    if not isinstance(ip, str):
        return False
    parts = ip.split(".")
    if len(parts) != 4:
        return False
    return all(_parse_octet(part) is not None for part in parts)


def is_valid_cidr(cidr) -> bool:
    if not isinstance(cidr, str):
        return False
    parts = cidr.split("/")
    if len(parts) != 2:
        return False
    ip, prefix = parts
    if not _DECIMAL.fullmatch(prefix):
        return False
    return is_valid_ipv4(ip) and 0 <= int(prefix) <= 32


def validate_ip(ip) -> bool:
    """
    Domain rule for host addresses: 10.X.Y.Z with X, Y in 0-255 and Z in 1-254.
    Z excludes the network (0) and broadcast (255) positions of a region.
    """
    if not is_valid_ipv4(ip):
        return False
    first, _, _, z = (int(part) for part in ip.split("."))
    return first == SUPERNET_OCTET and MIN_HOST_OCTET <= z <= MAX_HOST_OCTET


def parse_cidr(cidr) -> Optional[Tuple[str, int]]:
    """
    Split "a.b.c.d/n" into (network, prefix) without range checks.
    Returns None when the literal does not have that shape.
    """
    if not isinstance(cidr, str):
        return None
    match = _CIDR_SHAPE.fullmatch(cidr)
    if not match:
        return None
    network, prefix = match.groups()
    return network, int(prefix)


def ip_to_number(ip: str) -> int:
    """Pack the four octets big-endian into an integer in [0, 2**32 - 1]."""
    if not is_valid_ipv4(ip):
        raise InvalidAddressError(ip)
    return int(ipaddress.IPv4Address(ip))


def number_to_ip(number: int) -> str:
    # bool is an int subclass; True is not an address
    if isinstance(number, bool) or not isinstance(number, int):
        raise InvalidAddressError(number, {"reason": "not an integer"})
    if not 0 <= number <= MAX_IPV4:
        raise InvalidAddressError(number, {"reason": "outside 0..2**32-1"})
    return str(ipaddress.IPv4Address(number))


def _network(cidr: str) -> ipaddress.IPv4Network:
    if not is_valid_cidr(cidr):
        raise InvalidCIDRError(cidr)
    # Host bits are allowed and masked off, e.g. 10.1.2.7/24 -> 10.1.2.0/24
    return ipaddress.IPv4Network(cidr, strict=False)


def calculate_ip_range(cidr: str) -> IPRange:
    """
    Network and broadcast addresses of a CIDR block plus its address count.

    >>> calculate_ip_range("10.1.2.0/24")
    IPRange(start='10.1.2.0', end='10.1.2.255', total=256)
    """
    network = _network(cidr)
    return IPRange(
        start=str(network.network_address),
        end=str(network.broadcast_address),
        total=network.num_addresses,
    )


def is_ip_in_range(ip: str, cidr: str) -> bool:
    """Mask-based containment, valid for every prefix length 0-32."""
    if not is_valid_ipv4(ip):
        raise InvalidAddressError(ip)
    return ipaddress.IPv4Address(ip) in _network(cidr)


def format_ip_range(x_start: int, x_end: int) -> str:
    return f"10.{x_start}.0.0 - 10.{x_end}.255.255"


def region_cidr(x_octet: int, y_octet: int) -> str:
    return f"10.{x_octet}.{y_octet}.0/{REGION_PREFIX}"


def host_ip(x_octet: int, y_octet: int, z_octet: int) -> str:
    return f"10.{x_octet}.{y_octet}.{z_octet}"


def _region_network(cidr: str) -> ipaddress.IPv4Network:
    network = _network(cidr)
    if network.prefixlen != REGION_PREFIX or network.network_address.packed[0] != SUPERNET_OCTET:
        raise InvalidCIDRError(cidr, {"reason": "region must be a 10.X.Y.0/24 block"})
    return network


def get_next_available_ip(existing_ips: Iterable[str], region_cidr: str) -> Optional[str]:
    """
    Lowest free host address in a region, scanning Z from 1 to 254.

    Addresses outside the region or not parseable are ignored.
    Returns None when all 254 host addresses are taken.
    """
    network = _region_network(region_cidr)
    _, x_octet, y_octet, _ = network.network_address.packed

    allocated_z = set()
    for ip in existing_ips:
        if is_valid_ipv4(ip) and ipaddress.IPv4Address(ip) in network:
            allocated_z.add(ipaddress.IPv4Address(ip).packed[3])

    for z_octet in range(MIN_HOST_OCTET, MAX_HOST_OCTET + 1):
        if z_octet not in allocated_z:
            return host_ip(x_octet, y_octet, z_octet)

    return None
