"""
Unit tests for IPv4 address arithmetic.
"""
import pytest

from ipam_hierarchy.exceptions import InvalidAddressError, InvalidCIDRError
from ipam_hierarchy.ip_utils import (
    IPRange,
    calculate_ip_range,
    format_ip_range,
    get_next_available_ip,
    ip_to_number,
    is_ip_in_range,
    is_valid_cidr,
    is_valid_ipv4,
    number_to_ip,
    parse_cidr,
    validate_ip,
)


class TestIsValidIPv4:

    @pytest.mark.parametrize("ip", ["192.168.1.1", "10.0.0.0", "255.255.255.255", "0.0.0.0"])
    def test_accepts_dotted_quads(self, ip):
        assert is_valid_ipv4(ip) is True

    @pytest.mark.parametrize("ip", [
        "256.1.1.1",
        "192.168.1",
        "192.168.1.1.1",
        "abc.def.ghi.jkl",
        "",
        "01.2.3.4",
        "1.2.3.00",
        "1.2.3.-1",
        "+1.2.3.4",
        " 1.2.3.4",
        "1.2.3.4\n",
        "1..2.3",
        "1.2.3.²",
    ])
    def test_rejects_malformed(self, ip):
        assert is_valid_ipv4(ip) is False

    def test_non_string_input(self):
        assert is_valid_ipv4(None) is False
        assert is_valid_ipv4(167772161) is False

    def test_idempotent(self):
        assert is_valid_ipv4("10.1.2.3") == is_valid_ipv4("10.1.2.3")
        assert is_valid_ipv4("10.1.2") == is_valid_ipv4("10.1.2")


class TestIsValidCIDR:

    @pytest.mark.parametrize("cidr", ["10.0.0.0/8", "192.168.1.0/24", "172.16.0.0/16", "0.0.0.0/0", "1.2.3.4/32"])
    def test_accepts(self, cidr):
        assert is_valid_cidr(cidr) is True

    @pytest.mark.parametrize("cidr", [
        "10.0.0.0/33",
        "10.0.0.0/-1",
        "10.0.0.0",
        "invalid/24",
        "10.0.0.0/24/8",
        "10.0.0.0/",
        "10.0.0.0/2a",
        "",
    ])
    def test_rejects(self, cidr):
        assert is_valid_cidr(cidr) is False


class TestValidateHostIP:

    def test_host_positions(self):
        assert validate_ip("10.0.0.1") is True
        assert validate_ip("10.255.255.254") is True
        assert validate_ip("10.5.23.45") is True

    def test_network_and_broadcast_rejected(self):
        assert validate_ip("10.1.2.0") is False
        assert validate_ip("10.1.2.255") is False

    def test_outside_supernet(self):
        assert validate_ip("192.168.1.1") is False
        assert validate_ip("11.0.0.1") is False

    def test_malformed(self):
        assert validate_ip("10.256.0.1") is False
        assert validate_ip("10.0.0") is False
        assert validate_ip("") is False
        assert validate_ip(None) is False


class TestParseCIDR:

    def test_splits(self):
        assert parse_cidr("10.1.2.0/24") == ("10.1.2.0", 24)

    def test_shape_only(self):
        # Range checks belong to is_valid_cidr
        assert parse_cidr("999.1.2.0/40") == ("999.1.2.0", 40)

    def test_bad_shape(self):
        assert parse_cidr("10.1.2.0") is None
        assert parse_cidr("10.1.2/24") is None
        assert parse_cidr(None) is None


class TestIntegerConversion:

    @pytest.mark.parametrize("ip,number", [
        ("0.0.0.0", 0),
        ("0.0.0.1", 1),
        ("192.168.1.1", 3232235777),
        ("255.255.255.255", 4294967295),
        ("128.0.0.0", 2**31),
    ])
    def test_known_values(self, ip, number):
        assert ip_to_number(ip) == number
        assert number_to_ip(number) == ip

    @pytest.mark.parametrize("ip", ["10.0.0.0", "10.128.7.254", "200.1.255.9"])
    def test_round_trip_from_string(self, ip):
        assert number_to_ip(ip_to_number(ip)) == ip

    @pytest.mark.parametrize("number", [0, 1, 255, 256, 2**24 - 1, 2**31 - 1, 2**31, 2**32 - 1])
    def test_round_trip_from_number(self, number):
        assert ip_to_number(number_to_ip(number)) == number

    def test_high_bit_stays_unsigned(self):
        assert ip_to_number("255.0.0.0") == 4278190080
        assert ip_to_number("255.0.0.0") > 0

    def test_invalid_address_raises(self):
        with pytest.raises(InvalidAddressError):
            ip_to_number("10.0.0.256")
        with pytest.raises(ValueError):
            ip_to_number("nope")

    @pytest.mark.parametrize("number", [-1, 2**32, 1.5, "1", True, None])
    def test_invalid_number_raises(self, number):
        with pytest.raises(InvalidAddressError):
            number_to_ip(number)


class TestCalculateIPRange:

    def test_slash_24(self):
        assert calculate_ip_range("10.1.2.0/24") == IPRange("10.1.2.0", "10.1.2.255", 256)

    def test_slash_16(self):
        ip_range = calculate_ip_range("10.1.0.0/16")
        assert ip_range.start == "10.1.0.0"
        assert ip_range.end == "10.1.255.255"
        assert ip_range.total == 65536

    def test_slash_32(self):
        assert calculate_ip_range("10.1.2.3/32") == IPRange("10.1.2.3", "10.1.2.3", 1)

    def test_slash_0(self):
        assert calculate_ip_range("10.1.2.3/0") == IPRange("0.0.0.0", "255.255.255.255", 2**32)

    def test_host_bits_masked(self):
        assert calculate_ip_range("10.1.2.77/24").start == "10.1.2.0"

    def test_odd_prefix(self):
        assert calculate_ip_range("10.1.2.130/26") == IPRange("10.1.2.128", "10.1.2.191", 64)

    @pytest.mark.parametrize("cidr", ["10.1.2.0", "10.1.2.0/33", "garbage"])
    def test_invalid_raises(self, cidr):
        with pytest.raises(InvalidCIDRError):
            calculate_ip_range(cidr)


class TestIsIPInRange:

    def test_slash_24(self):
        assert is_ip_in_range("10.1.2.100", "10.1.2.0/24") is True
        assert is_ip_in_range("10.1.2.0", "10.1.2.0/24") is True
        assert is_ip_in_range("10.1.2.255", "10.1.2.0/24") is True
        assert is_ip_in_range("10.1.3.0", "10.1.2.0/24") is False
        assert is_ip_in_range("10.2.2.100", "10.1.2.0/24") is False

    def test_slash_16(self):
        assert is_ip_in_range("10.1.200.3", "10.1.0.0/16") is True
        assert is_ip_in_range("10.2.0.0", "10.1.0.0/16") is False

    def test_other_prefixes(self):
        assert is_ip_in_range("10.200.3.4", "10.0.0.0/8") is True
        assert is_ip_in_range("11.0.0.0", "10.0.0.0/8") is False
        assert is_ip_in_range("10.1.2.129", "10.1.2.128/25") is True
        assert is_ip_in_range("10.1.2.127", "10.1.2.128/25") is False
        assert is_ip_in_range("10.1.2.3", "10.1.2.3/32") is True
        assert is_ip_in_range("8.8.8.8", "0.0.0.0/0") is True

    def test_invalid_input_raises(self):
        with pytest.raises(InvalidAddressError):
            is_ip_in_range("10.1.2", "10.1.2.0/24")
        with pytest.raises(InvalidCIDRError):
            is_ip_in_range("10.1.2.3", "10.1.2.0/99")


class TestGetNextAvailableIP:

    def test_empty_region_starts_at_one(self):
        assert get_next_available_ip([], "10.5.6.0/24") == "10.5.6.1"

    def test_fills_lowest_gap(self):
        allocated = ["10.5.6.1", "10.5.6.2", "10.5.6.4"]
        assert get_next_available_ip(allocated, "10.5.6.0/24") == "10.5.6.3"

    def test_ignores_addresses_outside_region(self):
        allocated = ["10.5.7.1", "10.9.6.1", "junk"]
        assert get_next_available_ip(allocated, "10.5.6.0/24") == "10.5.6.1"

    def test_full_region_returns_none(self):
        allocated = [f"10.5.6.{z}" for z in range(1, 255)]
        assert get_next_available_ip(allocated, "10.5.6.0/24") is None

    def test_last_slot(self):
        allocated = [f"10.5.6.{z}" for z in range(1, 254)]
        assert get_next_available_ip(allocated, "10.5.6.0/24") == "10.5.6.254"

    def test_accepts_generators(self):
        allocated = (f"10.5.6.{z}" for z in range(1, 4))
        assert get_next_available_ip(allocated, "10.5.6.0/24") == "10.5.6.4"

    @pytest.mark.parametrize("cidr", ["10.5.0.0/16", "192.168.1.0/24", "10.5.6.0", "bad"])
    def test_non_region_cidr_raises(self, cidr):
        with pytest.raises(InvalidCIDRError):
            get_next_available_ip([], cidr)


def test_format_ip_range():
    assert format_ip_range(0, 29) == "10.0.0.0 - 10.29.255.255"
