"""
Tests for the strict IPv4 grammar and the loose candidate extractor.

Both components are pure and need no store on disk.

Run: pytest tests/ -v
"""

from __future__ import annotations

import pytest

from funny_ip_detector.extractor import extract_candidates, extract_from_pair
from funny_ip_detector.validators import _dtoi, find_invalid, is_valid_ipv4


# ═══════════════════════════════════════════════════════════════════════
# STRICT GRAMMAR
# ═══════════════════════════════════════════════════════════════════════


class TestIsValidIPv4:
    @pytest.mark.parametrize(
        "address",
        ["1.1.1.1", "255.255.255.255", "0.0.0.0", "10.0.0.1", "192.168.100.200", "100.20.3.0"],
    )
    def test_valid(self, address):
        assert is_valid_ipv4(address) is True

    @pytest.mark.parametrize(
        "address",
        [
            "0.00.0.0",
            "10.001.20.30",
            "00.0.0.0",
            "010.0.0.1",
            "1.2.3.04",
            "01.1.1.1",
        ],
    )
    def test_leading_zeros_rejected(self, address):
        assert is_valid_ipv4(address) is False

    @pytest.mark.parametrize("address", ["256.0.0.1", "1.2.3.256", "999.1.1.1"])
    def test_out_of_range_rejected(self, address):
        assert is_valid_ipv4(address) is False

    def test_ipv6_rejected(self):
        assert is_valid_ipv4("fd00:1:2:3::") is False

    def test_empty_string_rejected(self):
        assert is_valid_ipv4("") is False

    @pytest.mark.parametrize("address", ["1.2.3", "1.2.3.", "1.2..3.4", ".1.2.3.4", "1.2.3.4.5"])
    def test_wrong_group_count_rejected(self, address):
        assert is_valid_ipv4(address) is False

    @pytest.mark.parametrize("address", [" 1.2.3.4", "1.2.3.4 ", "1.2.3.4\n", "1.2.3.4x"])
    def test_extraneous_characters_rejected(self, address):
        """The validator does its own rejection, so callers need not trim."""
        assert is_valid_ipv4(address) is False

    def test_non_ascii_digits_rejected(self):
        assert is_valid_ipv4("١.٢.٣.٤") is False

    def test_huge_digit_run_is_invalid_not_a_crash(self):
        assert is_valid_ipv4("1" * 500 + ".1.1.1") is False
        assert is_valid_ipv4("1.1.1." + "9" * 100) is False

    def test_single_zero_groups_are_fine(self):
        assert is_valid_ipv4("0.10.0.100") is True


class TestDtoi:
    def test_parses_leading_digits(self):
        assert _dtoi("123.4") == (123, 3, True)

    def test_no_digits(self):
        assert _dtoi(".4") == (0, 0, False)

    def test_cap_stops_accumulation(self):
        value, consumed, ok = _dtoi("99999999999")
        assert ok is False
        assert value == 0xFFFFFF
        assert consumed < 11


class TestFindInvalid:
    def test_returns_only_invalid_in_order(self):
        candidates = ["1.1.1.1", "010.0.0.1", "10.0.0.2", "10.001.20.30"]
        assert find_invalid(candidates) == ["010.0.0.1", "10.001.20.30"]

    def test_empty(self):
        assert find_invalid([]) == []


# ═══════════════════════════════════════════════════════════════════════
# CANDIDATE EXTRACTOR
# ═══════════════════════════════════════════════════════════════════════


class TestExtractCandidates:
    def test_finds_plain_address(self):
        assert extract_candidates(b"clusterIP: 10.96.0.1") == ["10.96.0.1"]

    def test_keeps_leading_zeros(self):
        assert extract_candidates(b'{"ip":"010.001.002.003"}') == ["010.001.002.003"]

    def test_order_of_appearance(self):
        data = b"a=1.2.3.4 b=5.6.7.8 c=9.10.11.12"
        assert extract_candidates(data) == ["1.2.3.4", "5.6.7.8", "9.10.11.12"]

    def test_non_overlapping(self):
        # The second address shares no bytes with the first match.
        assert extract_candidates(b"1.2.3.4.5.6.7.8") == ["1.2.3.4", "5.6.7.8"]

    def test_out_of_range_group_truncated_by_pattern(self):
        # "256" cannot match a group, so the match stops at "25".
        assert extract_candidates(b"1.2.3.256") == ["1.2.3.25"]

    def test_no_match_in_ipv6(self):
        assert extract_candidates(b"fd00:1:2:3::") == []

    def test_binary_noise_around_address(self):
        data = b"\x00\xff\x0a192.168.001.1\x12\x00"
        assert extract_candidates(data) == ["192.168.001.1"]

    def test_empty_input(self):
        assert extract_candidates(b"") == []


class TestExtractFromPair:
    def test_key_matches_come_first(self):
        key = b"/registry/hosts/10.0.0.1"
        value = b"backend=010.0.0.2"
        assert extract_from_pair(key, value) == ["10.0.0.1", "010.0.0.2"]

    def test_extracted_then_validated(self):
        found = extract_from_pair(b"svc", b"a=10.001.20.30 b=10.1.20.30")
        assert find_invalid(found) == ["10.001.20.30"]
