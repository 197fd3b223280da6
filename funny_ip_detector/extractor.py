"""
Regex-based extraction of IPv4-looking substrings from raw bytes.

The pattern is deliberately LOOSE: each group may carry a leading zero
("010", "00", "001"), which is exactly what we are hunting for. Range
checking of each group (0-255) is baked into the pattern; the leading-zero
rule is left to the strict validator.
"""

from __future__ import annotations

import re

# Accurate dotted-decimal pattern that still allows leading zeros.
IPV4_CANDIDATE_PATTERN = re.compile(
    rb"(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    rb"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)"
)


def extract_candidates(data: bytes) -> list[str]:
    """Return every non-overlapping candidate in ``data``, in order of appearance."""
    if not data:
        return []
    return [m.group(0).decode("ascii") for m in IPV4_CANDIDATE_PATTERN.finditer(data)]


def extract_from_pair(key: bytes, value: bytes) -> list[str]:
    """Candidates from the key followed by candidates from the value."""
    return extract_candidates(key) + extract_candidates(value)
