"""
Strict IPv4 grammar check — the component that decides what is "funny".

Older parsers accepted dotted-decimal addresses with leading zeros
("010.001.002.003") and some of them read those groups as octal. Newer
runtimes reject them outright. This module classifies a candidate exactly
the way the strict parsers do:

  - four decimal groups separated by literal dots
  - every group in [0, 255]
  - no leading zero unless the group is the single digit "0"
  - nothing before or after

The checks are pure functions. They never raise; they return a verdict.
"""

from __future__ import annotations

from collections.abc import Iterable


# ─── Constants ───────────────────────────────────────────────────────

IPV4_GROUPS = 4

# Digit runs stop accumulating here; anything this large is out of range anyway.
_DTOI_CAP = 0xFFFFFF


# ─── Public API ──────────────────────────────────────────────────────


def is_valid_ipv4(s: str) -> bool:
    """Return True iff ``s`` is a strictly formatted dotted-decimal IPv4 address.

    Examples:
        >>> is_valid_ipv4("10.1.20.30")
        True
        >>> is_valid_ipv4("10.001.20.30")
        False
    """
    for i in range(IPV4_GROUPS):
        if not s:
            # Missing groups.
            return False
        if i > 0:
            if s[0] != ".":
                return False
            s = s[1:]
        value, consumed, ok = _dtoi(s)
        if not ok or value > 0xFF:
            return False
        if consumed > 1 and s[0] == "0":
            # Reject groups with leading zeroes.
            return False
        s = s[consumed:]
    return not s


def find_invalid(candidates: Iterable[str]) -> list[str]:
    """Return the candidates that fail the strict grammar, in input order."""
    return [c for c in candidates if not is_valid_ipv4(c)]


# ─── Helpers ─────────────────────────────────────────────────────────


def _dtoi(s: str) -> tuple[int, int, bool]:
    """Parse a leading run of ASCII digits.

    Returns (value, characters consumed, ok). ``ok`` is False when no digit
    was consumed or when the run grows past the cap.
    """
    n = 0
    i = 0
    while i < len(s) and "0" <= s[i] <= "9":
        n = n * 10 + (ord(s[i]) - ord("0"))
        if n >= _DTOI_CAP:
            return _DTOI_CAP, i, False
        i += 1
    if i == 0:
        return 0, 0, False
    return n, i, True
