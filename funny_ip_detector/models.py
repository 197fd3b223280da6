"""
Data models for scan input and output.

Record views (Revision, LogicalRecord) are lightweight frozen dataclasses:
one is built per visited record and thrown away after the step. Reports
and configuration are pydantic models: they cross the API boundary and
must fail loudly if a field doesn't fit.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .exceptions import InvalidAddressesFound


# ─── Record Views ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Revision:
    """A (main, sub) revision stamp decoded from a raw bucket key."""

    main: int
    sub: int
    tombstone: bool = False

    def __str__(self) -> str:
        return f"{{main:{self.main} sub:{self.sub}}}"


@dataclass(frozen=True)
class LogicalRecord:
    """A decoded key/value record as the store's owner wrote it."""

    key: bytes
    value: bytes
    create_revision: int = 0
    mod_revision: int = 0
    version: int = 0
    lease: int = 0


# ─── Severity Levels ────────────────────────────────────────────────


class Severity(str, Enum):
    """Severity of a scan finding."""

    ERROR = "ERROR"  # Invalid address, scan fails
    INFO = "INFO"  # Address listing (match-all mode)


# ─── Scan Finding ───────────────────────────────────────────────────


class Finding(BaseModel):
    """Addresses observed on a single record."""

    severity: Severity
    code: str  # "INVALID_IPV4_ADDRESS" or "IPV4_ADDRESSES_FOUND"
    key: str  # Printable working key
    revision: Optional[str] = None
    addresses: list[str] = Field(default_factory=list)
    message: str


# ─── Scan Report ────────────────────────────────────────────────────


class ScanReport(BaseModel):
    """The outcome of one walk over a bucket."""

    store_path: str = ""
    bucket: str
    records_scanned: int = 0
    is_valid: bool = True
    findings: list[Finding] = Field(default_factory=list)
    invalid_addresses: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.ERROR]

    def raise_for_invalid(self) -> None:
        """Raise InvalidAddressesFound if the walk observed any invalid address."""
        if not self.is_valid:
            raise InvalidAddressesFound(
                details={
                    "bucket": self.bucket,
                    "records_with_invalid_addresses": len(self.errors),
                }
            )
