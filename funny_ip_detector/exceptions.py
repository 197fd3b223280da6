"""
Custom exception hierarchy for store scanning.

Each exception type maps to a specific category of failure, so callers
(the CLI, the HTTP API) can tell a lock timeout from a missing file from a
corrupt record without parsing messages.

Invalid addresses are NOT raised during a scan; they accumulate in the
ScanReport. InvalidAddressesFound exists only for callers that want the
report turned into an exception after the walk.
"""

from __future__ import annotations


class ScanError(Exception):
    """Base exception for all scan failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class StoreOpenError(ScanError):
    """The store file is missing or cannot be opened."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("STORE_OPEN_FAILED", message, details)


class LockTimeoutError(ScanError):
    """The advisory file lock was not obtained within the configured timeout."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("LOCK_TIMEOUT", message, details)


class InvalidStoreError(ScanError):
    """The file is not a readable bolt store (bad meta page or page layout)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("STORE_INVALID", message, details)


class BucketNotFoundError(ScanError):
    """The requested bucket does not exist in the store snapshot."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("BUCKET_NOT_FOUND", message, details)


class DecodeError(ScanError):
    """A stored value is not a well-formed logical record."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("RECORD_DECODE_FAILED", message, details)


class InvalidAddressesFound(ScanError):
    """At least one address with a redundant leading zero was observed."""

    def __init__(self, message: str = "Invalid IPv4 addresses found", details: dict | None = None):
        super().__init__("INVALID_ADDRESSES_FOUND", message, details)
