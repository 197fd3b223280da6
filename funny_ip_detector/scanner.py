"""
Bucket scanner — orchestrates the full walk.

Flow, per visited record:

  ┌──────────────┐
  │  raw (k, v)  │   ← cursor, last key first by default
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │   Decoder    │   ← revision + logical record (optional)
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │  Extractor   │   ← loose dotted-decimal candidates, key then value
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │  Validator   │   ← strict grammar
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │    Report    │   ← diagnostics lines + findings + pass/fail
  └──────────────┘

Two result channels, on purpose:
  - A DecodeError (structural corruption) aborts the walk immediately.
  - An invalid address is a data-quality finding: it is printed, recorded,
    and the walk carries on. Only the final report says "failed".
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from typing import Optional

from .config import ScanConfig
from .decoder import REVISION_KEY_LEN, decode_key_value, decode_revision
from .exceptions import DecodeError
from .extractor import extract_from_pair
from .models import Finding, ScanReport, Severity
from .store import Bucket, open_store
from .validators import find_invalid

logger = logging.getLogger(__name__)

Emitter = Callable[[str], None]


class BucketScanner:
    """Walks one bucket and reports addresses that fail the strict grammar.

    Usage:
        scanner = BucketScanner(ScanConfig(limit=100))
        with open_store(path) as store:
            report = scanner.scan(store.bucket("key"))
        if not report.is_valid:
            ...
    """

    def __init__(self, config: ScanConfig | None = None, emit: Emitter = print):
        self.config = config or ScanConfig()
        self._emit = emit

    def scan(self, bucket: Bucket, store_path: str = "") -> ScanReport:
        """Visit every record (up to ``config.limit``) and build a report.

        Raises:
            DecodeError: a stored value is not a well-formed record, or a key
                is too short to carry a revision.
        """
        return self.scan_items(bucket.items(reverse=self.config.reverse), store_path)

    def scan_items(
        self, items: Iterable[tuple[bytes, Optional[bytes]]], store_path: str = ""
    ) -> ScanReport:
        """Scan an iterable of raw (key, value) pairs."""
        cfg = self.config
        report = ScanReport(store_path=store_path, bucket=cfg.bucket)
        remaining = cfg.limit or None

        logger.info(
            "Scanning bucket %r (limit=%s, decode=%s)", cfg.bucket, cfg.limit or "all", cfg.decode
        )

        for raw_key, raw_value in items:
            self._scan_record(raw_key, raw_value or b"", report)
            report.records_scanned += 1

            if remaining is not None:
                remaining -= 1
                if remaining == 0:
                    break

        logger.info(
            "Scanned %d record(s) in bucket %r: %d with invalid addresses",
            report.records_scanned, cfg.bucket, len(report.errors),
        )
        return report

    # ─── Per-Record Step ────────────────────────────────────────────

    def _scan_record(self, raw_key: bytes, raw_value: bytes, report: ScanReport) -> None:
        cfg = self.config
        key, value = raw_key, raw_value
        revision: Optional[str] = None

        if cfg.decode:
            if len(raw_key) < REVISION_KEY_LEN:
                raise DecodeError(
                    "revision key too short",
                    details={"key": _printable(raw_key), "length": len(raw_key), "bucket": cfg.bucket},
                )
            rev = decode_revision(raw_key)
            record = decode_key_value(raw_value)
            key, value = record.key, record.value
            revision = str(rev)
            if cfg.debug:
                self._emit(
                    f"rev={rev}, value=[key {_quote(record.key)} | val {_quote(record.value)} | "
                    f"created {record.create_revision} | mod {record.mod_revision} | "
                    f"ver {record.version}]"
                )
        elif cfg.debug:
            self._emit(f"key {_quote(key)} | val {_quote(value)}")

        candidates = extract_from_pair(key, value)
        if cfg.match_all and candidates:
            self._emit(f"IPv4 addresses found {candidates} on key: {_quote(key)}")
            report.findings.append(
                Finding(
                    severity=Severity.INFO,
                    code="IPV4_ADDRESSES_FOUND",
                    key=_printable(key),
                    revision=revision,
                    addresses=candidates,
                    message=f"{len(candidates)} IPv4 address(es) found",
                )
            )

        invalid = find_invalid(candidates)
        if invalid:
            self._emit(f"WARNING Invalid IPv4 addresses {invalid} on key: {_quote(key)}")
            report.is_valid = False
            report.invalid_addresses.extend(invalid)
            report.findings.append(
                Finding(
                    severity=Severity.ERROR,
                    code="INVALID_IPV4_ADDRESS",
                    key=_printable(key),
                    revision=revision,
                    addresses=invalid,
                    message=(
                        f"{len(invalid)} IPv4 address(es) with leading zeros; "
                        f"strict parsers reject these."
                    ),
                )
            )


def scan_store(
    path: str | os.PathLike, config: ScanConfig | None = None, emit: Emitter = print
) -> ScanReport:
    """Open the store at ``path``, scan the configured bucket and close it.

    Raises:
        StoreOpenError, LockTimeoutError, InvalidStoreError,
        BucketNotFoundError, DecodeError
    """
    config = config or ScanConfig()
    scanner = BucketScanner(config, emit)
    with open_store(path, lock_timeout=config.lock_timeout) as store:
        bucket = store.bucket(config.bucket)
        return scanner.scan(bucket, store_path=store.path)


# ─── Helpers ─────────────────────────────────────────────────────────


def _quote(data: bytes) -> str:
    """Quote bytes for a diagnostics line: 'abc', with escapes for non-printables."""
    return repr(bytes(data))[1:]


def _printable(data: bytes) -> str:
    return bytes(data).decode("utf-8", "backslashreplace")
