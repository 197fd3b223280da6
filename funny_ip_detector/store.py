"""
Read-only access to a bolt (bbolt) single-file store.

The file is a sequence of fixed-size pages. Pages 0 and 1 hold meta
records; the one with the highest transaction id that passes its checksum
is the current snapshot. Buckets are B+trees of branch and leaf pages; a
small bucket may be stored "inline" inside its parent's leaf value.

Page header (16 bytes, little-endian):

    [ id: u64 | flags: u16 | count: u16 | overflow: u32 ]

Meta (64 bytes, follows the page header):

    [ magic: u32 | version: u32 | page_size: u32 | flags: u32 |
      root: u64 | sequence: u64 | freelist: u64 | pgid: u64 |
      txid: u64 | checksum: u64 ]

Branch element: [ pos: u32 | ksize: u32 | pgid: u64 ]
Leaf element:   [ flags: u32 | pos: u32 | ksize: u32 | vsize: u32 ]

``pos`` is relative to the element's own offset.

Nothing here writes to the file. The store is opened read-only and held
under an exclusive advisory lock for the lifetime of the handle, so no
writer can change pages underneath the snapshot.
"""

from __future__ import annotations

import fcntl
import logging
import mmap
import os
import struct
import time
from bisect import bisect_right
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Optional

from .exceptions import BucketNotFoundError, InvalidStoreError, LockTimeoutError, StoreOpenError

logger = logging.getLogger(__name__)


# ─── Format Constants ───────────────────────────────────────────────

MAGIC = 0xED0CDAED
VERSION = 2

PAGE_HEADER = struct.Struct("<QHHI")
META = struct.Struct("<IIIIQQQQQQ")
BRANCH_ELEMENT = struct.Struct("<IIQ")
LEAF_ELEMENT = struct.Struct("<IIII")
BUCKET_HEADER = struct.Struct("<QQ")

# Branch and leaf elements share one width.
ELEMENT_SIZE = 16

# Checksum covers every meta field before the checksum itself.
_META_CHECKSUM_SPAN = META.size - 8

BRANCH_PAGE = 0x01
LEAF_PAGE = 0x02
META_PAGE = 0x04

BUCKET_LEAF_FLAG = 0x01

# Page sizes probed for the second meta page when the first one is unreadable.
_CANDIDATE_PAGE_SIZES = (4096, 8192, 16384, 32768, 65536, 1024, 2048)

LOCK_RETRY_INTERVAL = 0.05


# ─── Data Structures ────────────────────────────────────────────────


@dataclass(frozen=True)
class Meta:
    """The fields of a meta page we rely on."""

    page_size: int
    root: int
    freelist: int
    high_water: int
    txid: int


@dataclass(frozen=True)
class _Page:
    """A view of one page inside ``buf`` starting at ``offset``."""

    buf: bytes | mmap.mmap
    offset: int
    pgid: int
    flags: int
    count: int

    @classmethod
    def at(cls, buf: bytes | mmap.mmap, offset: int) -> _Page:
        if offset + PAGE_HEADER.size > len(buf):
            raise InvalidStoreError(
                "page header lies beyond end of file", details={"offset": offset}
            )
        pgid, flags, count, _overflow = PAGE_HEADER.unpack_from(buf, offset)
        return cls(buf=buf, offset=offset, pgid=pgid, flags=flags, count=count)

    def _element_offset(self, index: int) -> int:
        return self.offset + PAGE_HEADER.size + index * ELEMENT_SIZE

    def branch_elements(self) -> list[tuple[bytes, int]]:
        """Return (first key, child page id) for each child, in key order."""
        elements = []
        for i in range(self.count):
            elem = self._element_offset(i)
            pos, ksize, child = BRANCH_ELEMENT.unpack_from(self.buf, elem)
            start = elem + pos
            elements.append((self._slice(start, ksize), child))
        return elements

    def leaf_elements(self) -> list[tuple[int, bytes, bytes]]:
        """Return (flags, key, value) for each element, in key order."""
        elements = []
        for i in range(self.count):
            elem = self._element_offset(i)
            flags, pos, ksize, vsize = LEAF_ELEMENT.unpack_from(self.buf, elem)
            start = elem + pos
            key = self._slice(start, ksize)
            value = self._slice(start + ksize, vsize)
            elements.append((flags, key, value))
        return elements

    def _slice(self, start: int, size: int) -> bytes:
        end = start + size
        if end > len(self.buf):
            raise InvalidStoreError(
                "element data lies beyond end of page buffer",
                details={"page": self.pgid, "offset": start, "size": size},
            )
        return bytes(self.buf[start:end])


# ─── Public API ──────────────────────────────────────────────────────


def open_store(path: str | os.PathLike, lock_timeout: float = 10.0) -> Store:
    """Open a store read-only under an exclusive advisory lock.

    Args:
        path: The bolt database file.
        lock_timeout: Seconds to wait for the lock; 0 waits indefinitely.

    Raises:
        StoreOpenError: the file cannot be opened.
        LockTimeoutError: another process holds the lock past the timeout.
        InvalidStoreError: the file is not a valid bolt store.
    """
    path = os.fspath(path)
    try:
        fh = open(path, "rb")
    except OSError as exc:
        raise StoreOpenError(
            f"failed to open bolt DB {path!r}: {exc.strerror or exc}",
            details={"path": path, "errno": exc.errno},
        ) from exc

    try:
        _flock(fh, lock_timeout, path)
        return Store(fh, path)
    except BaseException:
        fh.close()
        raise


class Store:
    """An open, locked, read-only snapshot of a bolt file.

    Usage:
        with open_store("member/snap/db") as store:
            for key, value in store.bucket("key").items():
                ...
    """

    def __init__(self, fh, path: str):
        self.path = path
        self._fh = fh
        try:
            self._data = mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as exc:
            raise InvalidStoreError(
                f"cannot map {path!r}: {exc}", details={"path": path}
            ) from exc
        try:
            self.meta = self._read_meta()
        except BaseException:
            self._data.close()
            raise
        logger.debug(
            "Opened %s: page_size=%d txid=%d root=%d",
            path, self.meta.page_size, self.meta.txid, self.meta.root,
        )

    # ─── Lifecycle ──────────────────────────────────────────────────

    def close(self) -> None:
        """Unmap the file, release the lock and close the descriptor. Idempotent."""
        if self._fh is None:
            return
        try:
            self._data.close()
        finally:
            try:
                fcntl.flock(self._fh.fileno(), fcntl.LOCK_UN)
            finally:
                self._fh.close()
                self._fh = None

    def __enter__(self) -> Store:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ─── Buckets ────────────────────────────────────────────────────

    def bucket(self, name: str | bytes) -> Bucket:
        """Resolve a top-level bucket by name.

        Raises:
            BucketNotFoundError: no bucket of that name in this snapshot.
        """
        key = name.encode("utf-8") if isinstance(name, str) else bytes(name)
        root = Bucket(self, self.meta.root)
        found = root.lookup(key)
        if found is None:
            raise BucketNotFoundError(
                f"got nil bucket for {key.decode('utf-8', 'backslashreplace')}",
                details={"bucket": key.decode("utf-8", "backslashreplace"), "path": self.path},
            )
        flags, value = found
        if not flags & BUCKET_LEAF_FLAG:
            raise BucketNotFoundError(
                f"{key!r} is a plain key, not a bucket", details={"path": self.path}
            )
        return Bucket.from_header(self, value)

    # ─── Pages ──────────────────────────────────────────────────────

    def page(self, pgid: int) -> _Page:
        if pgid < 2 or pgid >= self.meta.high_water:
            raise InvalidStoreError(
                f"page id {pgid} outside data range", details={"path": self.path}
            )
        return _Page.at(self._data, pgid * self.meta.page_size)

    def _read_meta(self) -> Meta:
        """Pick the newest valid meta page."""
        data = self._data
        first = _parse_meta(data, 0)
        page_size = first.page_size if first else None

        candidates = [first]
        if page_size is not None:
            candidates.append(_parse_meta(data, page_size))
        else:
            for size in _CANDIDATE_PAGE_SIZES:
                second = _parse_meta(data, size)
                if second is not None and second.page_size == size:
                    candidates.append(second)
                    break

        valid = [m for m in candidates if m is not None]
        if not valid:
            raise InvalidStoreError(
                f"{self.path!r} is not a valid bolt database (no readable meta page)",
                details={"path": self.path},
            )
        meta = max(valid, key=lambda m: m.txid)
        logger.info("Using meta snapshot txid=%d from %s", meta.txid, self.path)
        return meta


class Bucket:
    """A sorted keyspace: a B+tree rooted at a page or stored inline."""

    def __init__(self, store: Store, root: int, inline: Optional[bytes] = None):
        self._store = store
        self.root = root
        self._inline = inline

    @classmethod
    def from_header(cls, store: Store, value: bytes) -> Bucket:
        if len(value) < BUCKET_HEADER.size:
            raise InvalidStoreError("bucket header too short", details={"path": store.path})
        root, _sequence = BUCKET_HEADER.unpack_from(value, 0)
        if root == 0:
            return cls(store, 0, inline=value[BUCKET_HEADER.size:])
        return cls(store, root)

    def _root_page(self) -> _Page:
        if self._inline is not None:
            return _Page.at(self._inline, 0)
        return self._store.page(self.root)

    def items(self, reverse: bool = True) -> Iterator[tuple[bytes, Optional[bytes]]]:
        """Yield (key, value) pairs in key order, descending when ``reverse``.

        Nested buckets yield ``None`` as their value.
        """
        yield from self._walk(self._root_page(), reverse)

    def lookup(self, key: bytes) -> Optional[tuple[int, bytes]]:
        """Return (flags, value) for an exact key, or None."""
        page = self._root_page()
        while page.flags & BRANCH_PAGE:
            children = page.branch_elements()
            if not children:
                return None
            index = bisect_right([k for k, _ in children], key) - 1
            page = self._store.page(children[max(index, 0)][1])
        self._expect_leaf(page)
        for flags, k, v in page.leaf_elements():
            if k == key:
                return flags, v
        return None

    def _walk(self, page: _Page, reverse: bool) -> Iterator[tuple[bytes, Optional[bytes]]]:
        if page.flags & BRANCH_PAGE:
            children = page.branch_elements()
            if reverse:
                children.reverse()
            for _key, child in children:
                yield from self._walk(self._store.page(child), reverse)
            return

        self._expect_leaf(page)
        elements = page.leaf_elements()
        if reverse:
            elements.reverse()
        for flags, key, value in elements:
            yield key, (None if flags & BUCKET_LEAF_FLAG else value)

    def _expect_leaf(self, page: _Page) -> None:
        if not page.flags & LEAF_PAGE:
            raise InvalidStoreError(
                f"page {page.pgid} has flags {page.flags:#x}, expected branch or leaf",
                details={"path": self._store.path, "page": page.pgid},
            )


# ─── Helpers ─────────────────────────────────────────────────────────


def _flock(fh, timeout: float, path: str) -> None:
    """Take an exclusive flock, polling until ``timeout`` seconds elapse."""
    started = time.monotonic()
    while True:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            logger.debug("Acquired lock on %s", path)
            return
        except BlockingIOError:
            pass
        except OSError as exc:
            raise StoreOpenError(
                f"failed to lock {path!r}: {exc.strerror or exc}",
                details={"path": path, "errno": exc.errno},
            ) from exc

        waited = time.monotonic() - started
        if timeout > 0 and waited >= timeout:
            raise LockTimeoutError(
                f"timed out after {timeout:g}s waiting for lock on {path!r}",
                details={"path": path, "timeout": timeout},
            )
        time.sleep(LOCK_RETRY_INTERVAL)


def _parse_meta(data: bytes | mmap.mmap, offset: int) -> Optional[Meta]:
    """Return the meta record at ``offset`` if it validates, else None."""
    start = offset + PAGE_HEADER.size
    if start + META.size > len(data):
        return None
    _pgid, flags, _count, _overflow = PAGE_HEADER.unpack_from(data, offset)
    if not flags & META_PAGE:
        return None
    (magic, version, page_size, _flags, root, _sequence,
     freelist, high_water, txid, checksum) = META.unpack_from(data, start)
    if magic != MAGIC or version != VERSION:
        return None
    if checksum != fnv1a_64(data[start:start + _META_CHECKSUM_SPAN]):
        return None
    return Meta(page_size=page_size, root=root, freelist=freelist, high_water=high_water, txid=txid)


def fnv1a_64(data: bytes) -> int:
    """64-bit FNV-1a, the meta page checksum."""
    h = 0xCBF29CE484222325
    for b in data:
        h ^= b
        h = (h * 0x100000001B3) & 0xFFFFFFFFFFFFFFFF
    return h
