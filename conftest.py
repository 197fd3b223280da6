"""Pytest configuration — project root on sys.path, plus bolt store builders.

The builders write genuine bolt files (two meta pages, a freelist page, a
root bucket page, then branch/leaf data pages) so the store reader is
exercised against the same layout a real etcd snapshot has.
"""

import struct
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from funny_ip_detector.store import fnv1a_64  # noqa: E402

PAGE_SIZE = 4096

_BRANCH, _LEAF, _META, _FREELIST = 0x01, 0x02, 0x04, 0x10


# ─── Record Encoding (etcd layout) ──────────────────────────────────


def _varint(n: int) -> bytes:
    n &= (1 << 64) - 1
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def encode_key_value(
    key: bytes,
    value: bytes = b"",
    create_revision: int = 0,
    mod_revision: int = 0,
    version: int = 0,
    lease: int = 0,
) -> bytes:
    """Protocol-buffer encoding of a KeyValue message; zero fields omitted."""
    out = bytearray()
    if key:
        out += b"\x0a" + _varint(len(key)) + key
    for tag, n in ((0x10, create_revision), (0x18, mod_revision), (0x20, version)):
        if n:
            out += bytes([tag]) + _varint(n)
    if value:
        out += b"\x2a" + _varint(len(value)) + value
    if lease:
        out += b"\x30" + _varint(lease)
    return bytes(out)


def revision_key(main: int, sub: int = 0, tombstone: bool = False) -> bytes:
    key = struct.pack(">q", main) + b"_" + struct.pack(">q", sub)
    return key + b"t" if tombstone else key


# ─── Bolt Page Encoding ─────────────────────────────────────────────


def _page_header(pgid: int, flags: int, count: int, overflow: int = 0) -> bytes:
    return struct.pack("<QHHI", pgid, flags, count, overflow)


def _leaf_page(pgid: int, elements: list[tuple[int, bytes, bytes]]) -> bytes:
    header = _page_header(pgid, _LEAF, len(elements))
    elems = bytearray()
    data = bytearray()
    base = 16 + 16 * len(elements)
    for i, (flags, key, value) in enumerate(elements):
        elem_offset = 16 + 16 * i
        pos = base + len(data) - elem_offset
        elems += struct.pack("<IIII", flags, pos, len(key), len(value))
        data += key + value
    return header + bytes(elems) + bytes(data)


def _branch_page(pgid: int, children: list[tuple[bytes, int]]) -> bytes:
    header = _page_header(pgid, _BRANCH, len(children))
    elems = bytearray()
    data = bytearray()
    base = 16 + 16 * len(children)
    for i, (key, child) in enumerate(children):
        elem_offset = 16 + 16 * i
        pos = base + len(data) - elem_offset
        elems += struct.pack("<IIQ", pos, len(key), child)
        data += key
    return header + bytes(elems) + bytes(data)


def _meta_page(pgid: int, root: int, high_water: int, txid: int, corrupt: bool = False) -> bytes:
    body = struct.pack("<IIIIQQQQQ", 0xED0CDAED, 2, PAGE_SIZE, 0, root, 0, 2, high_water, txid)
    checksum = fnv1a_64(body)
    if corrupt:
        checksum ^= 1
    return _page_header(pgid, _META, 0) + body + struct.pack("<Q", checksum)


def _pad(page: bytes) -> tuple[bytes, int]:
    """Pad to whole pages, patching the overflow count into the header."""
    pages = max(1, -(-len(page) // PAGE_SIZE))
    if pages > 1:
        page = page[:12] + struct.pack("<I", pages - 1) + page[16:]
    return page + b"\x00" * (pages * PAGE_SIZE - len(page)), pages


def write_bolt(
    path: Path,
    buckets: dict[bytes, list[tuple[bytes, bytes]]],
    leaf_size: int = 64,
    inline: bool = False,
    corrupt_meta: int | None = None,
) -> Path:
    """Write a bolt file with the given top-level buckets.

    Args:
        buckets: bucket name -> (key, value) pairs, any order.
        leaf_size: max elements per leaf; more records add a branch page.
        inline: store every bucket inline in the root bucket page.
        corrupt_meta: 0 or 1 to break that meta page's checksum.
    """
    pages: list[bytes] = []
    next_pgid = 4  # 0-1 meta, 2 freelist, 3 root bucket
    root_elements: list[tuple[int, bytes, bytes]] = []

    def alloc(build) -> int:
        nonlocal next_pgid
        pgid = next_pgid
        padded, count = _pad(build(pgid))
        pages.append(padded)
        next_pgid += count
        return pgid

    for name in sorted(buckets):
        records = sorted(buckets[name])
        if inline:
            leaf = _leaf_page(0, [(0, k, v) for k, v in records])
            header = struct.pack("<QQ", 0, 0)
            root_elements.append((0x01, name, header + leaf))
            continue

        chunks = [records[i:i + leaf_size] for i in range(0, len(records), leaf_size)] or [[]]
        leaves = [
            (chunk[0][0] if chunk else b"", alloc(lambda pgid, c=chunk: _leaf_page(pgid, [(0, k, v) for k, v in c])))
            for chunk in chunks
        ]
        if len(leaves) == 1:
            bucket_root = leaves[0][1]
        else:
            bucket_root = alloc(lambda pgid: _branch_page(pgid, leaves))
        root_elements.append((0x01, name, struct.pack("<QQ", bucket_root, 0)))

    high_water = next_pgid
    out = bytearray()
    out += _pad(_meta_page(0, 3, high_water, txid=2, corrupt=corrupt_meta == 0))[0]
    out += _pad(_meta_page(1, 3, high_water, txid=1, corrupt=corrupt_meta == 1))[0]
    out += _pad(_page_header(2, _FREELIST, 0))[0]
    out += _pad(_leaf_page(3, root_elements))[0]
    for page in pages:
        out += page

    path.write_bytes(bytes(out))
    return path


# ─── Fixtures ───────────────────────────────────────────────────────


@pytest.fixture
def make_store(tmp_path):
    """Factory: make_store({b"key": [(k, v), ...]}, **kwargs) -> path."""
    counter = {"n": 0}

    def _make(buckets, name: str | None = None, **kwargs) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"store{counter['n']}.db")
        return write_bolt(path, buckets, **kwargs)

    return _make


@pytest.fixture
def make_etcd_store(make_store):
    """Factory: make_etcd_store([(key, value), ...]) -> path of an etcd-like store.

    Record i gets revision i + 1, so the last entry is the most recent.
    """

    def _make(entries, **kwargs) -> Path:
        records = []
        for i, (key, value) in enumerate(entries):
            rev = i + 1
            records.append(
                (
                    revision_key(rev),
                    encode_key_value(
                        key.encode() if isinstance(key, str) else key,
                        value.encode() if isinstance(value, str) else value,
                        create_revision=rev,
                        mod_revision=rev,
                        version=1,
                    ),
                )
            )
        return make_store({b"key": records, b"meta": [(b"consistent_index", b"\x00" * 8)]}, **kwargs)

    return _make


@pytest.fixture
def kv_encoder():
    return encode_key_value


@pytest.fixture
def rev_key():
    return revision_key
