"""Encode / decode persisted catalog snapshots.

Pipeline: json → utf-8 → gzip, prefixed with the 4-byte big-endian length of
the uncompressed payload, then URL-safe base64. The length prefix lets us
reject truncated blobs before handing them to the json decoder.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import struct
import zlib

from helm_conductor.errors import ParseError
from helm_conductor.models.snapshot import Snapshot

_LEN_PREFIX = struct.Struct(">I")


def encode_snapshot(snapshot: Snapshot) -> str:
    raw = json.dumps(snapshot.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")
    # mtime=0 keeps the output byte-stable so unchanged snapshots compare equal
    compressed = gzip.compress(raw, mtime=0)
    return base64.urlsafe_b64encode(_LEN_PREFIX.pack(len(raw)) + compressed).decode("ascii")


def decode_snapshot(data: str | bytes | None) -> Snapshot:
    """Decode a persisted snapshot; empty input yields an empty snapshot."""
    if not data:
        return Snapshot()
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        blob = base64.urlsafe_b64decode(data)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"snapshot is not valid base64: {e}") from e

    if len(blob) < _LEN_PREFIX.size:
        raise ParseError("snapshot is truncated")
    (expected,) = _LEN_PREFIX.unpack_from(blob)
    try:
        raw = gzip.decompress(blob[_LEN_PREFIX.size:])
    except (OSError, EOFError, zlib.error) as e:
        raise ParseError(f"snapshot is not valid gzip data: {e}") from e
    if len(raw) != expected:
        raise ParseError(f"snapshot length mismatch: expected {expected} bytes, got {len(raw)}")

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"snapshot is not valid json: {e}") from e
    if not isinstance(payload, dict):
        raise ParseError("snapshot payload is not an object")
    return Snapshot.from_dict(payload)
