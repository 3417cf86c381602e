"""Canonical hashing helpers for determinism and equivalence checks.

Two materializations with the same ``data_hash`` hold identical frames,
records, field values and record order.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from framestate.models.snapshot import Record


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_data_hash(data: dict[str, list[Record]]) -> str:
    """SHA-256 of canonical(frame -> ordered records).

    Record order is part of the hash; frame order is not (keys are sorted).
    """
    payload = {
        frame: [record.model_dump(mode="json") for record in records]
        for frame, records in data.items()
    }
    return sha256_hex(canonical_json_bytes(payload))
