"""Sequential hash chain over audit entries.

Each entry is reduced to a canonical payload and folded into a running
SHA-256 accumulator: ``acc_i = sha256(acc_{i-1} || payload_i)`` with
``acc_0`` the zero-length byte string. The hex of the final accumulator is
the chain root. Reordering, inserting, dropping or editing any entry changes
every later accumulator and therefore the root. This is a singly linked
chain, not a Merkle tree; there is no per-entry inclusion proof.
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from .canonical import to_canonical_bytes
from .models import AuditEntry

EMPTY_ROOT = ""


def canonical_payload(entry: AuditEntry, *, include_timestamp: bool = True) -> dict[str, Any]:
    """Return the deterministic, minimal fields of an entry that get hashed.

    Only the number of critiques is bound, not their content. Absent states
    are explicit nulls and an excluded timestamp is null, so the payload shape
    never varies.
    """
    return {
        "step_index": entry.step_index,
        "timestamp": entry.timestamp if include_timestamp else None,
        "phase": entry.phase.value,
        "critique_count": len(entry.critiques) if entry.critiques is not None else 0,
        "input_state": entry.input_state,
        "draft_state": entry.draft_state,
        "final_state": entry.final_state,
    }


def iter_digests(entries: Iterable[AuditEntry], *, include_timestamps: bool = True) -> Iterator[str]:
    """Yield the running accumulator, as hex, after each entry."""
    running = b""
    for entry in entries:
        h = hashlib.sha256()
        h.update(running)
        h.update(to_canonical_bytes(canonical_payload(entry, include_timestamp=include_timestamps)))
        running = h.digest()
        yield running.hex()


def compute_root(entries: Iterable[AuditEntry], *, include_timestamps: bool = True) -> str:
    """Fold the entries into the chain root. An empty sequence yields ``EMPTY_ROOT``."""
    root = EMPTY_ROOT
    for root in iter_digests(entries, include_timestamps=include_timestamps):
        pass
    return root


def verify_root(entries: Iterable[AuditEntry], expected_root: str, *, include_timestamps: bool = True) -> bool:
    actual = compute_root(entries, include_timestamps=include_timestamps)
    return hmac.compare_digest(actual, expected_root)


def first_divergence(
    entries: Iterable[AuditEntry],
    reference_digests: Sequence[str],
    *,
    include_timestamps: bool = True,
) -> int | None:
    """Locate the first entry whose running digest differs from a captured digest list.

    Returns the index of that entry, the length of the shorter sequence when
    one is a strict prefix of the other, or ``None`` when both agree.
    """
    count = 0
    for index, digest in enumerate(iter_digests(entries, include_timestamps=include_timestamps)):
        if index >= len(reference_digests) or not hmac.compare_digest(digest, reference_digests[index]):
            return index
        count += 1
    if count != len(reference_digests):
        return count
    return None
