from __future__ import annotations

import time
from collections.abc import Iterator
from typing import Any

from .chain import compute_root, iter_digests
from .models import AuditEntry, Phase


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class AuditLog:
    """Append-only sequence of audit entries owned by a single run.

    Timestamps are wall-clock milliseconds clamped so they never decrease
    across the log. The chain root is recomputed on every read.
    """

    def __init__(self, *, include_timestamps: bool = True) -> None:
        self.include_timestamps = include_timestamps
        self._entries: list[AuditEntry] = []

    def append(self, step_index: int, phase: Phase, **payload: Any) -> AuditEntry:
        timestamp = _now_ms()
        if self._entries and timestamp < self._entries[-1].timestamp:
            timestamp = self._entries[-1].timestamp
        critiques = payload.pop("critiques", None)
        entry = AuditEntry(
            step_index=step_index,
            timestamp=timestamp,
            phase=phase,
            critiques=tuple(critiques) if critiques is not None else None,
            **payload,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> tuple[AuditEntry, ...]:
        return tuple(self._entries)

    @property
    def last(self) -> AuditEntry | None:
        return self._entries[-1] if self._entries else None

    @property
    def root(self) -> str:
        return compute_root(self._entries, include_timestamps=self.include_timestamps)

    def digests(self) -> list[str]:
        return list(iter_digests(self._entries, include_timestamps=self.include_timestamps))

    def for_step(self, step_index: int) -> list[AuditEntry]:
        return [entry for entry in self._entries if entry.step_index == step_index]

    def to_records(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AuditEntry]:
        return iter(tuple(self._entries))

    def __getitem__(self, index: int | slice) -> AuditEntry | tuple[AuditEntry, ...]:
        if isinstance(index, slice):
            return tuple(self._entries[index])
        return self._entries[index]

    def __repr__(self) -> str:
        return f"AuditLog(entries={len(self._entries)})"
