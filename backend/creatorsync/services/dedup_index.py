"""
Per-run index of external id -> record id.

Built once from storage at the start of a run and then kept current by the
reconciler itself; storage is not re-queried during the run. Items sharing an
external id are serialized through a per-key lock so that concurrent workers
never create the same record twice.
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping


class DedupIndex:
    def __init__(self, mapping: Mapping[str, int] | None = None) -> None:
        self._ids: dict[str, int] = dict(mapping or {})
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_records(cls, records: Iterable) -> "DedupIndex":
        return cls({r.external_id: r.id for r in records if r.external_id})

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, external_id: str) -> bool:
        return external_id in self._ids

    def get(self, external_id: str) -> int | None:
        return self._ids.get(external_id)

    def add(self, external_id: str, record_id: int) -> None:
        self._ids[external_id] = record_id

    def discard(self, external_id: str, record_id: int) -> None:
        """Drop the mapping if it still points at record_id."""
        if self._ids.get(external_id) == record_id:
            del self._ids[external_id]

    def lock_for(self, external_id: str) -> asyncio.Lock:
        # setdefault keeps this atomic under a single event loop
        return self._locks.setdefault(external_id, asyncio.Lock())
