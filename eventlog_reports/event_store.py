"""Append-only, arrival-ordered record groups keyed by identity key."""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from eventlog_reports.helpers import fold
from eventlog_reports.models import EventRecord


class EventStore:
    """Holds every accepted record for the lifetime of a run.

    Keys compare case-insensitively; the first spelling seen is kept for
    display. Nothing is evicted, so memory grows with the number of records.
    """

    def __init__(self):
        self._groups: dict[str, list[EventRecord]] = {}
        self._display_keys: dict[str, str] = {}
        self._record_count = 0
        self._frozen = False

    def append(self, identity_key: str, record: EventRecord):
        if self._frozen:
            raise RuntimeError("Event store is frozen")
        folded = fold(identity_key)
        if folded not in self._groups:
            self._groups[folded] = []
            self._display_keys[folded] = identity_key
        self._groups[folded].append(record)
        self._record_count += 1

    def groups_view(self) -> Mapping[str, tuple[EventRecord, ...]]:
        """Read-only mapping of display key -> records, in first-appearance order."""
        return MappingProxyType({
            self._display_keys[folded]: tuple(records)
            for folded, records in self._groups.items()
        })

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def record_count(self) -> int:
        return self._record_count

    def __len__(self) -> int:
        return len(self._groups)
