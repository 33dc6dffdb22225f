"""Ingestion session. Owns the schema registry, event store and descriptions for one run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, Iterable

from eventlog_reports.descriptions import DescriptionMap
from eventlog_reports.errors import MalformedInput, SourceFault, ValidationFailure
from eventlog_reports.event_store import EventStore
from eventlog_reports.models import EventRecord, Violation
from eventlog_reports.parser import parse_event
from eventlog_reports.schema_registry import SchemaRegistry
from eventlog_reports.validator import validate_record

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_INTERVAL = 5000


class IngestStatus(Enum):
    ACCEPTED = "accepted"
    MALFORMED = "malformed"
    INVALID = "invalid"
    FILTERED = "filtered"


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    record: EventRecord | None = None
    violations: tuple[Violation, ...] = ()
    error: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status is IngestStatus.ACCEPTED


@dataclass
class IngestStats:
    read: int = 0
    accepted: int = 0
    malformed: int = 0
    invalid: int = 0
    filtered: int = 0
    source_faults: int = 0

    def count(self, status: IngestStatus):
        self.read += 1
        if status is IngestStatus.ACCEPTED:
            self.accepted += 1
        elif status is IngestStatus.MALFORMED:
            self.malformed += 1
        elif status is IngestStatus.INVALID:
            self.invalid += 1
        elif status is IngestStatus.FILTERED:
            self.filtered += 1


@dataclass(frozen=True)
class RecordFilter:
    """Event id and date-range constraints applied in-process.

    Used for exported files, where the source cannot apply an event query.
    Dates are inclusive and compared against the record's UTC timestamp.
    """

    event_ids: frozenset[int] = field(default_factory=frozenset)
    start_date: date | None = None
    end_date: date | None = None

    def __call__(self, record: EventRecord) -> bool:
        if self.event_ids and record.event_id not in self.event_ids:
            return False
        ts = record.timestamp_utc
        if self.start_date is not None:
            if ts < datetime.combine(self.start_date, time.min, tzinfo=timezone.utc):
                return False
        if self.end_date is not None:
            end = datetime.combine(self.end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            if ts >= end:
                return False
        return True


class Session:
    """All mutable state of one ingestion run.

    Records are folded in strictly in the order they are offered. After
    freeze() the registry and store are read-only inputs for rendering.
    """

    def __init__(
        self,
        descriptions: DescriptionMap | None = None,
        record_filter: Callable[[EventRecord], bool] | None = None,
        progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    ):
        self.registry = SchemaRegistry()
        self.store = EventStore()
        self.descriptions = descriptions if descriptions is not None else DescriptionMap()
        self.stats = IngestStats()
        self._record_filter = record_filter
        self._progress_interval = progress_interval

    def ingest(self, raw: str) -> IngestResult:
        """Parse, validate and fold one raw document. Never raises for per-record faults."""
        if self.frozen:
            raise RuntimeError("Session is frozen; ingestion has ended")

        try:
            record = parse_event(raw)
        except MalformedInput as exc:
            logger.warning("Error parsing event record Xml: %s (%s)", raw or "NULL", exc)
            return self._counted(IngestResult(IngestStatus.MALFORMED, error=str(exc)))

        violations = validate_record(record)
        if violations:
            failure = ValidationFailure(violations, raw)
            logger.warning("%s: %s", failure, raw)
            for violation in violations:
                logger.warning("Validation result: Member names: %s Message: %s",
                               violation.field, violation.message)
            return self._counted(IngestResult(
                IngestStatus.INVALID, record=record, violations=failure.violations, error=str(failure),
            ))

        if self._record_filter is not None and not self._record_filter(record):
            return self._counted(IngestResult(IngestStatus.FILTERED, record=record))

        self.registry.observe_record(record)
        self.store.append(record.identity_key, record)
        return self._counted(IngestResult(IngestStatus.ACCEPTED, record=record))

    def ingest_all(self, documents: Iterable[str]) -> IngestStats:
        """Ingest every document from *documents* in order.

        Benign SourceFaults raised by the iterator are counted and skipped by
        the source itself; anything that escapes here is fatal and propagates.
        """
        for raw in documents:
            self.ingest(raw)
        return self.stats

    def note_source_fault(self, fault: SourceFault):
        """Record a benign source fault that a source recovered from."""
        self.stats.source_faults += 1
        logger.warning("Skipping record after benign source fault: %s", fault)

    def freeze(self):
        self.registry.freeze()
        self.store.freeze()

    @property
    def frozen(self) -> bool:
        return self.store.frozen

    def _counted(self, result: IngestResult) -> IngestResult:
        self.stats.count(result.status)
        if self._progress_interval and self.stats.read % self._progress_interval == 0:
            logger.info("Events processed: %d (accepted: %d)", self.stats.read, self.stats.accepted)
        return result
