"""Canonical event record and the small value types around it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from eventlog_reports.helpers import fold

NOT_SET = -1


def make_identity_key(channel: str, event_id: int) -> str:
    """Group key for a (channel, event id) pair, e.g. 'Security-Id-4624'."""
    return f"{channel.strip()}-Id-{event_id}"


@dataclass(frozen=True)
class DataField:
    name: str
    value: str


@dataclass(frozen=True)
class EventRecord:
    channel: str = ""
    event_id: int = NOT_SET
    event_record_id: int = NOT_SET
    source_machine: str = ""
    level: int = NOT_SET
    timestamp_utc: datetime | None = None
    data_fields: tuple[DataField, ...] = ()
    identity_key: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "identity_key", make_identity_key(self.channel, self.event_id))

    def field_value(self, name: str) -> str | None:
        """Raw text of the first data field named *name* (case-insensitive)."""
        wanted = fold(name)
        for data_field in self.data_fields:
            if fold(data_field.name) == wanted:
                return data_field.value
        return None

    def __str__(self) -> str:
        ts = self.timestamp_utc.isoformat() if self.timestamp_utc else "unset"
        return (
            f"EventRecord; Key: {self.identity_key}; "
            f"EventSourceMachine: {self.source_machine or 'NULL'}; DateTimeUTC: {ts}"
        )


@dataclass(frozen=True)
class Violation:
    field: str
    message: str


@dataclass(frozen=True)
class EventDescription:
    event_log: str
    event_id: int
    description: str = ""

    @property
    def identity_key(self) -> str:
        return make_identity_key(self.event_log, self.event_id)
