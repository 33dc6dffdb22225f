"""Minimum well-formedness checks for a parsed EventRecord."""

from eventlog_reports.models import EventRecord, Violation

REQUIRED_FIELDS = ("DateTimeUTC", "EventId", "EventRecordId", "EventSourceMachine")


def validate_record(record: EventRecord) -> list[Violation]:
    """Return the violations for *record*; an empty list means accepted.

    These four fields feed every report's fixed columns and file name.
    Everything else, dynamic data fields included, may be missing.
    """
    violations = []

    if record.timestamp_utc is None:
        violations.append(Violation("DateTimeUTC", "DateTimeUTC is not set"))

    if record.event_id < 0:
        violations.append(Violation("EventId", f"EventId is not valid: {record.event_id}"))

    if record.event_record_id < 1:
        violations.append(
            Violation("EventRecordId", f"EventRecordId is not valid: {record.event_record_id}")
        )

    if not record.source_machine or not record.source_machine.strip():
        violations.append(Violation("EventSourceMachine", "EventSourceMachine is empty"))

    return violations


def is_valid(record: EventRecord) -> bool:
    return not validate_record(record)
