"""Event XML parser: one raw event document into one EventRecord.

Expected shape (namespaces are ignored, element names matched by local name):

    <Event>
      <System>
        <EventID>4624</EventID>
        <Level>0</Level>
        <TimeCreated SystemTime="2024-01-15T10:30:00.1234567Z"/>
        <EventRecordID>1234</EventRecordID>
        <Channel>Security</Channel>
        <Computer>dc01.corp.example.com</Computer>
      </System>
      <EventData>
        <Data Name="SubjectUserSid">S-1-5-18</Data>
      </EventData>
    </Event>
"""

import re
import xml.etree.ElementTree as ET

from eventlog_reports.errors import MalformedInput
from eventlog_reports.helpers import local_name, parse_system_time, safe_int
from eventlog_reports.models import DataField, EventRecord

_ALPHA_RE = re.compile(r"[a-zA-Z]")


def _child(parent: ET.Element | None, name: str) -> ET.Element | None:
    """First direct child whose local name matches *name* (case-insensitive)."""
    if parent is None:
        return None
    wanted = name.lower()
    for child in parent:
        if local_name(child.tag).lower() == wanted:
            return child
    return None


def _child_text(parent: ET.Element | None, name: str) -> str | None:
    child = _child(parent, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _attribute(element: ET.Element, name: str) -> str | None:
    """Attribute value by local name (case-insensitive)."""
    wanted = name.lower()
    for key, value in element.attrib.items():
        if local_name(key).lower() == wanted:
            return value
    return None


def normalize_machine_name(value: str | None) -> str:
    """'dc01.corp.example.com' -> 'DC01'. IP literals are left as they are."""
    if not value or not value.strip():
        return ""
    machine = value.strip()
    if _ALPHA_RE.search(machine) and machine.find(".") > 0:
        machine = machine[:machine.find(".")].strip().upper()
    return machine


def _data_fields(event_data: ET.Element | None) -> tuple[DataField, ...]:
    """Named <Data> children of EventData, in document order."""
    if event_data is None:
        return ()
    fields = []
    for element in event_data:
        if local_name(element.tag).lower() != "data":
            continue
        name = _attribute(element, "Name")
        if name is None or not name.strip():
            continue
        fields.append(DataField(name=name.strip(), value="".join(element.itertext())))
    return tuple(fields)


def parse_event(raw: str) -> EventRecord:
    """Parse a single raw event document.

    Raises MalformedInput for empty input or XML that is not well-formed.
    A document without a System element gives a record with every field at
    its default; the validator rejects it later.
    """
    if raw is None or not raw.strip():
        raise MalformedInput("Event record XML is empty", raw=raw or "")

    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise MalformedInput(f"Event record XML is not well-formed: {exc}", raw=raw) from exc

    system = _child(root, "System")
    data_fields = _data_fields(_child(root, "EventData"))
    if system is None:
        return EventRecord(data_fields=data_fields)

    time_created = _child(system, "TimeCreated")
    timestamp = None
    if time_created is not None:
        timestamp = parse_system_time(_attribute(time_created, "SystemTime"))

    return EventRecord(
        channel=_child_text(system, "Channel") or "",
        event_id=safe_int(_child_text(system, "EventID")),
        event_record_id=safe_int(_child_text(system, "EventRecordID")),
        source_machine=normalize_machine_name(_child_text(system, "Computer")),
        level=safe_int(_child_text(system, "Level")),
        timestamp_utc=timestamp,
        data_fields=data_fields,
    )
