"""Shared pytest fixtures for the eventlog-reports test suite."""

from __future__ import annotations

from xml.sax.saxutils import escape, quoteattr

import pytest

from eventlog_reports import sources
from eventlog_reports.session import Session

EVENT_NS = "http://schemas.microsoft.com/win/2004/08/events/event"


def build_event_xml(
    event_id=4624,
    record_id=1,
    channel="Security",
    computer="dc01.corp.example.com",
    system_time="2024-01-15T10:30:00.1234567Z",
    level=0,
    data=None,
    namespace=True,
    include_system=True,
) -> str:
    """Render one event document the way the Windows event log does.

    *data* is a dict or a list of (name, value) pairs; a None name gives a
    positional <Data> element without a Name attribute.
    """
    xmlns = f" xmlns='{EVENT_NS}'" if namespace else ""
    parts = [f"<Event{xmlns}>"]

    if include_system:
        parts.append("<System>")
        parts.append("<Provider Name='Microsoft-Windows-Security-Auditing'/>")
        if event_id is not None:
            parts.append(f"<EventID>{event_id}</EventID>")
        if level is not None:
            parts.append(f"<Level>{level}</Level>")
        if system_time is not None:
            parts.append(f"<TimeCreated SystemTime={quoteattr(system_time)}/>")
        if record_id is not None:
            parts.append(f"<EventRecordID>{record_id}</EventRecordID>")
        if channel is not None:
            parts.append(f"<Channel>{escape(channel)}</Channel>")
        if computer is not None:
            parts.append(f"<Computer>{escape(computer)}</Computer>")
        parts.append("</System>")

    if data is not None:
        items = data.items() if isinstance(data, dict) else data
        parts.append("<EventData>")
        for name, value in items:
            if name is None:
                parts.append(f"<Data>{escape(value)}</Data>")
            else:
                parts.append(f"<Data Name={quoteattr(name)}>{escape(value)}</Data>")
        parts.append("</EventData>")

    parts.append("</Event>")
    return "".join(parts)


@pytest.fixture()
def make_event():
    """Return the event document builder."""
    return build_event_xml


@pytest.fixture()
def session() -> Session:
    """A fresh session with progress logging turned off."""
    return Session(progress_interval=0)


@pytest.fixture()
def security_session(session) -> Session:
    """Session holding the two Security 4624 logons used across the suite."""
    session.ingest(build_event_xml(
        record_id=100,
        system_time="2024-01-15T11:45:00Z",
        data={"SubjectUserSid": "S-1-5-18"},
    ))
    session.ingest(build_event_xml(
        record_id=101,
        system_time="2024-01-15T10:30:00Z",
        data={"SubjectUserSid": "S-1-5-21", "TargetUserName": "alice"},
    ))
    return session


class FakeEvtxRecord:
    def __init__(self, item, offset):
        self._item = item
        self._offset = offset

    def xml(self):
        if isinstance(self._item, BaseException):
            raise self._item
        return self._item

    def offset(self):
        return self._offset


@pytest.fixture()
def evtx_logs(monkeypatch):
    """Serve .evtx reads from memory: path -> list of record XML or exceptions."""
    logs = {}

    class FakeFileHeader:
        def check_magic(self):
            return True

    class FakeEvtx:
        def __init__(self, path):
            self._path = path

        def __enter__(self):
            if self._path not in logs:
                raise FileNotFoundError(self._path)
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def get_file_header(self):
            return FakeFileHeader()

        def records(self):
            for index, item in enumerate(logs[self._path]):
                yield FakeEvtxRecord(item, 0x1000 + index * 0x100)

    monkeypatch.setattr(sources.evtx, "Evtx", FakeEvtx)
    return logs
