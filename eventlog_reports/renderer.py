"""Grouped report rendering, one CSV or XML file per identity key."""

from __future__ import annotations

import logging
import os
import tempfile
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence

from eventlog_reports.descriptions import DescriptionMap
from eventlog_reports.errors import ConfigurationFault, RenderFault
from eventlog_reports.event_store import EventStore
from eventlog_reports.helpers import file_name_part, format_ymdhm, format_ymdhms, xml_element_name
from eventlog_reports.models import EventRecord
from eventlog_reports.schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

FIXED_COLUMNS = ("EventId", "EventRecordId", "EventSourceMachine", "DateTimeUTC", "Channel", "Level")
NOT_AVAILABLE = "N/A"
DEFAULT_RENDER_WORKERS = 4


class ReportFormat(Enum):
    CSV = "csv"
    XML = "xml"

    @property
    def extension(self) -> str:
        return self.value


def parse_report_format(text: str | None) -> ReportFormat:
    """'CSV' / 'xml' / ... -> ReportFormat. Raises ConfigurationFault for anything else."""
    if text is None or not text.strip():
        raise ConfigurationFault("Report format specified without required value")
    try:
        return ReportFormat(text.strip().lower())
    except ValueError:
        raise ConfigurationFault(f"Invalid report format specified: {text}") from None


@dataclass(frozen=True)
class RenderResult:
    identity_key: str
    path: str | None
    record_count: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Row building
# ---------------------------------------------------------------------------


def group_timespan(records: Sequence[EventRecord]) -> tuple[datetime, datetime]:
    """(first, last) event time of a group. Arrival order is irrelevant."""
    timestamps = [r.timestamp_utc for r in records]
    return min(timestamps), max(timestamps)


def fixed_values(record: EventRecord) -> list[str]:
    return [
        str(record.event_id),
        str(record.event_record_id),
        record.source_machine or "NULL",
        format_ymdhms(record.timestamp_utc),
        record.channel,
        str(record.level),
    ]


def dynamic_value(record: EventRecord, column: str) -> str | None:
    """Trimmed value of the record's field named *column*, None when the record lacks it."""
    value = record.field_value(column)
    if value is None:
        return None
    return value.strip()


def report_columns(registry: SchemaRegistry, identity_key: str) -> tuple[str, ...]:
    return FIXED_COLUMNS + registry.columns_for(identity_key)


def report_file_name(
    identity_key: str,
    description: str | None,
    first_event: datetime,
    last_event: datetime,
    report_format: ReportFormat,
) -> str:
    """EventId-<key>[-<description>]-<first>-<last>.<ext>, timestamps as YYYY-MM-DD-HH-MM."""
    suffix = f"-{file_name_part(description)}" if description else ""
    first = format_ymdhm(first_event).replace(":", "-").replace(" ", "-")
    last = format_ymdhm(last_event).replace(":", "-").replace(" ", "-")
    return f"EventId-{file_name_part(identity_key)}{suffix}-{first}-{last}.{report_format.extension}"


def root_element_name(identity_key: str) -> str:
    return "ArrayOfEventId" + xml_element_name(identity_key, replacement="-")


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def _bare(value: str) -> str:
    """Unquoted field, quoted only when it holds a separator, quote or line break."""
    if any(ch in value for ch in ',"\r\n'):
        return _quote(value)
    return value


def render_csv(columns: Sequence[str], records: Sequence[EventRecord]) -> str:
    """CSV text for one group.

    Every column is followed by a comma, so each line ends with an empty
    trailing field. Header names and fixed columns are written bare unless
    they need quoting; dynamic values are always quoted.
    """
    dynamic_columns = columns[len(FIXED_COLUMNS):]
    lines = ["".join(f"{_bare(name)}," for name in columns)]

    for record in records:
        line = "".join(f"{_bare(value)}," for value in fixed_values(record))
        for column in dynamic_columns:
            value = dynamic_value(record, column)
            line += _quote(NOT_AVAILABLE if value is None else value) + ","
        lines.append(line)

    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------


def element_names_for(dynamic_columns: Sequence[str]) -> list[str]:
    """Element names for dynamic columns, unique within an <Event>.

    A column that sanitizes to a name already taken, by a fixed column or an
    earlier dynamic one, gets a numeric suffix: Logon_Type, Logon_Type_2.
    """
    taken = set(FIXED_COLUMNS)
    names = []
    for column in dynamic_columns:
        base = xml_element_name(column)
        name = base
        suffix = 1
        while name in taken:
            suffix += 1
            name = f"{base}_{suffix}"
        taken.add(name)
        names.append(name)
    return names


def build_xml(identity_key: str, columns: Sequence[str], records: Sequence[EventRecord]) -> ET.ElementTree:
    """<ArrayOfEventId...><Event><EventId>..</EventId>...</Event>...</ArrayOfEventId...>"""
    root = ET.Element(root_element_name(identity_key))
    dynamic_columns = columns[len(FIXED_COLUMNS):]
    element_names = element_names_for(dynamic_columns)

    for record in records:
        event = ET.SubElement(root, "Event")
        for name, value in zip(FIXED_COLUMNS, fixed_values(record)):
            ET.SubElement(event, name).text = value
        for name, column in zip(element_names, dynamic_columns):
            value = dynamic_value(record, column)
            ET.SubElement(event, name).text = value or NOT_AVAILABLE

    tree = ET.ElementTree(root)
    ET.indent(tree)
    return tree


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _write_atomic(target: str, write):
    """Write via a temp file in the same directory, then replace *target*."""
    directory = os.path.dirname(target) or "."
    tmp_fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "wb") as f:
            write(f)
        os.replace(tmp_path, target)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class ReportRenderer:
    """Renders every group of a frozen EventStore into its own report file.

    Groups share no mutable state, so they are rendered on a bounded thread
    pool once the output directory exists.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: EventStore,
        output_dir: str,
        report_format: ReportFormat = ReportFormat.CSV,
        descriptions: DescriptionMap | None = None,
        max_workers: int = DEFAULT_RENDER_WORKERS,
    ):
        self._registry = registry
        self._store = store
        self._output_dir = output_dir
        self._format = report_format
        self._descriptions = descriptions if descriptions is not None else DescriptionMap()
        self._max_workers = max(1, max_workers)

    @classmethod
    def from_session(cls, session, output_dir: str, report_format: ReportFormat = ReportFormat.CSV,
                     max_workers: int = DEFAULT_RENDER_WORKERS) -> "ReportRenderer":
        """Freeze *session* and build a renderer over its state."""
        session.freeze()
        return cls(
            session.registry,
            session.store,
            output_dir,
            report_format=report_format,
            descriptions=session.descriptions,
            max_workers=max_workers,
        )

    def render_group(self, identity_key: str, records: Sequence[EventRecord]) -> RenderResult:
        """Render one group. Write failures are logged and returned, not raised."""
        logger.info(" - EventId: %s Events: %d", identity_key, len(records))

        first_event, last_event = group_timespan(records)
        description = self._descriptions.lookup_key(identity_key)
        columns = report_columns(self._registry, identity_key)
        file_name = report_file_name(identity_key, description, first_event, last_event, self._format)
        path = os.path.join(self._output_dir, file_name)

        try:
            if self._format is ReportFormat.CSV:
                text = render_csv(columns, records)
                logger.info("Writing: %d lines to file: %s", len(records) + 1, path)
                _write_atomic(path, lambda f: f.write(text.encode("utf-8")))
            else:
                tree = build_xml(identity_key, columns, records)
                logger.info("Writing: %d events to file: %s", len(records), path)
                _write_atomic(path, lambda f: tree.write(f, encoding="utf-8", xml_declaration=True))
        except OSError as exc:
            fault = RenderFault(f"Failed to write report {path}: {exc}", identity_key=identity_key)
            logger.error("Error writing report for %s: %s", identity_key, fault)
            return RenderResult(identity_key, None, len(records), error=str(fault))

        return RenderResult(identity_key, path, len(records))

    def render_all(self) -> list[RenderResult]:
        """Render every group; results follow the store's group order."""
        groups = list(self._store.groups_view().items())
        if not groups:
            logger.info("Report not created due to no events collected.")
            return []

        try:
            os.makedirs(self._output_dir, exist_ok=True)
        except OSError as exc:
            raise RenderFault(f"Cannot create report directory {self._output_dir}: {exc}") from exc

        logger.info("Rendering %d group(s) as %s into %s",
                    len(groups), self._format.name, self._output_dir)

        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(groups))) as executor:
            futures = [executor.submit(self.render_group, key, records) for key, records in groups]
            return [future.result() for future in futures]
