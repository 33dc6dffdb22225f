"""Optional event description table, used to enrich report file names.

Two file formats are accepted:

YAML (``.yml`` / ``.yaml``)::

    event_descriptions:
      - event_log: Security
        event_id: 4624
        description: Logon

XML, as written by the legacy Windows tool (``.xml``)::

    <ArrayOfEventDescription>
      <EventDescription>
        <Description>Logon</Description>
        <EventId>4624</EventId>
        <EventLog>Security</EventLog>
      </EventDescription>
    </ArrayOfEventDescription>

Every entry is checked against DESCRIPTION_SCHEMA. Invalid or duplicate
entries raise ConfigurationFault.
"""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET

import jsonschema
import yaml

from eventlog_reports.errors import ConfigurationFault
from eventlog_reports.helpers import fold, local_name
from eventlog_reports.models import EventDescription, make_identity_key

logger = logging.getLogger(__name__)

DESCRIPTION_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "event_log": {"type": "string", "pattern": r"\S"},
        "event_id": {"type": "integer", "minimum": 0},
        "description": {"type": ["string", "null"]},
    },
    "required": ["event_log", "event_id"],
    "additionalProperties": False,
}

_XML_FIELD_NAMES = {
    "eventlog": "event_log",
    "eventid": "event_id",
    "description": "description",
}


class DescriptionMap:
    """Lookup of description text by (log name, event id), case-insensitive on the log."""

    def __init__(self, descriptions=()):
        self._by_key: dict[str, EventDescription] = {}
        for description in descriptions:
            self.add(description)

    def add(self, description: EventDescription):
        key = fold(description.identity_key)
        if key in self._by_key:
            raise ConfigurationFault(
                f"Event descriptions already contain an entry for: "
                f"{description.event_log} / {description.event_id}"
            )
        self._by_key[key] = description

    def lookup(self, channel: str, event_id: int) -> str | None:
        return self.lookup_key(make_identity_key(channel, event_id))

    def lookup_key(self, identity_key: str) -> str | None:
        description = self._by_key.get(fold(identity_key))
        if description is None or not description.description:
            return None
        return description.description.strip() or None

    def __iter__(self):
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)


def _int_or_text(text: str | None):
    if text is None:
        return None
    value = text.strip()
    try:
        return int(value)
    except ValueError:
        return value


def _read_xml_entries(path: str) -> list[dict]:
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as exc:
        raise ConfigurationFault(f"Invalid event descriptions XML in {path}: {exc}") from exc

    entries = []
    for element in root:
        if local_name(element.tag).lower() != "eventdescription":
            continue
        entry = {}
        for child in element:
            key = _XML_FIELD_NAMES.get(local_name(child.tag).lower())
            if key is None:
                continue
            entry[key] = _int_or_text(child.text) if key == "event_id" else (child.text or "").strip()
        entries.append(entry)
    return entries


def _read_yaml_entries(path: str) -> list:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigurationFault(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return []
    if isinstance(data, dict):
        data = data.get("event_descriptions", [])
    if not isinstance(data, list):
        raise ConfigurationFault(f"{path}: expected a list of event descriptions")
    return data


def parse_descriptions(entries: list) -> DescriptionMap:
    """Validate raw entries against DESCRIPTION_SCHEMA and build a DescriptionMap."""
    validator = jsonschema.Draft202012Validator(DESCRIPTION_SCHEMA)
    descriptions = DescriptionMap()

    for index, entry in enumerate(entries):
        errors = [error.message for error in validator.iter_errors(entry)]
        if errors:
            raise ConfigurationFault(
                f"Event description #{index + 1} is not valid: {entry!r}: {'; '.join(errors)}"
            )
        descriptions.add(EventDescription(
            event_log=entry["event_log"].strip(),
            event_id=entry["event_id"],
            description=entry.get("description") or "",
        ))

    return descriptions


def load_descriptions(path: str | None) -> DescriptionMap:
    """Load the description table at *path*; an empty map when no path is given."""
    if not path:
        return DescriptionMap()
    if not os.path.isfile(path):
        raise ConfigurationFault(f"Event descriptions file not found: {path}")

    if path.lower().endswith(".xml"):
        entries = _read_xml_entries(path)
    else:
        entries = _read_yaml_entries(path)

    descriptions = parse_descriptions(entries)
    logger.info("Loaded %d event description(s) from %s", len(descriptions), path)
    for description in descriptions:
        logger.info(" - %s: %s", description.identity_key, description.description or "NULL")
    return descriptions
