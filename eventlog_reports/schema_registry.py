"""Per-identity ordered set of dynamic field names, discovered while ingesting."""

from __future__ import annotations

from eventlog_reports.helpers import fold
from eventlog_reports.models import EventRecord


class SchemaRegistry:
    """Case-insensitive, insertion-ordered column sets keyed by identity key.

    Entries only grow: a name is added once, in first-seen order and spelling,
    and is never removed or moved.
    """

    def __init__(self):
        # folded key -> {folded column name: column name as first seen}
        self._columns: dict[str, dict[str, str]] = {}
        self._frozen = False

    def observe(self, identity_key: str, field_name: str):
        """Add *field_name* to the key's column set unless already present."""
        if self._frozen:
            raise RuntimeError("Schema registry is frozen")
        name = field_name.strip() if field_name else ""
        columns = self._columns.setdefault(fold(identity_key), {})
        if name:
            columns.setdefault(fold(name), name)

    def observe_record(self, record: EventRecord):
        """Register the key and every named data field of an accepted record."""
        if self._frozen:
            raise RuntimeError("Schema registry is frozen")
        self._columns.setdefault(fold(record.identity_key), {})
        for data_field in record.data_fields:
            self.observe(record.identity_key, data_field.name)

    def columns_for(self, identity_key: str) -> tuple[str, ...]:
        return tuple(self._columns.get(fold(identity_key), {}).values())

    def freeze(self):
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, identity_key: str) -> bool:
        return fold(identity_key) in self._columns

    def __len__(self) -> int:
        return len(self._columns)
