"""Error taxonomy for ingestion, rendering and startup configuration."""

from __future__ import annotations

import re

# Windows error codes a live reader raises for transient buffer sizing issues.
ERROR_INSUFFICIENT_BUFFER = 122
RPC_S_INVALID_BOUND = 1734

BENIGN_FAULT_CODES = frozenset({ERROR_INSUFFICIENT_BUFFER, RPC_S_INVALID_BOUND})

_BENIGN_FAULT_MESSAGES = (
    re.compile(r"The array bounds are invalid", re.IGNORECASE),
    re.compile(r"The data area passed to a system call is too small", re.IGNORECASE),
)


class EventLogReportError(Exception):
    """Base class for every error raised by this package."""


class MalformedInput(EventLogReportError):
    """Raised when a raw event document is empty or not well-formed XML."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ValidationFailure(EventLogReportError):
    """A parsed record failed the required-field checks."""

    def __init__(self, violations, raw: str = ""):
        names = ", ".join(v.field for v in violations)
        super().__init__(f"Event is not valid: {names}")
        self.violations = tuple(violations)
        self.raw = raw


class SourceFault(EventLogReportError):
    """Raised by a record source when it cannot deliver the next record."""

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code

    @property
    def benign(self) -> bool:
        return is_benign_fault(self)


class RenderFault(EventLogReportError):
    """Raised when a group's report cannot be written."""

    def __init__(self, message: str, identity_key: str = ""):
        super().__init__(message)
        self.identity_key = identity_key


class ConfigurationFault(EventLogReportError):
    """Raised for invalid startup input; the run aborts before ingestion."""


def is_benign_fault(fault: SourceFault) -> bool:
    """True when the source fault is a known transient that can be skipped."""
    if fault.code is not None and fault.code in BENIGN_FAULT_CODES:
        return True
    message = str(fault)
    return any(pattern.search(message) for pattern in _BENIGN_FAULT_MESSAGES)
