"""Record sources: exported XML files, .evtx log files and live reads through wevtutil.

Every source yields raw event documents (one <Event> element each, control
characters already removed) in the order the underlying log delivers them.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import tempfile
import xml.etree.ElementTree as ET
from datetime import date, timedelta
from threading import Thread
from typing import Callable, Iterator, Sequence

import Evtx.Evtx as evtx
from Evtx.BinaryParser import ParseException

from eventlog_reports.errors import SourceFault
from eventlog_reports.helpers import format_ymd, local_name, strip_control_characters

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT = 300.0  # seconds
CHUNK_SIZE = 64 * 1024
TERMINATE_TIMEOUT = 5.0  # seconds

_END = object()


def build_event_query(event_ids: Sequence[int], start_date: date, end_date: date) -> str:
    """XPath filter for an event log query; the end date is inclusive.

    >>> build_event_query([4624, 4625], date(2024, 1, 1), date(2024, 1, 31))
    "*[System[(EventID=4624 or EventID=4625) and TimeCreated[@SystemTime>='2024-01-01T00:00:00.000Z' and @SystemTime<'2024-02-01T00:00:00.000Z']]]"
    """
    ids_filter = ""
    if event_ids:
        ids_filter = "(" + " or ".join(f"EventID={event_id}" for event_id in event_ids) + ") and "
    start = format_ymd(start_date)
    end = format_ymd(end_date + timedelta(days=1))
    return (
        f"*[System[{ids_filter}TimeCreated[@SystemTime>='{start}T00:00:00.000Z' "
        f"and @SystemTime<'{end}T00:00:00.000Z']]]"
    )


class EventDocumentSplitter:
    """Incrementally cuts a stream of XML text into per-event documents.

    With ``wrap=True`` the stream may hold several top-level <Event> elements
    (wevtutil output); otherwise it is one document whose root holds the
    events (an exported file). A root that is itself an <Event> is returned
    whole. Text that is not well-formed raises a fatal SourceFault.
    """

    def __init__(self, wrap: bool = False):
        self._parser = ET.XMLPullParser(events=("start", "end"))
        self._wrap = wrap
        self._depth = 0
        self._root = None
        if wrap:
            self._parser.feed("<Events>")

    def feed(self, text: str) -> list[str]:
        try:
            self._parser.feed(strip_control_characters(text))
            return self._drain()
        except ET.ParseError as exc:
            raise SourceFault(f"Event stream is not well-formed XML: {exc}") from exc

    def close(self) -> list[str]:
        try:
            if self._wrap:
                self._parser.feed("</Events>")
            self._parser.close()
            return self._drain()
        except ET.ParseError as exc:
            raise SourceFault(f"Event stream is not well-formed XML: {exc}") from exc

    def _drain(self) -> list[str]:
        documents = []
        for event, element in self._parser.read_events():
            if event == "start":
                self._depth += 1
                if self._depth == 1:
                    self._root = element
                continue

            self._depth -= 1
            root_is_event = local_name(self._root.tag) == "Event"
            if self._depth == 1 and not root_is_event:
                if local_name(element.tag) == "Event":
                    documents.append(ET.tostring(element, encoding="unicode"))
                # The container root keeps no finished children.
                self._root.clear()
            elif self._depth == 0 and root_is_event:
                documents.append(ET.tostring(element, encoding="unicode"))
        return documents


def read_exported_xml(path: str, chunk_size: int = CHUNK_SIZE) -> Iterator[str]:
    """Yield each <Event> of an exported XML file, streaming the file in chunks."""
    logger.info("Reading exported events from file: %s", path)
    splitter = EventDocumentSplitter()
    with open(path, "r", encoding="utf-8-sig", errors="replace") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield from splitter.feed(chunk)
    yield from splitter.close()


def read_evtx_file(path: str) -> Iterator[str]:
    """Yield each record of an .evtx log file as event XML, in file order.

    A file that cannot be opened or is not an event log is a fatal
    SourceFault. A single record that cannot be rendered is logged and
    skipped.
    """
    logger.info("Reading event log file: %s", path)
    try:
        with evtx.Evtx(path) as log:
            if not log.get_file_header().check_magic():
                raise SourceFault(f"Not an event log (.evtx) file: {path}")
            for record in log.records():
                try:
                    raw = record.xml()
                except ParseException as exc:
                    logger.warning("Skipping unreadable record at offset %#x: %s", record.offset(), exc)
                    continue
                yield strip_control_characters(raw)
    except (OSError, ValueError, ParseException) as exc:
        raise SourceFault(f"Cannot read event log file {path}: {exc}") from exc


class PullEventSource:
    """Iterates a pull-based reader with a per-read timeout.

    ``reader.read_event(timeout)`` returns one raw document, or None at the
    end of the log. A timeout is fatal. A benign SourceFault is reported to
    *on_benign_fault* and skipped; any other fault propagates.
    """

    def __init__(
        self,
        reader,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        on_benign_fault: Callable[[SourceFault], None] | None = None,
    ):
        self._reader = reader
        self._read_timeout = read_timeout
        self._on_benign_fault = on_benign_fault

    def __iter__(self) -> Iterator[str]:
        while True:
            try:
                raw = self._reader.read_event(self._read_timeout)
            except TimeoutError as exc:
                raise SourceFault(
                    f"Timed out after {self._read_timeout:g}s waiting for the next event record"
                ) from exc
            except SourceFault as fault:
                if not fault.benign:
                    raise
                if self._on_benign_fault is not None:
                    self._on_benign_fault(fault)
                else:
                    logger.warning("Skipping record after benign source fault: %s", fault)
                continue

            if raw is None:
                return
            if not raw.strip():
                continue
            yield raw


class WevtutilReader:
    """Reads rendered event XML of a live log from ``wevtutil qe`` in a subprocess.

    A pump thread splits stdout into event documents and queues them, so
    read_event() can wait with a timeout. wevtutil's exit code is a Win32
    error code and is carried on the resulting SourceFault.
    """

    def __init__(
        self,
        log_name: str,
        query: str,
        computer: str | None = None,
        reverse_direction: bool = True,
        executable: str = "wevtutil",
    ):
        self._log_name = log_name
        self._query = query
        self._computer = computer
        self._reverse_direction = reverse_direction
        self._executable = executable
        self._queue: queue.Queue = queue.Queue()
        self._process = None
        self._pump_thread = None
        self._stderr = None

    def command(self) -> list[str]:
        cmd = [
            self._executable, "qe", self._log_name,
            f"/q:{self._query}",
            "/f:xml",
            f"/rd:{'true' if self._reverse_direction else 'false'}",
        ]
        if self._computer:
            cmd.append(f"/r:{self._computer}")
        return cmd

    def start(self):
        cmd = self.command()
        logger.info("Event query: %s", self._query)
        self._stderr = tempfile.TemporaryFile()
        try:
            self._process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=self._stderr,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            self._stderr.close()
            raise SourceFault(f"Cannot start {self._executable}: {exc}") from exc
        self._pump_thread = Thread(target=self._pump, daemon=True)
        self._pump_thread.start()

    def _pump(self):
        splitter = EventDocumentSplitter(wrap=True)
        try:
            for line in self._process.stdout:
                for document in splitter.feed(line):
                    self._queue.put(document)
            for document in splitter.close():
                self._queue.put(document)

            returncode = self._process.wait()
            if returncode != 0:
                self._stderr.seek(0)
                message = self._stderr.read().decode("utf-8", errors="replace").strip()
                self._queue.put(SourceFault(
                    message or f"{self._executable} exited with code {returncode}",
                    code=returncode,
                ))
        except SourceFault as fault:
            self._queue.put(fault)
        finally:
            self._queue.put(_END)

    def read_event(self, timeout: float) -> str | None:
        if self._process is None:
            self.start()
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"No event record within {timeout}s") from None

        if item is _END:
            # Keep answering "end of log" on further reads.
            self._queue.put(_END)
            return None
        if isinstance(item, SourceFault):
            raise item
        return item

    def close(self):
        if self._process is not None and self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=TERMINATE_TIMEOUT)
            except subprocess.TimeoutExpired:
                logger.warning("%s did not exit after terminate, killing it", self._executable)
                self._process.kill()
                self._process.wait()
        if self._pump_thread is not None:
            self._pump_thread.join(timeout=5)
        if self._stderr is not None:
            self._stderr.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
