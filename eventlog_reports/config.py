"""Run configuration from CLI args, env vars, and an optional YAML file.

Precedence, highest first: command line, environment, YAML file, defaults.
Every problem found here is a ConfigurationFault and stops the run before
any record is read.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

import yaml

from eventlog_reports.errors import ConfigurationFault
from eventlog_reports.renderer import DEFAULT_RENDER_WORKERS, ReportFormat, parse_report_format
from eventlog_reports.session import DEFAULT_PROGRESS_INTERVAL
from eventlog_reports.sources import DEFAULT_READ_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_START_DATE = date(2010, 1, 1)
DATE_FORMAT = "%Y-%m-%d"
DEFAULT_REPORT_DIR = os.path.join("~", "Desktop", "EventLogParser")

SOURCE_EXPORTED_XML = "xml"
SOURCE_EVTX_FILE = "evtx"
SOURCE_LIVE = "live"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class RunConfig:
    file_path: str = ""
    computer_fqdn: str = ""
    log_name: str = ""
    event_ids: tuple[int, ...] = ()
    start_date: date = DEFAULT_START_DATE
    end_date: date = field(default_factory=_today_utc)
    report_format: ReportFormat = ReportFormat.CSV
    output_dir: str = ""
    descriptions_path: str = ""
    reverse_direction: bool = True
    read_timeout_seconds: float = DEFAULT_READ_TIMEOUT
    render_workers: int = DEFAULT_RENDER_WORKERS
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL

    @property
    def source_kind(self) -> str:
        if self.computer_fqdn:
            return SOURCE_LIVE
        if self.file_path.lower().endswith(".xml"):
            return SOURCE_EXPORTED_XML
        return SOURCE_EVTX_FILE


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as exc:
        raise ConfigurationFault(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationFault(f"{path}: expected a mapping of settings")
    logger.info("Loaded YAML config from %s", path)
    return data


def parse_event_ids(text: str | None) -> tuple[int, ...]:
    """'4624,4625;4634' -> (4624, 4625, 4634). Unparseable items are skipped."""
    if text is None:
        return ()
    ids = []
    for item in text.replace(";", ",").split(","):
        item = item.strip()
        if not item:
            continue
        try:
            ids.append(int(item))
        except ValueError:
            logger.warning("Ignoring invalid event id: %s", item)
    if not ids:
        raise ConfigurationFault("--events specified without required event id's")
    return tuple(ids)


def parse_date(text: str, option: str) -> date:
    if not text or not text.strip():
        raise ConfigurationFault(f"{option} specified without required value")
    try:
        return datetime.strptime(text.strip(), DATE_FORMAT).date()
    except ValueError:
        raise ConfigurationFault(f"Invalid {option}: {text} (expected YYYY-MM-DD)") from None


def _setting(name: str, cli_value, env_name: str, yaml_data: dict, environ, default, convert):
    """Resolve one setting by precedence and convert it, wrapping bad values."""
    if cli_value is not None:
        raw = cli_value
    elif env_name in environ:
        raw = environ[env_name]
    elif name in yaml_data and yaml_data[name] is not None:
        raw = yaml_data[name]
    else:
        return default
    try:
        return convert(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationFault(f"Invalid value for {name}: {raw!r}") from exc


def _to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return _parse_bool(str(value))


def _validate_source(file_path: str, computer: str, log_name: str):
    if file_path and computer:
        raise ConfigurationFault("Must specify either --file or --computer, but not both.")
    if not file_path and not computer:
        raise ConfigurationFault("Must specify either --file or --computer.")
    if computer and not log_name:
        raise ConfigurationFault("Must specify --log-name with --computer.")

    if file_path:
        if not os.path.isfile(file_path):
            raise ConfigurationFault(f"File does not exist: {file_path}")
        if not file_path.lower().endswith((".xml", ".evtx")):
            raise ConfigurationFault(f"File: {file_path} must be an .XML or .EVTX file.")

    if computer and computer.count(".") < 2:
        raise ConfigurationFault(
            f"Computer: {computer} must be in fqdn format: computername.company.com"
        )


def load_config(cli_args, yaml_data: dict | None = None, environ=None) -> RunConfig:
    """Build and validate a RunConfig from parsed CLI args, YAML data and env vars."""
    yaml_data = yaml_data or {}
    environ = os.environ if environ is None else environ

    file_path = (getattr(cli_args, "file", None) or "").strip()
    computer = (getattr(cli_args, "computer", None) or "").strip().upper()
    log_name = (getattr(cli_args, "log_name", None) or "").strip()
    _validate_source(file_path, computer, log_name)

    events = getattr(cli_args, "events", None)
    event_ids = parse_event_ids(events) if events is not None else ()

    start_text = getattr(cli_args, "start_date", None)
    end_text = getattr(cli_args, "end_date", None)
    start_date = parse_date(start_text, "--start-date") if start_text is not None else DEFAULT_START_DATE
    end_date = parse_date(end_text, "--end-date") if end_text is not None else _today_utc()
    if end_date < start_date:
        raise ConfigurationFault(
            f"Start date: {start_date.isoformat()} must be less than end date: {end_date.isoformat()}"
        )

    format_text = getattr(cli_args, "format", None)
    if format_text is None:
        format_text = yaml_data.get("format", ReportFormat.CSV.value)
    report_format = parse_report_format(str(format_text))

    config = RunConfig(
        file_path=file_path,
        computer_fqdn=computer,
        log_name=log_name,
        event_ids=event_ids,
        start_date=start_date,
        end_date=end_date,
        report_format=report_format,
        output_dir=_setting("output_dir", getattr(cli_args, "output_dir", None),
                            "EVENTLOG_OUTPUT_DIR", yaml_data, environ, "", str),
        descriptions_path=_setting("descriptions", getattr(cli_args, "descriptions", None),
                                   "EVENTLOG_DESCRIPTIONS", yaml_data, environ, "", str),
        reverse_direction=_setting("reverse_direction", None, "EVENTLOG_REVERSE_DIRECTION",
                                   yaml_data, environ, True, _to_bool),
        read_timeout_seconds=_setting("read_timeout_seconds", None, "EVENTLOG_READ_TIMEOUT",
                                      yaml_data, environ, DEFAULT_READ_TIMEOUT, float),
        render_workers=_setting("render_workers", None, "EVENTLOG_RENDER_WORKERS",
                                yaml_data, environ, DEFAULT_RENDER_WORKERS, int),
        progress_interval=_setting("progress_interval", None, "EVENTLOG_PROGRESS_INTERVAL",
                                   yaml_data, environ, DEFAULT_PROGRESS_INTERVAL, int),
    )

    if config.read_timeout_seconds <= 0:
        raise ConfigurationFault("read_timeout_seconds must be greater than 0")
    if config.render_workers < 1:
        raise ConfigurationFault("render_workers must be at least 1")
    if config.progress_interval < 0:
        raise ConfigurationFault("progress_interval must not be negative")
    return config


def resolve_output_dir(config: RunConfig) -> str:
    """Configured directory, else the input file's directory, else ~/Desktop/EventLogParser."""
    if config.output_dir:
        return os.path.expanduser(config.output_dir)
    if config.file_path:
        return os.path.dirname(os.path.abspath(config.file_path))
    return os.path.expanduser(DEFAULT_REPORT_DIR)
