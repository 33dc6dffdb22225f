#!/usr/bin/env python3
"""eventlog-reports: group Windows event log records into per-event CSV/XML reports."""

import argparse
import logging
import sys
import time

from eventlog_reports.config import (
    SOURCE_EVTX_FILE,
    SOURCE_EXPORTED_XML,
    RunConfig,
    load_config,
    load_yaml_config,
    resolve_output_dir,
)
from eventlog_reports.descriptions import DescriptionMap, load_descriptions
from eventlog_reports.errors import ConfigurationFault, RenderFault, SourceFault
from eventlog_reports.renderer import ReportRenderer
from eventlog_reports.session import RecordFilter, Session
from eventlog_reports.sources import (
    PullEventSource,
    WevtutilReader,
    build_event_query,
    read_evtx_file,
    read_exported_xml,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [EVENTLOG] %(levelname)s %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAULT = 1
EXIT_CONFIG = 2


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eventlog-reports",
        description="Group Windows event log records by event id and write CSV or XML reports.",
    )
    parser.add_argument(
        "--file",
        help="Exported events (.xml) or an event log file (.evtx)",
    )
    parser.add_argument(
        "--computer",
        help="Read the live log of this machine (fqdn: computername.company.com)",
    )
    parser.add_argument(
        "--log-name",
        help="Event log name, required with --computer (e.g. Security)",
    )
    parser.add_argument(
        "--events",
        help="Event ids to include, comma or semicolon separated (default: all)",
    )
    parser.add_argument(
        "--start-date",
        help="First day to include, YYYY-MM-DD (default: 2010-01-01)",
    )
    parser.add_argument(
        "--end-date",
        help="Last day to include, YYYY-MM-DD (default: today, UTC)",
    )
    parser.add_argument(
        "--format",
        help="Report format: CSV or XML (default: CSV)",
    )
    parser.add_argument(
        "--output-dir",
        help="Directory for report files (default: next to --file, else ~/Desktop/EventLogParser)",
    )
    parser.add_argument(
        "--descriptions",
        help="Event description table (.yml or .xml) used to name report files",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to YAML config file",
    )
    return parser


def _ingest(config: RunConfig, session: Session):
    """Feed every record of the configured source into *session*, in source order."""
    if config.source_kind == SOURCE_EXPORTED_XML:
        session.ingest_all(read_exported_xml(config.file_path))
        return
    if config.source_kind == SOURCE_EVTX_FILE:
        session.ingest_all(read_evtx_file(config.file_path))
        return

    query = build_event_query(config.event_ids, config.start_date, config.end_date)
    reader = WevtutilReader(config.log_name, query, computer=config.computer_fqdn,
                            reverse_direction=config.reverse_direction)

    logger.info("EventLogQueryReverseDirection: %s", config.reverse_direction)
    with reader:
        source = PullEventSource(reader, config.read_timeout_seconds,
                                 on_benign_fault=session.note_source_fault)
        session.ingest_all(source)


def run(config: RunConfig, descriptions: DescriptionMap | None = None) -> int:
    """Ingest, then render. Returns the process exit status."""
    logger.info(
        "File: %s Computer: %s LogName: %s EventIds: %s Start Date: %s End Date: %s Format: %s",
        config.file_path or "N/A",
        config.computer_fqdn or "N/A",
        config.log_name or "N/A",
        ",".join(str(i) for i in config.event_ids) or "<All Events>",
        config.start_date.isoformat(),
        config.end_date.isoformat(),
        config.report_format.name,
    )

    record_filter = None
    if config.source_kind in (SOURCE_EXPORTED_XML, SOURCE_EVTX_FILE):
        record_filter = RecordFilter(frozenset(config.event_ids), config.start_date, config.end_date)
    session = Session(descriptions, record_filter, config.progress_interval)

    started = time.perf_counter()
    cpu_started = time.process_time()
    status = EXIT_OK
    results = []
    try:
        _ingest(config, session)
        renderer = ReportRenderer.from_session(
            session, resolve_output_dir(config), config.report_format, config.render_workers,
        )
        results = renderer.render_all()
    except SourceFault as exc:
        logger.error("Error reading events: %s", exc)
        status = EXIT_FAULT
    except RenderFault as exc:
        logger.error("Error creating reports: %s", exc)
        status = EXIT_FAULT
    finally:
        stats = session.stats
        logger.info(
            "Events read: %d accepted: %d malformed: %d invalid: %d filtered: %d source faults: %d",
            stats.read, stats.accepted, stats.malformed, stats.invalid, stats.filtered,
            stats.source_faults,
        )
        logger.info(
            "Groups: %d Reports written: %d Report errors: %d",
            len(session.store), sum(1 for r in results if r.ok), sum(1 for r in results if not r.ok),
        )
        logger.info("Finished. Time required: %.2fs Processor time: %.2fs",
                    time.perf_counter() - started, time.process_time() - cpu_started)

    return status


def main(argv=None) -> int:
    parser = build_cli_parser()
    args = parser.parse_args(argv)

    try:
        yaml_data = load_yaml_config(args.config)
        config = load_config(args, yaml_data)
        descriptions = load_descriptions(config.descriptions_path)
    except ConfigurationFault as exc:
        logger.error("%s", exc)
        parser.print_usage(sys.stderr)
        return EXIT_CONFIG

    return run(config, descriptions)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
