"""Tests for eventlog_reports.config."""

import argparse
import os
import tempfile
import unittest
from datetime import date

from eventlog_reports.config import (
    DEFAULT_START_DATE,
    SOURCE_EVTX_FILE,
    SOURCE_EXPORTED_XML,
    SOURCE_LIVE,
    RunConfig,
    load_config,
    load_yaml_config,
    parse_event_ids,
    resolve_output_dir,
)
from eventlog_reports.errors import ConfigurationFault
from eventlog_reports.renderer import DEFAULT_RENDER_WORKERS, ReportFormat
from eventlog_reports.sources import DEFAULT_READ_TIMEOUT


def _args(**kwargs):
    defaults = dict(
        file=None, computer=None, log_name=None, events=None, start_date=None,
        end_date=None, format=None, output_dir=None, descriptions=None, config=None,
    )
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


class ConfigTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp_dir = self._tmp.name
        self.xml_file = os.path.join(self.tmp_dir, "export.xml")
        with open(self.xml_file, "w", encoding="utf-8") as f:
            f.write("<Events/>")

    def tearDown(self):
        self._tmp.cleanup()

    def write_file(self, name, content):
        path = os.path.join(self.tmp_dir, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path


class TestLoadConfigDefaults(ConfigTestCase):
    def test_defaults(self):
        config = load_config(_args(file=self.xml_file), environ={})
        self.assertEqual(config.file_path, self.xml_file)
        self.assertEqual(config.event_ids, ())
        self.assertEqual(config.start_date, DEFAULT_START_DATE)
        self.assertEqual(config.report_format, ReportFormat.CSV)
        self.assertTrue(config.reverse_direction)
        self.assertEqual(config.read_timeout_seconds, DEFAULT_READ_TIMEOUT)
        self.assertEqual(config.render_workers, DEFAULT_RENDER_WORKERS)
        self.assertEqual(config.progress_interval, 5000)
        self.assertEqual(config.source_kind, SOURCE_EXPORTED_XML)

    def test_frozen(self):
        config = load_config(_args(file=self.xml_file), environ={})
        with self.assertRaises(AttributeError):
            config.file_path = "other.xml"


class TestSourceSelection(ConfigTestCase):
    def test_both_file_and_computer(self):
        with self.assertRaisesRegex(ConfigurationFault, "not both"):
            load_config(_args(file=self.xml_file, computer="dc01.corp.example.com", log_name="Security"),
                        environ={})

    def test_neither_file_nor_computer(self):
        with self.assertRaisesRegex(ConfigurationFault, "either --file or --computer"):
            load_config(_args(), environ={})

    def test_computer_requires_log_name(self):
        with self.assertRaisesRegex(ConfigurationFault, "--log-name"):
            load_config(_args(computer="dc01.corp.example.com"), environ={})

    def test_computer_must_be_fqdn(self):
        with self.assertRaisesRegex(ConfigurationFault, "fqdn"):
            load_config(_args(computer="dc01.example", log_name="Security"), environ={})

    def test_live_source(self):
        config = load_config(_args(computer="dc01.corp.example.com", log_name="Security"), environ={})
        self.assertEqual(config.computer_fqdn, "DC01.CORP.EXAMPLE.COM")
        self.assertEqual(config.source_kind, SOURCE_LIVE)

    def test_missing_file(self):
        with self.assertRaisesRegex(ConfigurationFault, "does not exist"):
            load_config(_args(file=os.path.join(self.tmp_dir, "missing.xml")), environ={})

    def test_wrong_extension(self):
        path = self.write_file("events.txt", "")
        with self.assertRaisesRegex(ConfigurationFault, r"\.XML or \.EVTX"):
            load_config(_args(file=path), environ={})

    def test_evtx_file(self):
        path = self.write_file("Security.EVTX", "")
        config = load_config(_args(file=path), environ={})
        self.assertEqual(config.source_kind, SOURCE_EVTX_FILE)


class TestFilters(ConfigTestCase):
    def test_dates(self):
        config = load_config(_args(file=self.xml_file, start_date="2024-01-01", end_date="2024-01-31"),
                             environ={})
        self.assertEqual(config.start_date, date(2024, 1, 1))
        self.assertEqual(config.end_date, date(2024, 1, 31))

    def test_same_start_and_end(self):
        config = load_config(_args(file=self.xml_file, start_date="2024-01-01", end_date="2024-01-01"),
                             environ={})
        self.assertEqual(config.start_date, config.end_date)

    def test_start_after_end(self):
        with self.assertRaisesRegex(ConfigurationFault, "must be less than end date"):
            load_config(_args(file=self.xml_file, start_date="2024-02-01", end_date="2024-01-01"),
                        environ={})

    def test_invalid_date(self):
        with self.assertRaisesRegex(ConfigurationFault, "--start-date"):
            load_config(_args(file=self.xml_file, start_date="01/02/2024"), environ={})

    def test_events(self):
        config = load_config(_args(file=self.xml_file, events="4624, 4625;4634"), environ={})
        self.assertEqual(config.event_ids, (4624, 4625, 4634))

    def test_parse_event_ids_skips_garbage(self):
        self.assertEqual(parse_event_ids("4624,abc,,4625"), (4624, 4625))

    def test_events_without_ids(self):
        with self.assertRaises(ConfigurationFault):
            load_config(_args(file=self.xml_file, events="abc;"), environ={})


class TestFormatAndPrecedence(ConfigTestCase):
    def test_format_case_insensitive(self):
        config = load_config(_args(file=self.xml_file, format="Xml"), environ={})
        self.assertEqual(config.report_format, ReportFormat.XML)

    def test_invalid_format(self):
        with self.assertRaisesRegex(ConfigurationFault, "Invalid report format"):
            load_config(_args(file=self.xml_file, format="json"), environ={})

    def test_format_from_yaml(self):
        config = load_config(_args(file=self.xml_file), {"format": "XML"}, environ={})
        self.assertEqual(config.report_format, ReportFormat.XML)

    def test_yaml_settings(self):
        yaml_data = {
            "output_dir": "/srv/reports",
            "reverse_direction": False,
            "read_timeout_seconds": 30,
            "render_workers": 8,
            "progress_interval": 100,
        }
        config = load_config(_args(file=self.xml_file), yaml_data, environ={})
        self.assertEqual(config.output_dir, "/srv/reports")
        self.assertFalse(config.reverse_direction)
        self.assertEqual(config.read_timeout_seconds, 30.0)
        self.assertEqual(config.render_workers, 8)
        self.assertEqual(config.progress_interval, 100)

    def test_env_overrides_yaml(self):
        environ = {"EVENTLOG_RENDER_WORKERS": "2", "EVENTLOG_REVERSE_DIRECTION": "false"}
        config = load_config(_args(file=self.xml_file), {"render_workers": 8}, environ=environ)
        self.assertEqual(config.render_workers, 2)
        self.assertFalse(config.reverse_direction)

    def test_cli_overrides_env(self):
        environ = {"EVENTLOG_OUTPUT_DIR": "/from/env"}
        config = load_config(_args(file=self.xml_file, output_dir="/from/cli"), environ=environ)
        self.assertEqual(config.output_dir, "/from/cli")

    def test_invalid_numeric_setting(self):
        with self.assertRaisesRegex(ConfigurationFault, "render_workers"):
            load_config(_args(file=self.xml_file), environ={"EVENTLOG_RENDER_WORKERS": "many"})

    def test_out_of_range_settings(self):
        for environ in ({"EVENTLOG_RENDER_WORKERS": "0"},
                        {"EVENTLOG_READ_TIMEOUT": "0"},
                        {"EVENTLOG_PROGRESS_INTERVAL": "-1"}):
            with self.subTest(environ=environ):
                with self.assertRaises(ConfigurationFault):
                    load_config(_args(file=self.xml_file), environ=environ)


class TestYamlFile(ConfigTestCase):
    def test_load(self):
        path = self.write_file("config.yml", "format: XML\nrender_workers: 3\n")
        self.assertEqual(load_yaml_config(path), {"format": "XML", "render_workers": 3})

    def test_no_path(self):
        self.assertEqual(load_yaml_config(None), {})

    def test_missing_file_uses_defaults(self):
        self.assertEqual(load_yaml_config(os.path.join(self.tmp_dir, "missing.yml")), {})

    def test_empty_file(self):
        path = self.write_file("empty.yml", "")
        self.assertEqual(load_yaml_config(path), {})

    def test_invalid_yaml(self):
        path = self.write_file("bad.yml", "format: [XML\n")
        with self.assertRaises(ConfigurationFault):
            load_yaml_config(path)

    def test_not_a_mapping(self):
        path = self.write_file("list.yml", "- a\n- b\n")
        with self.assertRaises(ConfigurationFault):
            load_yaml_config(path)


class TestResolveOutputDir(unittest.TestCase):
    def test_configured(self):
        config = RunConfig(file_path="/data/export.xml", output_dir="/srv/reports")
        self.assertEqual(resolve_output_dir(config), "/srv/reports")

    def test_next_to_input_file(self):
        config = RunConfig(file_path="/data/export.xml")
        self.assertEqual(resolve_output_dir(config), os.path.abspath("/data"))

    def test_live_default(self):
        config = RunConfig(computer_fqdn="DC01.CORP.EXAMPLE.COM", log_name="Security")
        self.assertEqual(resolve_output_dir(config),
                         os.path.expanduser(os.path.join("~", "Desktop", "EventLogParser")))


if __name__ == "__main__":
    unittest.main()
