"""Tests for output formatting utilities."""

import json
from datetime import datetime

import pytest
import yaml

from agentctl.core.output import OutputFormat, OutputFormatter, format_duration, status_markup


class TestFormatDuration:
    """Tests for format_duration utility."""

    def test_seconds(self):
        assert format_duration(30) == "30.0s"
        assert format_duration(59.9) == "59.9s"

    def test_minutes(self):
        assert format_duration(60) == "1.0m"
        assert format_duration(120) == "2.0m"
        assert format_duration(90) == "1.5m"

    def test_hours(self):
        assert format_duration(3600) == "1.0h"
        assert format_duration(7200) == "2.0h"

    def test_days(self):
        assert format_duration(86400) == "1.0d"
        assert format_duration(172800) == "2.0d"


class TestOutputFormatter:
    """Tests for OutputFormatter class."""

    def test_quiet_mode_suppresses_output(self, capsys):
        formatter = OutputFormatter(quiet=True, color=False)
        formatter.print("test message")
        formatter.print_info("info message")
        formatter.print_warning("warning message")
        formatter.print_success("success message")
        captured = capsys.readouterr()
        assert "test message" not in captured.out
        assert "info message" not in captured.out

    def test_error_always_prints(self, capsys):
        formatter = OutputFormatter(quiet=True, color=False)
        formatter.print_error("error message")
        captured = capsys.readouterr()
        assert "error message" in captured.err

    def test_json_output(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.JSON, color=False)
        data = {"name": "test", "value": 123}
        formatter.print_data(data)
        captured = capsys.readouterr()
        parsed = json.loads(captured.out)
        assert parsed == data

    def test_json_output_list(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.JSON, color=False)
        data = [{"name": "a"}, {"name": "b"}]
        formatter.print_data(data)
        captured = capsys.readouterr()
        parsed = json.loads(captured.out)
        assert parsed == data

    def test_yaml_output(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.YAML, color=False)
        data = {"name": "test", "value": 123}
        formatter.print_data(data)
        captured = capsys.readouterr()
        parsed = yaml.safe_load(captured.out)
        assert parsed == data

    def test_raw_output_dict(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.RAW, color=False)
        data = {"name": "test", "value": 123}
        formatter.print_data(data)
        captured = capsys.readouterr()
        assert "name: test" in captured.out
        assert "value: 123" in captured.out

    def test_raw_output_list(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.RAW, color=False)
        data = ["item1", "item2", "item3"]
        formatter.print_data(data)
        captured = capsys.readouterr()
        assert "item1" in captured.out
        assert "item2" in captured.out
        assert "item3" in captured.out

    def test_raw_output_rows(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.RAW, color=False)
        data = [{"id": "d41c02aa", "status": "completed"}, {"id": "9b1e77f0", "status": "failed"}]
        formatter.print_data(data)
        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["id", "status"]
        assert lines[2].split() == ["9b1e77f0", "failed"]

    def test_header_suppressed_when_quiet(self, capsys):
        formatter = OutputFormatter(quiet=True, color=False)
        formatter.print_header("Deployment: d41c02aa")
        assert capsys.readouterr().out == ""

    def test_confirm_quiet_returns_default(self):
        formatter = OutputFormatter(quiet=True, color=False)
        assert formatter.confirm("Rollback?", default=True) is True

    def test_print_fields_skips_unset(self, capsys):
        formatter = OutputFormatter(color=False)
        formatter.print_fields({"Version": "1.4.0", "Previous version": None})
        out = capsys.readouterr().out
        assert "Version: 1.4.0" in out
        assert "Previous version" not in out

    def test_raw_cells(self, capsys):
        formatter = OutputFormatter(format=OutputFormat.RAW, color=False)
        formatter.print_data({"required": True, "error": None})
        out = capsys.readouterr().out
        assert "required: yes" in out
        assert "error: -" in out

    def test_log_line_not_parsed_as_markup(self, capsys):
        formatter = OutputFormatter(color=False)
        formatter.print_log_line(datetime(2024, 5, 1, 12, 30), "error", "check-runner", "expected [200] got 503")
        out = capsys.readouterr().out
        assert "12:30:00" in out
        assert "ERROR" in out
        assert "expected [200] got 503" in out


class TestStatusMarkup:
    """Tests for status styling."""

    def test_known_status(self):
        assert status_markup("completed") == "[green]completed[/green]"
        assert status_markup("rolled_back") == "[yellow]rolled_back[/yellow]"

    def test_unknown_status_is_blue(self):
        assert status_markup("deploying") == "[blue]deploying[/blue]"


class TestOutputFormat:
    """Tests for OutputFormat enum."""

    def test_values(self):
        assert OutputFormat.TABLE.value == "table"
        assert OutputFormat.JSON.value == "json"
        assert OutputFormat.YAML.value == "yaml"
        assert OutputFormat.RAW.value == "raw"

    def test_string_comparison(self):
        assert OutputFormat.TABLE == "table"
        assert OutputFormat.JSON == "json"
