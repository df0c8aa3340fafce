"""Tests for the stdin relay command."""

from __future__ import annotations

import logging
from argparse import Namespace
from io import StringIO
from pathlib import Path
from unittest.mock import patch

import pytest

from graphite_client.aggregator import Aggregator
from graphite_client.config import Config
from graphite_client.relay import RelayCommand, cmd_relay, parse_command, relay_lines
from graphite_client.transport import GraphiteClient, TransportError


class NullTransport:
    def send_buffer(self, buffer: bytes) -> int:
        return len(buffer)

    def reconnect(self) -> None:
        pass


@pytest.fixture
def agg():
    return Aggregator(Config(), NullTransport())


class TestParseCommand:
    """Tests for parsing relay lines."""

    def test_sum(self):
        """Test a sum command with a value."""
        assert parse_command("sum requests 5\n") == RelayCommand("sum", "requests", 5)

    def test_commands_without_value(self):
        """Test inc, on and off take only a path."""
        assert parse_command("inc hits") == RelayCommand("inc", "hits")
        assert parse_command("on worker.busy") == RelayCommand("on", "worker.busy")
        assert parse_command("OFF worker.busy") == RelayCommand("off", "worker.busy")

    def test_negative_value(self):
        """Test negative integers are accepted."""
        assert parse_command("avg delta -3").value == -3

    @pytest.mark.parametrize("line", ["", "   \n", "# a comment"])
    def test_blank_and_comment_lines(self, line):
        """Test lines without a command are skipped."""
        assert parse_command(line) is None

    def test_unknown_command(self):
        """Test an unknown command is rejected."""
        with pytest.raises(ValueError) as exc_info:
            parse_command("max latency 5")
        assert "Unknown command 'max'" in str(exc_info.value)

    def test_missing_value(self):
        """Test a value is required for sum."""
        with pytest.raises(ValueError) as exc_info:
            parse_command("sum requests")
        assert "sum <path> <int>" in str(exc_info.value)

    def test_extra_value(self):
        """Test inc does not take a value."""
        with pytest.raises(ValueError):
            parse_command("inc requests 2")

    def test_non_integer_value(self):
        """Test values must be integers."""
        with pytest.raises(ValueError) as exc_info:
            parse_command("avg latency 1.5")
        assert "Invalid integer value '1.5'" in str(exc_info.value)


class TestRelayLines:
    """Tests for feeding lines into an aggregator."""

    def test_applies_every_command(self, agg):
        """Test each command reaches its aggregator entry point."""
        lines = [
            "sum bytes 512\n",
            "sum bytes 512\n",
            "inc requests\n",
            "avg latency 2\n",
            "avg latency 4\n",
            "on busy\n",
            "off idle\n",
        ]

        applied, rejected = relay_lines(lines, agg)

        metrics = agg.get_metrics()
        assert (applied, rejected) == (7, 0)
        assert metrics["bytes"].calculate() == "1024"
        assert metrics["requests"].calculate() == "1"
        assert metrics["latency"].calculate() == "3.000000"
        assert metrics["busy"].calculate() == "1"
        assert metrics["idle"].calculate() == "0"

    def test_skips_invalid_lines(self, agg, caplog):
        """Test bad lines are logged and counted."""
        lines = ["sum a 1\n", "bogus\n", "# note\n", "sum a x\n", "inc a\n"]

        with caplog.at_level(logging.WARNING, logger="graphite_client.relay"):
            applied, rejected = relay_lines(lines, agg)

        assert (applied, rejected) == (2, 2)
        assert agg.get_metrics()["a"].calculate() == "2"
        assert "Line 2" in caplog.text
        assert "Line 4" in caplog.text

    def test_rejects_kind_conflicts(self, agg):
        """Test a status command on a sum path is rejected."""
        applied, rejected = relay_lines(["sum a 1\n", "on a\n"], agg)
        assert (applied, rejected) == (1, 1)
        assert agg.get_metrics()["a"].calculate() == "1"


class TestCmdRelay:
    """Tests for the relay command handler."""

    def _args(self, tmp_path: Path, interval: float | None = 60.0) -> Namespace:
        return Namespace(
            config=str(tmp_path / "missing.toml"),
            protocol=None,
            interval=interval,
        )

    def test_flushes_at_end_of_input(self, tmp_path, capsys):
        """Test everything read is sent once stdin is exhausted."""
        sent: list[bytes] = []

        def fake_send(self, buffer):
            sent.append(buffer)
            return len(buffer)

        stdin = StringIO("sum requests 5\nsum requests 3\nbad line\n")
        with patch("sys.stdin", stdin), patch.object(
            GraphiteClient, "send_buffer", autospec=True, side_effect=fake_send
        ):
            result = cmd_relay(self._args(tmp_path))

        assert result == 0
        assert len(sent) == 1
        assert sent[0].decode().startswith("requests 8 ")
        assert "Relayed 2 command(s), rejected 1" in capsys.readouterr().err

    def test_applies_namespace(self, tmp_path):
        """Test the configured namespace prefixes relayed paths."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('[graphite]\nnamespace = "app"\n')
        sent: list[bytes] = []

        def fake_send(self, buffer):
            sent.append(buffer)
            return len(buffer)

        args = Namespace(config=str(config_file), protocol=None, interval=None)
        with patch("sys.stdin", StringIO("inc hits\n")), patch.object(
            GraphiteClient, "send_buffer", autospec=True, side_effect=fake_send
        ):
            assert cmd_relay(args) == 0

        assert sent[0].decode().startswith("app.hits 1 ")

    def test_retries_once_then_fails(self, tmp_path, capsys):
        """Test a failing final flush is retried once and reported."""
        with patch("sys.stdin", StringIO("inc hits\n")), patch.object(
            GraphiteClient,
            "send_buffer",
            side_effect=TransportError("Connection refused"),
        ) as mock_send, patch.object(GraphiteClient, "reconnect") as mock_reconnect:
            result = cmd_relay(self._args(tmp_path))

        assert result == 1
        assert mock_send.call_count == 2
        mock_reconnect.assert_called_once()
        assert "Connection refused" in capsys.readouterr().err

    @pytest.mark.parametrize("interval", [0.0, -1.0])
    def test_rejects_non_positive_interval(self, tmp_path, capsys, interval):
        """Test a zero or negative interval is reported instead of ignored."""
        with patch("sys.stdin", StringIO("inc hits\n")), patch.object(
            GraphiteClient, "send_buffer"
        ) as mock_send:
            result = cmd_relay(self._args(tmp_path, interval=interval))

        assert result == 1
        mock_send.assert_not_called()
        assert "Flush period must be positive" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        """Test an invalid config file is reported."""
        config_file = tmp_path / "config.toml"
        config_file.write_text('[graphite]\nprotocol = "http"\n')
        args = Namespace(config=str(config_file), protocol=None, interval=None)

        assert cmd_relay(args) == 1
        assert "Configuration error" in capsys.readouterr().err
