"""Tests for the ``redular`` CLI commands."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from redular.cli import app
from redular.keys import EventKeys

runner = CliRunner()

KEYS = EventKeys(event="redular:alpha:ping:job", data="redular-data:alpha:ping:job")


def _fake_redular(**methods) -> MagicMock:
    fake = MagicMock()
    fake.client_id = "alpha"
    fake.close = AsyncMock()
    fake.start = AsyncMock()
    fake.run_forever = AsyncMock()
    for name, value in methods.items():
        setattr(fake, name, AsyncMock(return_value=value))
    return fake


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("redular.cli.configure_logging"):
        yield


class TestSchedule:
    @patch("redular.cli.make_redular")
    def test_schedule_in(self, mock_make):
        fake = _fake_redular(schedule_event=KEYS)
        mock_make.return_value = fake

        result = runner.invoke(app, ["schedule", "ping", "--in", "30", "--payload", '{"a": 1}', "--id", "job"])
        assert result.exit_code == 0
        assert "redular:alpha:ping:job" in result.stdout
        kwargs = fake.schedule_event.await_args.kwargs
        assert kwargs["payload"] == {"a": 1}
        assert kwargs["id"] == "job"
        assert kwargs["is_global"] is False
        fake.close.assert_awaited_once()

    @patch("redular.cli.make_redular")
    def test_schedule_at_json(self, mock_make):
        mock_make.return_value = _fake_redular(schedule_event=KEYS)

        result = runner.invoke(app, ["schedule", "ping", "--at", "2030-01-01T00:00:00", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"event": KEYS.event, "data": KEYS.data}
        when = mock_make.return_value.schedule_event.await_args.args[1]
        assert when == datetime(2030, 1, 1, tzinfo=UTC)

    @patch("redular.cli.make_redular")
    def test_client_option_passed(self, mock_make):
        mock_make.return_value = _fake_redular(schedule_event=KEYS)
        runner.invoke(app, ["schedule", "ping", "--in", "5", "--client", "worker-1", "--global"])
        mock_make.assert_called_once_with("worker-1")
        assert mock_make.return_value.schedule_event.await_args.kwargs["is_global"] is True

    @patch("redular.cli.make_redular")
    def test_not_scheduled_exits_1(self, mock_make):
        mock_make.return_value = _fake_redular(schedule_event=None)
        result = runner.invoke(app, ["schedule", "ping", "--in", "5"])
        assert result.exit_code == 1

    @patch("redular.cli.make_redular")
    def test_requires_exactly_one_time(self, mock_make):
        result = runner.invoke(app, ["schedule", "ping"])
        assert result.exit_code == 2
        result = runner.invoke(app, ["schedule", "ping", "--in", "5", "--at", "2030-01-01T00:00:00"])
        assert result.exit_code == 2
        mock_make.assert_not_called()

    @patch("redular.cli.make_redular")
    def test_bad_payload(self, mock_make):
        result = runner.invoke(app, ["schedule", "ping", "--in", "5", "--payload", "{nope"])
        assert result.exit_code == 2
        mock_make.assert_not_called()


class TestInstant:
    @patch("redular.cli.make_redular")
    def test_publish(self, mock_make):
        fake = _fake_redular(instant_event=True)
        mock_make.return_value = fake

        result = runner.invoke(app, ["instant", "hello", "--global", "--payload", "[1, 2]"])
        assert result.exit_code == 0
        fake.instant_event.assert_awaited_once_with("hello", is_global=True, payload=[1, 2])

    @patch("redular.cli.make_redular")
    def test_publish_failure(self, mock_make):
        mock_make.return_value = _fake_redular(instant_event=False)
        assert runner.invoke(app, ["instant", "hello"]).exit_code == 1


class TestEvents:
    @patch("redular.cli.make_redular")
    def test_events_json_sorted(self, mock_make):
        fires = {
            "redular:global:b:1": datetime(2030, 1, 1, 12, tzinfo=UTC),
            "redular:global:a:1": datetime(2030, 1, 1, 11, tzinfo=UTC),
        }
        fake = _fake_redular(get_events=list(fires))
        fake.get_event_expiry = AsyncMock(side_effect=lambda key: fires[key])
        mock_make.return_value = fake

        result = runner.invoke(
            app,
            ["events", "--from", "2030-01-01T00:00:00", "--to", "2030-01-02T00:00:00", "--json"],
        )
        assert result.exit_code == 0
        rows = json.loads(result.stdout)
        assert [row["event"] for row in rows] == ["redular:global:a:1", "redular:global:b:1"]
        start, end = fake.get_events.await_args.args
        assert end - start == datetime(2030, 1, 2, tzinfo=UTC) - datetime(2030, 1, 1, tzinfo=UTC)

    @patch("redular.cli.make_redular")
    def test_events_table(self, mock_make):
        fake = _fake_redular(get_events=["redular:global:a:1"])
        fake.get_event_expiry = AsyncMock(return_value=datetime(2030, 1, 1, tzinfo=UTC))
        mock_make.return_value = fake

        result = runner.invoke(app, ["events"])
        assert result.exit_code == 0
        assert "Events (1)" in result.stdout


class TestKeyCommands:
    @patch("redular.cli.make_redular")
    def test_expiry(self, mock_make):
        mock_make.return_value = _fake_redular(get_event_expiry=datetime(2030, 1, 1, tzinfo=UTC))
        result = runner.invoke(app, ["expiry", "redular:global:a:1"])
        assert result.exit_code == 0
        assert "2030-01-01T00:00:00+00:00" in result.stdout

    @patch("redular.cli.make_redular")
    def test_expiry_missing(self, mock_make):
        mock_make.return_value = _fake_redular(get_event_expiry=None)
        assert runner.invoke(app, ["expiry", "redular:global:a:1"]).exit_code == 1

    @patch("redular.cli.make_redular")
    def test_delete(self, mock_make):
        fake = _fake_redular(delete_event=True)
        mock_make.return_value = fake
        result = runner.invoke(app, ["delete", "redular:global:a:1"])
        assert result.exit_code == 0
        fake.delete_event.assert_awaited_once_with("redular:global:a:1")

    @patch("redular.cli.make_redular")
    def test_delete_failure(self, mock_make):
        mock_make.return_value = _fake_redular(delete_event=False)
        assert runner.invoke(app, ["delete", "bogus"]).exit_code == 1

    @patch("redular.cli.make_redular")
    def test_prune(self, mock_make):
        mock_make.return_value = _fake_redular(prune_data=True)
        assert runner.invoke(app, ["prune"]).exit_code == 0


class TestConfigure:
    @patch("redular.cli.configure_keyspace_notifications", new_callable=AsyncMock)
    @patch("redular.cli.make_redular")
    def test_configure(self, mock_make, mock_configure):
        fake = _fake_redular()
        mock_make.return_value = fake
        mock_configure.return_value = True

        result = runner.invoke(app, ["configure"])
        assert result.exit_code == 0
        mock_configure.assert_awaited_once_with(fake.connections.primary)

    @patch("redular.cli.configure_keyspace_notifications", new_callable=AsyncMock)
    @patch("redular.cli.make_redular")
    def test_configure_failure(self, mock_make, mock_configure):
        mock_make.return_value = _fake_redular()
        mock_configure.return_value = False
        assert runner.invoke(app, ["configure"]).exit_code == 1


class TestListen:
    @patch("redular.cli.make_redular")
    def test_defines_printers_and_runs(self, mock_make):
        fake = _fake_redular()
        mock_make.return_value = fake

        result = runner.invoke(app, ["listen", "ping", "pong", "--client", "alpha"])
        assert result.exit_code == 0
        assert [c.args[0] for c in fake.define_handler.call_args_list] == ["ping", "pong"]
        fake.start.assert_awaited_once()
        fake.run_forever.assert_awaited_once()
        assert "Listening as alpha" in result.stdout

    @patch("redular.cli.make_redular")
    def test_printer_output(self, mock_make):
        fake = _fake_redular()
        mock_make.return_value = fake

        async def fire():
            handler = fake.define_handler.call_args.args[1]
            handler({"n": 1})

        fake.run_forever = AsyncMock(side_effect=fire)
        result = runner.invoke(app, ["listen", "ping"])
        assert result.exit_code == 0
        assert 'ping {"n": 1}' in result.stdout


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.startswith("redular ")
