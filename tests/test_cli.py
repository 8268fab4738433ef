from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from time_balance.cli import app

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path):
    db_path = tmp_path / "account.sqlite3"

    def _invoke(*args: str, variant: str = "meter"):
        return runner.invoke(app, ["--db", str(db_path), "--variant", variant, *args])

    return _invoke


def test_meters_lists_defaults(invoke):
    result = invoke("meters")

    assert result.exit_code == 0, result.output
    assert "1. +1x" in result.output
    assert "5. -2x" in result.output


def test_start_status_stop(invoke):
    assert invoke("start", "3").output.strip() == "Started +2x."

    status = invoke("status")
    assert "Running: +2x (x2)" in status.output

    assert invoke("stop").output.strip() == "Stopped +2x."
    assert invoke("stop").output.strip() == "Nothing is running."


def test_meter_can_be_referenced_by_name(invoke):
    assert invoke("add-meter", "Reading", "--factor", "0.5").exit_code == 0
    assert invoke("start", "reading").output.strip() == "Started Reading."

    result = invoke("delete-meter", "Reading")
    assert result.exit_code == 1
    assert "Cannot delete the currently active meter" in result.output


def test_domain_errors_exit_with_code_one(invoke):
    result = invoke("add-meter", "Turbo", "--factor", "20")

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert invoke("start", "42").exit_code == 1


def test_rename_and_reorder(invoke):
    assert invoke("rename-meter", "1", "Focus").output.strip() == "Renamed to Focus."

    result = invoke("reorder", "5", "4", "3", "2", "1")
    assert result.output.strip() == "-2x, -1x, +2x, +1.5x, Focus"

    partial = invoke("reorder", "1", "2")
    assert partial.output.startswith("Order unchanged")


def test_export_import_reset(invoke, tmp_path):
    invoke("add-meter", "Reading")
    invoke("start", "Reading")
    invoke("stop")
    backup = tmp_path / "backup.json"

    assert invoke("export", "--output", str(backup)).exit_code == 0
    data = json.loads(backup.read_text(encoding="utf-8"))
    assert len(data["meters"]) == 6
    assert len(data["events"]) == 1

    assert invoke("reset", "--yes").output.strip() == "Account reset."
    assert "Reading" not in invoke("meters").output

    result = invoke("import", str(backup))
    assert result.exit_code == 0, result.output
    assert "Imported 6 meters and 1 events." in result.output


def test_delete_event_by_id_prefix(invoke, tmp_path):
    invoke("start", "1")
    invoke("stop")
    backup = tmp_path / "backup.json"
    invoke("export", "--output", str(backup))
    event_id = json.loads(backup.read_text(encoding="utf-8"))["events"][0]["id"]

    assert invoke("delete-event", event_id[:8]).output.strip() == "Event deleted."
    assert "No events recorded." in invoke("events").output


def test_timeline_and_period(invoke):
    assert invoke("period", "6").output.strip() == "Timeline period set to 6h."
    result = invoke("timeline")

    assert result.exit_code == 0
    assert "Timeline for the last 06:00:00" in result.output


def test_activity_variant_needs_comment(invoke):
    result = invoke("start", "Work", variant="activity")
    assert result.exit_code == 1
    assert "comment is required" in result.output

    started = invoke("start", "Work", "--comment", "Quarterly report", variant="activity")
    assert started.output.strip() == "Started Work."
    assert "Quarterly report" in invoke("events", variant="activity").output


def test_sync_to_folder(invoke, isolated_data_dir):
    result = invoke("sync", "--enable", "Folder", "--push")

    assert result.exit_code == 0, result.output
    assert "Provider: Folder" in result.output
    assert "status: success" in result.output
    assert (isolated_data_dir / "sync" / "time-balance-backup.json").exists()
