"""Tests for CLI commands."""

import json

import pytest
from typer.testing import CliRunner

from psi_agenda.cli.commands import app


runner = CliRunner()


@pytest.fixture
def patients_file(tmp_path, patients_payload):
    path = tmp_path / "patients.json"
    path.write_text(json.dumps(patients_payload), encoding="utf-8")
    return path


@pytest.fixture
def state_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "appointment_overrides": {"1_2024-03-11": {"status": "cancelled"}},
                "extra_sessions": [],
                "payment_overrides": {"pay_1_2024-03-05": {"status": "paid"}},
            }
        ),
        encoding="utf-8",
    )
    return path


class TestOccurrencesCommand:
    def test_table(self, patients_file):
        result = runner.invoke(app, ["occurrences", str(patients_file), "--month", "2024-03"])
        assert result.exit_code == 0
        assert "2024-03-04" in result.output
        assert "6 sessions" in result.output

    def test_json(self, patients_file):
        result = runner.invoke(app, ["occurrences", str(patients_file), "--month", "2024-03", "--json"])
        assert result.exit_code == 0
        assert '"date": "2024-03-13"' in result.output
        assert '"patientId": "2"' in result.output

    def test_patients_wrapped_in_object(self, tmp_path, patients_payload):
        path = tmp_path / "wrapped.json"
        path.write_text(json.dumps({"patients": patients_payload}), encoding="utf-8")
        result = runner.invoke(app, ["occurrences", str(path), "--month", "2024-03"])
        assert result.exit_code == 0
        assert "6 sessions" in result.output

    def test_invalid_month(self, patients_file):
        result = runner.invoke(app, ["occurrences", str(patients_file), "--month", "março"])
        assert result.exit_code == 1
        assert "Invalid month" in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["occurrences", str(tmp_path / "nope.json"), "--month", "2024-03"])
        assert result.exit_code == 1
        assert "File not found" in result.output

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        result = runner.invoke(app, ["occurrences", str(path), "--month", "2024-03"])
        assert result.exit_code == 1
        assert "Invalid JSON" in result.output


class TestAgendaCommand:
    def test_applies_state(self, patients_file, state_file):
        result = runner.invoke(
            app,
            ["agenda", str(patients_file), "--month", "2024-03", "--state", str(state_file),
             "--today", "2024-03-20", "--json"],
        )
        assert result.exit_code == 0
        assert '"date": "2024-03-11"' not in result.output
        assert '"kind": "payment"' in result.output
        assert '"status": "paid"' in result.output

    def test_table(self, patients_file):
        result = runner.invoke(app, ["agenda", str(patients_file), "--month", "2024-03", "--today", "2024-03-01"])
        assert result.exit_code == 0
        assert "payment" in result.output
        assert "pending" in result.output


class TestConflictsCommand:
    def test_conflict_exit_code(self, tmp_path, patients_file, patients_payload):
        candidate = tmp_path / "candidate.json"
        candidate.write_text(json.dumps({**patients_payload[0], "id": 3}), encoding="utf-8")
        result = runner.invoke(app, ["conflicts", str(patients_file), "--candidate", str(candidate)])
        assert result.exit_code == 2
        assert "Schedule Conflict" in result.output
        assert "Ana" in result.output

    def test_no_conflict(self, tmp_path, patients_file, patients_payload):
        candidate = tmp_path / "candidate.json"
        candidate.write_text(
            json.dumps({**patients_payload[0], "id": 3, "dayOfWeek": "sexta-feira"}), encoding="utf-8"
        )
        result = runner.invoke(app, ["conflicts", str(patients_file), "--candidate", str(candidate)])
        assert result.exit_code == 0
        assert "No conflict" in result.output


class TestSummaryCommand:
    def test_json(self, patients_file, state_file):
        result = runner.invoke(
            app,
            ["summary", str(patients_file), "--month", "2024-03", "--state", str(state_file), "--json"],
        )
        assert result.exit_code == 0
        assert '"paid_count": 1' in result.output
        assert '"active_count": 2' in result.output

    def test_panel(self, patients_file):
        result = runner.invoke(app, ["summary", str(patients_file), "--month", "2024-03", "--today", "2024-03-20"])
        assert result.exit_code == 0
        assert "Revenue 2024-03" in result.output
        assert "Receivables" in result.output


class TestTasksCommand:
    @pytest.fixture
    def ana_file(self, tmp_path, patients_payload):
        path = tmp_path / "ana.json"
        path.write_text(json.dumps(patients_payload[:1]), encoding="utf-8")
        return path

    def test_json(self, ana_file, state_file):
        result = runner.invoke(
            app,
            ["tasks", str(ana_file), "--month", "2024-03", "--state", str(state_file),
             "--today", "2024-03-12", "--json"],
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [(t["type"], t["due"]) for t in data["open"]] == [("confirm", "2024-03-04")]
        assert [t["type"] for t in data["done"]] == ["payment"]

    def test_table(self, ana_file, state_file):
        result = runner.invoke(
            app,
            ["tasks", str(ana_file), "--month", "2024-03", "--state", str(state_file),
             "--today", "2024-03-12", "--done"],
        )
        assert result.exit_code == 0
        assert "Open tasks (1)" in result.output
        assert "Payment received from Ana" in result.output

    def test_nothing_to_do(self, ana_file, state_file):
        result = runner.invoke(
            app,
            ["tasks", str(ana_file), "--month", "2024-03", "--state", str(state_file), "--today", "2024-03-01"],
        )
        assert result.exit_code == 0
        assert "Nothing to do" in result.output


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "psi-agenda v" in result.output
