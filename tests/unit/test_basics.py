import csv
from datetime import date
from pathlib import Path

from refurb_tracker import config
from refurb_tracker.lifecycle import available_lifecycles, resolve_lifecycle
from scripts import seed_data


def test_get_settings_defaults():
    settings = config.Settings()
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_user == "postgres"
    assert settings.db_name == "refurb_tracker"
    assert settings.lifecycle == "shipping"
    assert settings.request_code_attempts == 2
    assert settings.short_window_days == 7
    assert settings.long_window_days == 30


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("REFURB_LIFECYCLE", "fulfillment")
    monkeypatch.setenv("REFURB_TIMEZONE", "America/Chicago")
    settings = config.Settings()
    assert settings.lifecycle == "fulfillment"
    assert settings.timezone == "America/Chicago"
    assert resolve_lifecycle(settings.lifecycle).initial_state == "Pending"


def test_build_dsn():
    settings = config.Settings(db_host="db", db_port=5433, db_name="tracker")
    assert config.build_dsn(settings) == "postgresql://postgres:postgres@db:5433/tracker"


def test_available_lifecycles_contains_known_entries():
    names = available_lifecycles()
    assert "shipping" in names
    assert "fulfillment" in names


def test_seed_data_writes_deterministic_csv(tmp_path: Path):
    staff = [("loc-1", "tech-1"), ("loc-2", "tech-2")]
    first = tmp_path / "a.csv"
    second = tmp_path / "b.csv"

    seed_data.generate_completions_csv(first, staff, rows=5, days=10, seed=123, today=date(2026, 1, 15))
    seed_data.generate_completions_csv(second, staff, rows=5, days=10, seed=123, today=date(2026, 1, 15))

    assert first.read_text() == second.read_text()
    with first.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    # header + 5 rows = 6 lines
    assert len(rows) == 6
    assert rows[0] == seed_data.CSV_COLUMNS
    for row in rows[1:]:
        record = dict(zip(rows[0], row))
        assert (record["location_id"], record["tech_id"]) in staff
        assert date(2026, 1, 6) <= date.fromisoformat(record["completion_date"]) <= date(2026, 1, 15)
        assert record["qc_card_signed"] == "t"
