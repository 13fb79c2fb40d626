from __future__ import annotations

import json
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from typer.testing import CliRunner

from cfptrack.cli import app
from cfptrack.models import Event


def _db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cfptrack_test.db'}"


def test_init_db_and_add_user(tmp_path) -> None:
    runner = CliRunner()
    db_url = _db_url(tmp_path)

    result = runner.invoke(app, ["--json", "init-db", "--db-url", db_url])
    assert result.exit_code == 0, result.stdout
    assert json.loads(result.stdout)["status"] == "ok"

    result = runner.invoke(app, ["--json", "add-user", "--name", "Alice", "--email", "alice@example.com",
                                 "--db-url", db_url])
    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["username"] == "alice"

    duplicate = runner.invoke(app, ["--json", "add-user", "--name", "Alice", "--email", "alice@example.com",
                                    "--db-url", db_url])
    assert duplicate.exit_code != 0

    result = runner.invoke(app, ["--json", "users", "--db-url", db_url])
    assert json.loads(result.stdout)["count"] == 1


def test_check_deadlines_with_fixed_date(tmp_path) -> None:
    runner = CliRunner()
    db_url = _db_url(tmp_path)
    runner.invoke(app, ["--json", "add-user", "--name", "Alice", "--email", "alice@example.com", "--db-url", db_url])

    engine = create_engine(db_url)
    with Session(engine) as session:
        session.add(Event(name="DevConf", cfp_deadline=date(2030, 1, 8)))
        session.commit()
    engine.dispose()

    args = ["--json", "check-deadlines", "--today", "2030-01-01", "--db-url", db_url]
    first = runner.invoke(app, args)
    assert first.exit_code == 0, first.stdout
    assert json.loads(first.stdout)["notifications_created"] == 1

    second = runner.invoke(app, args)
    assert json.loads(second.stdout)["duplicates_skipped"] == 1


def test_check_deadlines_rejects_bad_date(tmp_path) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["check-deadlines", "--today", "01/01/2030", "--db-url", _db_url(tmp_path)])
    assert result.exit_code != 0


def test_stats_and_threshold(tmp_path) -> None:
    runner = CliRunner()
    db_url = _db_url(tmp_path)

    result = runner.invoke(app, ["--json", "set-threshold", "120", "--db-url", db_url])
    assert result.exit_code == 0, result.stdout
    assert json.loads(result.stdout) == {"threshold": 120}
    assert runner.invoke(app, ["set-threshold", "901", "--db-url", db_url]).exit_code != 0

    result = runner.invoke(app, ["--json", "stats", "--db-url", db_url])
    assert result.exit_code == 0, result.stdout
    stats = json.loads(result.stdout)
    assert stats["total_events"] == 0
    assert stats["upcoming_cfps"] == []


def test_stats_renders_tables(tmp_path) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["stats", "--db-url", _db_url(tmp_path)])
    assert result.exit_code == 0
    assert "total_proposals" in result.stdout
