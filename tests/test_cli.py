"""
Integration tests for the command-line interface.

Runs commands against a temporary SQLite database configured through the
environment.
"""

import json
from decimal import InvalidOperation
from pathlib import Path
from typing import Callable, Generator

import pytest
from typer.testing import CliRunner

from dissection_grader import main
from dissection_grader.config import get_settings
from dissection_grader.db.database import (
    close_db,
    create_db_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
)
from dissection_grader.main import app
from dissection_grader.models import AttemptStatus

runner = CliRunner()

ANSWERS = ["Left Ventricle", "atrium dextrum", "AORTA", "kidney", None]


def _clear_caches() -> None:
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()


@pytest.fixture
def cli_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[str, None, None]:
    """Point the CLI at a fresh database file."""
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setattr(main, "configure_logging", lambda level: None)
    _clear_caches()

    result = runner.invoke(app, ["init-db"])
    assert result.exit_code == 0, result.output

    yield url

    close_db()
    _clear_caches()


@pytest.fixture
def cli_seed(cli_db: str, seed_lab: Callable) -> Callable:
    """seed_lab bound to the CLI's database."""
    return seed_lab


@pytest.fixture
def session_factory(cli_db: str):
    """Override the shared session factory to use the CLI database."""
    engine = create_db_engine(cli_db)
    yield create_session_factory(engine)
    engine.dispose()


class TestCli:
    """Tests for the typer application."""

    def test_grade_and_sync_history(self, cli_seed: Callable) -> None:
        seeded = cli_seed(ANSWERS)

        result = runner.invoke(app, ["grade", seeded.attempt_id, "--verbose"])
        assert result.exit_code == 0, result.output
        assert "60.00" in result.output

        status = runner.invoke(app, ["queue-status"])
        assert status.exit_code == 0
        assert "waiting" in status.output

        report = runner.invoke(
            app, ["report-sync", seeded.attempt_id, "skipped", "--reason", "No line item"]
        )
        assert report.exit_code == 0, report.output

        history = runner.invoke(app, ["sync-logs", seeded.attempt_id])
        assert history.exit_code == 0
        assert "skipped" in history.output

    def test_grade_twice_fails(self, cli_seed: Callable) -> None:
        seeded = cli_seed(ANSWERS)
        runner.invoke(app, ["grade", seeded.attempt_id])

        result = runner.invoke(app, ["grade", seeded.attempt_id])

        assert result.exit_code == 1
        assert "Grading Error" in result.output

    def test_override(self, cli_seed: Callable) -> None:
        seeded = cli_seed(ANSWERS, status=AttemptStatus.SUBMITTED)
        runner.invoke(app, ["grade", seeded.attempt_id])

        result = runner.invoke(
            app,
            ["override", seeded.attempt_id, seeded.response_ids[3], "1", "--feedback", "Close"],
        )

        assert result.exit_code == 0, result.output
        assert "80.00" in result.output

    def test_override_rejects_non_number(self, cli_seed: Callable) -> None:
        seeded = cli_seed(ANSWERS)

        result = runner.invoke(app, ["override-total", seeded.attempt_id, "lots"])

        assert result.exit_code != 0

    @pytest.mark.parametrize("value", ["nan", "inf", "Infinity"])
    def test_override_rejects_non_finite(self, cli_seed: Callable, value: str) -> None:
        seeded = cli_seed(ANSWERS)

        result = runner.invoke(app, ["override", seeded.attempt_id, seeded.response_ids[0], value])
        total = runner.invoke(app, ["override-total", seeded.attempt_id, value])

        assert result.exit_code == 2
        assert total.exit_code == 2
        assert not isinstance(result.exception, InvalidOperation)
        assert not isinstance(total.exception, InvalidOperation)

    def test_skipped_report_without_reason(self, cli_seed: Callable) -> None:
        seeded = cli_seed(ANSWERS)

        result = runner.invoke(app, ["report-sync", seeded.attempt_id, "skipped"])

        assert result.exit_code == 1
        assert "reason" in result.output

    def test_sync_unknown_lab(self, cli_db: str) -> None:
        result = runner.invoke(app, ["sync-lab", "missing-lab"])

        assert result.exit_code == 1
        assert "Lab not found" in result.output

    def test_validate_rubric(self, tmp_path: Path, cli_db: str) -> None:
        path = tmp_path / "rubric.json"
        path.write_text(json.dumps({"hintPenaltyPercent": 20, "partialCredit": True}))

        result = runner.invoke(app, ["validate-rubric", str(path)])

        assert result.exit_code == 0, result.output
        assert "Rubric is valid" in result.output

    def test_validate_rubric_reports_issues(self, tmp_path: Path, cli_db: str) -> None:
        path = tmp_path / "rubric.json"
        path.write_text(json.dumps({"acceptedAliases": {"s-9": ["LV"]}}))

        result = runner.invoke(app, ["validate-rubric", str(path), "--structure", "s-1"])

        assert result.exit_code == 1
        assert "s-9" in result.output
