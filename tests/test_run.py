"""Tests for growthbot/run.py and growthbot/pm_run.py - pipeline orchestration."""

import logging
from typing import Any, List
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from conftest import RUN_DATE, complaint_json
from growthbot.config import Settings
from growthbot.database import DatabaseManager
from growthbot.models import AppRecord, Company, JobPosting, ReviewRecord, StepStatus
from growthbot.pm_run import main as pm_main
from growthbot.pm_run import run_pm_agent
from growthbot.run import RunStats, StepLogger, main, mark_failed, run_agent, setup_logging
from growthbot.utils import today_run_date


def _app_store(apps: List[AppRecord], reviews: List[ReviewRecord]) -> Mock:
    store = Mock()
    store.top_free_apps.return_value = apps
    store.recent_reviews.side_effect = lambda app_id, page=1: [
        r for r in reviews if r.app_id == app_id
    ]
    return store


def _steps(db: DatabaseManager) -> List[tuple]:
    runs = db._fetchall("SELECT step, status FROM agent_runs ORDER BY id ASC")
    return [(r["step"], r["status"]) for r in runs]


class TestRunAgent:
    """End-to-end runs against SQLite with fake collaborators."""

    def test_full_run(self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings) -> None:
        today = today_run_date()
        apps = [AppRecord(app_id="1", name="Alpha", app_category="Games", current_rank=1)]
        reviews = [
            ReviewRecord(app_id="1", itunes_id="a", rating=1, body="Crashes constantly"),
            ReviewRecord(app_id="1", itunes_id="b", rating=2, body="Slow"),
        ]
        client = fake_llm(
            complaint_json((0, "Crashes constantly", "Bugs/Crashes", 5), (1, "Slow", "Performance", 2)),
            '[{"title": "Fix crashes", "description": "d", "complaint_indices": [0]}]',
        )

        stats = run_agent(
            temp_db, client, _app_store(apps, reviews), today,
            config=test_settings, sleep=lambda s: None,
        )

        assert stats.apps_scraped == 1
        assert stats.reviews_inserted == 2
        assert stats.complaints_found == 2
        assert stats.opportunities == 1

        summary = temp_db.get_summary(today)
        assert summary["status"] == "complete"
        assert summary["complaints_found"] == 2
        assert summary["by_complaint_category"] == {"Bugs/Crashes": 1, "Performance": 1}

        steps = _steps(temp_db)
        assert steps[0] == ("fetch_apps", "running")
        assert steps[-1] == ("done", "success")
        assert ("opportunities", "success") in steps

    def test_opportunity_failure_is_not_fatal(
        self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr(
            "growthbot.run.generate_opportunities", Mock(side_effect=RuntimeError("db gone"))
        )

        stats = run_agent(
            temp_db, fake_llm(), _app_store([], []), RUN_DATE,
            config=test_settings, sleep=lambda s: None,
        )

        assert stats.opportunities == 0
        assert ("opportunities", "failed") in _steps(temp_db)
        assert temp_db.get_summary(RUN_DATE)["status"] == "complete"

    def test_skip_scrape(self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings) -> None:
        temp_db.upsert_apps([AppRecord(app_id="1", name="Alpha", app_category="Games")])
        store = _app_store([], [])

        stats = run_agent(
            temp_db, fake_llm(), store, RUN_DATE,
            config=test_settings, skip_scrape=True, sleep=lambda s: None,
        )

        assert stats.apps_scraped == 1
        store.top_free_apps.assert_not_called()
        assert "fetch_apps" not in [step for step, _ in _steps(temp_db)]

    def test_fatal_error_propagates(
        self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings
    ) -> None:
        store = Mock()
        store.top_free_apps.side_effect = RuntimeError("feed down")

        with pytest.raises(RuntimeError, match="feed down"):
            run_agent(temp_db, fake_llm(), store, RUN_DATE, config=test_settings)

        assert temp_db.get_summary(RUN_DATE)["status"] == "running"


def test_mark_failed(temp_db: DatabaseManager) -> None:
    temp_db.upsert_summary(RUN_DATE, status="running")

    mark_failed(temp_db, RUN_DATE, "feed down")

    summary = temp_db.get_summary(RUN_DATE)
    assert summary["status"] == "failed"
    assert summary["error"] == "feed down"
    assert _steps(temp_db) == [("done", "failed")]


def test_step_logger_swallows_write_errors(caplog: Any) -> None:
    db = Mock()
    db.log_step.side_effect = RuntimeError("locked")

    StepLogger(db, RUN_DATE)("analyze", StepStatus.RUNNING)

    assert "Could not record step analyze" in caplog.text


class TestMainCommand:
    """Tests for the click entry point."""

    def test_invalid_run_date(self) -> None:
        result = CliRunner().invoke(main, ["--run-date", "2026-13-45"])
        assert result.exit_code == 2

    @patch("growthbot.run.create_extraction_client")
    @patch("growthbot.run.create_database_manager")
    def test_failure_exits_1_and_marks_summary(
        self, mock_factory: Mock, mock_client: Mock, temp_db: DatabaseManager
    ) -> None:
        mock_factory.return_value = temp_db
        mock_client.side_effect = RuntimeError("ANTHROPIC_API_KEY is not set")

        result = CliRunner().invoke(main, ["--run-date", RUN_DATE])

        assert result.exit_code == 1
        summary = temp_db.get_summary(RUN_DATE)
        assert summary["status"] == "failed"
        assert "ANTHROPIC_API_KEY" in summary["error"]

    @patch("growthbot.run.run_agent")
    @patch("growthbot.run.create_extraction_client")
    @patch("growthbot.run.create_database_manager")
    def test_success_exits_0(
        self, mock_factory: Mock, mock_client: Mock, mock_run: Mock, temp_db: DatabaseManager
    ) -> None:
        mock_factory.return_value = temp_db
        mock_run.return_value = RunStats(apps_scraped=3)

        result = CliRunner().invoke(main, ["--run-date", RUN_DATE, "--skip-scrape"])

        assert result.exit_code == 0
        assert mock_run.call_args.kwargs["skip_scrape"] is True


def test_setup_logging_json(monkeypatch: Any) -> None:
    monkeypatch.setattr("growthbot.run.settings.log_json", True)
    setup_logging("DEBUG")

    assert logging.getLogger().level == logging.DEBUG


class TestPMAgent:
    def test_no_jobs_skips_outcomes(
        self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings, monkeypatch: Any
    ) -> None:
        monkeypatch.setattr("growthbot.pm_run.fetch_pm_jobs", Mock(return_value=0))
        client = fake_llm()

        stats = run_pm_agent(temp_db, client, Mock(), RUN_DATE, config=test_settings)

        assert stats.jobs == 0
        assert client.client.messages.calls == []

    def test_outcomes_generated(
        self, temp_db: DatabaseManager, fake_llm: Any, test_settings: Settings, monkeypatch: Any
    ) -> None:
        def fake_fetch(db: DatabaseManager, muse: Any, scraped_on: str) -> int:
            db.upsert_companies([Company(id="acme", name="Acme", job_count=1, last_scraped=scraped_on)])
            db.upsert_jobs(
                [JobPosting(id="1", company_id="acme", company_name="Acme", title="APM", description="d")]
            )
            return 1

        monkeypatch.setattr("growthbot.pm_run.fetch_pm_jobs", fake_fetch)
        outcome = '[{"title": "Grow", "description": "d", "job_indices": [0]}]'
        client = fake_llm(outcome, outcome)

        stats = run_pm_agent(
            temp_db, client, Mock(), RUN_DATE, config=test_settings, sleep=lambda s: None
        )

        assert stats.jobs == 1
        assert stats.outcomes == 1
        assert stats.global_outcomes == 1

    @patch("growthbot.pm_run.create_database_manager")
    def test_main_exits_1_on_failure(self, mock_factory: Mock) -> None:
        mock_factory.side_effect = RuntimeError("no database")
        result = CliRunner().invoke(pm_main, [])
        assert result.exit_code == 1
