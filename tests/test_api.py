"""Tests for growthbot/api.py - dashboard endpoints."""

from typing import Any
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from growthbot.api import create_api_app
from growthbot.database import DatabaseManager
from growthbot.models import AppRecord, Company, ComplaintRecord, JobPosting
from growthbot.utils import today_run_date


@pytest.fixture
def client(temp_db: DatabaseManager) -> TestClient:
    return TestClient(create_api_app(database=temp_db))


def _complaint(review_id: str, severity: int, app_category: str = "Games") -> ComplaintRecord:
    return ComplaintRecord(
        review_id=review_id,
        app_id="1",
        app_category=app_category,
        complaint_category="Performance",
        complaint_text=f"slow {review_id}",
        severity=severity,
        run_date=today_run_date(),
    )


class TestSummaryEndpoints:
    def test_today_without_run(self, client: TestClient) -> None:
        response = client.get("/api/summary/today")
        assert response.status_code == 200
        assert response.json() is None

    def test_today_and_categories(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.upsert_summary(
            today_run_date(),
            status="complete",
            complaints_found=3,
            by_app_category={"Games": {"Performance": 3}},
        )

        summary = client.get("/api/summary/today").json()
        assert summary["complaints_found"] == 3
        assert client.get("/api/categories").json() == {"Games": {"Performance": 3}}
        assert client.get("/api/categories", params={"run_date": "1999-01-01"}).json() == {}

    def test_history(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.upsert_summary(today_run_date(), complaints_found=4)
        temp_db.upsert_summary("2000-01-01", complaints_found=1)

        history = client.get("/api/summary/history", params={"days": 500}).json()
        assert [h["complaints_found"] for h in history] == [4]


class TestComplaintEndpoints:
    def test_filters_and_pagination(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.upsert_apps([AppRecord(app_id="1", name="Alpha", app_category="Games")])
        temp_db.insert_complaints(
            [_complaint(str(i), severity=i % 5 + 1) for i in range(5)]
            + [_complaint("9", 2, app_category="Finance")]
        )

        body = client.get(
            "/api/complaints", params={"app_category": "Games", "limit": 2, "page": 1}
        ).json()

        assert body["total"] == 5
        assert body["limit"] == 2
        assert [row["severity"] for row in body["data"]] == [5, 4]
        assert body["data"][0]["app_name"] == "Alpha"

    def test_limit_is_capped(self, client: TestClient) -> None:
        body = client.get("/api/complaints", params={"limit": 1000, "page": 0}).json()
        assert body["limit"] == 100
        assert body["page"] == 1

    def test_apps(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.upsert_apps(
            [
                AppRecord(app_id="2", name="Beta", app_category="Games", current_rank=2),
                AppRecord(app_id="1", name="Alpha", app_category="Games", current_rank=1),
            ]
        )
        assert [a["name"] for a in client.get("/api/apps").json()] == ["Alpha", "Beta"]

    def test_opportunities_require_app_id(self, client: TestClient) -> None:
        assert client.get("/api/opportunities").status_code == 400

    def test_opportunities(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.insert_opportunities(
            [{"app_id": "1", "run_date": "2026-10-18", "title": "Fix", "complaint_ids": [1]}]
        )
        body = client.get("/api/opportunities", params={"app_id": "1"}).json()
        assert body[0]["title"] == "Fix"
        assert body[0]["complaint_ids"] == [1]

    def test_runs(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.log_step(today_run_date(), "analyze", "success")
        temp_db.log_step("2000-01-01", "analyze", "success")
        runs = client.get("/api/runs").json()
        assert [r["run_date"] for r in runs] == [today_run_date()]


class TestPMEndpoints:
    def test_companies_and_jobs(self, client: TestClient, temp_db: DatabaseManager) -> None:
        temp_db.upsert_companies([Company(id="acme", name="Acme", job_count=2)])
        temp_db.upsert_jobs(
            [
                JobPosting(id="1", company_id="acme", company_name="Acme", title="APM"),
                JobPosting(id="2", company_id="acme", company_name="Acme", title="PM"),
            ]
        )

        assert client.get("/api/pm-companies").json()[0]["id"] == "acme"
        jobs = client.get("/api/pm-jobs", params={"ids": "2, ,"}).json()
        assert [j["id"] for j in jobs] == ["2"]
        assert len(client.get("/api/pm-jobs", params={"company_id": "acme"}).json()) == 2

    def test_outcomes(self, client: TestClient, temp_db: DatabaseManager) -> None:
        assert client.get("/api/pm-outcomes").json() == []
        temp_db.insert_global_outcomes(
            [{"scraped_date": "2026-10-18", "title": "Grow", "companies": ["Acme"]}]
        )
        assert client.get("/api/pm-outcomes").json()[0]["companies"] == ["Acme"]


def test_database_error_returns_500(temp_db: DatabaseManager, monkeypatch: Any) -> None:
    monkeypatch.setattr(temp_db, "get_apps", Mock(side_effect=RuntimeError("db down")))
    client = TestClient(create_api_app(database=temp_db), raise_server_exceptions=False)

    response = client.get("/api/apps")

    assert response.status_code == 500
    assert response.json() == {"error": "db down"}


def test_health(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"
