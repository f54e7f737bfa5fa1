"""Read-only dashboard API over the agent's database."""

import logging
from typing import Optional

import click
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import DatabaseManager
from .database_postgres import create_database_manager
from .utils import days_ago, today_run_date

logger = logging.getLogger(__name__)

MAX_HISTORY_DAYS = 90
MAX_RUN_DAYS = 30
MAX_PAGE_SIZE = 100


def create_api_app(
    database: Optional[DatabaseManager] = None, database_url: Optional[str] = None
) -> FastAPI:
    """Create a FastAPI app exposing the dashboard's read queries."""
    db = database or create_database_manager(
        database_url or settings.database_url, settings.database_file
    )
    app = FastAPI(title="Growth Co-Pilot API", version="0.1.0")

    @app.exception_handler(Exception)
    async def database_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.get("/api/summary/today")
    def summary_today() -> Optional[dict]:
        """Today's summary, or null if the agent has not run yet."""
        return db.get_summary(today_run_date())

    @app.get("/api/summary/history")
    def summary_history(days: int = 30) -> list:
        since = days_ago(min(days, MAX_HISTORY_DAYS))
        return db.get_summary_history(since)

    @app.get("/api/categories")
    def categories(run_date: Optional[str] = None) -> dict:
        """Complaint counts per app category for a run date (default today)."""
        summary = db.get_summary(run_date or today_run_date())
        if not summary:
            return {}
        return summary.get("by_app_category") or {}

    @app.get("/api/complaints")
    def complaints(
        app_category: Optional[str] = None,
        complaint_category: Optional[str] = None,
        app_id: Optional[str] = None,
        run_date: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        """Filtered complaints, most severe first."""
        page = max(1, page)
        limit = max(1, min(MAX_PAGE_SIZE, limit))
        rows, total = db.query_complaints(
            app_category=app_category,
            complaint_category=complaint_category,
            app_id=app_id,
            run_date=run_date,
            page=page,
            limit=limit,
        )
        return {"data": rows, "total": total, "page": page, "limit": limit}

    @app.get("/api/apps")
    def apps() -> list:
        return db.get_apps()

    @app.get("/api/opportunities")
    def opportunities(app_id: Optional[str] = None, run_date: Optional[str] = None) -> list:
        """An app's opportunities for a run date, or for its latest run."""
        if not app_id:
            raise HTTPException(status_code=400, detail="app_id is required")
        return db.get_opportunities(app_id, run_date)

    @app.get("/api/runs")
    def runs(days: int = 14) -> list:
        return db.get_runs(days_ago(min(days, MAX_RUN_DAYS)))

    @app.get("/api/pm-companies")
    def pm_companies() -> list:
        return db.get_companies()

    @app.get("/api/pm-jobs")
    def pm_jobs(company_id: Optional[str] = None, ids: Optional[str] = None) -> list:
        """PM jobs, optionally by company and/or comma-separated job ids."""
        id_list = [value.strip() for value in (ids or "").split(",") if value.strip()]
        return db.get_jobs(company_id=company_id, ids=id_list or None)

    @app.get("/api/pm-outcomes")
    def pm_outcomes() -> list:
        """Cross-company outcome themes from the latest scrape."""
        return db.get_latest_global_outcomes()

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "service": "growth-copilot-api"}

    return app


@click.command()
@click.option("--host", default="0.0.0.0", help="Host to bind to")
@click.option("--port", default=8000, type=int, help="Port to bind to")
def main(host: str, port: int) -> None:
    """Serve the dashboard API."""
    db = create_database_manager(settings.database_url, settings.database_file)
    db.ensure_schema()
    uvicorn.run(create_api_app(database=db), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
