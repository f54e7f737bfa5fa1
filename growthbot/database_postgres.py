"""PostgreSQL database support for production deployments."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import psycopg2
import psycopg2.extras

from .database import DatabaseManager

logger = logging.getLogger(__name__)


class PostgresManager(DatabaseManager):
    """PostgreSQL-specific database manager for production."""

    placeholder = "%s"

    def __init__(self, database_url: str):
        """Initialize PostgreSQL manager.

        Args:
            database_url: PostgreSQL connection URL
        """
        self.database_url = database_url
        # For compatibility with parent class
        self.db_path = Path(database_url)

    def get_connection(self) -> Any:
        """Get PostgreSQL connection with proper settings."""
        try:
            conn = psycopg2.connect(
                self.database_url, cursor_factory=psycopg2.extras.RealDictCursor
            )
            conn.autocommit = False
            return conn
        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise

    def ensure_schema(self) -> None:
        """Ensure all agent tables exist."""
        with self.get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                CREATE TABLE IF NOT EXISTS apps (
                    app_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    developer TEXT,
                    app_category TEXT,
                    icon_url TEXT,
                    current_rank INTEGER,
                    avg_rating REAL,
                    last_scraped TEXT
                );

                CREATE TABLE IF NOT EXISTS reviews (
                    id SERIAL PRIMARY KEY,
                    app_id TEXT NOT NULL,
                    itunes_id TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    title TEXT,
                    body TEXT NOT NULL,
                    author TEXT,
                    review_date TEXT,
                    scraped_at TEXT NOT NULL,
                    UNIQUE(app_id, itunes_id)
                );

                CREATE TABLE IF NOT EXISTS complaints (
                    id SERIAL PRIMARY KEY,
                    review_id INTEGER NOT NULL,
                    app_id TEXT NOT NULL,
                    app_category TEXT,
                    complaint_category TEXT NOT NULL,
                    complaint_text TEXT NOT NULL,
                    severity INTEGER NOT NULL,
                    run_date TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(review_id, run_date, complaint_category, complaint_text)
                );

                CREATE TABLE IF NOT EXISTS daily_summaries (
                    run_date TEXT PRIMARY KEY,
                    apps_scraped INTEGER DEFAULT 0,
                    reviews_processed INTEGER DEFAULT 0,
                    complaints_found INTEGER DEFAULT 0,
                    by_complaint_category TEXT DEFAULT '{}',
                    by_app_category TEXT DEFAULT '{}',
                    top_complaints TEXT DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'running',
                    error TEXT,
                    started_at TEXT,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS agent_runs (
                    id SERIAL PRIMARY KEY,
                    run_date TEXT NOT NULL,
                    step TEXT NOT NULL,
                    status TEXT NOT NULL,
                    apps_processed INTEGER DEFAULT 0,
                    reviews_processed INTEGER DEFAULT 0,
                    error TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS app_opportunities (
                    id SERIAL PRIMARY KEY,
                    app_id TEXT NOT NULL,
                    run_date TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    review_count INTEGER DEFAULT 0,
                    complaint_ids TEXT DEFAULT '[]',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS pm_companies (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    job_count INTEGER DEFAULT 0,
                    last_scraped TEXT
                );

                CREATE TABLE IF NOT EXISTS pm_jobs (
                    id TEXT PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    company_name TEXT,
                    title TEXT NOT NULL,
                    location TEXT,
                    level TEXT,
                    description TEXT,
                    url TEXT,
                    posted_date TEXT
                );

                CREATE TABLE IF NOT EXISTS pm_outcomes (
                    id SERIAL PRIMARY KEY,
                    company_id TEXT NOT NULL,
                    company_name TEXT,
                    scraped_date TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    job_count INTEGER DEFAULT 0,
                    job_ids TEXT DEFAULT '[]'
                );

                CREATE TABLE IF NOT EXISTS pm_global_outcomes (
                    id SERIAL PRIMARY KEY,
                    scraped_date TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    job_count INTEGER DEFAULT 0,
                    company_count INTEGER DEFAULT 0,
                    job_ids TEXT DEFAULT '[]',
                    companies TEXT DEFAULT '[]'
                );

                CREATE INDEX IF NOT EXISTS idx_reviews_scraped ON reviews(scraped_at);
                CREATE INDEX IF NOT EXISTS idx_complaints_run ON complaints(run_date);
                CREATE INDEX IF NOT EXISTS idx_complaints_app ON complaints(app_id, run_date);
                CREATE INDEX IF NOT EXISTS idx_agent_runs_date ON agent_runs(run_date);
                CREATE INDEX IF NOT EXISTS idx_opportunities_app ON app_opportunities(app_id, run_date);
                CREATE INDEX IF NOT EXISTS idx_pm_jobs_company ON pm_jobs(company_id);
                """
                )

                conn.commit()
                logger.info("PostgreSQL schema ensured")


def create_database_manager(
    database_url: Optional[str] = None, database_file: Optional[str] = None
) -> DatabaseManager:
    """Factory function to create appropriate database manager."""

    # Use DATABASE_URL if provided (Railway/Heroku style)
    if not database_url:
        database_url = os.getenv("DATABASE_URL")

    if database_url and database_url.startswith("postgres"):
        logger.info("Using PostgreSQL database manager")
        return PostgresManager(database_url)
    else:
        # Fall back to SQLite
        database_file = database_file or os.getenv("DATABASE_FILE", "growth_copilot.db")
        logger.info(f"Using SQLite database manager: {database_file}")
        return DatabaseManager(database_file)
