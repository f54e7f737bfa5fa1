"""Database schema and management for the Growth Co-Pilot agent."""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .models import (
    AppRecord,
    Company,
    ComplaintRecord,
    JobPosting,
    ReviewRecord,
    ReviewRow,
)
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = (
    "apps_scraped",
    "reviews_processed",
    "complaints_found",
    "by_complaint_category",
    "by_app_category",
    "top_complaints",
    "status",
    "error",
    "started_at",
    "completed_at",
)
SUMMARY_JSON_COLUMNS = ("by_complaint_category", "by_app_category", "top_complaints")


def _decode_json(row: Dict[str, Any], columns: Iterable[str]) -> Dict[str, Any]:
    for column in columns:
        value = row.get(column)
        if isinstance(value, str):
            try:
                row[column] = json.loads(value)
            except json.JSONDecodeError:
                logger.warning(f"Stored {column} is not valid JSON")
    return row


class DatabaseManager:
    """Manages the agent's SQLite database schema and operations.

    Queries are written with ``?`` placeholders and ``ON CONFLICT`` clauses
    so the Postgres subclass can reuse them unchanged.
    """

    placeholder = "?"

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)

    def get_connection(self) -> Any:
        """Get database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        """Ensure all agent tables exist."""
        with self.get_connection() as conn:
            conn.executescript(
                """
            -- Top-chart apps, refreshed every run
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

            -- Low-rating reviews (written by the scraper, read by analysis)
            CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
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

            -- One row per accepted complaint item
            CREATE TABLE IF NOT EXISTS complaints (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                review_id INTEGER NOT NULL,
                app_id TEXT NOT NULL,
                app_category TEXT,
                complaint_category TEXT NOT NULL,
                complaint_text TEXT NOT NULL,
                severity INTEGER NOT NULL,
                run_date TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(review_id, run_date, complaint_category, complaint_text)
            );

            -- One row per run date
            CREATE TABLE IF NOT EXISTS daily_summaries (
                run_date TEXT PRIMARY KEY,
                apps_scraped INTEGER DEFAULT 0,
                reviews_processed INTEGER DEFAULT 0,
                complaints_found INTEGER DEFAULT 0,
                by_complaint_category TEXT DEFAULT '{}',
                by_app_category TEXT DEFAULT '{}',
                top_complaints TEXT DEFAULT '[]',
                status TEXT NOT NULL DEFAULT 'running',  -- running, complete, failed
                error TEXT,
                started_at TEXT,
                completed_at TEXT
            );

            -- Step-level run log for operational visibility
            CREATE TABLE IF NOT EXISTS agent_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_date TEXT NOT NULL,
                step TEXT NOT NULL,
                status TEXT NOT NULL,  -- running, success, failed
                apps_processed INTEGER DEFAULT 0,
                reviews_processed INTEGER DEFAULT 0,
                error TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT
            );

            CREATE TABLE IF NOT EXISTS app_opportunities (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                app_id TEXT NOT NULL,
                run_date TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                review_count INTEGER DEFAULT 0,
                complaint_ids TEXT DEFAULT '[]',
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
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
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                company_id TEXT NOT NULL,
                company_name TEXT,
                scraped_date TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                job_count INTEGER DEFAULT 0,
                job_ids TEXT DEFAULT '[]'
            );

            CREATE TABLE IF NOT EXISTS pm_global_outcomes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
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

            logger.info("Database schema ensured")

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _sql(self, query: str) -> str:
        if self.placeholder == "?":
            return query
        return query.replace("?", self.placeholder)

    def _execute(self, conn: Any, query: str, params: Sequence[Any] = ()) -> Any:
        cursor = conn.cursor()
        cursor.execute(self._sql(query), tuple(params))
        return cursor

    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.get_connection() as conn:
            cursor = self._execute(conn, query, params)
            return [dict(row) for row in cursor.fetchall()]

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.get_connection() as conn:
            cursor = self._execute(conn, query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

    def _insert_many(self, query: str, rows: Iterable[Sequence[Any]]) -> int:
        """Insert rows one by one in a single transaction; return rows written."""
        written = 0
        with self.get_connection() as conn:
            for params in rows:
                cursor = self._execute(conn, query, params)
                written += max(cursor.rowcount, 0)
        return written

    def _in_clause(self, values: Sequence[Any]) -> str:
        return ", ".join("?" for _ in values)

    # ------------------------------------------------------------------
    # Apps and reviews
    # ------------------------------------------------------------------

    def upsert_apps(self, apps: Sequence[AppRecord]) -> int:
        """Insert or refresh app metadata and chart rank."""
        return self._insert_many(
            """
            INSERT INTO apps
            (app_id, name, developer, app_category, icon_url, current_rank,
             avg_rating, last_scraped)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (app_id) DO UPDATE SET
                name = excluded.name,
                developer = excluded.developer,
                app_category = excluded.app_category,
                icon_url = excluded.icon_url,
                current_rank = excluded.current_rank,
                avg_rating = excluded.avg_rating,
                last_scraped = excluded.last_scraped
            """,
            (
                (
                    app.app_id,
                    app.name,
                    app.developer,
                    app.app_category,
                    app.icon_url,
                    app.current_rank,
                    app.avg_rating,
                    app.last_scraped or utc_now_iso(),
                )
                for app in apps
            ),
        )

    def get_apps(self) -> List[Dict[str, Any]]:
        """Apps ordered by current chart rank."""
        return self._fetchall(
            """
            SELECT app_id, name, icon_url, app_category, current_rank
            FROM apps
            ORDER BY current_rank ASC
            """
        )

    def get_app_names(self, app_ids: Sequence[str]) -> Dict[str, str]:
        if not app_ids:
            return {}
        rows = self._fetchall(
            f"SELECT app_id, name FROM apps WHERE app_id IN ({self._in_clause(app_ids)})",
            list(app_ids),
        )
        return {row["app_id"]: row["name"] for row in rows}

    def insert_reviews(self, reviews: Sequence[ReviewRecord]) -> int:
        """Insert reviews, ignoring ones already stored; return new rows."""
        scraped_at = utc_now_iso()
        return self._insert_many(
            """
            INSERT INTO reviews
            (app_id, itunes_id, rating, title, body, author, review_date, scraped_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (app_id, itunes_id) DO NOTHING
            """,
            (
                (
                    review.app_id,
                    review.itunes_id,
                    review.rating,
                    review.title,
                    review.body,
                    review.author,
                    review.review_date,
                    scraped_at,
                )
                for review in reviews
            ),
        )

    def get_reviews_for_analysis(self, since: str) -> List[ReviewRow]:
        """Reviews scraped at or after ``since``, joined with app category."""
        rows = self._fetchall(
            """
            SELECT r.id, r.app_id, COALESCE(a.app_category, 'Unknown') AS app_category,
                   r.rating, r.title, r.body
            FROM reviews r
            LEFT JOIN apps a ON a.app_id = r.app_id
            WHERE r.scraped_at >= ?
            ORDER BY r.scraped_at ASC, r.id ASC
            """,
            (since,),
        )
        return [
            ReviewRow(
                id=str(row["id"]),
                app_id=row["app_id"],
                app_category=row["app_category"],
                rating=row["rating"],
                title=row["title"],
                body=row["body"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Complaints
    # ------------------------------------------------------------------

    def get_processed_review_ids(self, run_date: str) -> Set[str]:
        """Ids of reviews that already have complaints for the run."""
        rows = self._fetchall(
            "SELECT DISTINCT review_id FROM complaints WHERE run_date = ?", (run_date,)
        )
        return {str(row["review_id"]) for row in rows}

    def insert_complaints(self, complaints: Sequence[ComplaintRecord]) -> int:
        """Insert complaints; exact repeats for the same run are ignored."""
        return self._insert_many(
            """
            INSERT INTO complaints
            (review_id, app_id, app_category, complaint_category, complaint_text,
             severity, run_date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (review_id, run_date, complaint_category, complaint_text)
            DO NOTHING
            """,
            (
                (
                    c.review_id,
                    c.app_id,
                    c.app_category,
                    c.complaint_category,
                    c.complaint_text,
                    c.severity,
                    c.run_date,
                )
                for c in complaints
            ),
        )

    def get_complaints_for_run(self, run_date: str) -> List[Dict[str, Any]]:
        """Every complaint of a run with its app's display name."""
        return self._fetchall(
            """
            SELECT c.id, c.app_id, c.app_category, c.complaint_category,
                   c.complaint_text, c.severity, COALESCE(a.name, c.app_id) AS app_name
            FROM complaints c
            LEFT JOIN apps a ON a.app_id = c.app_id
            WHERE c.run_date = ?
            ORDER BY c.id ASC
            """,
            (run_date,),
        )

    def get_app_ids_with_complaints(self, run_date: str) -> List[str]:
        rows = self._fetchall(
            """
            SELECT app_id, MIN(id) AS first_id FROM complaints
            WHERE run_date = ?
            GROUP BY app_id
            ORDER BY first_id ASC
            """,
            (run_date,),
        )
        return [row["app_id"] for row in rows]

    def get_complaints_for_app(
        self, app_id: str, run_date: str, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """One app's complaints for a run, most severe first."""
        return self._fetchall(
            """
            SELECT id, complaint_text, complaint_category, severity
            FROM complaints
            WHERE app_id = ? AND run_date = ?
            ORDER BY severity DESC, id ASC
            LIMIT ?
            """,
            (app_id, run_date, limit),
        )

    def query_complaints(
        self,
        app_category: Optional[str] = None,
        complaint_category: Optional[str] = None,
        app_id: Optional[str] = None,
        run_date: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Filtered, paginated complaints (most severe first) and total count."""
        clauses = []
        params: List[Any] = []
        for column, value in (
            ("c.app_category", app_category),
            ("c.complaint_category", complaint_category),
            ("c.app_id", app_id),
            ("c.run_date", run_date),
        ):
            if value:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total_row = self._fetchone(
            f"SELECT COUNT(*) AS total FROM complaints c {where}", params
        )
        total = int(total_row["total"]) if total_row else 0

        offset = (max(page, 1) - 1) * limit
        rows = self._fetchall(
            f"""
            SELECT c.*, a.name AS app_name, a.icon_url AS app_icon_url
            FROM complaints c
            LEFT JOIN apps a ON a.app_id = c.app_id
            {where}
            ORDER BY c.severity DESC, c.id ASC
            LIMIT ? OFFSET ?
            """,
            params + [limit, offset],
        )
        return rows, total

    # ------------------------------------------------------------------
    # Daily summaries and run log
    # ------------------------------------------------------------------

    def upsert_summary(self, run_date: str, **fields: Any) -> None:
        """Create or overwrite the given columns of a run's summary row."""
        unknown = set(fields) - set(SUMMARY_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown summary columns: {sorted(unknown)}")

        values = {
            key: json.dumps(value) if key in SUMMARY_JSON_COLUMNS else value
            for key, value in fields.items()
        }
        columns = ["run_date"] + list(values)
        updates = ", ".join(f"{col} = excluded.{col}" for col in values)
        conflict = f"DO UPDATE SET {updates}" if updates else "DO NOTHING"

        with self.get_connection() as conn:
            self._execute(
                conn,
                f"""
                INSERT INTO daily_summaries ({', '.join(columns)})
                VALUES ({', '.join('?' for _ in columns)})
                ON CONFLICT (run_date) {conflict}
                """,
                [run_date] + list(values.values()),
            )

    def get_summary(self, run_date: str) -> Optional[Dict[str, Any]]:
        row = self._fetchone(
            "SELECT * FROM daily_summaries WHERE run_date = ?", (run_date,)
        )
        return _decode_json(row, SUMMARY_JSON_COLUMNS) if row else None

    def get_summary_history(self, since: str) -> List[Dict[str, Any]]:
        """Summaries from ``since`` onwards, oldest first."""
        rows = self._fetchall(
            """
            SELECT run_date, complaints_found, reviews_processed, apps_scraped,
                   by_complaint_category, status
            FROM daily_summaries
            WHERE run_date >= ?
            ORDER BY run_date ASC
            """,
            (since,),
        )
        return [_decode_json(row, ("by_complaint_category",)) for row in rows]

    def log_step(
        self,
        run_date: str,
        step: str,
        status: str,
        apps_processed: int = 0,
        reviews_processed: int = 0,
        error: Optional[str] = None,
    ) -> None:
        """Record a pipeline step transition."""
        now = utc_now_iso()
        with self.get_connection() as conn:
            self._execute(
                conn,
                """
                INSERT INTO agent_runs
                (run_date, step, status, apps_processed, reviews_processed, error,
                 started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_date,
                    step,
                    status,
                    apps_processed,
                    reviews_processed,
                    error,
                    now,
                    now if status != "running" else None,
                ),
            )

    def get_runs(self, since: str) -> List[Dict[str, Any]]:
        return self._fetchall(
            """
            SELECT * FROM agent_runs
            WHERE run_date >= ?
            ORDER BY started_at DESC, id DESC
            """,
            (since,),
        )

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    def delete_opportunities(self, run_date: str) -> None:
        with self.get_connection() as conn:
            self._execute(
                conn, "DELETE FROM app_opportunities WHERE run_date = ?", (run_date,)
            )

    def insert_opportunities(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._insert_many(
            """
            INSERT INTO app_opportunities
            (app_id, run_date, title, description, review_count, complaint_ids)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                (
                    row["app_id"],
                    row["run_date"],
                    row["title"],
                    row.get("description"),
                    row.get("review_count", 0),
                    json.dumps(row.get("complaint_ids", [])),
                )
                for row in rows
            ),
        )

    def get_opportunities(
        self, app_id: str, run_date: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """An app's opportunities for a run date, or for its latest run."""
        if not run_date:
            latest = self._fetchone(
                "SELECT MAX(run_date) AS run_date FROM app_opportunities WHERE app_id = ?",
                (app_id,),
            )
            run_date = latest["run_date"] if latest else None
            if not run_date:
                return []

        rows = self._fetchall(
            """
            SELECT * FROM app_opportunities
            WHERE app_id = ? AND run_date = ?
            ORDER BY review_count DESC, id ASC
            """,
            (app_id, run_date),
        )
        return [_decode_json(row, ("complaint_ids",)) for row in rows]

    # ------------------------------------------------------------------
    # PM jobs
    # ------------------------------------------------------------------

    def upsert_companies(self, companies: Sequence[Company]) -> int:
        return self._insert_many(
            """
            INSERT INTO pm_companies (id, name, job_count, last_scraped)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                name = excluded.name,
                job_count = excluded.job_count,
                last_scraped = excluded.last_scraped
            """,
            ((c.id, c.name, c.job_count, c.last_scraped) for c in companies),
        )

    def upsert_jobs(self, jobs: Sequence[JobPosting]) -> int:
        return self._insert_many(
            """
            INSERT INTO pm_jobs
            (id, company_id, company_name, title, location, level, description,
             url, posted_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                company_id = excluded.company_id,
                company_name = excluded.company_name,
                title = excluded.title,
                location = excluded.location,
                level = excluded.level,
                description = excluded.description,
                url = excluded.url,
                posted_date = excluded.posted_date
            """,
            (
                (
                    j.id,
                    j.company_id,
                    j.company_name,
                    j.title,
                    j.location,
                    j.level,
                    j.description,
                    j.url,
                    j.posted_date,
                )
                for j in jobs
            ),
        )

    def get_companies(self, scraped_on: Optional[str] = None) -> List[Dict[str, Any]]:
        if scraped_on:
            return self._fetchall(
                """
                SELECT * FROM pm_companies WHERE last_scraped = ?
                ORDER BY job_count DESC, id ASC
                """,
                (scraped_on,),
            )
        return self._fetchall("SELECT * FROM pm_companies ORDER BY job_count DESC, id ASC")

    def get_jobs_for_company(self, company_id: str, limit: int = 10) -> List[JobPosting]:
        """A company's jobs that have a description, newest first."""
        rows = self._fetchall(
            """
            SELECT * FROM pm_jobs
            WHERE company_id = ? AND description IS NOT NULL
            ORDER BY posted_date DESC, id ASC
            LIMIT ?
            """,
            (company_id, limit),
        )
        return [JobPosting(**row) for row in rows]

    def get_jobs(
        self, company_id: Optional[str] = None, ids: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        clauses = []
        params: List[Any] = []
        if company_id:
            clauses.append("company_id = ?")
            params.append(company_id)
        if ids:
            clauses.append(f"id IN ({self._in_clause(ids)})")
            params.extend(ids)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._fetchall(
            f"""
            SELECT id, company_id, company_name, title, location, level, url,
                   posted_date, description
            FROM pm_jobs {where}
            ORDER BY posted_date DESC, id ASC
            """,
            params,
        )

    def delete_outcomes(self, scraped_date: str) -> None:
        with self.get_connection() as conn:
            self._execute(
                conn, "DELETE FROM pm_outcomes WHERE scraped_date = ?", (scraped_date,)
            )

    def insert_outcomes(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._insert_many(
            """
            INSERT INTO pm_outcomes
            (company_id, company_name, scraped_date, title, description, job_count,
             job_ids)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                (
                    row["company_id"],
                    row["company_name"],
                    row["scraped_date"],
                    row["title"],
                    row.get("description"),
                    row.get("job_count", 0),
                    json.dumps(row.get("job_ids", [])),
                )
                for row in rows
            ),
        )

    def get_outcomes(self, scraped_date: str) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM pm_outcomes WHERE scraped_date = ? ORDER BY id ASC",
            (scraped_date,),
        )
        return [_decode_json(row, ("job_ids",)) for row in rows]

    def delete_global_outcomes(self, scraped_date: str) -> None:
        with self.get_connection() as conn:
            self._execute(
                conn,
                "DELETE FROM pm_global_outcomes WHERE scraped_date = ?",
                (scraped_date,),
            )

    def insert_global_outcomes(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._insert_many(
            """
            INSERT INTO pm_global_outcomes
            (scraped_date, title, description, job_count, company_count, job_ids,
             companies)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                (
                    row["scraped_date"],
                    row["title"],
                    row.get("description"),
                    row.get("job_count", 0),
                    row.get("company_count", 0),
                    json.dumps(row.get("job_ids", [])),
                    json.dumps(row.get("companies", [])),
                )
                for row in rows
            ),
        )

    def get_latest_global_outcomes(self) -> List[Dict[str, Any]]:
        """Global outcomes of the most recent scrape date, biggest first."""
        latest = self._fetchone(
            "SELECT MAX(scraped_date) AS scraped_date FROM pm_global_outcomes"
        )
        if not latest or not latest["scraped_date"]:
            return []
        rows = self._fetchall(
            """
            SELECT * FROM pm_global_outcomes
            WHERE scraped_date = ?
            ORDER BY job_count DESC, id ASC
            """,
            (latest["scraped_date"],),
        )
        return [_decode_json(row, ("job_ids", "companies")) for row in rows]
