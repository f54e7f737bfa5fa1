"""Main entry point for the daily App Store complaint agent."""

import json
import logging
import sys
import time
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from .aggregate import aggregate, top_categories
from .analyze import ComplaintAnalyzer
from .config import Settings, settings
from .database import DatabaseManager
from .database_postgres import create_database_manager
from .llm import ExtractionClient, create_extraction_client
from .models import RunStatus, StepStatus, SummaryAggregates
from .opportunities import generate_opportunities
from .retry import RetryPolicy
from .scheduler import BatchScheduler
from .scrapers import AppStoreClient, fetch_apps, fetch_reviews
from .utils import parse_run_date, today_run_date, utc_now_iso

console = Console()


def setup_logging(level: str) -> None:
    """Set up logging with Rich handler or JSON lines."""
    log_level = getattr(logging, level.upper())
    if settings.log_json:

        class JsonFormatter(logging.Formatter):
            def format(self, record: logging.LogRecord) -> str:
                payload = {
                    "level": record.levelname,
                    "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
                    "message": record.getMessage(),
                    "name": record.name,
                }
                return json.dumps(payload)

        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
            force=True,
        )


logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    """Counters reported at the end of a run."""

    apps_scraped: int = 0
    reviews_inserted: int = 0
    complaints_found: int = 0
    opportunities: int = 0


class StepLogger:
    """Writes step transitions to ``agent_runs``; write failures are only logged."""

    def __init__(self, db: DatabaseManager, run_date: str):
        self.db = db
        self.run_date = run_date

    def __call__(
        self,
        step: str,
        status: StepStatus,
        apps_processed: int = 0,
        reviews_processed: int = 0,
        error: Optional[str] = None,
    ) -> None:
        try:
            self.db.log_step(
                self.run_date,
                step,
                status.value,
                apps_processed=apps_processed,
                reviews_processed=reviews_processed,
                error=error,
            )
        except Exception as e:
            logger.warning(f"Could not record step {step} ({status.value}): {e}")


def retry_policy_from(config: Settings, sleep: Callable[[float], None] = time.sleep) -> RetryPolicy:
    return RetryPolicy(
        max_retries=config.rate_limit_max_retries,
        default_wait=config.rate_limit_default_wait,
        hint_padding=config.rate_limit_hint_padding,
        sleep=sleep,
    )


def run_agent(
    db: DatabaseManager,
    client: ExtractionClient,
    app_store: AppStoreClient,
    run_date: str,
    config: Settings = settings,
    skip_scrape: bool = False,
    analyzer: Optional[ComplaintAnalyzer] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunStats:
    """Run every step of the complaint pipeline for ``run_date``.

    Marks the summary running first. Any step other than opportunities
    raises on failure; the caller records the failed status.
    """
    stats = RunStats()
    log_step = StepLogger(db, run_date)

    db.upsert_summary(run_date, status=RunStatus.RUNNING.value, started_at=utc_now_iso())

    if skip_scrape:
        stats.apps_scraped = len(db.get_apps())
        logger.info(f"⏭ Skipping scrape, reusing {stats.apps_scraped} stored apps")
    else:
        log_step("fetch_apps", StepStatus.RUNNING)
        apps = fetch_apps(db, app_store, limit=config.top_apps_limit)
        stats.apps_scraped = len(apps)
        log_step("fetch_apps", StepStatus.SUCCESS, apps_processed=stats.apps_scraped)

        log_step("fetch_reviews", StepStatus.RUNNING, apps_processed=stats.apps_scraped)
        stats.reviews_inserted = fetch_reviews(
            db,
            app_store,
            apps,
            per_app=config.reviews_per_app,
            max_rating=config.max_review_rating,
            concurrency=config.scrape_concurrency,
            sleep=sleep,
        )
        log_step(
            "fetch_reviews",
            StepStatus.SUCCESS,
            apps_processed=stats.apps_scraped,
            reviews_processed=stats.reviews_inserted,
        )

    log_step("analyze", StepStatus.RUNNING, reviews_processed=stats.reviews_inserted)
    analyzer = analyzer or ComplaintAnalyzer(
        db,
        client,
        config,
        scheduler=BatchScheduler(
            retry_policy_from(config, sleep), config.batch_delay_seconds, sleep=sleep
        ),
    )
    stats.complaints_found = analyzer.analyze(run_date)
    log_step(
        "analyze",
        StepStatus.SUCCESS,
        apps_processed=stats.apps_scraped,
        reviews_processed=stats.reviews_inserted,
    )

    log_step("opportunities", StepStatus.RUNNING)
    try:
        stats.opportunities = generate_opportunities(
            db,
            client,
            run_date,
            delay=config.opportunity_delay_seconds,
            sleep=sleep,
            retry_policy=retry_policy_from(config, sleep),
        )
        log_step("opportunities", StepStatus.SUCCESS, apps_processed=stats.apps_scraped)
    except Exception as e:
        logger.error(f"⚠ Opportunities step failed, continuing: {e}")
        log_step("opportunities", StepStatus.FAILED, error=str(e))

    log_step("aggregate", StepStatus.RUNNING)
    aggregate(
        db,
        run_date,
        apps_scraped=stats.apps_scraped,
        reviews_processed=stats.reviews_inserted,
        top_n=config.top_complaints_limit,
    )
    log_step(
        "aggregate",
        StepStatus.SUCCESS,
        apps_processed=stats.apps_scraped,
        reviews_processed=stats.reviews_inserted,
    )

    log_step(
        "done",
        StepStatus.SUCCESS,
        apps_processed=stats.apps_scraped,
        reviews_processed=stats.reviews_inserted,
    )
    return stats


def mark_failed(db: DatabaseManager, run_date: str, error: str) -> None:
    """Record a fatal error on the summary and the step log."""
    try:
        db.upsert_summary(
            run_date,
            status=RunStatus.FAILED.value,
            error=error,
            completed_at=utc_now_iso(),
        )
    except Exception as e:
        logger.error(f"Could not mark summary failed: {e}")
    StepLogger(db, run_date)("done", StepStatus.FAILED, error=error)


@click.command()
@click.option(
    "--run-date",
    default=None,
    help="Run date as YYYY-MM-DD (defaults to today, UTC)",
)
@click.option(
    "--skip-scrape",
    is_flag=True,
    default=False,
    help="Skip App Store scraping, only analyze stored reviews",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set logging level",
)
def main(run_date: Optional[str], skip_scrape: bool, log_level: str) -> None:
    """Run the daily App Store complaint agent.

    Scrapes the top free apps and their low-rating reviews, extracts
    complaints with the LLM, clusters opportunities and saves the summary.
    """
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level)

    try:
        run_date = parse_run_date(run_date) if run_date else today_run_date()
    except ValueError:
        console.print(f"[red]❌ Invalid --run-date:[/red] {run_date}")
        sys.exit(2)

    console.print(f"\n[bold]{'═' * 60}[/bold]")
    console.print(f"[bold]  App Complaint Agent: {run_date}[/bold]")
    console.print(f"[bold]{'═' * 60}[/bold]\n")

    db = create_database_manager(settings.database_url, settings.database_file)
    try:
        db.ensure_schema()
    except Exception as e:
        logger.error(f"Database unavailable: {e}")
        console.print(f"[red]❌ Database unavailable:[/red] {e}")
        sys.exit(1)

    try:
        client = create_extraction_client(settings)
        app_store = AppStoreClient(
            country=settings.app_store_country,
            timeout=settings.http_timeout_seconds,
            retries=settings.http_retries,
            backoff=settings.http_backoff,
        )
        stats = run_agent(db, client, app_store, run_date, skip_scrape=skip_scrape)
    except Exception as e:
        logger.error(f"❌ Agent failed: {e}")
        traceback.print_exc()
        mark_failed(db, run_date, str(e))
        console.print(f"[red]❌ Agent failed:[/red] {e}")
        sys.exit(1)

    summary = db.get_summary(run_date) or {}
    console.print(f"\n[bold]{'═' * 60}[/bold]")
    console.print(
        f"[green]  DONE[/green]: Apps: {stats.apps_scraped} | "
        f"Reviews: {stats.reviews_inserted} | Complaints: {stats.complaints_found} | "
        f"Opportunities: {stats.opportunities}"
    )
    by_category = summary.get("by_complaint_category") or {}
    if by_category:
        ranked = top_categories(SummaryAggregates(by_complaint_category=by_category))
        console.print(f"  Top categories: {', '.join(ranked)}")
    console.print(f"[bold]{'═' * 60}[/bold]\n")
    logger.info("✅ Agent run completed successfully")


if __name__ == "__main__":
    main()
