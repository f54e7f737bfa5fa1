"""Entry point for the PM jobs outcome agent."""

import logging
import sys
import time
import traceback
from dataclasses import dataclass
from typing import Callable, Optional

import click

from .config import Settings, settings
from .database import DatabaseManager
from .database_postgres import create_database_manager
from .llm import ExtractionClient, create_extraction_client
from .pm_outcomes import generate_global_outcomes, generate_pm_outcomes
from .run import console, retry_policy_from, setup_logging
from .scrapers import MuseJobsClient, fetch_pm_jobs
from .utils import today_run_date

logger = logging.getLogger(__name__)


@dataclass
class PMRunStats:
    jobs: int = 0
    outcomes: int = 0
    global_outcomes: int = 0


def run_pm_agent(
    db: DatabaseManager,
    client: ExtractionClient,
    muse: MuseJobsClient,
    scraped_date: str,
    config: Settings = settings,
    sleep: Callable[[float], None] = time.sleep,
) -> PMRunStats:
    """Fetch PM jobs, then synthesize per-company and global outcomes.

    Stops after the fetch when no job survives the filters.
    """
    stats = PMRunStats()
    stats.jobs = fetch_pm_jobs(db, muse, scraped_on=scraped_date)
    if stats.jobs == 0:
        logger.info("  No jobs found, check the API or filters")
        return stats

    retry_policy = retry_policy_from(config, sleep)
    stats.outcomes = generate_pm_outcomes(
        db,
        client,
        scraped_date,
        delay=config.outcome_delay_seconds,
        sleep=sleep,
        retry_policy=retry_policy,
    )
    stats.global_outcomes = generate_global_outcomes(
        db, client, scraped_date, retry_policy=retry_policy
    )
    return stats


@click.command()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Set logging level",
)
def main(log_level: Optional[str]) -> None:
    """Scrape entry-level PM jobs and extract the outcomes they call for."""
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level)

    scraped_date = today_run_date()
    console.print(f"\n[bold]{'═' * 60}[/bold]")
    console.print(f"[bold]  PM Jobs Agent: {scraped_date}[/bold]")
    console.print(f"[bold]{'═' * 60}[/bold]\n")

    try:
        db = create_database_manager(settings.database_url, settings.database_file)
        db.ensure_schema()
        client = create_extraction_client(settings)
        muse = MuseJobsClient(
            timeout=settings.http_timeout_seconds,
            retries=settings.http_retries,
            backoff=settings.http_backoff,
        )
        stats = run_pm_agent(db, client, muse, scraped_date)
    except Exception as e:
        logger.error(f"❌ PM agent failed: {e}")
        traceback.print_exc()
        console.print(f"[red]❌ PM agent failed:[/red] {e}")
        sys.exit(1)

    console.print(
        f"[green]  DONE[/green]: Jobs: {stats.jobs} | Outcomes: {stats.outcomes} | "
        f"Global themes: {stats.global_outcomes}"
    )
    console.print(f"[bold]{'═' * 60}[/bold]\n")


if __name__ == "__main__":
    main()
