"""Outcome synthesis for entry-level PM job postings."""

import logging
import time
from typing import Callable, List, Optional

from .database import DatabaseManager
from .llm import ExtractionClient
from .mapping import map_cluster_indices
from .models import JobPosting
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_JOBS_PER_COMPANY = 10
MAX_OUTCOMES_PER_COMPANY = 5
MAX_GLOBAL_JOBS = 40
MAX_GLOBAL_OUTCOMES = 8


def _call(retry_policy: Optional[RetryPolicy], func: Callable, *args):
    if retry_policy:
        return retry_policy.call(func, *args)
    return func(*args)


def generate_pm_outcomes(
    db: DatabaseManager,
    client: ExtractionClient,
    scraped_date: str,
    delay: float = 0.8,
    sleep: Callable[[float], None] = time.sleep,
    retry_policy: Optional[RetryPolicy] = None,
) -> int:
    """Replace the day's per-company outcomes.

    Every company scraped on ``scraped_date`` gets up to five outcomes drawn
    from at most ten of its postings. A company that fails is logged and
    skipped.

    Returns:
        Number of outcomes stored
    """
    logger.info("🎯 Generating PM outcomes...")

    companies = db.get_companies(scraped_on=scraped_date)
    logger.info(f"  Processing {len(companies)} companies")
    if not companies:
        return 0

    db.delete_outcomes(scraped_date)

    total = 0
    for position, company in enumerate(companies, start=1):
        jobs = db.get_jobs_for_company(company["id"], MAX_JOBS_PER_COMPANY)
        if not jobs:
            continue

        logger.info(f"  {company['name']}: {len(jobs)} jobs → generating outcomes...")
        try:
            clusters = _call(retry_policy, client.cluster_job_outcomes, company["name"], jobs)
            rows = []
            for cluster in clusters[:MAX_OUTCOMES_PER_COMPANY]:
                job_ids = [job.id for job in map_cluster_indices(cluster.indices, jobs)]
                rows.append(
                    {
                        "company_id": company["id"],
                        "company_name": company["name"],
                        "scraped_date": scraped_date,
                        "title": cluster.title,
                        "description": cluster.description,
                        "job_count": len(job_ids),
                        "job_ids": job_ids,
                    }
                )
            if rows:
                db.insert_outcomes(rows)
                total += len(rows)
                logger.info(f"  ✓ {company['name']}: {len(rows)} outcomes")
        except Exception as e:
            logger.error(f"  Error for {company['name']}: {e}")

        if position < len(companies):
            sleep(delay)

    logger.info(f"  Total outcomes: {total}")
    return total


def select_global_sample(
    db: DatabaseManager, scraped_date: str, limit: int = MAX_GLOBAL_JOBS
) -> List[JobPosting]:
    """Pick postings round-robin across the day's companies.

    Each round takes at most one job from every company, in company order.
    """
    per_company = [
        db.get_jobs_for_company(company["id"], MAX_JOBS_PER_COMPANY)
        for company in db.get_companies(scraped_on=scraped_date)
    ]

    sample: List[JobPosting] = []
    depth = 0
    while len(sample) < limit and any(depth < len(jobs) for jobs in per_company):
        for jobs in per_company:
            if depth < len(jobs):
                sample.append(jobs[depth])
                if len(sample) >= limit:
                    break
        depth += 1
    return sample


def generate_global_outcomes(
    db: DatabaseManager,
    client: ExtractionClient,
    scraped_date: str,
    retry_policy: Optional[RetryPolicy] = None,
) -> int:
    """Replace the day's cross-company outcome themes.

    Unlike the per-company pass, a failure here propagates to the caller.

    Returns:
        Number of themes stored
    """
    logger.info("🌐 Synthesizing cross-company PM outcomes...")

    jobs = select_global_sample(db, scraped_date)
    if not jobs:
        logger.info("  No jobs with descriptions to synthesize")
        return 0

    companies_in_sample = len({job.company_id for job in jobs})
    logger.info(f"  Sampled {len(jobs)} jobs from {companies_in_sample} companies")
    clusters = _call(retry_policy, client.synthesize_global_outcomes, jobs)

    rows = []
    for cluster in clusters[:MAX_GLOBAL_OUTCOMES]:
        matched = map_cluster_indices(cluster.indices, jobs)
        companies = sorted({job.company_name for job in matched})
        rows.append(
            {
                "scraped_date": scraped_date,
                "title": cluster.title,
                "description": cluster.description,
                "job_count": len(matched),
                "company_count": len(companies),
                "job_ids": [job.id for job in matched],
                "companies": companies,
            }
        )

    db.delete_global_outcomes(scraped_date)
    if rows:
        db.insert_global_outcomes(rows)

    logger.info(f"  ✓ Global outcome themes: {len(rows)}")
    return len(rows)
