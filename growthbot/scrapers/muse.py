"""Entry-level product management postings from The Muse public jobs API."""

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..database import DatabaseManager
from ..models import Company, JobPosting
from ..utils import days_ago, strip_html, today_run_date

logger = logging.getLogger(__name__)

MUSE_BASE_URL = "https://www.themuse.com/api/public/jobs"
USER_AGENT = "growth-co-pilot/1.0 (job-intelligence-agent)"

CATEGORY = "Product Management"
TARGET_LEVELS = ["Entry Level", "Associate"]
MAX_PAGES = 8
PAGE_DELAY_SECONDS = 0.4
RECENT_DAYS = 183
DESCRIPTION_MAX_CHARS = 8000

# Keywords that mark a software or tech product role
TECH_SIGNALS = [
    "software", "saas", "platform", "cloud", "api", "app ", "apps ",
    "mobile", "digital", "tech", "data", "ai", " ml ", "automation",
    "ecommerce", "fintech", "healthtech", "edtech", "startup", "product",
]


def is_tech_role(title: str, company_name: str, description: str) -> bool:
    haystack = f"{title} {company_name} {description}".lower()
    return any(signal in haystack for signal in TECH_SIGNALS)


class MuseJobsClient:
    """Paginated reader for The Muse jobs endpoint (no API key required)."""

    def __init__(
        self,
        timeout: float = 15.0,
        retries: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

        retry_strategy = Retry(
            total=retries,
            backoff_factor=backoff,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def fetch_page(self, level: str, page: int) -> Dict[str, Any]:
        response = self.session.get(
            MUSE_BASE_URL,
            params={
                "category": CATEGORY,
                "level": level,
                "page": page,
                "descending": "true",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_level(
        self, level: str, seen_ids: set, max_pages: int = MAX_PAGES
    ) -> List[Dict[str, Any]]:
        """Raw postings for one level, skipping ids already in ``seen_ids``.

        A failing page ends pagination for that level; what was fetched so
        far is kept.
        """
        logger.info(f'  Fetching "{level}" jobs...')
        jobs: List[Dict[str, Any]] = []

        for page in range(max_pages):
            try:
                data = self.fetch_page(level, page)
            except (requests.RequestException, ValueError) as e:
                logger.error(f"    Error on page {page}: {e}")
                break

            fresh = [
                job
                for job in data.get("results") or []
                if job.get("id") is not None and job["id"] not in seen_ids
            ]
            seen_ids.update(job["id"] for job in fresh)
            jobs.extend(fresh)
            logger.info(f"    page {page}: +{len(fresh)} (total {len(jobs)})")

            if page >= (data.get("page_count") or 0) - 1:
                break
            self.sleep(PAGE_DELAY_SECONDS)

        return jobs


def to_job_posting(raw: Dict[str, Any]) -> JobPosting:
    """Normalise a raw Muse posting."""
    company = raw.get("company") or {}
    locations = raw.get("locations") or []
    levels = raw.get("levels") or []
    published = raw.get("publication_date") or ""

    return JobPosting(
        id=str(raw["id"]),
        company_id=company.get("short_name") or str(company.get("id", "")),
        company_name=company.get("name") or "",
        title=raw.get("name") or "",
        description=strip_html(raw.get("contents") or "")[:DESCRIPTION_MAX_CHARS],
        location=locations[0].get("name") if locations else None,
        level=levels[0].get("name") if levels else None,
        url=(raw.get("refs") or {}).get("landing_page"),
        posted_date=published.split("T")[0] or None,
    )


def filter_recent_tech_jobs(
    jobs: Sequence[JobPosting], cutoff: Optional[str] = None
) -> List[JobPosting]:
    """Keep postings on or after ``cutoff`` (YYYY-MM-DD) that look like tech roles."""
    cutoff = cutoff or days_ago(RECENT_DAYS)
    return [
        job
        for job in jobs
        if job.posted_date
        and job.posted_date >= cutoff
        and is_tech_role(job.title, job.company_name, job.description or "")
    ]


def group_companies(jobs: Sequence[JobPosting], scraped_on: str) -> List[Company]:
    companies: Dict[str, Company] = {}
    for job in jobs:
        company = companies.get(job.company_id)
        if company is None:
            company = companies[job.company_id] = Company(
                id=job.company_id, name=job.company_name, last_scraped=scraped_on
            )
        company.job_count += 1
    return list(companies.values())


def fetch_pm_jobs(
    db: DatabaseManager,
    client: MuseJobsClient,
    levels: Sequence[str] = TARGET_LEVELS,
    scraped_on: Optional[str] = None,
) -> int:
    """Fetch, filter and upsert PM jobs and their companies; return jobs stored.

    Raises:
        Exception: If companies or jobs cannot be written
    """
    logger.info("🔎 Fetching entry-level PM jobs...")
    scraped_on = scraped_on or today_run_date()

    seen_ids: set = set()
    raw_jobs: List[Dict[str, Any]] = []
    for level in levels:
        raw_jobs.extend(client.fetch_level(level, seen_ids))
    logger.info(f"  Total raw jobs: {len(raw_jobs)}")

    jobs = filter_recent_tech_jobs([to_job_posting(raw) for raw in raw_jobs])
    logger.info(f"  After filter (software + 6mo): {len(jobs)}")
    if not jobs:
        return 0

    companies = group_companies(jobs, scraped_on)
    db.upsert_companies(companies)
    logger.info(f"  Upserted {len(companies)} companies")

    db.upsert_jobs(jobs)
    logger.info(f"  ✓ Upserted {len(jobs)} jobs")
    return len(jobs)
