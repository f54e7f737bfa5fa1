"""Collectors for App Store apps, reviews and PM job postings."""

from .app_store import AppStoreClient, fetch_apps, fetch_reviews
from .muse import MuseJobsClient, fetch_pm_jobs

__all__ = [
    "AppStoreClient",
    "MuseJobsClient",
    "fetch_apps",
    "fetch_pm_jobs",
    "fetch_reviews",
]
