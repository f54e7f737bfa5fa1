"""App Store top-chart and customer-review collection via the iTunes RSS feeds."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..database import DatabaseManager
from ..models import AppRecord, ReviewRecord
from ..utils import utc_now_iso

logger = logging.getLogger(__name__)

ITUNES_RSS_BASE = "https://itunes.apple.com"
USER_AGENT = "growth-co-pilot/1.0 (app-review-agent)"
GROUP_DELAY_SECONDS = 0.5


def _label(node: Any, default: Optional[str] = None) -> Optional[str]:
    """Read the ``label`` of an RSS JSON node."""
    if isinstance(node, dict):
        value = node.get("label")
        return value if value is not None else default
    return default


def _entries(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    # The feed returns a bare object instead of a list when there is one entry
    entries = (payload.get("feed") or {}).get("entry") or []
    if isinstance(entries, dict):
        return [entries]
    return [e for e in entries if isinstance(e, dict)]


class AppStoreClient:
    """Client for the public iTunes RSS JSON feeds."""

    def __init__(
        self,
        country: str = "us",
        timeout: float = 15.0,
        retries: int = 3,
        backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        self.country = country
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})

        # Retry strategy for 429, 500, 502, 503, 504
        retry_strategy = Retry(
            total=retries,
            backoff_factor=backoff,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _get_json(self, url: str) -> Dict[str, Any]:
        logger.debug(f"Requesting: {url}")
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def top_free_apps(self, limit: int = 100) -> List[AppRecord]:
        """Current top-free iPhone chart, rank 1 first."""
        url = f"{ITUNES_RSS_BASE}/{self.country}/rss/topfreeapplications/limit={limit}/json"
        scraped_at = utc_now_iso()

        apps = []
        for rank, entry in enumerate(_entries(self._get_json(url)), start=1):
            app_id = ((entry.get("id") or {}).get("attributes") or {}).get("im:id")
            name = _label(entry.get("im:name"))
            if not app_id or not name:
                continue

            category = ((entry.get("category") or {}).get("attributes") or {}).get("label")
            images = entry.get("im:image") or []
            icon_url = _label(images[-1]) if images else None

            apps.append(
                AppRecord(
                    app_id=str(app_id),
                    name=name,
                    app_category=category or "Uncategorized",
                    developer=_label(entry.get("im:artist")),
                    icon_url=icon_url,
                    current_rank=rank,
                    avg_rating=None,
                    last_scraped=scraped_at,
                )
            )
        return apps

    def recent_reviews(self, app_id: str, page: int = 1) -> List[ReviewRecord]:
        """Most recent reviews of an app (one feed page holds up to 50)."""
        url = (
            f"{ITUNES_RSS_BASE}/{self.country}/rss/customerreviews/"
            f"page={page}/id={app_id}/sortby=mostrecent/json"
        )

        reviews = []
        for entry in _entries(self._get_json(url)):
            # The first entry of older feed versions describes the app itself
            rating = _label(entry.get("im:rating"))
            review_id = _label(entry.get("id"))
            if rating is None or review_id is None:
                continue
            try:
                score = int(rating)
            except ValueError:
                continue

            reviews.append(
                ReviewRecord(
                    app_id=str(app_id),
                    itunes_id=str(review_id),
                    rating=score,
                    title=_label(entry.get("title")),
                    body=_label(entry.get("content"), "") or "",
                    author=_label((entry.get("author") or {}).get("name")),
                    review_date=_label(entry.get("updated")),
                )
            )
        return reviews


def fetch_apps(db: DatabaseManager, client: AppStoreClient, limit: int = 100) -> List[AppRecord]:
    """Fetch the top-free chart and upsert it.

    Raises:
        requests.RequestException: If the chart cannot be fetched
    """
    logger.info(f"📱 Fetching top {limit} free iOS apps...")

    apps = client.top_free_apps(limit=limit)
    logger.info(f"  Found {len(apps)} apps")

    db.upsert_apps(apps)
    logger.info(f"  ✓ Upserted {len(apps)} apps into DB")
    return apps


def _low_rating_reviews(
    client: AppStoreClient, app: AppRecord, per_app: int, max_rating: int
) -> List[ReviewRecord]:
    try:
        reviews = client.recent_reviews(app.app_id)
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"  ⚠ Could not fetch reviews for {app.name}: {e}")
        return []
    return [r for r in reviews[:per_app] if r.rating <= max_rating]


def fetch_reviews(
    db: DatabaseManager,
    client: AppStoreClient,
    apps: Sequence[AppRecord],
    per_app: int = 50,
    max_rating: int = 3,
    concurrency: int = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Fetch recent low-rating reviews for each app; return new rows stored.

    Apps are fetched in groups of ``concurrency``. A single app's failure is
    logged and skipped, and so is a failed insert for one group.
    """
    logger.info(f"📝 Fetching reviews for {len(apps)} apps (≤{max_rating} stars only)...")

    total_inserted = 0
    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        for start in range(0, len(apps), concurrency):
            group = apps[start : start + concurrency]
            results = executor.map(
                lambda app: _low_rating_reviews(client, app, per_app, max_rating), group
            )
            reviews = [review for batch in results for review in batch]

            if reviews:
                try:
                    total_inserted += db.insert_reviews(reviews)
                except Exception as e:
                    logger.warning(
                        f"  ⚠ Review insert error (group {start // concurrency + 1}): {e}"
                    )

            processed = min(start + concurrency, len(apps))
            logger.info(
                f"  {processed}/{len(apps)} apps done, "
                f"{total_inserted} reviews inserted so far"
            )

            if processed < len(apps):
                sleep(GROUP_DELAY_SECONDS)

    logger.info(f"  ✓ Total new reviews inserted: {total_inserted}")
    return total_inserted
