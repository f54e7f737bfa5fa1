"""Fold a run's complaints into its daily summary."""

import logging
from typing import Any, Dict, List, Mapping, Sequence

from .database import DatabaseManager
from .models import RunStatus, SummaryAggregates, TopComplaint
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

TOP_COMPLAINTS_LIMIT = 20
TEXT_KEY_LENGTH = 100


def build_summary(
    rows: Sequence[Mapping[str, Any]],
    top_n: int = TOP_COMPLAINTS_LIMIT,
    text_key_length: int = TEXT_KEY_LENGTH,
) -> SummaryAggregates:
    """Compute category histograms and the top-N complaint list.

    ``rows`` carry ``complaint_category``, ``app_category``,
    ``complaint_text`` and ``app_name``. Top complaints are keyed by the
    lower-cased first ``text_key_length`` characters; each entry keeps the
    app and category of the first row seen with that key. Ties keep
    first-seen order.
    """
    by_complaint_category: Dict[str, int] = {}
    by_app_category: Dict[str, Dict[str, int]] = {}
    frequency: Dict[str, Dict[str, Any]] = {}

    for row in rows:
        tag = row["complaint_category"]
        app_category = row.get("app_category") or "Unknown"

        by_complaint_category[tag] = by_complaint_category.get(tag, 0) + 1

        tags = by_app_category.setdefault(app_category, {})
        tags[tag] = tags.get(tag, 0) + 1

        key = (row.get("complaint_text") or "")[:text_key_length].lower()
        entry = frequency.get(key)
        if entry is None:
            entry = frequency[key] = {
                "count": 0,
                "app": row.get("app_name") or row.get("app_id") or "",
                "category": tag,
            }
        entry["count"] += 1

    # sorted() is stable, so equal counts keep insertion order
    ranked = sorted(frequency.items(), key=lambda item: -item[1]["count"])
    top_complaints = [
        TopComplaint(text=text, category=meta["category"], count=meta["count"], app=meta["app"])
        for text, meta in ranked[:top_n]
    ]

    return SummaryAggregates(
        complaints_found=len(rows),
        by_complaint_category=by_complaint_category,
        by_app_category=by_app_category,
        top_complaints=top_complaints,
    )


def aggregate(
    db: DatabaseManager,
    run_date: str,
    apps_scraped: int,
    reviews_processed: int,
    top_n: int = TOP_COMPLAINTS_LIMIT,
) -> SummaryAggregates:
    """Recompute and overwrite the run's summary row with status complete.

    Raises:
        Exception: If complaints cannot be read or the summary cannot be written
    """
    logger.info(f"📊 Aggregating results for {run_date}...")

    rows = db.get_complaints_for_run(run_date)
    summary = build_summary(rows, top_n=top_n)

    db.upsert_summary(
        run_date,
        apps_scraped=apps_scraped,
        reviews_processed=reviews_processed,
        complaints_found=summary.complaints_found,
        by_complaint_category=summary.by_complaint_category,
        by_app_category=summary.by_app_category,
        top_complaints=[entry.to_dict() for entry in summary.top_complaints],
        status=RunStatus.COMPLETE.value,
        error=None,
        completed_at=utc_now_iso(),
    )

    logger.info(
        f"  ✓ Summary saved: {summary.complaints_found} complaints across "
        f"{len(summary.by_app_category)} app categories"
    )
    logger.debug(f"  Complaint categories: {summary.by_complaint_category}")
    return summary


def top_categories(summary: SummaryAggregates, limit: int = 3) -> List[str]:
    """Most frequent complaint categories, for console output."""
    ranked = sorted(summary.by_complaint_category.items(), key=lambda item: -item[1])
    return [f"{tag} ({count})" for tag, count in ranked[:limit]]
