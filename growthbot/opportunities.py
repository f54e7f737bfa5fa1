"""Per-app product opportunities clustered from a run's complaints."""

import logging
import time
from typing import Callable, Optional

from .database import DatabaseManager
from .llm import ExtractionClient
from .mapping import map_cluster_indices
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

MAX_COMPLAINTS_PER_APP = 100
MAX_OPPORTUNITIES_PER_APP = 5


def generate_opportunities(
    db: DatabaseManager,
    client: ExtractionClient,
    run_date: str,
    delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    retry_policy: Optional[RetryPolicy] = None,
) -> int:
    """Replace the run's opportunities with freshly clustered ones.

    Each app with complaints gets at most five opportunities built from its
    most severe complaints. Rate-limited calls are retried through
    ``retry_policy`` when one is given. An app whose clustering or insert
    still fails is logged and skipped.

    Returns:
        Number of opportunities stored
    """
    logger.info("💡 Generating opportunities...")

    app_ids = db.get_app_ids_with_complaints(run_date)
    logger.info(f"  Found {len(app_ids)} apps with complaints")
    if not app_ids:
        return 0

    app_names = db.get_app_names(app_ids)
    db.delete_opportunities(run_date)

    total = 0
    for position, app_id in enumerate(app_ids, start=1):
        app_name = app_names.get(app_id, app_id)
        complaints = db.get_complaints_for_app(app_id, run_date, MAX_COMPLAINTS_PER_APP)
        if not complaints:
            continue

        logger.info(
            f"  {app_name}: {len(complaints)} complaints → generating opportunities..."
        )
        try:
            if retry_policy:
                clusters = retry_policy.call(client.cluster_complaints, app_name, complaints)
            else:
                clusters = client.cluster_complaints(app_name, complaints)
            rows = []
            for cluster in clusters[:MAX_OPPORTUNITIES_PER_APP]:
                complaint_ids = [
                    c["id"] for c in map_cluster_indices(cluster.indices, complaints)
                ]
                rows.append(
                    {
                        "app_id": app_id,
                        "run_date": run_date,
                        "title": cluster.title,
                        "description": cluster.description,
                        "review_count": len(complaint_ids),
                        "complaint_ids": complaint_ids,
                    }
                )
            if rows:
                db.insert_opportunities(rows)
                total += len(rows)
                logger.info(f"  ✓ {app_name}: {len(rows)} opportunities stored")
        except Exception as e:
            logger.error(f"  Error processing {app_name}: {e}")

        if position < len(app_ids):
            sleep(delay)

    logger.info(f"  Total opportunities generated: {total}")
    return total
