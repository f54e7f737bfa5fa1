"""Map LLM output back to persisted records."""

import logging
from typing import Any, List, Sequence, TypeVar

from .batching import Batch
from .models import (
    SEVERITY_MAX,
    SEVERITY_MIN,
    ComplaintRecord,
    ExtractedComplaint,
    ReviewRow,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


def clamp_severity(value: float) -> int:
    """Clamp a model-reported severity into the 1-5 scale."""
    return int(min(SEVERITY_MAX, max(SEVERITY_MIN, round(value))))


def map_complaints(
    batch: Batch[ReviewRow], items: Sequence[ExtractedComplaint], run_date: str
) -> List[ComplaintRecord]:
    """Resolve batch-local indices to reviews and build complaint records.

    Items pointing outside the batch are dropped; the rest of the batch is
    still accepted.
    """
    records = []
    dropped = 0

    for item in items:
        review = batch.record_for(item.review_index)
        if review is None:
            dropped += 1
            continue
        records.append(
            ComplaintRecord(
                review_id=review.id,
                app_id=review.app_id,
                app_category=review.app_category,
                complaint_category=item.complaint_category,
                complaint_text=item.complaint_text,
                severity=clamp_severity(item.severity),
                run_date=run_date,
            )
        )

    if dropped:
        logger.debug(
            f"Batch {batch.number}: dropped {dropped} complaints with unknown review index"
        )
    return records


def map_cluster_indices(indices: Sequence[Any], sources: Sequence[T]) -> List[T]:
    """Return the sources referenced by in-range integer indices."""
    resolved = []
    for index in indices:
        if isinstance(index, bool):
            continue
        if isinstance(index, float):
            if not index.is_integer():
                continue
            index = int(index)
        if isinstance(index, int) and 0 <= index < len(sources):
            resolved.append(sources[index])
    return resolved
