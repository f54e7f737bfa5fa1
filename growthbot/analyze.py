"""Complaint analysis step: dedup, batch, extract, map and persist."""

import logging
from typing import List, Optional

from .batching import Batch, exclude_processed, partition_batches
from .config import Settings
from .database import DatabaseManager
from .llm import ExtractionClient
from .mapping import map_complaints
from .models import ExtractedComplaint, ReviewInput, ReviewRow
from .retry import RetryPolicy
from .scheduler import BatchScheduler
from .utils import start_of_day_iso

logger = logging.getLogger(__name__)


class ComplaintAnalyzer:
    """Extracts complaints from a run's reviews.

    Re-running for the same run date only processes reviews that have no
    complaints stored yet, so a crashed or retried run resumes where the
    persisted results end.
    """

    def __init__(
        self,
        db: DatabaseManager,
        client: ExtractionClient,
        settings: Settings,
        scheduler: Optional[BatchScheduler] = None,
    ):
        self.db = db
        self.client = client
        self.batch_size = settings.batch_size
        self.scheduler = scheduler or BatchScheduler(
            retry_policy=RetryPolicy(
                max_retries=settings.rate_limit_max_retries,
                default_wait=settings.rate_limit_default_wait,
                hint_padding=settings.rate_limit_hint_padding,
            ),
            batch_delay=settings.batch_delay_seconds,
        )

    def select_unprocessed(
        self, run_date: str, reviews: List[ReviewRow], allow_unfiltered: bool = False
    ) -> List[ReviewRow]:
        """Drop reviews that already have complaints for the run.

        A failed lookup is raised unless ``allow_unfiltered`` is set, in which
        case every review is processed and the decision is logged.
        """
        try:
            processed = self.db.get_processed_review_ids(run_date)
        except Exception as e:
            if not allow_unfiltered:
                raise
            logger.warning(
                f"Could not load processed reviews for {run_date} ({e}); "
                f"processing all {len(reviews)} reviews"
            )
            return list(reviews)

        return exclude_processed(reviews, processed, key=lambda review: review.id)

    def _extract(self, batch: Batch[ReviewRow]) -> List[ExtractedComplaint]:
        inputs = [
            ReviewInput(
                index=index,
                rating=review.rating,
                title=review.title or "",
                body=review.body,
            )
            for index, review in batch.indexed()
        ]
        return self.client.extract_complaints(inputs)

    def _persist(
        self, run_date: str, batch: Batch[ReviewRow], items: List[ExtractedComplaint]
    ) -> int:
        complaints = map_complaints(batch, items, run_date)
        if not complaints:
            return 0
        try:
            return self.db.insert_complaints(complaints)
        except Exception as e:
            logger.warning(f"  ⚠ Insert complaints error (batch {batch.number}): {e}")
            return 0

    def analyze(
        self,
        run_date: str,
        since: Optional[str] = None,
        allow_unfiltered: bool = False,
    ) -> int:
        """Analyze the run's reviews and return the number of complaints stored."""
        logger.info(f"🤖 Analyzing complaints for {run_date}...")

        reviews = self.db.get_reviews_for_analysis(since or start_of_day_iso(run_date))
        if not reviews:
            logger.info("  No reviews to analyze")
            return 0

        to_process = self.select_unprocessed(run_date, reviews, allow_unfiltered)
        logger.info(
            f"  Skipping {len(reviews) - len(to_process)} already-analyzed, "
            f"processing {len(to_process)} in batches of {self.batch_size}"
        )

        batches = partition_batches(to_process, self.batch_size)
        total = self.scheduler.run(
            batches,
            extract=self._extract,
            handle=lambda batch, items: self._persist(run_date, batch, items),
        )

        logger.info(f"  ✓ Total complaints extracted: {total}")
        return total
