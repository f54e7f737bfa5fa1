"""Sequential batch scheduler for rate-limited LLM extraction."""

import logging
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from .batching import Batch
from .retry import RetryPolicy

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class BatchScheduler:
    """Runs extraction batches one at a time with pacing and rate-limit retry.

    Each batch is extracted through the retry policy and then handed to
    ``handle`` (map + persist) before the next batch starts. A fixed delay
    between batches keeps token usage under the provider's per-minute
    ceiling. When the retry bound is exhausted the error propagates and the
    remaining batches are not attempted.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        batch_delay: float = 6.0,
        sleep: Callable[[float], None] = time.sleep,
        progress_every: int = 10,
    ):
        self.retry_policy = retry_policy or RetryPolicy(sleep=sleep)
        self.batch_delay = batch_delay
        self.sleep = sleep
        self.progress_every = progress_every

    def run(
        self,
        batches: Sequence[Batch[T]],
        extract: Callable[[Batch[T]], List[R]],
        handle: Callable[[Batch[T], List[R]], int],
    ) -> int:
        """Process every batch in order and return the summed handler counts."""
        total = 0

        for position, batch in enumerate(batches, start=1):
            items = self.retry_policy.call(extract, batch)
            total += handle(batch, items)

            if position % self.progress_every == 0 or position == len(batches):
                logger.info(
                    f"  {position}/{len(batches)} batches done, {total} results found"
                )

            if position < len(batches) and self.batch_delay > 0:
                self.sleep(self.batch_delay)

        return total
