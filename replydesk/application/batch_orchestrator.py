"""
Batch Reply Orchestrator - Chunked, Failure-Isolated Reply Drafting
====================================================================

ARCHITECTURAL DECISION:
- Reviews are split into chunks; chunks run one after another
- Reviews inside a chunk are drafted concurrently (bounded by chunk size)
- One failing review never affects its siblings or later chunks
- Results come back in input order; persistence is the caller's job

ANTI-REPETITION:
- Openers of replies drafted earlier in the batch are passed to later
  chunks as phrases to avoid, so a batch doesn't read like one template
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from ..domain.models import BatchResult, BrandVoice, BusinessInfo, ReviewData
from ..infrastructure.config import ReplySettings, get_settings
from .reply_generator import ReplyGenerator, opening_phrase

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 5
MAX_TRACKED_OPENERS = 20
OPENER_TRIM = 5


def coerce_chunk_size(value, default: int = DEFAULT_CHUNK_SIZE) -> int:
    """Any chunk size request becomes an int >= 1."""
    if isinstance(value, bool):
        return max(1, default)
    try:
        size = int(value)
    except (TypeError, ValueError, OverflowError):
        size = default
    return max(1, size)


def chunked(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchReplyOrchestrator:
    """
    Drafts replies for many reviews.

    USAGE:
        orchestrator = BatchReplyOrchestrator(generator)
        result = await orchestrator.run(reviews, "biz-1", brand_voice, business_info, chunk_size=5)
        assert result.success_count + result.failure_count == len(reviews)
    """

    def __init__(
        self,
        generator: ReplyGenerator,
        settings: Optional[ReplySettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = settings or get_settings().reply
        self._generator = generator
        self._default_chunk_size = coerce_chunk_size(settings.chunk_size)
        self._chunk_delay = max(0.0, settings.chunk_delay_seconds)
        self._sleep = sleep

    async def run(
        self,
        reviews: Sequence[ReviewData],
        business_id: str,
        brand_voice: BrandVoice,
        business_info: BusinessInfo,
        chunk_size: Optional[int] = None,
        avoid_phrases: Optional[Sequence[str]] = None,
    ) -> BatchResult:
        """Draft a reply for every review. Never raises for per-review failures."""
        if chunk_size is None:
            size = self._default_chunk_size
        else:
            size = coerce_chunk_size(chunk_size, self._default_chunk_size)
        reviews = list(reviews)
        chunks = chunked(reviews, size)
        result = BatchResult(total=len(reviews))
        batch_openers: List[str] = []

        logger.info(
            f"Batch for business {business_id}: {len(reviews)} reviews in {len(chunks)} chunks of {size}"
        )

        for index, chunk in enumerate(chunks):
            avoid = list(avoid_phrases or []) + batch_openers
            outcomes = await asyncio.gather(
                *(self._generator.generate(review, brand_voice, business_info, avoid) for review in chunk),
                return_exceptions=True,
            )

            for review, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Review {review.id} failed in chunk {index + 1}: {outcome}")
                    outcome = self._generator.fallback(review, brand_voice.preset, str(outcome) or type(outcome).__name__)
                elif isinstance(outcome, BaseException):
                    raise outcome

                result.record(outcome)

                if outcome.success:
                    opener = opening_phrase(outcome.reply)
                    if opener and opener not in batch_openers:
                        batch_openers.append(opener)
                        if len(batch_openers) > MAX_TRACKED_OPENERS:
                            del batch_openers[:OPENER_TRIM]

            logger.debug(
                f"Chunk {index + 1}/{len(chunks)} done: "
                f"{result.success_count} ok, {result.failure_count} failed so far"
            )

            if self._chunk_delay and index < len(chunks) - 1:
                await self._sleep(self._chunk_delay)

        logger.info(
            f"Batch complete for business {business_id}: "
            f"{result.success_count} succeeded, {result.failure_count} fell back"
        )
        return result
