"""
Service wiring shared by the API and the CLI runner.
"""

import logging
from typing import Optional

from ..infrastructure.config import Settings, get_settings
from ..infrastructure.llm import CompletionClient
from ..infrastructure.persistence import Database, SQLiteReviewStore, open_database
from ..infrastructure.ratelimit import RateLimiter
from .batch_orchestrator import BatchReplyOrchestrator
from .insights_aggregator import InsightsAggregator
from .reply_generator import ReplyGenerator
from .review_service import ReviewReplyService

logger = logging.getLogger(__name__)


def build_service(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    client: Optional[CompletionClient] = None,
) -> ReviewReplyService:
    """Build a ReviewReplyService backed by SQLite and the configured provider."""
    settings = settings or get_settings()
    for issue in settings.validate():
        logger.warning(issue)

    db = db or open_database(str(settings.database_file))
    client = client or CompletionClient(settings.llm)
    generator = ReplyGenerator(client, settings.reply)

    return ReviewReplyService(
        store=SQLiteReviewStore(db),
        generator=generator,
        orchestrator=BatchReplyOrchestrator(generator, settings.reply),
        aggregator=InsightsAggregator(client, settings.insights),
        rate_limiter=RateLimiter(
            limit=settings.rate_limit.max_requests,
            window_seconds=settings.rate_limit.window_seconds,
        ),
        settings=settings.reply,
    )
