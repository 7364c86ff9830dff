"""
Shared fixtures.

Provider calls are scripted with FakeCompletionClient so no test talks to a
real API; SQLite databases live in pytest's tmp_path.
"""

import pytest

from replydesk.application import (
    BatchReplyOrchestrator,
    InsightsAggregator,
    ReplyGenerator,
    ReviewReplyService,
)
from replydesk.domain import Review
from replydesk.infrastructure.config import InsightsSettings, ReplySettings
from replydesk.infrastructure.llm import Completion
from replydesk.infrastructure.persistence import SQLiteReviewStore, open_database
from replydesk.infrastructure.ratelimit import RateLimiter

DEFAULT_REPLY = "Really appreciate you stopping by, hope to see you again soon."


class FakeCompletionClient:
    """
    Stand-in for CompletionClient.

    Each call pops the next scripted outcome: a string is returned as the
    completion text, an exception instance is raised. Once the script runs
    out, ``default`` is returned.
    """

    def __init__(self, responses=None, default=DEFAULT_REPLY):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    async def complete(self, system_prompt, user_prompt, temperature, max_tokens, json_mode=False):
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "json_mode": json_mode,
        })
        outcome = self.responses.pop(0) if self.responses else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return Completion(text=outcome, usage={"total_tokens": 42}, model="fake-model")


@pytest.fixture
def make_client():
    """Factory for scripted completion clients."""
    return FakeCompletionClient


@pytest.fixture
def reply_settings():
    return ReplySettings(chunk_size=5, chunk_delay_seconds=0)


@pytest.fixture
def insights_settings():
    return InsightsSettings()


@pytest.fixture
def db(tmp_path):
    return open_database(str(tmp_path / "replydesk-test.db"))


@pytest.fixture
def store(db):
    return SQLiteReviewStore(db)


@pytest.fixture
def seeded_db(db):
    """A business with brand settings and three pending reviews."""
    db.upsert_business("biz-1", "Corner Bakery", industry="bakery", contact_email="hello@corner.test")
    db.save_business_settings("biz-1", brand_voice_preset="friendly", brevity_level=3)
    db.add_review(Review(id="r1", business_id="biz-1", rating=5, text="Best croissants in town!", customer_name="Amy"))
    db.add_review(Review(id="r2", business_id="biz-1", rating=2, text="Coffee was cold and the line was slow.", customer_name="Ben"))
    db.add_review(Review(id="r3", business_id="biz-1", rating=4, text="Lovely staff, a bit pricey.", customer_name="Cara"))
    return db


@pytest.fixture
def make_service(store, reply_settings, insights_settings):
    """Build a ReviewReplyService around a client and an optional limiter."""

    def _make(client, rate_limiter=None):
        generator = ReplyGenerator(client, reply_settings)
        return ReviewReplyService(
            store=store,
            generator=generator,
            orchestrator=BatchReplyOrchestrator(generator, reply_settings),
            aggregator=InsightsAggregator(client, insights_settings),
            rate_limiter=rate_limiter or RateLimiter(limit=100, window_seconds=60),
            settings=reply_settings,
        )

    return _make
