"""
Review Store - Async Persistence Adapter
========================================

ARCHITECTURAL DECISION:
- The application layer only talks to ReviewStore, never to SQL
- Every method takes the business id; implementations must scope by it
- Methods are coroutines so a network-backed store can slot in unchanged

EXTENSIBILITY:
- To use a hosted database: implement ReviewStore with its client
- SQLiteReviewStore runs the blocking sqlite calls in worker threads
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ...domain.digest import ReportPeriod
from ...domain.models import Activity, Review
from .database import Database

logger = logging.getLogger(__name__)


class ReviewStore(ABC):
    """Business-scoped persistence used by the reply service."""

    @abstractmethod
    async def get_review(self, business_id: str, review_id: str) -> Optional[Review]:
        pass

    @abstractmethod
    async def update_review(self, business_id: str, review_id: str, fields: Dict[str, Any]) -> bool:
        """Apply ``fields`` to one review. Returns False if it doesn't exist."""
        pass

    @abstractmethod
    async def insert_activity(self, activity: Activity) -> None:
        pass

    @abstractmethod
    async def get_business_settings(self, business_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def get_business_info(self, business_id: str) -> Optional[dict]:
        pass

    @abstractmethod
    async def recent_replies(self, business_id: str, limit: int) -> List[str]:
        pass

    @abstractmethod
    async def reviews_for_period(self, business_id: str, period: ReportPeriod) -> List[Review]:
        pass

    @abstractmethod
    async def pending_unreplied(self, business_id: str, limit: int) -> List[Review]:
        pass

    @abstractmethod
    async def failed_reviews(self, business_id: str, limit: int) -> List[Review]:
        pass

    @abstractmethod
    async def list_reviews(self, business_id: str, status: Optional[str] = None, limit: int = 100) -> List[Review]:
        pass

    @abstractmethod
    async def list_activities(self, business_id: str, limit: int = 50) -> List[Activity]:
        pass

    @abstractmethod
    async def add_reviews(self, business_id: str, records: List[dict]) -> dict:
        """Insert new reviews; existing ids are skipped. Returns added/skipped/errors."""

    @abstractmethod
    async def get_stats(self, business_id: str) -> dict:
        pass


class SQLiteReviewStore(ReviewStore):
    """ReviewStore backed by the local SQLite Database."""

    def __init__(self, db: Database):
        self.db = db

    async def get_review(self, business_id: str, review_id: str) -> Optional[Review]:
        return await asyncio.to_thread(self.db.get_review, business_id, review_id)

    async def update_review(self, business_id: str, review_id: str, fields: Dict[str, Any]) -> bool:
        return await asyncio.to_thread(self.db.update_review, business_id, review_id, **fields)

    async def insert_activity(self, activity: Activity) -> None:
        activity.id = await asyncio.to_thread(self.db.add_activity, activity)

    async def get_business_settings(self, business_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self.db.get_business_settings, business_id)

    async def get_business_info(self, business_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self.db.get_business, business_id)

    async def recent_replies(self, business_id: str, limit: int) -> List[str]:
        return await asyncio.to_thread(self.db.recent_replies, business_id, limit)

    async def reviews_for_period(self, business_id: str, period: ReportPeriod) -> List[Review]:
        return await asyncio.to_thread(self.db.reviews_between, business_id, period.start, period.end)

    async def pending_unreplied(self, business_id: str, limit: int) -> List[Review]:
        return await asyncio.to_thread(self.db.pending_unreplied, business_id, limit)

    async def failed_reviews(self, business_id: str, limit: int) -> List[Review]:
        return await asyncio.to_thread(self.db.failed_reviews, business_id, limit)

    async def list_reviews(self, business_id: str, status: Optional[str] = None, limit: int = 100) -> List[Review]:
        return await asyncio.to_thread(self.db.list_reviews, business_id, status, limit)

    async def list_activities(self, business_id: str, limit: int = 50) -> List[Activity]:
        return await asyncio.to_thread(self.db.list_activities, business_id, limit)

    async def add_reviews(self, business_id: str, records: List[dict]) -> dict:
        return await asyncio.to_thread(self.db.bulk_add_reviews, business_id, records)

    async def get_stats(self, business_id: str) -> dict:
        return await asyncio.to_thread(self.db.get_stats, business_id)
