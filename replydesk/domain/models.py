"""
Domain Models - Reviews, Brand Voice and Generation Results
===========================================================

Plain dataclasses shared by every layer. No I/O here.

REVIEW LIFECYCLE:
    pending -> approved -> posted
    pending | approved -> needs_edit
    pending -> skipped

posted and skipped are terminal. needs_edit is terminal for automation: only a
manual rewrite moves it back to approved.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ReviewValidationError


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReviewStatus(Enum):
    """Where a review sits in the reply workflow."""
    PENDING = "pending"
    APPROVED = "approved"
    POSTED = "posted"
    NEEDS_EDIT = "needs_edit"
    SKIPPED = "skipped"


ALLOWED_TRANSITIONS = {
    ReviewStatus.PENDING: {ReviewStatus.APPROVED, ReviewStatus.NEEDS_EDIT, ReviewStatus.SKIPPED},
    ReviewStatus.APPROVED: {ReviewStatus.POSTED, ReviewStatus.NEEDS_EDIT},
    # Manual rewrite only
    ReviewStatus.NEEDS_EDIT: {ReviewStatus.APPROVED},
    ReviewStatus.POSTED: set(),
    ReviewStatus.SKIPPED: set(),
}

# Statuses whose reply text automation must not overwrite
AUTOMATION_LOCKED = {ReviewStatus.POSTED, ReviewStatus.SKIPPED, ReviewStatus.NEEDS_EDIT}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class BrandPreset(Enum):
    """Tone presets a business can pick for its replies."""
    FRIENDLY = "friendly"
    PROFESSIONAL = "professional"
    PLAYFUL = "playful"
    CUSTOM = "custom"


class ApprovalMode(Enum):
    """Which freshly drafted replies automation may approve on its own."""
    MANUAL = "manual"
    AUTO_4_PLUS = "auto_4_plus"
    AUTO_EXCEPT_LOW = "auto_except_low"


@dataclass
class Review:
    """Stored review record, always owned by exactly one business."""
    id: str
    business_id: str
    rating: int
    text: str = ""
    customer_name: str = ""
    review_date: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
    ai_reply: Optional[str] = None
    final_reply: Optional[str] = None
    automated_reply: bool = False
    automation_failed: bool = False
    automation_error: Optional[str] = None
    reply_tone: Optional[str] = None
    posted_at: Optional[str] = None
    auto_approved: bool = False
    updated_at: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = ReviewStatus(self.status)
        if isinstance(self.rating, bool) or not isinstance(self.rating, int):
            raise ValueError(f"Rating must be an integer, got {self.rating!r}")
        if not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}")

    @property
    def reply_text(self) -> Optional[str]:
        """The reply that would be published: the human edit wins over the draft."""
        return self.final_reply or self.ai_reply

    @property
    def has_reply(self) -> bool:
        return bool(self.reply_text)

    def to_review_data(self) -> "ReviewData":
        return ReviewData(
            id=self.id,
            rating=self.rating,
            text=self.text,
            customer_name=self.customer_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "rating": self.rating,
            "text": self.text,
            "customer_name": self.customer_name,
            "review_date": self.review_date,
            "status": self.status.value,
            "ai_reply": self.ai_reply,
            "final_reply": self.final_reply,
            "automated_reply": self.automated_reply,
            "automation_failed": self.automation_failed,
            "automation_error": self.automation_error,
            "reply_tone": self.reply_tone,
            "posted_at": self.posted_at,
            "auto_approved": self.auto_approved,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class ReviewData:
    """The minimum a reply needs: who said what, and how many stars."""
    id: str
    rating: int
    text: str
    customer_name: str

    @classmethod
    def from_payload(cls, payload: Any) -> "ReviewData":
        """
        Build from a caller payload, accepting ``customerName`` or ``customer_name``.

        Raises:
            ReviewValidationError: listing every missing or invalid field.
        """
        if not isinstance(payload, dict):
            raise ReviewValidationError("Review payload must be an object", ["review"])

        problems = []

        review_id = payload.get("id")
        if isinstance(review_id, int) and not isinstance(review_id, bool):
            review_id = str(review_id)
        if not isinstance(review_id, str) or not review_id.strip():
            problems.append("id")

        rating = payload.get("rating")
        if isinstance(rating, float) and rating.is_integer():
            rating = int(rating)
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            problems.append("rating")

        text = payload.get("text")
        if not isinstance(text, str) or not text.strip():
            problems.append("text")

        name = payload.get("customerName") or payload.get("customer_name")
        if not isinstance(name, str) or not name.strip():
            problems.append("customerName")

        if problems:
            raise ReviewValidationError(
                f"Review is missing required fields: {', '.join(problems)}", problems
            )

        return cls(id=review_id.strip(), rating=rating, text=text.strip(), customer_name=name.strip())


@dataclass(frozen=True)
class BrandVoice:
    """
    Normalized tone settings for one business.

    Slider values (1-5) are passed through as stored; callers validate them
    when the settings are saved.
    """
    preset: str = BrandPreset.FRIENDLY.value
    formality: int = 3
    warmth: int = 3
    brevity: int = 3
    custom_instruction: Optional[str] = None


@dataclass(frozen=True)
class BusinessInfo:
    """Business context injected into prompts."""
    name: str = "Our business"
    industry: str = "service"
    contact_email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class GenerationResult:
    """Outcome of one reply attempt. ``reply`` is never empty."""
    review_id: str
    success: bool
    reply: str
    tone: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "success": self.success,
            "reply": self.reply,
            "tone": self.tone,
            "error": self.error,
        }


@dataclass
class BatchError:
    review_id: str
    error: str
    step: str = "generate"
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "review_id": self.review_id,
            "error": self.error,
            "step": self.step,
            "timestamp": self.timestamp,
        }


@dataclass
class BatchResult:
    """Aggregated outcome of a batch run. Results keep input order."""
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    results: List[GenerationResult] = field(default_factory=list)
    errors: List[BatchError] = field(default_factory=list)
    auto_approved: int = 0

    def record(self, result: GenerationResult, step: str = "generate") -> None:
        self.results.append(result)
        if result.success:
            self.success_count += 1
        else:
            self.failure_count += 1
            self.errors.append(BatchError(
                review_id=result.review_id,
                error=result.error or "Unknown error",
                step=step,
            ))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [r.to_dict() for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
            "auto_approved": self.auto_approved,
        }


class ActivityType(Enum):
    """Kinds of entries written to a business's activity log."""
    AI_REPLY_GENERATED = "ai_reply_generated"
    AUTOMATION_FAILED = "automation_failed"
    BULK_GENERATION_START = "bulk_generation_start"
    BULK_GENERATION_COMPLETE = "bulk_generation_complete"
    REPLY_APPROVED = "reply_approved"
    REPLY_AUTO_APPROVED = "reply_auto_approved"
    REPLY_POSTED = "reply_posted"
    REVIEW_SKIPPED = "review_skipped"
    REPLY_NEEDS_EDIT = "reply_needs_edit"
    REPLY_EDITED = "reply_edited"
    INSIGHTS_GENERATED = "insights_generated"


@dataclass
class Activity:
    """One activity log entry, always scoped to a business."""
    business_id: str
    type: str
    description: str
    review_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)
    id: Optional[int] = None

    def __post_init__(self):
        if isinstance(self.type, ActivityType):
            self.type = self.type.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "type": self.type,
            "description": self.description,
            "review_id": self.review_id,
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
        }
