"""
Review Reply Service - Caller-Facing Entry Points
=================================================

ARCHITECTURAL DECISION:
- The only place that combines store, generator, orchestrator and aggregator
- Validates payloads and applies the rate limit BEFORE any AI call
- Writes outcomes back review by review; one failed write never aborts the rest
- Drives the review state machine for human actions (approve/post/skip/edit)

Automation writes the draft and the failure flags, and never touches posted,
skipped or needs_edit reviews. The only status it changes is pending ->
approved, in run_automation, when the business's approval mode allows it.
"""

import logging
from typing import Any, List, Optional, Sequence, Tuple, Union

from ..domain.approval import (
    approval_reason,
    normalize_approval_mode,
    resolve_approval_mode,
    should_auto_approve,
)
from ..domain.brand_voice import resolve_brand_voice, resolve_business_info
from ..domain.digest import InsightsBundle, ReportPeriod, build_fallback_insights
from ..domain.errors import (
    InsightsError,
    InvalidTransitionError,
    RateLimitExceeded,
    ReviewNotFoundError,
    ReviewValidationError,
)
from ..domain.models import (
    AUTOMATION_LOCKED,
    Activity,
    ActivityType,
    ApprovalMode,
    BatchError,
    BatchResult,
    BrandVoice,
    BusinessInfo,
    GenerationResult,
    Review,
    ReviewData,
    ReviewStatus,
    can_transition,
    utc_now_iso,
)
from ..infrastructure.config import ReplySettings, get_settings
from ..infrastructure.persistence import ReviewStore
from ..infrastructure.ratelimit import RateLimiter
from .batch_orchestrator import BatchReplyOrchestrator
from .insights_aggregator import InsightsAggregator
from .reply_generator import ReplyGenerator, extract_avoid_phrases

logger = logging.getLogger(__name__)

RETRY_CHUNK_SIZE = 3


class ReviewReplyService:
    """
    Facade used by the API and the CLI.

    USAGE:
        service = ReviewReplyService(store, generator, orchestrator, aggregator, limiter)
        result = await service.generate_single_reply(payload, "biz-1", caller_key="10.0.0.1")
    """

    def __init__(
        self,
        store: ReviewStore,
        generator: ReplyGenerator,
        orchestrator: BatchReplyOrchestrator,
        aggregator: InsightsAggregator,
        rate_limiter: RateLimiter,
        settings: Optional[ReplySettings] = None,
    ):
        self.store = store
        self.generator = generator
        self.orchestrator = orchestrator
        self.aggregator = aggregator
        self.rate_limiter = rate_limiter
        settings = settings or get_settings().reply
        self._recent_window = settings.recent_replies_window
        self._retry_limit = settings.retry_limit

    # ── Guards & context ───────────────────────────────────────────

    def check_rate_limit(self, caller_key: Optional[str]) -> None:
        """Raise RateLimitExceeded if ``caller_key`` is over its limit. None skips the check."""
        if caller_key is None:
            return
        if not self.rate_limiter.allow(caller_key):
            raise RateLimitExceeded(caller_key, self.rate_limiter.retry_after(caller_key))

    async def load_context(self, business_id: str) -> Tuple[BrandVoice, BusinessInfo]:
        """Brand voice and business info; missing rows resolve to defaults."""
        settings_row = await self.store.get_business_settings(business_id)
        business_row = await self.store.get_business_info(business_id)
        if settings_row is None:
            logger.debug(f"No brand voice settings for business {business_id}, using defaults")
        return resolve_brand_voice(settings_row), resolve_business_info(business_row)

    async def _avoid_phrases(self, business_id: str) -> List[str]:
        try:
            recent = await self.store.recent_replies(business_id, self._recent_window)
        except Exception as e:
            logger.warning(f"Could not load recent replies for {business_id}: {e}")
            return []
        return extract_avoid_phrases(recent)

    # ── Generation ─────────────────────────────────────────────────

    async def generate_single_reply(
        self,
        review_payload: Any,
        business_id: str,
        caller_key: Optional[str] = None,
        update_database: bool = True,
    ) -> GenerationResult:
        """
        Draft one reply. Always returns a reply (AI or fallback).

        Raises:
            ReviewValidationError: payload is missing required fields.
            RateLimitExceeded: caller is over its limit.
        """
        if isinstance(review_payload, ReviewData):
            review = review_payload
        else:
            review = ReviewData.from_payload(review_payload)
        self.check_rate_limit(caller_key)

        brand_voice, business_info = await self.load_context(business_id)
        avoid = await self._avoid_phrases(business_id)
        result = await self.generator.generate(review, brand_voice, business_info, avoid)

        if update_database:
            await self._persist_outcome(business_id, result)
        return result

    async def generate_reply_for_review(
        self,
        business_id: str,
        review_id: str,
        caller_key: Optional[str] = None,
    ) -> GenerationResult:
        """Draft a reply for a stored review, by id."""
        review = await self._get_review(business_id, review_id)
        return await self.generate_single_reply(
            review.to_review_data(), business_id, caller_key=caller_key,
        )

    async def generate_batch_replies(
        self,
        review_payloads: Any,
        business_id: str,
        chunk_size: Optional[int] = None,
        caller_key: Optional[str] = None,
        update_database: bool = True,
    ) -> BatchResult:
        """
        Draft replies for many reviews.

        Raises:
            ReviewValidationError: any payload is invalid, or ids repeat.
            RateLimitExceeded: caller is over its limit.
        """
        reviews = self._validate_batch(review_payloads)
        if not reviews:
            return BatchResult()
        self.check_rate_limit(caller_key)

        brand_voice, business_info = await self.load_context(business_id)
        avoid = await self._avoid_phrases(business_id)
        return await self._run_batch(
            reviews, business_id, brand_voice, business_info,
            chunk_size=chunk_size, avoid=avoid, update_database=update_database,
        )

    async def retry_failed(self, business_id: str, limit: Optional[int] = None) -> BatchResult:
        """Redraft reviews whose last automated draft failed."""
        failed = await self.store.failed_reviews(business_id, limit or self._retry_limit)
        if not failed:
            logger.info(f"No failed replies to retry for business {business_id}")
            return BatchResult()

        logger.info(f"Retrying {len(failed)} failed replies for business {business_id}")
        brand_voice, business_info = await self.load_context(business_id)
        avoid = await self._avoid_phrases(business_id)
        return await self._run_batch(
            [r.to_review_data() for r in failed], business_id, brand_voice, business_info,
            chunk_size=RETRY_CHUNK_SIZE, avoid=avoid, update_database=True,
        )

    async def run_automation(
        self,
        business_id: str,
        limit: int = 50,
        approval_mode: Optional[Union[str, ApprovalMode]] = None,
    ) -> BatchResult:
        """
        Draft replies for pending reviews that have none yet, then approve the
        fresh drafts the approval mode allows. ``approval_mode`` overrides the
        business setting.
        """
        pending = await self.store.pending_unreplied(business_id, limit)
        if not pending:
            logger.info(f"No pending reviews without a reply for business {business_id}")
            return BatchResult()

        brand_voice, business_info = await self.load_context(business_id)
        avoid = await self._avoid_phrases(business_id)
        result = await self._run_batch(
            [r.to_review_data() for r in pending], business_id, brand_voice, business_info,
            avoid=avoid, update_database=True,
        )

        if approval_mode is None:
            mode = resolve_approval_mode(await self.store.get_business_settings(business_id))
        else:
            mode = normalize_approval_mode(approval_mode)
        if mode is not ApprovalMode.MANUAL:
            result.auto_approved = await self._apply_auto_approval(business_id, result, mode)
        return result

    async def _apply_auto_approval(self, business_id: str, result: BatchResult, mode: ApprovalMode) -> int:
        # Fallback templates always wait for a human
        approved = 0
        for outcome in result.results:
            if not outcome.success:
                continue
            try:
                review = await self._get_review(business_id, outcome.review_id)
                if not should_auto_approve(review, mode):
                    continue
                await self._transition(
                    review, ReviewStatus.APPROVED, {"auto_approved": True},
                    ActivityType.REPLY_AUTO_APPROVED, approval_reason(review, mode),
                    metadata={"approval_mode": mode.value, "rating": review.rating},
                )
                approved += 1
            except Exception as e:
                logger.error(f"Auto-approval failed for review {outcome.review_id}: {e}")
                result.errors.append(BatchError(review_id=outcome.review_id, error=str(e), step="auto_approval"))

        logger.info(f"Auto-approved {approved} replies for business {business_id} ({mode.value})")
        return approved

    async def _run_batch(
        self,
        reviews: Sequence[ReviewData],
        business_id: str,
        brand_voice: BrandVoice,
        business_info: BusinessInfo,
        chunk_size: Optional[int] = None,
        avoid: Optional[Sequence[str]] = None,
        update_database: bool = True,
    ) -> BatchResult:
        if update_database:
            await self._log_activity(Activity(
                business_id=business_id,
                type=ActivityType.BULK_GENERATION_START,
                description=f"Started bulk reply generation for {len(reviews)} reviews",
                metadata={"total": len(reviews)},
            ))

        result = await self.orchestrator.run(
            reviews, business_id, brand_voice, business_info,
            chunk_size=chunk_size, avoid_phrases=avoid,
        )

        if update_database:
            for outcome in result.results:
                error = await self._persist_outcome(business_id, outcome)
                if error:
                    result.errors.append(BatchError(review_id=outcome.review_id, error=error, step="persist"))

            await self._log_activity(Activity(
                business_id=business_id,
                type=ActivityType.BULK_GENERATION_COMPLETE,
                description=(
                    f"Bulk reply generation finished: {result.success_count} generated, "
                    f"{result.failure_count} used fallback"
                ),
                metadata={
                    "total": result.total,
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                },
            ))
        return result

    def _validate_batch(self, review_payloads: Any) -> List[ReviewData]:
        if not isinstance(review_payloads, list):
            raise ReviewValidationError("Reviews must be a list", ["reviews"])

        reviews, problems, seen = [], [], set()
        for position, payload in enumerate(review_payloads):
            try:
                review = ReviewData.from_payload(payload)
            except ReviewValidationError as e:
                problems.append(f"review {position}: {', '.join(e.fields)}")
                continue
            if review.id in seen:
                problems.append(f"review {position}: duplicate id {review.id}")
                continue
            seen.add(review.id)
            reviews.append(review)

        if problems:
            raise ReviewValidationError(
                "Each review must have id, rating, text and customerName (" + "; ".join(problems) + ")",
                ["reviews"],
            )
        return reviews

    async def _persist_outcome(self, business_id: str, result: GenerationResult) -> Optional[str]:
        """Write one outcome back. Returns an error message instead of raising."""
        try:
            review = await self.store.get_review(business_id, result.review_id)
            if review is None:
                logger.warning(f"Review {result.review_id} not stored for business {business_id}, not saved")
                return "Review not found"
            if review.status in AUTOMATION_LOCKED:
                logger.info(f"Review {review.id} is {review.status.value}, leaving its reply untouched")
                return None

            if result.success:
                fields = {
                    "ai_reply": result.reply,
                    "automated_reply": True,
                    "automation_failed": False,
                    "automation_error": None,
                    "reply_tone": result.tone,
                }
                activity_type = ActivityType.AI_REPLY_GENERATED
                description = f"AI reply generated for {review.customer_name or 'a customer'}"
            else:
                fields = {
                    "automation_failed": True,
                    "automation_error": result.error,
                    "reply_tone": result.tone,
                }
                # Keep an existing draft rather than replace it with a template
                if not review.has_reply:
                    fields["ai_reply"] = result.reply
                activity_type = ActivityType.AUTOMATION_FAILED
                description = f"AI reply failed for {review.customer_name or 'a customer'}, fallback used"

            await self.store.update_review(business_id, review.id, fields)
            await self.store.insert_activity(Activity(
                business_id=business_id,
                type=activity_type,
                description=description,
                review_id=review.id,
                metadata={"tone": result.tone, "error": result.error, "rating": review.rating},
            ))
            return None

        except Exception as e:
            logger.exception(f"Failed to save reply for review {result.review_id}: {e}")
            return str(e)

    # ── Insights ───────────────────────────────────────────────────

    async def generate_insights(
        self,
        business_id: str,
        period: Optional[ReportPeriod] = None,
        reviews: Optional[Sequence[Review]] = None,
        caller_key: Optional[str] = None,
    ) -> InsightsBundle:
        """
        Digest for a period (current week by default). Falls back to a
        rating-based digest when the AI answer can't be used.

        Raises:
            RateLimitExceeded: caller is over its limit.
        """
        self.check_rate_limit(caller_key)
        period = period or ReportPeriod.current_week()

        if reviews is None:
            reviews = await self.store.reviews_for_period(business_id, period)
        previous_total = await self._previous_total(business_id, period)
        _, business_info = await self.load_context(business_id)

        try:
            bundle = await self.aggregator.aggregate(reviews, period, business_info, previous_total)
        except InsightsError as e:
            logger.warning(f"Insights for business {business_id} degraded to fallback ({e.code}): {e}")
            bundle = build_fallback_insights(reviews, period, previous_total)

        await self._log_activity(Activity(
            business_id=business_id,
            type=ActivityType.INSIGHTS_GENERATED,
            description=f"Digest generated for {period.label}",
            metadata={
                "reviews": len(reviews),
                "fallback": bundle.fallback,
                "overall_confidence": bundle.overall_confidence,
            },
        ))
        return bundle

    async def _previous_total(self, business_id: str, period: ReportPeriod) -> Optional[int]:
        try:
            previous = await self.store.reviews_for_period(business_id, period.previous())
        except Exception as e:
            logger.warning(f"Could not load previous period for {business_id}: {e}")
            return None
        return len(previous)

    # ── Review state transitions ───────────────────────────────────

    async def approve(self, business_id: str, review_id: str, final_reply: Optional[str] = None) -> Review:
        review = await self._get_review(business_id, review_id)
        if review.status == ReviewStatus.NEEDS_EDIT and final_reply is None:
            raise InvalidTransitionError(review.id, review.status.value, ReviewStatus.APPROVED.value)

        fields = {}
        if final_reply is not None:
            fields["final_reply"] = self._require_text(final_reply)
        elif not review.has_reply:
            raise ReviewValidationError("Review has no reply to approve", ["final_reply"])
        return await self._transition(
            review, ReviewStatus.APPROVED, fields,
            ActivityType.REPLY_APPROVED, "Reply approved",
        )

    async def post(self, business_id: str, review_id: str) -> Review:
        review = await self._get_review(business_id, review_id)
        if not review.has_reply:
            raise ReviewValidationError("Review has no reply to post", ["final_reply"])
        return await self._transition(
            review, ReviewStatus.POSTED, {"posted_at": utc_now_iso()},
            ActivityType.REPLY_POSTED, "Reply posted",
        )

    async def skip(self, business_id: str, review_id: str) -> Review:
        review = await self._get_review(business_id, review_id)
        return await self._transition(
            review, ReviewStatus.SKIPPED, {},
            ActivityType.REVIEW_SKIPPED, "Review skipped",
        )

    async def mark_needs_edit(self, business_id: str, review_id: str, reason: Optional[str] = None) -> Review:
        review = await self._get_review(business_id, review_id)
        return await self._transition(
            review, ReviewStatus.NEEDS_EDIT, {},
            ActivityType.REPLY_NEEDS_EDIT, "Reply flagged for manual edit",
            metadata={"reason": reason},
        )

    async def edit_reply(self, business_id: str, review_id: str, text: str) -> Review:
        """Manual rewrite. A needs_edit review moves back to approved."""
        text = self._require_text(text)
        review = await self._get_review(business_id, review_id)

        if review.status == ReviewStatus.NEEDS_EDIT:
            return await self._transition(
                review, ReviewStatus.APPROVED, {"final_reply": text},
                ActivityType.REPLY_EDITED, "Reply rewritten and approved",
            )
        if review.status not in (ReviewStatus.PENDING, ReviewStatus.APPROVED):
            raise InvalidTransitionError(review.id, review.status.value, "edited")

        await self.store.update_review(business_id, review.id, {"final_reply": text})
        await self._log_activity(Activity(
            business_id=business_id,
            type=ActivityType.REPLY_EDITED,
            description="Reply edited",
            review_id=review.id,
        ))
        return await self._get_review(business_id, review.id)

    async def _get_review(self, business_id: str, review_id: str) -> Review:
        review = await self.store.get_review(business_id, review_id)
        if review is None:
            raise ReviewNotFoundError(review_id, business_id)
        return review

    async def _transition(
        self,
        review: Review,
        target: ReviewStatus,
        fields: dict,
        activity_type: ActivityType,
        description: str,
        metadata: Optional[dict] = None,
    ) -> Review:
        if not can_transition(review.status, target):
            raise InvalidTransitionError(review.id, review.status.value, target.value)

        await self.store.update_review(review.business_id, review.id, {"status": target, **fields})
        await self._log_activity(Activity(
            business_id=review.business_id,
            type=activity_type,
            description=description,
            review_id=review.id,
            metadata={"from": review.status.value, "to": target.value, **(metadata or {})},
        ))
        logger.info(f"Review {review.id}: {review.status.value} -> {target.value}")
        return await self._get_review(review.business_id, review.id)

    @staticmethod
    def _require_text(text: Any) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ReviewValidationError("Reply text must not be empty", ["text"])
        return text.strip()

    async def _log_activity(self, activity: Activity) -> None:
        try:
            await self.store.insert_activity(activity)
        except Exception as e:
            logger.warning(f"Could not record activity '{activity.type}' for {activity.business_id}: {e}")

    # ── Import ─────────────────────────────────────────────────────

    async def import_reviews(self, business_id: str, records: List[dict]) -> dict:
        """Store imported review records as pending reviews. Duplicates are skipped."""
        if not records:
            return {"added": 0, "skipped": 0, "errors": []}
        return await self.store.add_reviews(business_id, records)

    # ── Read models ────────────────────────────────────────────────

    async def list_reviews(self, business_id: str, status: Optional[str] = None, limit: int = 100) -> List[Review]:
        if status is not None:
            try:
                status = ReviewStatus(status).value
            except ValueError:
                raise ReviewValidationError(f"Unknown status '{status}'", ["status"])
        return await self.store.list_reviews(business_id, status, limit)

    async def list_activities(self, business_id: str, limit: int = 50) -> List[Activity]:
        return await self.store.list_activities(business_id, limit)

    async def get_stats(self, business_id: str) -> dict:
        return await self.store.get_stats(business_id)
