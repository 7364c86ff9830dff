"""
FastAPI Web Application - ReplyDesk JSON API
============================================

AI reply drafting, batch generation, weekly digests and the review
approval flow. Every route is scoped by a business id; the caller's IP is
the rate-limit key for the AI routes.
"""

import io
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..application import ReviewReplyService, build_service
from ..domain import (
    ApprovalMode,
    InvalidTransitionError,
    RateLimitExceeded,
    ReportPeriod,
    ReviewNotFoundError,
    ReviewValidationError,
)
from ..infrastructure.importer import SUPPORTED_EXTENSIONS, ReviewImporter, read_frame

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ── Globals ────────────────────────────────────────────────────────
service: Optional[ReviewReplyService] = None
importer = ReviewImporter()


# ── Lifespan ───────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    global service
    service = build_service()
    logger.info("Reply service ready")
    yield


app = FastAPI(title="ReplyDesk", description="AI review replies and weekly insights", lifespan=lifespan)


def get_service() -> ReviewReplyService:
    if service is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return service


def get_caller_key(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ── Request Models ─────────────────────────────────────────────────

class GenerateReplyRequest(BaseModel):
    businessId: str
    reviewId: Optional[str] = None
    review: Optional[Dict[str, Any]] = None
    updateDatabase: bool = True


class BulkRepliesRequest(BaseModel):
    businessId: str
    reviews: Any = None
    chunkSize: Optional[int] = None
    updateDatabase: bool = True


class InsightsRequest(BaseModel):
    businessId: str
    weekStart: Optional[date] = None


class RetryFailedRequest(BaseModel):
    businessId: str
    limit: Optional[int] = None


class AutomationRequest(BaseModel):
    businessId: str
    limit: int = 50
    approvalMode: Optional[ApprovalMode] = None


class BusinessRequest(BaseModel):
    businessId: str


class ApproveRequest(BaseModel):
    businessId: str
    finalReply: Optional[str] = None


class NeedsEditRequest(BaseModel):
    businessId: str
    reason: Optional[str] = None


class EditReplyRequest(BaseModel):
    businessId: str
    text: str


# ── Error Mapping ──────────────────────────────────────────────────

@app.exception_handler(ReviewValidationError)
async def validation_error_handler(request: Request, exc: ReviewValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc), "fields": exc.fields})


@app.exception_handler(ReviewNotFoundError)
async def not_found_handler(request: Request, exc: ReviewNotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(InvalidTransitionError)
async def transition_error_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(
        status_code=409,
        content={"error": str(exc), "current": exc.current, "target": exc.target},
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit hit by {exc.caller_key} on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "retryAfter": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


# ── AI Endpoints ───────────────────────────────────────────────────

@app.post("/api/ai/generate-reply")
async def generate_reply(
    body: GenerateReplyRequest,
    svc: ReviewReplyService = Depends(get_service),
    caller_key: str = Depends(get_caller_key),
):
    if body.review is not None:
        result = await svc.generate_single_reply(
            body.review, body.businessId, caller_key=caller_key, update_database=body.updateDatabase,
        )
    elif body.reviewId:
        result = await svc.generate_reply_for_review(body.businessId, body.reviewId, caller_key=caller_key)
    else:
        raise ReviewValidationError("Provide either review or reviewId", ["review", "reviewId"])
    return result.to_dict()


@app.post("/api/ai/generate-bulk-replies")
async def generate_bulk_replies(
    body: BulkRepliesRequest,
    svc: ReviewReplyService = Depends(get_service),
    caller_key: str = Depends(get_caller_key),
):
    result = await svc.generate_batch_replies(
        body.reviews,
        body.businessId,
        chunk_size=body.chunkSize,
        caller_key=caller_key,
        update_database=body.updateDatabase,
    )
    return result.to_dict()


@app.post("/api/ai/generate-insights")
async def generate_insights(
    body: InsightsRequest,
    svc: ReviewReplyService = Depends(get_service),
    caller_key: str = Depends(get_caller_key),
):
    period = None
    if body.weekStart is not None:
        period = ReportPeriod.week_of(datetime.combine(body.weekStart, datetime.min.time(), tzinfo=timezone.utc))
    bundle = await svc.generate_insights(body.businessId, period, caller_key=caller_key)
    return bundle.to_dict()


@app.post("/api/ai/retry-failed")
async def retry_failed(
    body: RetryFailedRequest,
    svc: ReviewReplyService = Depends(get_service),
    caller_key: str = Depends(get_caller_key),
):
    svc.check_rate_limit(caller_key)
    result = await svc.retry_failed(body.businessId, body.limit)
    return result.to_dict()


@app.post("/api/ai/run-automation")
async def run_automation(
    body: AutomationRequest,
    svc: ReviewReplyService = Depends(get_service),
    caller_key: str = Depends(get_caller_key),
):
    """Draft replies for pending reviews, then apply the approval mode."""
    svc.check_rate_limit(caller_key)
    result = await svc.run_automation(body.businessId, body.limit, approval_mode=body.approvalMode)
    return result.to_dict()


# ── Review Workflow ────────────────────────────────────────────────

@app.post("/api/reviews/{review_id}/approve")
async def approve_review(review_id: str, body: ApproveRequest, svc: ReviewReplyService = Depends(get_service)):
    review = await svc.approve(body.businessId, review_id, body.finalReply)
    return review.to_dict()


@app.post("/api/reviews/{review_id}/post")
async def post_review(review_id: str, body: BusinessRequest, svc: ReviewReplyService = Depends(get_service)):
    review = await svc.post(body.businessId, review_id)
    return review.to_dict()


@app.post("/api/reviews/{review_id}/skip")
async def skip_review(review_id: str, body: BusinessRequest, svc: ReviewReplyService = Depends(get_service)):
    review = await svc.skip(body.businessId, review_id)
    return review.to_dict()


@app.post("/api/reviews/{review_id}/needs-edit")
async def flag_review(review_id: str, body: NeedsEditRequest, svc: ReviewReplyService = Depends(get_service)):
    review = await svc.mark_needs_edit(body.businessId, review_id, body.reason)
    return review.to_dict()


@app.post("/api/reviews/{review_id}/edit")
async def edit_review(review_id: str, body: EditReplyRequest, svc: ReviewReplyService = Depends(get_service)):
    review = await svc.edit_reply(body.businessId, review_id, body.text)
    return review.to_dict()


@app.post("/api/reviews/import")
async def import_reviews(
    businessId: str = Form(...),
    file: UploadFile = File(...),
    svc: ReviewReplyService = Depends(get_service),
):
    """Import reviews from an Excel/CSV export, in memory."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file selected")

    ext = Path(file.filename).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Invalid file type. Use .xlsx or .csv")

    content = await file.read()
    try:
        df = read_frame(io.BytesIO(content), ext)
        parsed = importer.parse_frame(df, source=file.filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    stored = await svc.import_reviews(businessId, parsed.reviews)
    return {
        "added": stored["added"],
        "skipped": stored["skipped"],
        "errors": parsed.errors + stored["errors"],
        "detectedColumns": parsed.detected_columns,
    }


# ── Read Endpoints ─────────────────────────────────────────────────

@app.get("/api/reviews")
async def api_list_reviews(
    businessId: str,
    status: Optional[str] = None,
    limit: int = 100,
    svc: ReviewReplyService = Depends(get_service),
):
    reviews = await svc.list_reviews(businessId, status, limit)
    return {"reviews": [r.to_dict() for r in reviews]}


@app.get("/api/activities")
async def api_list_activities(businessId: str, limit: int = 50, svc: ReviewReplyService = Depends(get_service)):
    activities = await svc.list_activities(businessId, limit)
    return {"activities": [a.to_dict() for a in activities]}


@app.get("/api/stats")
async def api_stats(businessId: str, svc: ReviewReplyService = Depends(get_service)):
    return await svc.get_stats(businessId)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
