"""
Domain Errors
=============

Caller-visible failures. Anything not listed here is degraded internally
(fallback reply, fallback digest) instead of being raised.
"""

from typing import List, Optional


class ReplyDeskError(Exception):
    """Base exception for all ReplyDesk errors."""
    pass


class ReviewValidationError(ReplyDeskError):
    """A review payload is missing required fields or has invalid values."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ReviewNotFoundError(ReplyDeskError):
    """No review with this id exists for the business."""

    def __init__(self, review_id: str, business_id: str):
        super().__init__(f"Review {review_id} not found for business {business_id}")
        self.review_id = review_id
        self.business_id = business_id


class InvalidTransitionError(ReplyDeskError):
    """Requested status change is not allowed from the review's current status."""

    def __init__(self, review_id: str, current: str, target: str):
        super().__init__(f"Review {review_id} cannot move from '{current}' to '{target}'")
        self.review_id = review_id
        self.current = current
        self.target = target


class RateLimitExceeded(ReplyDeskError):
    """Caller made too many requests in the current window."""

    def __init__(self, caller_key: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {caller_key}. Retry in {retry_after}s")
        self.caller_key = caller_key
        self.retry_after = retry_after


class InsightsError(ReplyDeskError):
    """Base exception for digest generation errors."""
    code = "insights_error"


class InsightsParseError(InsightsError):
    """The provider's answer could not be parsed as JSON."""
    code = "invalid_json_response"

    def __init__(self, message: str = "Invalid JSON response from AI"):
        super().__init__(message)


class InsightsProviderError(InsightsError):
    """The provider failed to answer at all."""
    code = "provider_error"
