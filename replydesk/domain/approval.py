"""
Auto-Approval Policy
====================

Decides which freshly drafted replies may skip the human approval step.

    manual          - never (default)
    auto_4_plus     - 4 and 5 star reviews
    auto_except_low - everything except 1 and 2 star reviews

Only pending reviews with a reply are ever candidates.
"""

import logging
from typing import Any, Mapping, Optional

from .models import ApprovalMode, Review, ReviewStatus

logger = logging.getLogger(__name__)

MIN_RATING = {
    ApprovalMode.AUTO_4_PLUS: 4,
    ApprovalMode.AUTO_EXCEPT_LOW: 3,
}

POLICY_NAMES = {
    ApprovalMode.AUTO_4_PLUS: "4+ star policy",
    ApprovalMode.AUTO_EXCEPT_LOW: "except low ratings policy",
}


def normalize_approval_mode(value: Any) -> ApprovalMode:
    if isinstance(value, ApprovalMode):
        return value
    if isinstance(value, str):
        try:
            return ApprovalMode(value.strip().lower())
        except ValueError:
            pass
    if value is not None:
        logger.debug(f"Unknown approval mode {value!r}, using manual")
    return ApprovalMode.MANUAL


def resolve_approval_mode(raw_settings: Optional[Mapping]) -> ApprovalMode:
    """Approval mode from a settings row; anything missing or unknown is manual."""
    if not isinstance(raw_settings, Mapping):
        return ApprovalMode.MANUAL
    return normalize_approval_mode(raw_settings.get("approval_mode", raw_settings.get("approvalMode")))


def should_auto_approve(review: Review, mode: ApprovalMode) -> bool:
    if mode is ApprovalMode.MANUAL:
        return False
    if not review.has_reply or review.status != ReviewStatus.PENDING:
        return False
    return review.rating >= MIN_RATING[mode]


def approval_reason(review: Review, mode: ApprovalMode) -> str:
    policy = POLICY_NAMES.get(mode)
    if policy is None:
        return f"Auto-approved {review.rating}-star review"
    return f"Auto-approved {review.rating}-star review ({policy})"
