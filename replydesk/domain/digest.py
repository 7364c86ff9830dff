"""
Digest Domain - Report Periods, Stats and Insights Bundles
==========================================================

Everything here is computed from reviews already loaded by the caller.
The heuristic fallback digest lives here too so that a digest can be shown
even when the AI provider is down.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from .insights_schema import validate_insights
from .models import Review, utc_now_iso

EMPTY_CONFIDENCE = 1.0
FALLBACK_CONFIDENCE = 0.65
EXCERPT_LENGTH = 100
SATISFACTION_DRIVERS_LIMIT = 5


@dataclass(frozen=True)
class ReportPeriod:
    """Half-open window ``[start, end)`` in UTC."""
    start: datetime
    end: datetime

    @classmethod
    def week_of(cls, moment: datetime) -> "ReportPeriod":
        """The Sunday-to-Sunday week containing ``moment``."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        days_since_sunday = (moment.weekday() + 1) % 7
        start = (moment - timedelta(days=days_since_sunday)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return cls(start=start, end=start + timedelta(days=7))

    @classmethod
    def current_week(cls, now: Optional[datetime] = None) -> "ReportPeriod":
        return cls.week_of(now or datetime.now(timezone.utc))

    @classmethod
    def previous_week(cls, now: Optional[datetime] = None) -> "ReportPeriod":
        current = cls.current_week(now)
        return cls(start=current.start - timedelta(days=7), end=current.start)

    def previous(self) -> "ReportPeriod":
        """The window of the same length that ends where this one starts."""
        return ReportPeriod(start=self.start - (self.end - self.start), end=self.start)

    @property
    def label(self) -> str:
        return f"{self.start.date().isoformat()} to {(self.end - timedelta(days=1)).date().isoformat()}"

    def to_dict(self) -> Dict[str, str]:
        return {"weekStart": self.start.date().isoformat(), "weekEnd": self.end.date().isoformat()}


@dataclass
class DigestStats:
    total_reviews: int = 0
    average_rating: float = 0.0
    rating_breakdown: Dict[str, int] = field(
        default_factory=lambda: {str(star): 0 for star in range(1, 6)}
    )
    response_rate: int = 0
    unique_customers: int = 0
    # percent change in review count against the previous period
    week_over_week_change: int = 0
    satisfaction_drivers: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalReviews": self.total_reviews,
            "averageRating": self.average_rating,
            "ratingBreakdown": dict(self.rating_breakdown),
            "responseRate": self.response_rate,
            "uniqueCustomers": self.unique_customers,
            "weekOverWeekChange": self.week_over_week_change,
            "satisfactionDrivers": list(self.satisfaction_drivers),
        }


@dataclass
class InsightsBundle:
    """
    A complete digest. Theme, highlight and competitive entries are plain
    dicts shaped by ``insights_schema``; they always carry every key.
    """
    positive_themes: List[Dict[str, Any]] = field(default_factory=list)
    improvement_themes: List[Dict[str, Any]] = field(default_factory=list)
    highlights: List[Dict[str, Any]] = field(default_factory=list)
    competitive_insights: Dict[str, Any] = field(
        default_factory=lambda: validate_insights({})["competitiveInsights"]
    )
    overall_confidence: float = EMPTY_CONFIDENCE
    stats: DigestStats = field(default_factory=DigestStats)
    period: Optional[ReportPeriod] = None
    generated_at: str = field(default_factory=utc_now_iso)
    fallback: bool = False

    @classmethod
    def from_validated(cls, validated: Dict[str, Any], **extra) -> "InsightsBundle":
        bundle = cls(
            positive_themes=validated["positiveThemes"],
            improvement_themes=validated["improvementThemes"],
            highlights=validated["highlights"],
            competitive_insights=validated["competitiveInsights"],
            overall_confidence=validated["overallConfidence"],
            **extra,
        )
        bundle.stats.satisfaction_drivers = satisfaction_drivers(bundle.positive_themes)
        return bundle

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "positiveThemes": self.positive_themes,
            "improvementThemes": self.improvement_themes,
            "highlights": self.highlights,
            "competitiveInsights": self.competitive_insights,
            "overallConfidence": self.overall_confidence,
            "stats": self.stats.to_dict(),
            "generatedAt": self.generated_at,
            "fallback": self.fallback,
        }
        if self.period is not None:
            data.update(self.period.to_dict())
        return data


def week_over_week_change(total: int, previous_total: Optional[int]) -> int:
    """Percent change in review count; 0 when there is nothing to compare with."""
    if not previous_total:
        return 0
    return round((total - previous_total) / previous_total * 100)


def satisfaction_drivers(positive_themes: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """What customers praise most, from validated positive themes."""
    drivers = [
        {
            "factor": theme["theme"],
            "impactScore": theme["confidence"],
            "mentionFrequency": theme["affectedCustomerCount"],
        }
        for theme in positive_themes
    ]
    drivers.sort(key=lambda d: (d["mentionFrequency"], d["impactScore"]), reverse=True)
    return drivers[:SATISFACTION_DRIVERS_LIMIT]


def compute_digest_stats(reviews: Sequence[Review], previous_total: Optional[int] = None) -> DigestStats:
    """Headline numbers for a window of reviews."""
    total = len(reviews)
    stats = DigestStats(week_over_week_change=week_over_week_change(total, previous_total))
    if not reviews:
        return stats

    for review in reviews:
        key = str(review.rating)
        if key in stats.rating_breakdown:
            stats.rating_breakdown[key] += 1

    replied = sum(1 for r in reviews if r.has_reply)

    stats.total_reviews = total
    stats.average_rating = round(sum(r.rating for r in reviews) / total, 1)
    stats.response_rate = round(replied / total * 100)
    stats.unique_customers = len({r.customer_name for r in reviews})
    return stats


def _excerpt(text: str) -> str:
    if len(text) <= EXCERPT_LENGTH:
        return text
    return text[:EXCERPT_LENGTH].rstrip() + "..."


def build_empty_insights(
    period: Optional[ReportPeriod] = None,
    previous_total: Optional[int] = None,
) -> InsightsBundle:
    """Digest for a window with no reviews; nothing to be uncertain about."""
    return InsightsBundle.from_validated(
        validate_insights({"overallConfidence": EMPTY_CONFIDENCE}),
        stats=compute_digest_stats([], previous_total),
        period=period,
    )


def build_fallback_insights(
    reviews: Sequence[Review],
    period: Optional[ReportPeriod] = None,
    previous_total: Optional[int] = None,
) -> InsightsBundle:
    """Rating-based digest used when the AI provider can't produce one."""
    positive = [
        {
            "theme": f"Positive customer experience, {r.rating} stars",
            "specificExample": _excerpt(r.text),
            "impactAssessment": "Customer satisfaction indicator",
            "recommendedAction": "Continue the practices that earn positive feedback",
            "priority": "medium",
            "affectedCustomerCount": 1,
            "implementationComplexity": "simple",
            "potentialROI": "Maintain customer loyalty",
            "confidence": 0.7,
        }
        for r in reviews if r.rating >= 4
    ][:3]

    improvement = [
        {
            "theme": f"Customer concern, {r.rating} star rating",
            "specificExample": _excerpt(r.text),
            "impactAssessment": "Potential customer satisfaction issue",
            "recommendedAction": "Review and address the specific concern raised",
            "priority": "high" if r.rating <= 2 else "medium",
            "affectedCustomerCount": 1,
            "implementationComplexity": "moderate",
            "potentialROI": "Improve customer satisfaction",
            "confidence": 0.6,
        }
        for r in reviews if r.rating <= 3
    ][:2]

    highlights = []
    best = next((r for r in reviews if r.rating == 5), None)
    if best is not None:
        highlights.append({
            "id": best.id,
            "customer_name": best.customer_name,
            "rating": best.rating,
            "review_text": best.text,
            "type": "best",
            "businessValue": "Showcases an excellent customer experience",
            "actionImplication": "Use as a testimonial and repeat what worked",
            "representativeness": 0.3,
        })
    worst = next((r for r in reviews if r.rating <= 2), None)
    if worst is not None:
        highlights.append({
            "id": worst.id,
            "customer_name": worst.customer_name,
            "rating": worst.rating,
            "review_text": worst.text,
            "type": "worst",
            "businessValue": "Identifies an improvement opportunity",
            "actionImplication": "Address the specific issues mentioned",
            "representativeness": 0.2,
        })

    validated = validate_insights({
        "positiveThemes": positive,
        "improvementThemes": improvement,
        "highlights": highlights,
        "competitiveInsights": {"uniqueValueProps": ["Quality service delivery"]},
        "overallConfidence": FALLBACK_CONFIDENCE,
    })
    return InsightsBundle.from_validated(
        validated,
        stats=compute_digest_stats(reviews, previous_total),
        period=period,
        fallback=True,
    )
