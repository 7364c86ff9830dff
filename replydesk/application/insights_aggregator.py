"""
Insights Aggregator - Weekly Digest From a Window of Reviews
============================================================

ARCHITECTURAL DECISION:
- One JSON-mode completion per window, low temperature
- The parsed JSON always goes through insights_schema before use
- Only two outcomes raise: the provider failing, or text that isn't JSON.
  Anything that parses is repaired field by field instead.
- An empty window never calls the provider

EXTENSIBILITY:
- To add digest fields: extend domain/insights_schema.py and RESPONSE_SHAPE
"""

import json
import logging
import re
from typing import Any, Optional, Sequence

from ..domain.digest import (
    InsightsBundle,
    ReportPeriod,
    build_empty_insights,
    compute_digest_stats,
)
from ..domain.errors import InsightsError, InsightsParseError, InsightsProviderError
from ..domain.insights_schema import validate_insights
from ..domain.models import BusinessInfo, Review
from ..infrastructure.config import InsightsSettings, get_settings
from ..infrastructure.llm import CompletionError

logger = logging.getLogger(__name__)

PROMPT_REVIEW_CHARS = 500


SYSTEM_PROMPT = (
    "You are a senior business consultant who turns customer reviews into "
    "specific, actionable recommendations for small business owners. "
    "Base every theme on what customers actually wrote and quote them where you can. "
    "Respond with a single JSON object only, no markdown and no commentary."
)

RESPONSE_SHAPE = """{
  "positiveThemes": [{
    "theme": "specific positive pattern",
    "specificExample": "direct customer quote",
    "impactAssessment": "business impact explanation",
    "recommendedAction": "concrete next step",
    "priority": "high|medium|low",
    "affectedCustomerCount": number,
    "implementationComplexity": "simple|moderate|complex",
    "potentialROI": "estimated business impact",
    "confidence": 0.0-1.0
  }],
  "improvementThemes": [{ same fields, "priority": "critical|high|medium|low" }],
  "highlights": [{
    "id": "review id",
    "customer_name": "customer name",
    "rating": 1-5,
    "review_text": "review text",
    "type": "best|worst|notable",
    "businessValue": "why this matters",
    "actionImplication": "what to do about it",
    "representativeness": 0.0-1.0
  }],
  "competitiveInsights": {
    "competitorMentions": [{
      "competitor": "name",
      "context": "positive|negative|neutral",
      "quote": "customer quote",
      "implication": "what it means for the business"
    }],
    "uniqueValueProps": ["advantage customers mention"],
    "marketPositioning": {
      "pricePerception": "premium|value|budget",
      "qualityPosition": "luxury|standard|basic",
      "serviceLevel": "exceptional|good|average"
    }
  },
  "overallConfidence": 0.0-1.0
}"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_response(text: str) -> Any:
    """
    Parse the provider's answer, tolerating a markdown code fence around it.

    Raises:
        InsightsParseError: if no JSON value can be read.
    """
    cleaned = _CODE_FENCE.sub("", (text or "").strip())
    try:
        return json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        logger.error(f"Failed to parse insights response as JSON: {e}")
        raise InsightsParseError() from e


class InsightsAggregator:
    """
    Builds an InsightsBundle for one business and one period.

    USAGE:
        aggregator = InsightsAggregator(CompletionClient())
        bundle = await aggregator.aggregate(reviews, ReportPeriod.current_week(), business_info)
    """

    def __init__(self, client, settings: Optional[InsightsSettings] = None):
        self._client = client
        settings = settings or get_settings().insights
        self._temperature = settings.temperature
        self._max_tokens = settings.max_tokens
        self._max_reviews = settings.max_reviews_in_prompt

    async def aggregate(
        self,
        reviews: Sequence[Review],
        period: ReportPeriod,
        business_info: Optional[BusinessInfo] = None,
        previous_total: Optional[int] = None,
    ) -> InsightsBundle:
        """
        ``previous_total`` is the review count of the preceding period, used
        for the week-over-week change.

        Raises:
            InsightsProviderError: the provider call failed.
            InsightsParseError: the answer was not JSON.
        """
        if not reviews:
            logger.info(f"No reviews for {period.label}, returning empty digest")
            return build_empty_insights(period, previous_total)

        business_info = business_info or BusinessInfo()
        logger.info(f"Requesting insights for {business_info.name}: {len(reviews)} reviews, {period.label}")

        try:
            completion = await self._client.complete(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=self.build_prompt(reviews, period, business_info),
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                json_mode=True,
            )
        except CompletionError as e:
            raise InsightsProviderError(str(e)) from e

        validated = validate_insights(parse_json_response(completion.text))
        logger.info(
            f"Insights generated: {len(validated['positiveThemes'])} positive, "
            f"{len(validated['improvementThemes'])} improvement, "
            f"{len(validated['highlights'])} highlights, "
            f"{completion.total_tokens} tokens"
        )
        return InsightsBundle.from_validated(
            validated,
            stats=compute_digest_stats(reviews, previous_total),
            period=period,
        )

    def build_prompt(self, reviews: Sequence[Review], period: ReportPeriod, business_info: BusinessInfo) -> str:
        stats = compute_digest_stats(reviews)
        total = stats.total_reviews

        distribution = "\n".join(
            f"- {star} star: {stats.rating_breakdown[str(star)]} "
            f"({round(stats.rating_breakdown[str(star)] / total * 100)}%)"
            for star in range(5, 0, -1)
        )

        shown = list(reviews)[:self._max_reviews]
        review_lines = "\n".join(
            f"[{r.id}] {r.rating}/5 from {r.customer_name or 'Anonymous'} on {r.review_date[:10]}: "
            f"\"{(r.text or '(no comment)')[:PROMPT_REVIEW_CHARS]}\""
            for r in shown
        )
        omitted = total - len(shown)

        return (
            "BUSINESS CONTEXT:\n"
            f"- Business: {business_info.name}\n"
            f"- Industry: {business_info.industry}\n"
            f"- Period: {period.label}\n"
            f"- Total reviews: {total}\n"
            f"- Average rating: {stats.average_rating}\n\n"
            f"RATING DISTRIBUTION:\n{distribution}\n\n"
            f"REVIEW DATA:\n{review_lines}\n"
            + (f"({omitted} more reviews not shown)\n" if omitted > 0 else "")
            + "\nANALYSIS REQUEST:\n"
            "Return at most 5 positive themes, 4 improvement themes, 6 highlights, "
            "5 competitor mentions and 5 unique value props, using exactly this JSON shape:\n"
            f"{RESPONSE_SHAPE}"
        )
