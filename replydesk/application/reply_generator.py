"""
Reply Generator - On-Brand Replies With a Guaranteed Fallback
=============================================================

ARCHITECTURAL DECISION:
- One completion per review, plain text, low temperature
- Prompt = brand voice + business context (system) and the review (user)
- Reply length follows the brevity slider, stretched for long or unhappy reviews
- ANY failure returns the (rating, preset) fallback template instead of raising,
  so callers always get a reply they can show

EXTENSIBILITY:
- To change wording rules: edit FORBIDDEN_PHRASES / the scale tables below
- To change fallback wording: edit domain/templates.py
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from ..domain.models import BrandVoice, BusinessInfo, GenerationResult, ReviewData
from ..domain.templates import fallback_reply
from ..infrastructure.config import ReplySettings, get_settings
from ..infrastructure.llm import CompletionError

logger = logging.getLogger(__name__)

TONE_TEXT = {
    "friendly": "Tone: warm, approachable, concise.",
    "professional": "Tone: polished, respectful, concise.",
    "playful": "Tone: light and upbeat. One tasteful emoji is fine if it fits naturally.",
    "custom": "Tone: follow the custom brand instructions below.",
}

FORMALITY_TEXT = {
    1: "Use very casual phrasing with contractions.",
    2: "Use casual phrasing with contractions.",
    3: "Use neutral, conversational business language.",
    4: "Use formal business language with few contractions.",
    5: "Use very formal business language with no contractions.",
}

WARMTH_TEXT = {
    1: "Keep it factual and restrained.",
    2: "Be polite and measured.",
    3: "Be empathetic but not effusive.",
    4: "Be warm and personable.",
    5: "Be very warm and people-oriented without sounding gushy.",
}

# Phrases that make replies read as automated
FORBIDDEN_PHRASES = [
    "thrilled", "delighted", "over the moon", "made our day", "means the world to us",
    "rest assured", "please don't hesitate", "at your earliest convenience",
    "valued customer", "top priority", "commitment to excellence",
    "moving forward", "that being said", "we appreciate your feedback",
    "thank you for your kind words", "so glad",
]

# (max, min) words per brevity level: (positive review, rating <= 3)
WORD_LIMITS = {
    1: ((60, 35), (80, 50)),
    2: ((45, 25), (60, 35)),
    3: ((35, 20), (45, 25)),
    4: ((25, 15), (35, 20)),
    5: ((15, 8), (25, 15)),
}
DEFAULT_WORD_LIMIT = (35, 20)
MAX_REPLY_WORDS = 100

# Stock phrasings worth steering away from when they show up in recent replies
STOCK_PATTERNS = [
    re.compile(r"thank you for .{1,20}"),
    re.compile(r"we appreciate .{1,20}"),
    re.compile(r"glad (?:that )?you .{1,20}"),
    re.compile(r"so happy .{1,20}"),
    re.compile(r"it(?:'s| is) wonderful .{1,20}"),
    re.compile(r"we(?:'re| are) grateful .{1,20}"),
]
MAX_AVOID_PHRASES = 15

_DASHES = re.compile(r"\s*(?:[—–]|--)\s*")
_WRAPPING_QUOTES = "\"'“”‘’"


@dataclass(frozen=True)
class WordRange:
    minimum: int
    maximum: int

    @property
    def max_tokens(self) -> int:
        return min(math.ceil(self.maximum * 16 / 10) + 20, 200)


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def word_range(brevity, rating: int, review_text: str) -> WordRange:
    """Target reply length for a review at a given brevity level (1 = roomy, 5 = terse)."""
    low_rating = rating <= 3
    limits = WORD_LIMITS.get(brevity)
    base_max, base_min = limits[1 if low_rating else 0] if limits else DEFAULT_WORD_LIMIT

    review_words = len(review_text.split())
    if review_words >= 30:
        multiplier = 1.4 if low_rating else 1.2
    elif review_words >= 10:
        multiplier = 1.2 if low_rating else 1.1
    else:
        multiplier = 1.0

    maximum = min(_round_half_up(base_max * multiplier), MAX_REPLY_WORDS)
    minimum = min(_round_half_up(base_min * multiplier), maximum - 5)
    return WordRange(minimum=minimum, maximum=maximum)


def clean_reply(text: str) -> str:
    """Trim, drop wrapping quotes and turn dashes into commas."""
    cleaned = (text or "").strip()
    while len(cleaned) >= 2 and cleaned[0] in _WRAPPING_QUOTES and cleaned[-1] in _WRAPPING_QUOTES:
        cleaned = cleaned[1:-1].strip()
    cleaned = _DASHES.sub(", ", cleaned)
    cleaned = re.sub(r",\s*,", ",", cleaned)
    cleaned = re.sub(r"\s+,", ",", cleaned)
    return cleaned.strip(" ,")


def opening_phrase(text: str, words: int = 4) -> Optional[str]:
    """Lower-cased first ``words`` words, or None for shorter texts."""
    parts = (text or "").lower().split()
    if len(parts) < words:
        return None
    return " ".join(parts[:words])


def extract_avoid_phrases(recent_replies: Iterable[str], limit: int = MAX_AVOID_PHRASES) -> List[str]:
    """Openers and stock phrasings from recent replies, de-duplicated, in order seen."""
    phrases: List[str] = []
    for reply in recent_replies:
        if not reply:
            continue
        text = reply.lower()
        for size in (4, 6):
            opener = opening_phrase(text, size)
            if opener:
                phrases.append(opener)
        for pattern in STOCK_PATTERNS:
            phrases.extend(pattern.findall(text)[:2])

    unique = list(dict.fromkeys(p.strip() for p in phrases if p.strip()))
    return unique[:limit]


class ReplyGenerator:
    """
    Drafts one reply per review.

    USAGE:
        generator = ReplyGenerator(CompletionClient())
        result = await generator.generate(review, brand_voice, business_info)
        print(result.reply)  # always non-empty

    FALLBACK BEHAVIOR:
    - Provider error / timeout / missing key: fallback template
    - Empty completion or nothing left after cleaning: fallback template
    - Unexpected exception: logged, fallback template
    """

    def __init__(self, client, settings: Optional[ReplySettings] = None):
        self._client = client
        settings = settings or get_settings().reply
        self._temperature = settings.temperature
        self._max_tokens_cap = settings.max_tokens_cap

    async def generate(
        self,
        review: ReviewData,
        brand_voice: BrandVoice,
        business_info: BusinessInfo,
        avoid_phrases: Optional[Sequence[str]] = None,
    ) -> GenerationResult:
        tone = brand_voice.preset
        try:
            limits = word_range(brand_voice.brevity, review.rating, review.text or "")
            completion = await self._client.complete(
                system_prompt=self.build_system_prompt(brand_voice, business_info, avoid_phrases),
                user_prompt=self.build_user_prompt(review, limits),
                temperature=self._temperature,
                max_tokens=min(limits.max_tokens, self._max_tokens_cap),
                json_mode=False,
            )
            reply = clean_reply(completion.text)
            if not reply:
                raise CompletionError("Completion was empty after cleanup")

            logger.debug(f"Drafted reply for review {review.id} ({len(reply.split())} words)")
            return GenerationResult(review_id=review.id, success=True, reply=reply, tone=tone)

        except CompletionError as e:
            logger.warning(f"Reply generation failed for review {review.id}: {e}. Using fallback template")
            return self.fallback(review, tone, str(e))

        except Exception as e:
            logger.exception(f"Unexpected error generating reply for review {review.id}: {e}")
            return self.fallback(review, tone, f"Unexpected error: {e}")

    def fallback(self, review: ReviewData, tone: str, error: str) -> GenerationResult:
        """Fallback result for a review, used when no AI reply could be made."""
        return GenerationResult(
            review_id=review.id,
            success=False,
            reply=fallback_reply(review.rating, tone, review.customer_name),
            tone=tone,
            error=error,
        )

    # ── Prompts ────────────────────────────────────────────────────

    def build_system_prompt(
        self,
        brand_voice: BrandVoice,
        business_info: BusinessInfo,
        avoid_phrases: Optional[Sequence[str]] = None,
    ) -> str:
        parts = [
            f"You write replies to Google reviews on behalf of {business_info.name}, "
            f"a business in the {business_info.industry} industry. "
            "Write as the business owner. Reply with the reply text only.",
            TONE_TEXT.get(brand_voice.preset, TONE_TEXT["friendly"]),
            FORMALITY_TEXT.get(brand_voice.formality, FORMALITY_TEXT[3]),
            WARMTH_TEXT.get(brand_voice.warmth, WARMTH_TEXT[3]),
            "Rules: mention one or two specific details from the review. "
            "If the rating is 3 or lower, acknowledge the problem plainly, apologize once "
            "and offer a next step. Keep it to one short paragraph. Do not invent facts.",
        ]

        if business_info.contact_email:
            parts.append(f"For follow-ups, the contact email is {business_info.contact_email}.")
        if business_info.phone:
            parts.append(f"A phone number such as {business_info.phone} is fine if relevant.")

        custom = brand_voice.custom_instruction
        if isinstance(custom, str) and custom.strip():
            parts.append(f"Custom brand instructions (follow these closely): {custom.strip()}")

        parts.append("Never use em dashes, en dashes or double hyphens. No hashtags and no links.")
        if brand_voice.preset != "playful":
            parts.append("Do not use emojis.")

        parts.append("Never use these phrases: " + ", ".join(FORBIDDEN_PHRASES) + ".")

        if avoid_phrases:
            parts.append(
                "Do not reuse these phrases from recent replies: " + ", ".join(avoid_phrases) + "."
            )

        return " ".join(parts)

    def build_user_prompt(self, review: ReviewData, limits: WordRange) -> str:
        text = review.text.strip() if review.text else ""
        body = f'"{text}"' if text else "(the customer left a rating without a comment)"
        focus = (
            "Acknowledge the issue, apologize once if appropriate and offer a next step."
            if review.rating <= 3
            else "Thank them naturally and call out what they enjoyed."
        )
        return (
            f"Write a reply to this {review.rating}-star review from {review.customer_name}:\n"
            f"{body}\n\n"
            f"Word count: {limits.minimum}-{limits.maximum} words. "
            f"{focus} End on a short, human-sounding line."
        )
