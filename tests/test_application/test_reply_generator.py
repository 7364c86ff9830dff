"""
Unit tests for the Reply Generator.

Provider calls are scripted with the fake completion client from conftest.
"""

import asyncio

import pytest

from replydesk.application import ReplyGenerator, extract_avoid_phrases, word_range
from replydesk.application.reply_generator import clean_reply, opening_phrase
from replydesk.domain import BrandVoice, BusinessInfo, ReviewData, fallback_reply
from replydesk.infrastructure.llm import CompletionError

AMY = ReviewData(id="r1", rating=5, text="Best croissants in town!", customer_name="Amy")
BEN = ReviewData(id="r2", rating=2, text="Coffee was cold and the line was slow.", customer_name="Ben")
BAKERY = BusinessInfo(name="Corner Bakery", industry="bakery", contact_email="hello@corner.test")


@pytest.fixture
def generator_for(make_client, reply_settings):
    def _make(*responses):
        client = make_client(responses)
        return ReplyGenerator(client, reply_settings), client
    return _make


def test_successful_reply_is_cleaned(generator_for):
    generator, client = generator_for('"Thanks Amy — see you soon!"')

    result = asyncio.run(generator.generate(AMY, BrandVoice(), BAKERY))

    assert result.success is True
    assert result.reply == "Thanks Amy, see you soon!"
    assert result.tone == "friendly"
    assert result.error is None
    assert len(client.calls) == 1


def test_request_uses_brand_voice_and_review(generator_for):
    generator, client = generator_for("Glad the croissants hit the spot, Amy.")
    voice = BrandVoice(preset="professional", formality=5, custom_instruction="Sign off as the Corner team.")

    asyncio.run(generator.generate(AMY, voice, BAKERY, avoid_phrases=["thanks so much for"]))

    call = client.calls[0]
    assert call["temperature"] == 0.3
    assert call["json_mode"] is False
    assert call["max_tokens"] <= 200
    assert "Corner Bakery" in call["system_prompt"]
    assert "bakery industry" in call["system_prompt"]
    assert "Sign off as the Corner team." in call["system_prompt"]
    assert "very formal" in call["system_prompt"]
    assert "thanks so much for" in call["system_prompt"]
    assert "hello@corner.test" in call["system_prompt"]
    assert "5-star review from Amy" in call["user_prompt"]
    assert "Best croissants in town!" in call["user_prompt"]


def test_low_rating_prompt_asks_for_acknowledgement(generator_for):
    generator, client = generator_for("Sorry about the cold coffee, Ben.")
    asyncio.run(generator.generate(BEN, BrandVoice(), BAKERY))
    assert "Acknowledge the issue" in client.calls[0]["user_prompt"]


def test_provider_error_returns_fallback(generator_for):
    generator, _ = generator_for(CompletionError("LLM API timeout", transient=True))

    result = asyncio.run(generator.generate(AMY, BrandVoice(), BAKERY))

    assert result.success is False
    assert result.reply == fallback_reply(5, "friendly", "Amy")
    assert result.error == "LLM API timeout"


def test_unexpected_error_returns_fallback(generator_for):
    generator, _ = generator_for(RuntimeError("boom"))

    result = asyncio.run(generator.generate(BEN, BrandVoice(preset="playful"), BAKERY))

    assert result.success is False
    assert result.tone == "playful"
    assert result.reply == fallback_reply(2, "playful", "Ben")
    assert result.error.startswith("Unexpected error")


def test_empty_completion_returns_fallback(generator_for):
    generator, _ = generator_for('""')
    result = asyncio.run(generator.generate(AMY, BrandVoice(preset="custom"), BAKERY))
    assert result.success is False
    assert result.reply == fallback_reply(5, "custom", "Amy")


def test_fallback_for_unknown_preset_uses_friendly(generator_for):
    generator, _ = generator_for(CompletionError("down"))
    result = asyncio.run(generator.generate(AMY, BrandVoice(preset="sarcastic"), BAKERY))
    assert result.reply == fallback_reply(5, "friendly", "Amy")


# ── Length targets ─────────────────────────────────────────────────

def test_word_range_for_short_positive_review():
    limits = word_range(3, 5, "Great!")
    assert (limits.minimum, limits.maximum) == (20, 35)


def test_word_range_stretches_for_long_unhappy_review():
    long_text = " ".join(["word"] * 30)
    limits = word_range(3, 2, long_text)
    assert (limits.minimum, limits.maximum) == (35, 63)
    assert limits.max_tokens == 121


def test_word_range_for_terse_voice_and_medium_review():
    medium_text = " ".join(["word"] * 10)
    limits = word_range(5, 5, medium_text)
    assert (limits.minimum, limits.maximum) == (9, 17)


def test_word_range_caps_length():
    long_text = " ".join(["word"] * 40)
    limits = word_range(1, 1, long_text)
    assert limits.maximum == 100
    assert limits.max_tokens <= 200


def test_unknown_brevity_uses_default_range():
    limits = word_range(9, 5, "ok")
    assert (limits.minimum, limits.maximum) == (20, 35)


# ── Text helpers ───────────────────────────────────────────────────

def test_clean_reply_strips_quotes_and_dashes():
    assert clean_reply("  'Thanks -- we will fix it'  ") == "Thanks, we will fix it"
    assert clean_reply(None) == ""


def test_opening_phrase():
    assert opening_phrase("Thanks So Much For coming by") == "thanks so much for"
    assert opening_phrase("Too short") is None


def test_avoid_phrases_from_recent_replies():
    phrases = extract_avoid_phrases([
        "Thank you for visiting our cafe today, Amy!",
        "Thank you for visiting our cafe today, Amy!",
        None,
        "We appreciate your honest note about the queue.",
    ])
    assert "thank you for visiting" in phrases
    assert "we appreciate your honest" in phrases
    assert len(phrases) == len(set(phrases))
    assert len(phrases) <= 15


def test_avoid_phrases_are_capped():
    replies = [f"Reply number {i} is here for you" for i in range(20)]
    assert len(extract_avoid_phrases(replies)) == 15
