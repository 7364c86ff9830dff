"""
Fallback Reply Templates
========================

Static replies used whenever the AI provider can't produce one. Keyed by
tone preset, then star rating. Every template has a single ``{name}`` slot.

This is data, not logic: edit the table to change wording.
"""

from typing import Any

from .brand_voice import DEFAULT_PRESET, normalize_preset

DEFAULT_CUSTOMER_NAME = "there"

FALLBACK_TEMPLATES = {
    "friendly": {
        5: "Thank you so much, {name}! We're thrilled you had such a great time with us, and your kind words made our day.",
        4: "Thanks for the lovely review, {name}! We're really glad you enjoyed your visit and hope to see you again soon.",
        3: "Hi {name}, thanks for sharing your feedback. We're glad parts of your visit went well and we'd love to make the next one even better.",
        2: "Hi {name}, thank you for being honest with us. We're sorry we fell short this time and would really like the chance to do better.",
        1: "{name}, we're truly sorry about your experience. That isn't the standard we aim for. Please get in touch with us directly so we can put it right.",
    },
    "professional": {
        5: "Dear {name}, thank you for your excellent review. We are delighted to have met your expectations and look forward to serving you again.",
        4: "Dear {name}, thank you for your positive feedback. We value your business and appreciate you taking the time to share your experience.",
        3: "Dear {name}, thank you for your feedback. We are always working to improve and would welcome the opportunity to exceed your expectations next time.",
        2: "Dear {name}, thank you for bringing this to our attention. We take every comment seriously and are reviewing how we can improve.",
        1: "Dear {name}, please accept our apologies for your experience. We would appreciate the chance to discuss your concerns directly and resolve them.",
    },
    "playful": {
        5: "Wow, {name}! You just made the whole team grin from ear to ear. Thanks for the fantastic review, come back soon!",
        4: "Hey {name}, thanks for the awesome review! We're doing a small victory lap over here and hope to see you again soon.",
        3: "Hi {name}! Thanks for the honest feedback. We're good, but we know we can be great, and we'd love to prove it next time.",
        2: "Hey {name}, looks like we missed the mark this time. That's not like us at all, so please let us make it up to you.",
        1: "Oh no, {name}! We really dropped the ball here and we're sorry. Please reach out so we can set things right.",
    },
    "custom": {
        5: "Thank you, {name}, for the wonderful review. We're so pleased you enjoyed your experience with us.",
        4: "Thank you, {name}, for your kind review. We're glad you had a good experience and hope to welcome you back.",
        3: "Thank you, {name}, for your feedback. We appreciate it and will use it to keep improving.",
        2: "Thank you, {name}, for letting us know. We're sorry your experience wasn't better and we'd like to make it right.",
        1: "{name}, we're sorry your experience fell so far short. Please contact us directly so we can address your concerns.",
    },
}

NEUTRAL_RATING = 3


def rating_bucket(rating: Any) -> int:
    """Clamp any rating-like value to a 1-5 bucket; unusable values map to 3."""
    if isinstance(rating, bool):
        return NEUTRAL_RATING
    try:
        value = round(float(rating))
    except (TypeError, ValueError, OverflowError):
        return NEUTRAL_RATING
    return max(1, min(5, value))


def fallback_reply(rating: Any, preset: Any, customer_name: Any) -> str:
    """Return the template for ``(rating, preset)`` filled with the customer's name."""
    templates = FALLBACK_TEMPLATES.get(normalize_preset(preset), FALLBACK_TEMPLATES[DEFAULT_PRESET])
    name = customer_name.strip() if isinstance(customer_name, str) and customer_name.strip() else DEFAULT_CUSTOMER_NAME
    return templates[rating_bucket(rating)].format(name=name)
