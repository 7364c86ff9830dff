"""
Brand Voice Resolver
====================

Turns a stored settings row (possibly partial, legacy or missing) into a
BrandVoice. Pure and total: bad input degrades to defaults, it never raises.

Accepted keys, stored column name first:
    brand_voice_preset / preset
    formality_level    / formality
    warmth_level       / warmth
    brevity_level      / brevity
    custom_instruction / customInstruction
"""

import logging
from typing import Any, Mapping, Optional

from .models import BrandPreset, BrandVoice, BusinessInfo

logger = logging.getLogger(__name__)

DEFAULT_PRESET = BrandPreset.FRIENDLY.value
SLIDER_MIDPOINT = 3

_PRESETS = {p.value for p in BrandPreset}


def _pick(row: Mapping, *keys: str) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


def normalize_preset(value: Any) -> str:
    """Map any stored preset value onto one of the four known presets."""
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in _PRESETS:
            return candidate
    if value is not None:
        logger.debug(f"Unknown brand voice preset {value!r}, using {DEFAULT_PRESET}")
    return DEFAULT_PRESET


def resolve_brand_voice(raw_settings: Optional[Mapping]) -> BrandVoice:
    """Resolve a settings row into a BrandVoice."""
    if not isinstance(raw_settings, Mapping):
        return BrandVoice()

    formality = _pick(raw_settings, "formality_level", "formality")
    warmth = _pick(raw_settings, "warmth_level", "warmth")
    brevity = _pick(raw_settings, "brevity_level", "brevity")

    return BrandVoice(
        preset=normalize_preset(_pick(raw_settings, "brand_voice_preset", "preset")),
        formality=SLIDER_MIDPOINT if formality is None else formality,
        warmth=SLIDER_MIDPOINT if warmth is None else warmth,
        brevity=SLIDER_MIDPOINT if brevity is None else brevity,
        custom_instruction=_pick(raw_settings, "custom_instruction", "customInstruction"),
    )


def resolve_business_info(record: Optional[Mapping]) -> BusinessInfo:
    """Resolve a business record into prompt context; industry defaults to 'service'."""
    if not isinstance(record, Mapping):
        return BusinessInfo()

    name = _pick(record, "name", "business_name")
    industry = _pick(record, "industry")

    return BusinessInfo(
        name=name.strip() if isinstance(name, str) and name.strip() else BusinessInfo.name,
        industry=industry.strip() if isinstance(industry, str) and industry.strip() else BusinessInfo.industry,
        contact_email=_pick(record, "contact_email", "email"),
        phone=_pick(record, "phone"),
    )
