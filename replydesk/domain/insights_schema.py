"""
Insights Schema - Declarative Repair of AI Digest Output
=========================================================

The AI's JSON is never trusted. Each field of the digest is described once in
a table (kind, constraint, default) and a generic walker applies the table to
whatever came back. The result is always fully populated:

- lists are filtered to objects, validated item by item, then truncated
- theme lists merge entries that name the same theme (case and whitespace
  ignored), adding up their customer counts
- strings are trimmed and capped at 500 chars; empty/non-strings get a default
- enums outside their allowed set get a default
- numbers must be real (no bools, NaN or infinities) and inside their range

EXTENSIBILITY:
- To add a field: add one entry to the relevant RecordSchema below.
- To add a section: add a ListOf / Nested entry to INSIGHTS_SCHEMA.
"""

import math
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

MAX_TEXT_LENGTH = 500

POSITIVE_THEMES_LIMIT = 5
IMPROVEMENT_THEMES_LIMIT = 4
HIGHLIGHTS_LIMIT = 6
COMPETITOR_MENTIONS_LIMIT = 5
VALUE_PROPS_LIMIT = 5

DEFAULT_OVERALL_CONFIDENCE = 0.85

PRIORITIES = ("critical", "high", "medium", "low")
COMPLEXITIES = ("simple", "moderate", "complex")
HIGHLIGHT_TYPES = ("best", "worst", "notable")
MENTION_CONTEXTS = ("positive", "negative", "neutral")
PRICE_PERCEPTIONS = ("premium", "value", "budget")
QUALITY_POSITIONS = ("luxury", "standard", "basic")
SERVICE_LEVELS = ("exceptional", "good", "average")


def sanitize_string(value: Any, max_length: int = MAX_TEXT_LENGTH) -> Optional[str]:
    """Trim and cap a string. Returns None for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip()[:max_length]
    return cleaned or None


def is_real_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


# ── Field kinds ────────────────────────────────────────────────────

class FieldSpec:
    """One entry of a record table: where the value lives and how to repair it."""

    def __init__(self, key: str):
        self.key = key

    def clean(self, value: Any) -> Any:
        raise NotImplementedError


class Text(FieldSpec):
    def __init__(self, key: str, default: str):
        super().__init__(key)
        self.default = default

    def clean(self, value: Any) -> str:
        return sanitize_string(value) or self.default


class Choice(FieldSpec):
    def __init__(self, key: str, choices: Iterable[str], default: str):
        super().__init__(key)
        self.choices = tuple(choices)
        self.default = default

    def clean(self, value: Any) -> str:
        if isinstance(value, str) and value in self.choices:
            return value
        return self.default


class Number(FieldSpec):
    def __init__(self, key: str, minimum: float, maximum: float, default: float):
        super().__init__(key)
        self.minimum = minimum
        self.maximum = maximum
        self.default = default

    def clean(self, value: Any) -> float:
        if is_real_number(value) and self.minimum <= value <= self.maximum:
            return value
        return self.default


class Generated(FieldSpec):
    """A string that gets a fresh value from ``factory`` when missing."""

    def __init__(self, key: str, factory: Callable[[], str]):
        super().__init__(key)
        self.factory = factory

    def clean(self, value: Any) -> str:
        return sanitize_string(value) or self.factory()


class StringList(FieldSpec):
    def __init__(self, key: str, limit: int):
        super().__init__(key)
        self.limit = limit

    def clean(self, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        cleaned = [sanitize_string(item) for item in value]
        return [item for item in cleaned if item][:self.limit]


class RecordSchema:
    """An ordered table of FieldSpecs describing one JSON object."""

    def __init__(self, fields: List[FieldSpec]):
        self.fields = fields

    def field(self, key: str) -> FieldSpec:
        return next(spec for spec in self.fields if spec.key == key)

    def validate(self, raw: Any) -> Dict[str, Any]:
        source = raw if isinstance(raw, dict) else {}
        return {spec.key: spec.clean(source.get(spec.key)) for spec in self.fields}


class ListOf(FieldSpec):
    """
    A list of records. With ``merge_key``, records whose key matches after
    trimming and lowercasing collapse into the first one, and ``sum_fields``
    (Number fields) are added up, capped at the field's maximum.
    """

    def __init__(
        self,
        key: str,
        schema: RecordSchema,
        limit: int,
        merge_key: Optional[str] = None,
        sum_fields: Iterable[str] = (),
    ):
        super().__init__(key)
        self.schema = schema
        self.limit = limit
        self.merge_key = merge_key
        self.sum_fields = tuple(sum_fields)

    def clean(self, value: Any) -> List[Dict[str, Any]]:
        if not isinstance(value, list):
            return []
        items = [self.schema.validate(item) for item in value if isinstance(item, dict)]
        if self.merge_key:
            items = self._merge(items)
        return items[:self.limit]

    def _merge(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        merged: Dict[str, Dict[str, Any]] = {}
        for item in items:
            name = str(item[self.merge_key]).strip().lower()
            existing = merged.get(name)
            if existing is None:
                merged[name] = item
                continue
            for key in self.sum_fields:
                cap = self.schema.field(key).maximum
                existing[key] = min(existing[key] + item[key], cap)
        return list(merged.values())


class Nested(FieldSpec):
    def __init__(self, key: str, schema: RecordSchema):
        super().__init__(key)
        self.schema = schema

    def clean(self, value: Any) -> Dict[str, Any]:
        return self.schema.validate(value)


# ── Digest tables ──────────────────────────────────────────────────

def theme_schema(kind: str) -> RecordSchema:
    return RecordSchema([
        Text("theme", f"{kind} theme"),
        Text("specificExample", "No example provided"),
        Text("impactAssessment", "Impact assessment pending"),
        Text("recommendedAction", "Action recommendation needed"),
        Choice("priority", PRIORITIES, "medium"),
        Number("affectedCustomerCount", 1, 100, 1),
        Choice("implementationComplexity", COMPLEXITIES, "moderate"),
        Text("potentialROI", "ROI assessment pending"),
        Number("confidence", 0, 1, 0.7),
    ])


HIGHLIGHT_SCHEMA = RecordSchema([
    Generated("id", lambda: str(uuid.uuid4())),
    Text("customer_name", "Anonymous Customer"),
    Number("rating", 1, 5, 3),
    Text("review_text", "Review text not available"),
    Choice("type", HIGHLIGHT_TYPES, "notable"),
    Text("businessValue", "Business value assessment needed"),
    Text("actionImplication", "Action needed"),
    Number("representativeness", 0, 1, 0.5),
])

COMPETITOR_MENTION_SCHEMA = RecordSchema([
    Text("competitor", "Unnamed competitor"),
    Choice("context", MENTION_CONTEXTS, "neutral"),
    Text("quote", "No quote provided"),
    Text("implication", "Implication assessment pending"),
])

MARKET_POSITIONING_SCHEMA = RecordSchema([
    Choice("pricePerception", PRICE_PERCEPTIONS, "value"),
    Choice("qualityPosition", QUALITY_POSITIONS, "standard"),
    Choice("serviceLevel", SERVICE_LEVELS, "good"),
])

COMPETITIVE_SCHEMA = RecordSchema([
    ListOf("competitorMentions", COMPETITOR_MENTION_SCHEMA, COMPETITOR_MENTIONS_LIMIT),
    StringList("uniqueValueProps", VALUE_PROPS_LIMIT),
    Nested("marketPositioning", MARKET_POSITIONING_SCHEMA),
])

INSIGHTS_SCHEMA = RecordSchema([
    ListOf("positiveThemes", theme_schema("positive"), POSITIVE_THEMES_LIMIT,
           merge_key="theme", sum_fields=("affectedCustomerCount",)),
    ListOf("improvementThemes", theme_schema("improvement"), IMPROVEMENT_THEMES_LIMIT,
           merge_key="theme", sum_fields=("affectedCustomerCount",)),
    ListOf("highlights", HIGHLIGHT_SCHEMA, HIGHLIGHTS_LIMIT),
    Nested("competitiveInsights", COMPETITIVE_SCHEMA),
    Number("overallConfidence", 0, 1, DEFAULT_OVERALL_CONFIDENCE),
])


def validate_insights(raw: Any) -> Dict[str, Any]:
    """Repair any JSON-decodable value into a complete digest dict. Never raises."""
    return INSIGHTS_SCHEMA.validate(raw)
