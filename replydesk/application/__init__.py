# Application Layer
# =================
# Use cases built on the domain and infrastructure layers:
#   reply_generator/     - one on-brand reply per review, fallback on failure
#   batch_orchestrator/  - chunked, failure-isolated batches
#   insights_aggregator/ - weekly digest from a window of reviews
#   review_service/      - validation, rate limiting, persistence, state changes

from .reply_generator import ReplyGenerator, extract_avoid_phrases, word_range
from .batch_orchestrator import BatchReplyOrchestrator
from .insights_aggregator import (
    InsightsAggregator,
    InsightsError,
    InsightsParseError,
    InsightsProviderError,
)
from .review_service import ReviewReplyService
from .factory import build_service
