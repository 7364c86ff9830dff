# Domain Layer
# ============
# Pure business rules: review lifecycle, brand voice, auto-approval policy,
# fallback replies and the digest schema. No I/O and no third-party imports.

from .errors import (
    ReplyDeskError,
    ReviewValidationError,
    ReviewNotFoundError,
    InvalidTransitionError,
    RateLimitExceeded,
    InsightsError,
    InsightsParseError,
    InsightsProviderError,
)
from .models import (
    ReviewStatus,
    BrandPreset,
    ApprovalMode,
    Review,
    ReviewData,
    BrandVoice,
    BusinessInfo,
    GenerationResult,
    BatchError,
    BatchResult,
    Activity,
    ActivityType,
    can_transition,
)
from .brand_voice import resolve_brand_voice, resolve_business_info
from .approval import approval_reason, resolve_approval_mode, should_auto_approve
from .templates import fallback_reply
from .insights_schema import validate_insights
from .digest import (
    ReportPeriod,
    DigestStats,
    InsightsBundle,
    compute_digest_stats,
    build_empty_insights,
    build_fallback_insights,
)
