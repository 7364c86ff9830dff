from .settings import (
    Settings,
    LLMSettings,
    ReplySettings,
    InsightsSettings,
    RateLimitSettings,
    get_settings,
)
