from .rate_limiter import (
    RateLimiter,
    RateLimiterStore,
    InMemoryRateLimiterStore,
    WindowState,
)
