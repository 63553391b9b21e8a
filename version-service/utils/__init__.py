"""Utility modules for the Version service."""

from .rate_limiter import RateLimitConfig, RateLimiter, RateLimitResult
from .version_store import SupabaseVersionStore

__all__ = ["RateLimitConfig", "RateLimiter", "RateLimitResult", "SupabaseVersionStore"]
