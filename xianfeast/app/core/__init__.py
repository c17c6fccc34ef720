"""Core utilities for the XianFeast application."""

from xianfeast.app.core.cache import (
    AppCaches,
    CacheKeys,
    CacheManager,
    CacheStats,
    cached,
)
from xianfeast.app.core.config import settings
from xianfeast.app.core.logging import get_logger, setup_logging
from xianfeast.app.core.scheduler import (
    CallbackScheduler,
    ScheduledCall,
    TimerHeapScheduler,
)

__all__ = [
    "AppCaches",
    "CacheKeys",
    "CacheManager",
    "CacheStats",
    "cached",
    "settings",
    "get_logger",
    "setup_logging",
    "CallbackScheduler",
    "ScheduledCall",
    "TimerHeapScheduler",
]
