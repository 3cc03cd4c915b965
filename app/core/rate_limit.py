"""
Simple in-memory rate limiting for payment-initiating endpoints
"""
from functools import wraps
from fastapi import HTTPException, status, Request
from typing import Callable, Optional
from datetime import datetime, timedelta
from collections import defaultdict
import logging
import threading

logger = logging.getLogger(__name__)

# Format: {identifier: [timestamp, ...]}
_rate_limit_store = defaultdict(list)
_rate_limit_lock = threading.Lock()
_last_cleanup = datetime.utcnow()
_cleanup_interval = timedelta(minutes=5)
# Longest window any endpoint uses; older timestamps can never count again
_retention = timedelta(hours=1)


def _identify(request: Optional[Request], user) -> str:
    if user is not None:
        return f"user_{user.id}"
    if request is not None and request.client:
        return request.client.host
    return "unknown"


def _cleanup_old_entries(now: Optional[datetime] = None, force: bool = False):
    """Drop timestamps older than the retention window and keys left empty"""
    global _last_cleanup

    now = now or datetime.utcnow()
    if not force and now - _last_cleanup < _cleanup_interval:
        return

    with _rate_limit_lock:
        _last_cleanup = now
        cutoff_time = now - _retention
        for key in list(_rate_limit_store.keys()):
            _rate_limit_store[key] = [ts for ts in _rate_limit_store[key] if ts > cutoff_time]
            if not _rate_limit_store[key]:
                del _rate_limit_store[key]


def reset_rate_limits():
    """Forget all recorded requests."""
    with _rate_limit_lock:
        _rate_limit_store.clear()


def rate_limit(max_requests: int = 10, window_seconds: int = 300, identifier_func: Callable = None):
    """
    Rate limiting decorator for FastAPI endpoints.

    Args:
        max_requests: Maximum number of requests allowed in the window
        window_seconds: Time window in seconds (default: 5 minutes)
        identifier_func: Function (request, user) -> str (default: user id, then client IP)

    Usage:
        @router.post("/initialize")
        @rate_limit(max_requests=10, window_seconds=300)
        def initialize(current_user: User = Depends(get_current_user)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            request = None
            user = None
            for value in list(args) + list(kwargs.values()):
                if isinstance(value, Request):
                    request = value
                elif hasattr(value, "id") and hasattr(value, "email"):  # User object
                    user = value

            _cleanup_old_entries()

            identifier = (identifier_func or _identify)(request, user)
            key = f"{func.__name__}:{identifier}"
            now = datetime.utcnow()
            window_start = now - timedelta(seconds=window_seconds)

            with _rate_limit_lock:
                recent = [ts for ts in _rate_limit_store[key] if ts > window_start]
                if len(recent) >= max_requests:
                    _rate_limit_store[key] = recent
                    logger.warning(f"[RATE_LIMIT] {key} exceeded {max_requests} requests per {window_seconds}s")
                    raise HTTPException(
                        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        detail=f"Rate limit exceeded: {max_requests} requests per {window_seconds} seconds. Please try again later."
                    )
                recent.append(now)
                _rate_limit_store[key] = recent

            return func(*args, **kwargs)

        return wrapper
    return decorator
