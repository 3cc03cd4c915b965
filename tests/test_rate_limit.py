"""In-memory rate limiter tests"""
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException

from app.core import rate_limit as rl


class _User:
    def __init__(self, user_id):
        self.id = user_id
        self.email = f"{user_id}@coop.ng"


def test_requests_over_limit_are_rejected():
    @rl.rate_limit(max_requests=2, window_seconds=60)
    def endpoint(current_user=None):
        return "ok"

    user = _User("u1")
    assert endpoint(current_user=user) == "ok"
    assert endpoint(current_user=user) == "ok"
    with pytest.raises(HTTPException) as exc:
        endpoint(current_user=user)
    assert exc.value.status_code == 429

    # Other users have their own budget
    assert endpoint(current_user=_User("u2")) == "ok"


def test_cleanup_removes_idle_keys():
    now = datetime.utcnow()
    rl._rate_limit_store["initialize:user_idle"] = [now - timedelta(hours=2)]
    rl._rate_limit_store["initialize:user_busy"] = [now - timedelta(hours=2), now - timedelta(minutes=1)]

    rl._cleanup_old_entries(now=now, force=True)

    assert "initialize:user_idle" not in rl._rate_limit_store
    assert rl._rate_limit_store["initialize:user_busy"] == [now - timedelta(minutes=1)]


def test_cleanup_runs_at_most_once_per_interval():
    now = datetime.utcnow()
    rl._cleanup_old_entries(now=now, force=True)
    rl._rate_limit_store["initialize:user_idle"] = [now - timedelta(hours=2)]

    rl._cleanup_old_entries(now=now + timedelta(minutes=1))
    assert "initialize:user_idle" in rl._rate_limit_store

    rl._cleanup_old_entries(now=now + timedelta(minutes=6))
    assert "initialize:user_idle" not in rl._rate_limit_store
