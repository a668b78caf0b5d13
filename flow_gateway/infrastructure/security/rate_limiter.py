"""Database-windowed rate limiter keyed by (user, action type)"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.models import RateLimitResult
from flow_gateway.infrastructure.database.models import RateLimitWindow
from flow_gateway.infrastructure.observability.metrics import rate_limit_fail_open_counter
from flow_gateway.utils.date_utils import minute_bucket, utcnow, window_start

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "api.call"


class RateLimiter:
    """
    Counts requests in per-minute rows and sums the rows inside the window.

    Checks fail open: any storage error allows the request. Callers commit
    their own work first, since a failed check rolls the session back.
    """

    def __init__(
        self,
        db: Session,
        limits: Optional[Dict[str, int]] = None,
        window_minutes: Optional[int] = None,
        fail_open_remaining: Optional[int] = None,
    ):
        self.db = db
        self.limits = limits or settings.rate_limits
        self.window_minutes = window_minutes or settings.rate_limit_window_minutes
        self.fail_open_remaining = fail_open_remaining or settings.rate_limit_fail_open_remaining

    def limit_for(self, action_type: str) -> int:
        return self.limits.get(action_type, self.limits[DEFAULT_ACTION])

    def check(self, user_id: str, action_type: str, now: Optional[datetime] = None) -> RateLimitResult:
        now = now or utcnow()
        limit = self.limit_for(action_type)
        reset_at = (now + timedelta(minutes=self.window_minutes)).isoformat()

        try:
            used = (
                self.db.query(func.coalesce(func.sum(RateLimitWindow.request_count), 0))
                .filter(
                    RateLimitWindow.user_id == user_id,
                    RateLimitWindow.action_type == action_type,
                    RateLimitWindow.window_start >= window_start(self.window_minutes, now),
                )
                .scalar()
            )
        except Exception as e:
            self.db.rollback()
            rate_limit_fail_open_counter.inc()
            logger.warning(
                "Rate limit check unavailable, failing open",
                extra={"user_id": user_id, "action_type": action_type, "error": str(e)},
            )
            return RateLimitResult(allowed=True, remaining=self.fail_open_remaining, limit=limit, reset_at="")

        used = int(used or 0)
        return RateLimitResult(
            allowed=used < limit,
            remaining=max(0, limit - used),
            limit=limit,
            reset_at=reset_at,
        )

    def record(self, user_id: str, action_type: str, now: Optional[datetime] = None) -> None:
        """Count one request in the current minute row. Non-critical: errors are logged."""
        bucket = minute_bucket(now)
        try:
            updated = (
                self.db.query(RateLimitWindow)
                .filter(
                    RateLimitWindow.user_id == user_id,
                    RateLimitWindow.action_type == action_type,
                    RateLimitWindow.window_start == bucket,
                )
                .update(
                    {RateLimitWindow.request_count: RateLimitWindow.request_count + 1},
                    synchronize_session=False,
                )
            )
            if updated == 0:
                self.db.add(
                    RateLimitWindow(user_id=user_id, action_type=action_type, window_start=bucket, request_count=1)
                )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(
                "Rate limit record skipped",
                extra={"user_id": user_id, "action_type": action_type, "error": str(e)},
            )
