"""
Activity logging for subscription changes
"""
from sqlalchemy.orm import Session
from app.models.activity import Activity, ActivityAction
from typing import Optional
import logging
import uuid

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    user_id: Optional[uuid.UUID],
    action: ActivityAction,
    description: str,
    cooperative_id: Optional[uuid.UUID] = None,
    metadata: Optional[dict] = None
) -> bool:
    """
    Record an entry in the cooperative activity feed.

    Best-effort: callers invoke this after their own changes are committed,
    so a failure here is logged and rolled back without touching them.

    Args:
        db: Database session
        user_id: Acting user (None for provider-driven changes)
        action: Activity action
        description: Human readable description
        cooperative_id: Cooperative the activity belongs to
        metadata: Additional details (plan name, amount, reason, ...)
    """
    try:
        activity = Activity(
            user_id=user_id,
            cooperative_id=cooperative_id,
            action=action.value if isinstance(action, ActivityAction) else str(action),
            description=description,
            activity_metadata=metadata,
        )
        db.add(activity)
        db.commit()
        return True
    except Exception as e:
        logger.warning(f"[ACTIVITY] Failed to log {action}: {str(e)}")
        db.rollback()
        return False
