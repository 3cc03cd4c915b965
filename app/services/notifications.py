"""
In-app notifications for cooperative admins.
Fire-and-forget: failures are logged and never propagate to the billing change
that triggered them.
"""
from sqlalchemy.orm import Session
from typing import Optional, Iterable
from uuid import UUID
import logging
from app.models.notification import Notification
from app.services.cooperatives import get_admin_user_ids

logger = logging.getLogger(__name__)


def notify_cooperative_admins(
    db: Session,
    cooperative_id: UUID,
    notification_type: str,
    title: str,
    body: str,
    data: Optional[dict] = None,
    exclude_user_ids: Iterable[UUID] = (),
) -> int:
    """Create one notification per active admin/owner. Returns how many were written."""
    try:
        excluded = set(exclude_user_ids)
        user_ids = [uid for uid in get_admin_user_ids(db, cooperative_id) if uid not in excluded]
        for user_id in user_ids:
            db.add(Notification(
                user_id=user_id,
                cooperative_id=cooperative_id,
                type=notification_type,
                title=title,
                body=body,
                data=data,
            ))
        db.commit()
        return len(user_ids)
    except Exception as e:
        logger.warning(f"[NOTIFY] Failed to notify admins of {cooperative_id} ({notification_type}): {str(e)}")
        db.rollback()
        return 0
