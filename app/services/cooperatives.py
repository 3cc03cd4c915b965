"""
Cooperative membership lookups the billing engine depends on:
the admin gate and the admin recipient list.
"""
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
from app.core.exceptions import ForbiddenError, NotFoundError
from app.models.member import Member, MemberRole, MemberStatus
from app.models.user import User

ADMIN_ROLES = (MemberRole.ADMIN.value, MemberRole.OWNER.value)


def is_cooperative_admin(db: Session, cooperative_id: UUID, user_id: UUID) -> bool:
    member = db.query(Member).filter(
        Member.cooperative_id == cooperative_id,
        Member.user_id == user_id,
        Member.role.in_(ADMIN_ROLES),
        Member.status == MemberStatus.ACTIVE.value,
    ).first()
    return member is not None


def require_cooperative_admin(db: Session, cooperative_id: UUID, user_id: UUID) -> None:
    if user_id is None or not is_cooperative_admin(db, cooperative_id, user_id):
        raise ForbiddenError("Only cooperative admins can manage subscriptions")


def get_admin_user_ids(db: Session, cooperative_id: UUID) -> List[UUID]:
    rows = db.query(Member.user_id).filter(
        Member.cooperative_id == cooperative_id,
        Member.role.in_(ADMIN_ROLES),
        Member.status == MemberStatus.ACTIVE.value,
        Member.user_id.isnot(None),
    ).all()
    return [row[0] for row in rows]


def get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


def require_cooperative_member(db: Session, cooperative_id: UUID, user_id: UUID) -> None:
    member = db.query(Member).filter(
        Member.cooperative_id == cooperative_id,
        Member.user_id == user_id,
        Member.status == MemberStatus.ACTIVE.value,
    ).first()
    if member is None:
        raise ForbiddenError("You are not a member of this cooperative")
