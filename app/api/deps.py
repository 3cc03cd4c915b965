from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.models.user import User
from app.core.security import decode_access_token
from app.services.paystack import PaystackClient, get_paystack_client
from app.services.subscription_lifecycle import SubscriptionService
import logging
import uuid

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the bearer token to a user.
    Tokens carry the user id in "user_id" (preferred) or "sub".
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    raw_user_id = payload.get("user_id") or payload.get("sub")
    try:
        user_id = uuid.UUID(str(raw_user_id))
    except (ValueError, TypeError):
        logger.warning(f"[AUTH] Token without a valid user id: {raw_user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_subscription_service(
    db: Session = Depends(get_db),
    provider: PaystackClient = Depends(get_paystack_client),
) -> SubscriptionService:
    return SubscriptionService(db, provider=provider)
