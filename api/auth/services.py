"""
Authentication service layer
"""
from datetime import datetime, timezone
import uuid

from sqlmodel import Session, select

from api.auth.models import User
from core.security import verify_password
from core.logger import logger


def authenticate_user(
    session: Session, email: str, password: str
) -> User | None:
    """
    Authenticate user with email and password

    Args:
        session: Database session
        email: User email
        password: Plain text password

    Returns:
        User object if authentication successful, None otherwise
    """
    user = get_user_by_email(session, email)
    if not user:
        return None

    if not user.hashed_password or not verify_password(
        password, user.hashed_password
    ):
        logger.info("Failed login for %s", email)
        return None

    update_last_login(session, user)
    return user


def update_last_login(session: Session, user: User) -> None:
    """Update user's last login timestamp"""
    user.last_login = datetime.now(timezone.utc)
    session.add(user)
    session.commit()
    session.refresh(user)


def get_user_by_id(session: Session, user_id: uuid.UUID) -> User | None:
    """Get user by ID"""
    return session.get(User, user_id)


def get_user_by_email(session: Session, email: str) -> User | None:
    """Get user by email"""
    statement = select(User).where(User.email == email)
    return session.exec(statement).first()
