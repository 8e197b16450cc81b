"""User service - lookups against the user store."""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from callgate.core.errors import NotFoundError
from callgate.db.enums import UserRole
from callgate.db.models import User
from callgate.utils.identifiers import normalize_email, normalize_id


class UserNotFoundError(NotFoundError):
    """User not found."""

    pass


def get_user_by_id(db: Session, user_id: UUID | str) -> User | None:
    """Get user by ID."""
    return db.get(User, normalize_id(user_id))


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get user by email (case-insensitive)."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.execute(
        select(User).where(func.lower(User.email) == normalized).order_by(User.created_at)
    ).scalars().first()


def require_user(db: Session, user_id: UUID | str) -> User:
    """Get a user or raise UserNotFoundError."""
    user = get_user_by_id(db, user_id)
    if not user:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def lock_user(db: Session, user_id: UUID | str) -> User:
    """Load a user row with FOR UPDATE so concurrent writers serialize on it."""
    user = db.execute(
        select(User).where(User.id == normalize_id(user_id)).with_for_update()
    ).scalar_one_or_none()
    if not user:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def find_referred_decision_makers(db: Session, rep_id: UUID | str) -> list[User]:
    """DMs whose referred_by points at this rep."""
    return list(
        db.execute(
            select(User)
            .where(
                User.referred_by_id == normalize_id(rep_id),
                User.role == UserRole.DECISION_MAKER.value,
            )
            .order_by(User.created_at)
        ).scalars().all()
    )
