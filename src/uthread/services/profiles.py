"""Profile resolution for display enrichment of outbound payloads."""
from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.orm import Session

from uthread.models import User
from uthread.schemas.user import UserProfile

__all__ = ["get_user", "resolve_profile", "resolve_profiles"]


def get_user(db: Session, user_id: str) -> User | None:
    """Return a single user by primary key."""
    return db.get(User, user_id)


def resolve_profile(db: Session, user_id: str) -> UserProfile | None:
    """Return the public profile of ``user_id`` or None if unknown."""
    user = get_user(db, user_id)
    return UserProfile.model_validate(user) if user is not None else None


def resolve_profiles(db: Session, user_ids: Iterable[str]) -> dict[str, UserProfile]:
    """Resolve several profiles with a single query."""
    wanted = set(user_ids)
    if not wanted:
        return {}
    users = db.query(User).filter(User.id.in_(wanted)).all()
    return {user.id: UserProfile.model_validate(user) for user in users}
