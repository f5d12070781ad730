# src/uthread/models/user.py
"""SQLAlchemy model for user identities."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from uthread.db.session import Base
from uthread.db.time import utcnow


def _new_user_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """A registered account.

    Only the profile fields needed to enrich realtime payloads live here;
    credentials are issued and stored by the authentication service.
    """

    __tablename__ = "user_account"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_user_id)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
