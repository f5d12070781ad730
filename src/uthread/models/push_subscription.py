# src/uthread/models/push_subscription.py
"""Web Push subscriptions registered by user agents."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from uthread.db.session import Base
from uthread.db.time import utcnow


class PushSubscription(Base):
    """One delivery endpoint of one user; unique on (user, endpoint)."""

    __tablename__ = "push_subscription"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="uq_push_subscription_user_endpoint"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    # Stores {"p256dh": ..., "auth": ...}
    keys: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    expiration_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow)

    def subscription_info(self) -> dict[str, Any]:
        """Return the descriptor in the shape Web Push libraries expect."""
        return {"endpoint": self.endpoint, "keys": dict(self.keys or {})}
