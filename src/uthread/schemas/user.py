"""User-related Pydantic schemas."""

from pydantic import BaseModel, ConfigDict


class UserProfile(BaseModel):
    """Public profile fields joined into outbound realtime payloads."""

    id: str
    username: str
    display_name: str | None = None
    avatar: str | None = None

    model_config = ConfigDict(from_attributes=True)
