"""Web Push subscription schemas."""

from pydantic import BaseModel, ConfigDict, Field


class PushKeys(BaseModel):
    """Client public key material of a push subscription."""

    p256dh: str
    auth: str


class SubscriptionDescriptor(BaseModel):
    """The ``PushSubscription.toJSON()`` shape sent by browsers."""

    endpoint: str | None = None
    keys: PushKeys | None = None
    expiration_time: int | None = Field(None, alias="expirationTime")

    model_config = ConfigDict(populate_by_name=True)


class SubscribeRequest(BaseModel):
    """Body of ``POST /push/subscribe``."""

    subscription: SubscriptionDescriptor | None = None


class UnsubscribeRequest(BaseModel):
    """Body of ``DELETE /push/unsubscribe``."""

    endpoint: str | None = None


class SubscriptionResponse(BaseModel):
    """A stored subscription as returned to its owner."""

    id: int
    endpoint: str
    expiration_time: int | None = None

    model_config = ConfigDict(from_attributes=True)
