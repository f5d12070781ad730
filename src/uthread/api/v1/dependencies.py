"""Shared API dependencies for authentication and the realtime components."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from uthread.core.security import decode_access_token
from uthread.db.session import get_db, get_session_factory
from uthread.models import User
from uthread.services.delivery import DeliveryRouter
from uthread.services.exceptions import (
    AuthenticationError,
    InvalidRequestError,
    MessagingError,
    NotFoundError,
    NotParticipantError,
)
from uthread.services.notifications import NotificationFanout
from uthread.services.presence import SessionRegistry
from uthread.services.profiles import get_user
from uthread.services.push import PushChannel

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

# Factory for long-lived connections that open a session per unit of work
SessionFactoryDep = Annotated[sessionmaker[Session], Depends(get_session_factory)]

_STATUS_BY_ERROR: dict[type[MessagingError], int] = {
    InvalidRequestError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    NotParticipantError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
}


def http_error(exc: MessagingError) -> HTTPException:
    """Translate a service exception into the matching HTTP error."""
    for error_type, status_code in _STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def authenticate_token(db: Session, token: str | None) -> User:
    """Resolve a bearer token to a stored user.

    Raises:
        AuthenticationError: If the token is missing, invalid or names an unknown user
    """
    if not token:
        raise AuthenticationError("Authentication error: Token missing")
    user_id = decode_access_token(token)
    user = get_user(db, user_id)
    if user is None:
        raise AuthenticationError("Authentication error: User not found")
    return user


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    try:
        return authenticate_token(db, credentials.credentials)
    except AuthenticationError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


def get_session_registry(connection: HTTPConnection) -> SessionRegistry:
    """Return the registry installed on the application at startup."""
    return connection.app.state.session_registry


def get_delivery_router(connection: HTTPConnection) -> DeliveryRouter | None:
    """Return the live delivery router, or None when the realtime layer is not running."""
    return getattr(connection.app.state, "delivery_router", None)


def require_delivery_router(connection: HTTPConnection) -> DeliveryRouter:
    """Return the live delivery router or fail with 503."""
    router = get_delivery_router(connection)
    if router is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime layer unavailable",
        )
    return router


def get_push_channel(connection: HTTPConnection) -> PushChannel:
    """Return the push channel installed on the application at startup."""
    return connection.app.state.push_channel


def get_notification_fanout(connection: HTTPConnection) -> NotificationFanout:
    """Return the notification fan-out installed on the application at startup.

    Routers owned by posting and follow features depend on this to notify
    recipients through the shared delivery path.
    """
    return connection.app.state.notification_fanout


# Type aliases for dependencies
CurrentUserDep = Annotated[User, Depends(get_current_user)]
RegistryDep = Annotated[SessionRegistry, Depends(get_session_registry)]
OptionalRouterDep = Annotated[DeliveryRouter | None, Depends(get_delivery_router)]
RouterDep = Annotated[DeliveryRouter, Depends(require_delivery_router)]
PushChannelDep = Annotated[PushChannel, Depends(get_push_channel)]
FanoutDep = Annotated[NotificationFanout, Depends(get_notification_fanout)]
