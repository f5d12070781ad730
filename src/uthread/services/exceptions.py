"""Exceptions raised by the messaging and delivery services."""


class MessagingError(RuntimeError):
    """Base class for messaging failures surfaced to callers."""


class InvalidRequestError(MessagingError):
    """Raised when a request fails validation before anything is persisted."""


class InvalidMessageError(InvalidRequestError):
    """Raised for a direct message without recipient or without content."""


class NotFoundError(MessagingError):
    """Raised when a conversation, message, notification or user does not exist."""


class NotParticipantError(MessagingError):
    """Raised when acting on a conversation or message one does not belong to."""


class AuthenticationError(MessagingError):
    """Raised when a connection-time credential is missing or unverifiable."""
