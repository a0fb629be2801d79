"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so callers can inspect it without
    # parsing str(exception). Don't raise this directly - use a specific subclass so
    # callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when a mutating call would violate an invariant.

    Examples: cyclic folder parenting, duplicate folder name in the same
    parent, invalid cron expression. Always raised BEFORE anything is written.
    """

    pass


class DuplicateEntityException(ValidationException):
    """Raised when trying to create a duplicate entity."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} already exists")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidURLError(ValidationException):
    """Raised when a URL is not valid for a provider (or for any provider)."""

    pass


class ProviderConfigurationError(ValidationException):
    """Raised when a provider configuration fails validation.

    field_messages maps setting names to messages meant for the user.
    """

    def __init__(self, field_messages: dict[str, str], message: str | None = None) -> None:
        super().__init__(message or "Invalid provider configuration")
        self.field_messages = field_messages


class ConfigurationError(DomainException):
    """Application misconfiguration (missing provider, bad paths, ...)."""

    pass


class ExternalServiceError(DomainException):
    """A video provider or other remote service failed.

    Example:
        raise ExternalServiceError("YouTube API error: 403 quotaExceeded")
    """

    pass


class MediaDownloadError(ExternalServiceError):
    """Downloading the media of a video failed."""

    pass


__all__ = [
    "DomainException",
    "EntityNotFoundException",
    "ValidationException",
    "DuplicateEntityException",
    "InvalidURLError",
    "ProviderConfigurationError",
    "ConfigurationError",
    "ExternalServiceError",
    "MediaDownloadError",
]
