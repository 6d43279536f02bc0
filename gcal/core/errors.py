"""Error taxonomy and the user-facing message boundary.

Every failure is converted to a displayable string as close to the user
action as possible (``user_message``); no failure is fatal to the process.
"""

from __future__ import annotations

GENERIC_MESSAGE = "Something went wrong. Please try again."


class GCalError(Exception):
    """Base class for all application errors.

    Attributes:
        user_message: Text safe to show to the user.
    """

    default_message = GENERIC_MESSAGE

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class StorageError(GCalError):
    """Persistent store unavailable or a write failed."""

    default_message = "Could not save your data. Please try again."


class RemoteServiceError(GCalError):
    """Network or API failure calling the nutrition-estimation service."""

    default_message = "Nutrition service is unavailable."


class ParseError(GCalError):
    """Response received but not valid JSON or missing all expected keys."""

    default_message = "Failed to parse AI response"


class ValidationError(GCalError):
    """Negative or absurd nutrition values."""

    default_message = "Invalid nutrition values."


class CredentialMissingError(GCalError):
    """No API key configured for the nutrition service."""

    default_message = "API Key needed in Settings"


def user_message(exc: BaseException) -> str:
    """Return the displayable string for *exc*."""
    if isinstance(exc, GCalError):
        return exc.user_message
    return GENERIC_MESSAGE
