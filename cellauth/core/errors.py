"""
Typed authentication failures, shared between the service layer, the API
and the client toolkit. Every failure carries a stable `code` that clients
map to a plain-language message.
"""

from typing import Any


class AuthFailure(Exception):
    code: str = "AUTH_ERROR"
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class FeatureDisabledError(AuthFailure):
    code = "FEATURE_DISABLED"
    message = "Login functionality is currently disabled"


class NotAuthenticatedError(AuthFailure):
    code = "UNAUTHORIZED"
    message = "You must be logged in to do this"


class ForbiddenError(AuthFailure):
    code = "FORBIDDEN"
    message = "You do not have access to do this"


class UserNotFoundError(AuthFailure):
    code = "USER_NOT_FOUND"
    message = "User not found"


class ProviderError(AuthFailure):
    code = "OAUTH_ERROR"
    message = "Google OAuth authentication failed"


class InvalidStateError(AuthFailure):
    code = "INVALID_STATE"
    message = "The authentication request is invalid"


class AlreadyConnectedError(AuthFailure):
    code = "ALREADY_CONNECTED"
    message = "A different Google account is already connected to this user"


class GoogleAccountInUseError(AuthFailure):
    code = "GOOGLE_ACCOUNT_IN_USE"
    message = "This Google account is already connected to another user"


class EmailAlreadyExistsError(AuthFailure):
    code = "EMAIL_ALREADY_EXISTS"
    message = "Another user account already uses this email address"


class InvalidConversionError(AuthFailure):
    code = "INVALID_CONVERSION"
    message = "Only anonymous users can be converted to full users"


class NoGoogleAccountError(AuthFailure):
    code = "NO_GOOGLE_ACCOUNT"
    message = "No Google account is linked to this user"


class ConfigValidationError(AuthFailure):
    code = "VALIDATION_ERROR"
    message = "The configuration is invalid"


ALL_FAILURES: dict[str, type[AuthFailure]] = {
    x.code: x
    for x in (
        AuthFailure,
        FeatureDisabledError,
        NotAuthenticatedError,
        ForbiddenError,
        UserNotFoundError,
        ProviderError,
        InvalidStateError,
        AlreadyConnectedError,
        GoogleAccountInUseError,
        EmailAlreadyExistsError,
        InvalidConversionError,
        NoGoogleAccountError,
        ConfigValidationError,
    )
}

USER_MESSAGES: dict[str, str] = {
    "FEATURE_DISABLED": "Google sign-in is not available right now.",
    "UNAUTHORIZED": "Please log in first, then try again.",
    "FORBIDDEN": "You do not have permission to do that.",
    "USER_NOT_FOUND": "We could not find your account. Please log in again.",
    "OAUTH_ERROR": "We could not sign you in with Google. Please try again.",
    "INVALID_STATE": (
        "The authentication request is invalid. Please start the process again."
    ),
    "ALREADY_CONNECTED": (
        "Your account is already connected to a different Google account."
    ),
    "GOOGLE_ACCOUNT_IN_USE": (
        "This Google account is already connected to another user."
    ),
    "EMAIL_ALREADY_EXISTS": (
        "An account with this email address already exists. "
        "Log in to that account instead."
    ),
    "INVALID_CONVERSION": "This account cannot be converted.",
    "NO_GOOGLE_ACCOUNT": "No Google account is connected to your profile.",
    "VALIDATION_ERROR": "Some of the values entered are not valid.",
}


def failure_from_code(code: str, message: str | None = None) -> AuthFailure:
    """
    Rebuild a typed failure from its wire representation.
    """
    return ALL_FAILURES.get(code, AuthFailure)(message)


def user_message(code: str | None) -> str:
    return USER_MESSAGES.get(code or "", "Authentication failed. Please try again.")


def provider_error_message(error: str, description: str | None = None) -> str:
    """
    Map an `error` / `error_description` pair reported by the provider on its
    redirect to something a person can act on.
    """
    error = error.lower()
    description = (description or "").lower()

    if "access_denied" in error:
        return "You cancelled the authentication process."

    if "expired" in error:
        return "The authentication request has expired. Please try again."

    if "invalid" in error or "invalid" in description:
        return "The authentication request is invalid. Please start the process again."

    if "network" in error or "network" in description:
        return "Network error occurred. Please check your connection and try again."

    return "Authentication failed. Please try again."
