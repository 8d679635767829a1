"""
Error taxonomy for provider calls and the normalizer that turns any failure
into a message the UI can show as-is.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = (
    "NO API KEY: Click the key icon at the top of the page to enter your Gemini API key."
)
INVALID_KEY_MESSAGE = "The API key is not valid. Please get a new key from Google AI Studio."
QUOTA_MESSAGE = (
    "This API key has used up its free quota. Please switch to a different key."
)
DEFAULT_MESSAGE = "AI connection error. Please check your API key or your request."

INVALID_KEY_MARKERS = ("api_key_invalid", "not valid", "key not found")
QUOTA_MARKERS = ("quota", "429")


class PhotoStudioError(RuntimeError):
    """Base exception for provider and job failures."""
    pass


class MissingCredential(PhotoStudioError):
    """No usable API key was found in the saved store or the environment."""

    def __init__(self, message: str = "API_KEY_MISSING"):
        super().__init__(message)


class InvalidCredential(PhotoStudioError):
    pass


class QuotaExceeded(PhotoStudioError):
    pass


class NoAssetProduced(PhotoStudioError):
    """
    The provider answered but returned no image or video.

    The message is operation specific ("Restoration failed. ...") so the UI
    can tell the user which step produced nothing.
    """
    pass


class ProviderError(PhotoStudioError):
    """
    Transport or provider failure.

    Attributes:
        status_code: HTTP status when the provider answered, else None.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class JobTimedOut(PhotoStudioError):
    def __init__(self, limit_seconds: float):
        super().__init__(
            f"The video job did not finish within {limit_seconds:g} seconds. Please try again later."
        )
        self.limit_seconds = limit_seconds


class JobCancelled(PhotoStudioError):
    def __init__(self, message: str = "The video job was cancelled."):
        super().__init__(message)


def provider_error_from_response(status_code: int, body: object, fallback_text: str = "") -> ProviderError:
    """
    Build a ProviderError from a non-2xx Gemini response.

    Gemini error bodies look like {"error": {"code", "message", "status", "details"}};
    the reason code (e.g. API_KEY_INVALID) lives in details, so it is folded into the
    message to keep classification working on the text alone.
    """
    message = ""
    if isinstance(body, dict):
        err = body.get("error") or {}
        if isinstance(err, dict):
            message = str(err.get("message") or "")
            reasons = [
                str(d.get("reason"))
                for d in (err.get("details") or [])
                if isinstance(d, dict) and d.get("reason")
            ]
            if reasons:
                message = f"{message} ({', '.join(reasons)})" if message else ", ".join(reasons)
    if not message:
        message = (fallback_text or "").strip()[:500]
    return ProviderError(f"Gemini API error {status_code}: {message}".rstrip(": "), status_code=status_code)


def normalize_error(error: BaseException) -> str:
    """
    Map any failure to one user-facing message. Never raises.

    Priority: missing key, invalid key, quota, verbatim message, generic fallback.
    """
    try:
        logger.error(f"Gemini API error details: {type(error).__name__}: {error}")

        if isinstance(error, MissingCredential):
            return MISSING_KEY_MESSAGE
        if isinstance(error, InvalidCredential):
            return INVALID_KEY_MESSAGE
        if isinstance(error, QuotaExceeded):
            return QUOTA_MESSAGE
        # Own wording; numbers in it must not trip the markers below
        if isinstance(error, (JobTimedOut, JobCancelled)):
            return str(error)

        message = str(error) if error is not None else ""
        if message:
            lowered = message.lower()
            if any(marker in lowered for marker in INVALID_KEY_MARKERS):
                return INVALID_KEY_MESSAGE
            if any(marker in lowered for marker in QUOTA_MARKERS):
                return QUOTA_MESSAGE
            return message
        return DEFAULT_MESSAGE
    except Exception:
        return DEFAULT_MESSAGE
