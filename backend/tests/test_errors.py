import pytest

from photo_studio.errors import (
    DEFAULT_MESSAGE,
    INVALID_KEY_MESSAGE,
    MISSING_KEY_MESSAGE,
    QUOTA_MESSAGE,
    InvalidCredential,
    JobCancelled,
    JobTimedOut,
    MissingCredential,
    NoAssetProduced,
    ProviderError,
    QuotaExceeded,
    normalize_error,
    provider_error_from_response,
)


def test_missing_credential_message_ignores_wrapped_text():
    assert normalize_error(MissingCredential()) == MISSING_KEY_MESSAGE
    assert normalize_error(MissingCredential("quota 429 whatever")) == MISSING_KEY_MESSAGE


def test_invalid_key_markers():
    assert normalize_error(RuntimeError("API key not valid. Please pass a valid API key.")) == INVALID_KEY_MESSAGE
    assert normalize_error(ValueError("Error: API_KEY_INVALID")) == INVALID_KEY_MESSAGE
    assert normalize_error(InvalidCredential("")) == INVALID_KEY_MESSAGE


def test_quota_markers():
    assert normalize_error(RuntimeError("HTTP 429 Too Many Requests")) == QUOTA_MESSAGE
    assert normalize_error(RuntimeError("Resource exhausted: Quota exceeded")) == QUOTA_MESSAGE
    assert normalize_error(QuotaExceeded("")) == QUOTA_MESSAGE


def test_invalid_key_checked_before_quota():
    assert normalize_error(RuntimeError("key not found, quota unknown")) == INVALID_KEY_MESSAGE


def test_other_messages_pass_through_verbatim():
    assert normalize_error(RuntimeError("network failure")) == "network failure"
    assert normalize_error(NoAssetProduced("Upscaling failed.")) == "Upscaling failed."


def test_empty_message_falls_back_to_default():
    assert normalize_error(RuntimeError()) == DEFAULT_MESSAGE
    assert normalize_error(None) == DEFAULT_MESSAGE


def test_never_raises_on_broken_exception():
    class Broken(Exception):
        def __str__(self):
            raise RuntimeError("boom")

    assert normalize_error(Broken()) == DEFAULT_MESSAGE


def test_job_timeout_message_is_shown():
    message = normalize_error(JobTimedOut(600))
    assert "600" in message


def test_provider_error_from_response_includes_reason():
    body = {
        "error": {
            "code": 400,
            "message": "API key not valid. Please pass a valid API key.",
            "details": [{"reason": "API_KEY_INVALID"}],
        }
    }
    err = provider_error_from_response(400, body)
    assert isinstance(err, ProviderError)
    assert err.status_code == 400
    assert "API_KEY_INVALID" in str(err)
    assert normalize_error(err) == INVALID_KEY_MESSAGE


def test_provider_error_from_429_classifies_as_quota():
    err = provider_error_from_response(429, None, fallback_text="Too Many Requests")
    assert normalize_error(err) == QUOTA_MESSAGE


def test_provider_error_from_response_uses_text_when_body_missing():
    err = provider_error_from_response(503, None, fallback_text="upstream unavailable")
    assert "upstream unavailable" in str(err)
    assert normalize_error(err) == str(err)


@pytest.mark.parametrize("limit", [429, 1429, 4290])
def test_job_timeout_with_marker_like_numbers_keeps_its_wording(limit):
    message = normalize_error(JobTimedOut(limit))
    assert message != QUOTA_MESSAGE
    assert f"{limit} seconds" in message


def test_job_cancelled_keeps_its_wording():
    assert normalize_error(JobCancelled()) == "The video job was cancelled."
