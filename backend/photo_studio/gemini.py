import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import Settings, load_settings
from .credentials import CredentialProvider
from .errors import NoAssetProduced, ProviderError, normalize_error, provider_error_from_response

logger = logging.getLogger(__name__)

# This module talks to the Gemini REST API directly with the API key as a query
# parameter. No SDK is involved.


@dataclass
class ImagePayload:
    """Base64 image data plus its MIME type, as sent to or received from Gemini."""

    data: str
    mime_type: str

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: str) -> "ImagePayload":
        return cls(data=base64.b64encode(raw).decode("utf-8"), mime_type=mime_type)

    def as_part(self) -> Dict[str, Any]:
        return {"inline_data": {"mime_type": self.mime_type, "data": self.data}}


@dataclass
class TransformResult:
    """Outcome of one image transform: exactly one of image/error is set."""

    image: Optional[str] = None
    error: Optional[str] = None
    mime_type: Optional[str] = None

    @classmethod
    def success(cls, image: str, mime_type: str = "image/png") -> "TransformResult":
        return cls(image=image, error=None, mime_type=mime_type)

    @classmethod
    def failure(cls, error: str) -> "TransformResult":
        return cls(image=None, error=error, mime_type=None)

    @property
    def ok(self) -> bool:
        return self.image is not None

    @property
    def data_url(self) -> Optional[str]:
        if self.image is None:
            return None
        return f"data:{self.mime_type or 'image/png'};base64,{self.image}"

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"image": self.image, "error": self.error}


def build_parts(
    instruction: str,
    primary: ImagePayload,
    aux: Optional[Sequence[Optional[ImagePayload]]] = None,
) -> List[Dict[str, Any]]:
    """
    Instruction text first, then the primary image, then auxiliary images in
    the order given. None entries in aux are skipped so callers can pass
    optional references positionally.
    """
    parts: List[Dict[str, Any]] = [{"text": instruction}, primary.as_part()]
    for payload in aux or []:
        if payload is not None:
            parts.append(payload.as_part())
    return parts


def extract_inline_image(data: Dict[str, Any]) -> Optional[ImagePayload]:
    """
    First inline image across all candidates and their parts, in response order.

    Handles both 'inline_data' and 'inlineData' naming.
    """
    for candidate in data.get("candidates") or []:
        content = (candidate or {}).get("content") or {}
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            blob = part.get("inline_data") or part.get("inlineData")
            if blob and blob.get("data"):
                mime_type = blob.get("mime_type") or blob.get("mimeType") or "image/png"
                return ImagePayload(data=blob["data"], mime_type=mime_type)
    return None


def extract_text(data: Dict[str, Any]) -> str:
    """Concatenated text of the first candidate that has any."""
    for candidate in data.get("candidates") or []:
        content = (candidate or {}).get("content") or {}
        texts = [
            str(p.get("text"))
            for p in content.get("parts") or []
            if isinstance(p, dict) and p.get("text")
        ]
        if texts:
            return "".join(texts)
    return ""


async def _gemini_post_json(
    client: httpx.AsyncClient,
    *,
    url: str,
    headers: Dict[str, str],
    payload: Dict[str, Any],
) -> httpx.Response:
    """
    Thin wrapper for Gemini HTTP calls so tests can monkeypatch the provider boundary.
    """
    return await client.post(url, headers=headers, json=payload)


def _response_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


async def generate_content(
    model: str,
    parts: List[Dict[str, Any]],
    *,
    api_key: str,
    settings: Settings,
    generation_config: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    POST models/{model}:generateContent and return the parsed body.

    Raises:
        ProviderError: on transport failures and non-2xx answers.
    """
    endpoint = f"{settings.api_base}/models/{model}:generateContent"
    payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
    if generation_config:
        payload["generationConfig"] = generation_config

    logger.info(f"Calling Gemini model {model} with {len(parts)} part(s)")
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout)) as client:
            response = await _gemini_post_json(
                client,
                url=f"{endpoint}?key={api_key}",
                headers={"Content-Type": "application/json"},
                payload=payload,
            )
    except httpx.TimeoutException as e:
        raise ProviderError(f"Request to Gemini timed out: {e}") from e
    except httpx.HTTPError as e:
        raise ProviderError(f"Could not reach Gemini: {e}") from e

    if not response.is_success:
        logger.error(f"Gemini API error: {response.status_code} - {response.text[:500]}")
        raise provider_error_from_response(response.status_code, _response_json(response), response.text)

    data = _response_json(response)
    if not isinstance(data, dict):
        raise ProviderError("Gemini returned a response that is not JSON")
    return data


async def invoke_image_transform(
    model: str,
    parts: List[Dict[str, Any]],
    *,
    failure_message: str,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    """
    Send an image-in/image-out request and unwrap the first returned image.

    Never raises: missing keys, provider errors and empty answers all come back
    as TransformResult.failure with a normalized message. An answer without any
    image yields failure_message, which is specific to the calling operation.
    """
    try:
        settings = settings or load_settings()
        api_key = credentials.resolve()
        data = await generate_content(
            model,
            parts,
            api_key=api_key,
            settings=settings,
            generation_config={"responseModalities": ["IMAGE"]},
        )
        image = extract_inline_image(data)
        if image is None:
            logger.warning(f"No image in Gemini response from {model}. Text: {extract_text(data)[:200]}")
            raise NoAssetProduced(failure_message)
        logger.info(f"Gemini returned an image ({len(image.data)} base64 chars, {image.mime_type})")
        return TransformResult.success(image.data, image.mime_type)
    except Exception as e:
        return TransformResult.failure(normalize_error(e))


async def invoke_text(
    model: str,
    parts: List[Dict[str, Any]],
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
    generation_config: Optional[Dict[str, Any]] = None,
) -> str:
    """Text answer for a request. Raises on failure; callers normalize."""
    settings = settings or load_settings()
    api_key = credentials.resolve()
    data = await generate_content(
        model, parts, api_key=api_key, settings=settings, generation_config=generation_config
    )
    return extract_text(data).strip()


_JSON_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*|\s*```$")


def parse_json_text(text: str) -> Any:
    """Parse model JSON output, tolerating code fences around it."""
    cleaned = _JSON_FENCE_RE.sub("", (text or "").strip()).strip()
    return json.loads(cleaned)


async def invoke_json(
    model: str,
    prompt: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> Any:
    """Text-only request in JSON mode. Raises on failure; callers normalize."""
    text = await invoke_text(
        model,
        [{"text": prompt}],
        credentials=credentials,
        settings=settings,
        generation_config={"responseMimeType": "application/json"},
    )
    if not text:
        raise ProviderError("Gemini returned an empty answer")
    return parse_json_text(text)
