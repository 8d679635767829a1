import logging
from typing import Any, Dict, Optional

from . import prompts
from .config import Settings, load_settings
from .credentials import CredentialProvider
from .errors import normalize_error
from .gemini import ImagePayload, invoke_json, invoke_text

logger = logging.getLogger(__name__)


async def _analyze_image(
    image: ImagePayload,
    instruction: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    try:
        settings = settings or load_settings()
        text = await invoke_text(
            settings.text_model,
            [image.as_part(), {"text": instruction}],
            credentials=credentials,
            settings=settings,
        )
        return {"prompt": text or None, "error": None}
    except Exception as e:
        return {"prompt": None, "error": normalize_error(e)}


async def analyze_image_for_restoration(
    image: ImagePayload,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """Suggest a restoration request for an old photo."""
    return await _analyze_image(
        image, prompts.ANALYZE_RESTORATION_PROMPT, credentials=credentials, settings=settings
    )


async def analyze_image_for_concept(
    image: ImagePayload,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """Describe a photo's style as a reusable prompt."""
    return await _analyze_image(
        image, prompts.ANALYZE_CONCEPT_PROMPT, credentials=credentials, settings=settings
    )


async def find_school_logo(
    school_name: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """
    Ask the text model for the official logo URL of a school.

    Returns {"logoUrl": str | None, "error": str | None}.
    """
    try:
        settings = settings or load_settings()
        result: Any = await invoke_json(
            settings.text_model,
            prompts.school_logo_prompt(school_name),
            credentials=credentials,
            settings=settings,
        )
        logo_url = result.get("logoUrl") if isinstance(result, dict) else None
        if logo_url is not None and not isinstance(logo_url, str):
            logger.warning(f"Ignoring non-string logoUrl for {school_name!r}: {logo_url!r}")
            logo_url = None
        return {"logoUrl": logo_url or None, "error": None}
    except Exception as e:
        return {"logoUrl": None, "error": normalize_error(e)}
