"""
Image-in/image-out operations.

Every operation has the same shape: build instruction + parts, invoke the image
model, return a TransformResult. The wrappers below only choose the instruction,
which images are sent and the failure wording.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from . import prompts
from .config import Settings, load_settings
from .credentials import CredentialProvider
from .errors import normalize_error
from .gemini import ImagePayload, TransformResult, build_parts, invoke_image_transform

logger = logging.getLogger(__name__)

RESTORE_FAILED = "The AI could not produce an image. Try a different request."
ID_PHOTO_FAILED = "The AI did not return an ID photo."
BACKGROUND_FAILED = "Background change failed."
UPSCALE_FAILED = "Upscaling failed."
REMOVE_OBJECT_FAILED = "Object removal failed."
PRO_COLOR_FAILED = "Beauty retouch failed."
RECOLOR_FAILED = "Recoloring failed."
STYLE_FAILED = "Style application failed."
BLUR_FAILED = "Background blur failed."
DOCUMENT_FAILED = "Document restoration failed."
MIMIC_FAILED = "Style copy failed."
GENERATE_FAILED = "Image generation failed."

MASK_MIME_TYPE = "image/png"


@dataclass
class RestorationOptions:
    custom_request: str = ""


@dataclass
class IdPhotoOptions:
    background_color: str = "white"
    clothing_description: str = "a formal shirt"


@dataclass
class BackgroundSpec:
    """New background for change_subject_background: a text prompt or an image."""

    kind: Literal["prompt", "image"]
    value: Union[str, ImagePayload]


async def _run_transform(
    instruction: str,
    primary: ImagePayload,
    aux: Optional[List[Optional[ImagePayload]]] = None,
    *,
    failure_message: str,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    try:
        settings = settings or load_settings()
    except ValueError as e:
        return TransformResult.failure(normalize_error(e))
    parts = build_parts(instruction, primary, aux)
    return await invoke_image_transform(
        settings.image_model,
        parts,
        failure_message=failure_message,
        credentials=credentials,
        settings=settings,
    )


async def restore_image(
    image: ImagePayload,
    options: Optional[RestorationOptions] = None,
    clothing: Optional[ImagePayload] = None,
    reference: Optional[ImagePayload] = None,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    """
    Restore and colorize an old photo.

    Optional clothing and style/background reference images follow the photo,
    clothing first.
    """
    options = options or RestorationOptions()
    return await _run_transform(
        prompts.restoration_prompt(options.custom_request),
        image,
        [clothing, reference],
        failure_message=RESTORE_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def create_id_photo(
    subject: ImagePayload,
    options: IdPhotoOptions,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.id_photo_prompt(options.background_color, options.clothing_description),
        subject,
        failure_message=ID_PHOTO_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def change_image_background(
    image: ImagePayload,
    color: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    try:
        instruction = prompts.background_color_prompt(color)
    except ValueError as e:
        return TransformResult.failure(str(e))
    return await _run_transform(
        instruction,
        image,
        failure_message=BACKGROUND_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def upscale_image(
    image: ImagePayload,
    factor: int,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    try:
        instruction = prompts.upscale_prompt(factor)
    except ValueError as e:
        return TransformResult.failure(str(e))
    return await _run_transform(
        instruction,
        image,
        failure_message=UPSCALE_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def remove_object(
    image: ImagePayload,
    mask_data: str,
    mask_mime_type: str = MASK_MIME_TYPE,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    """Remove the region painted in mask_data (base64, same size as the photo; PNG unless told otherwise)."""
    return await _run_transform(
        prompts.REMOVE_OBJECT_PROMPT,
        image,
        [ImagePayload(data=mask_data, mime_type=mask_mime_type)],
        failure_message=REMOVE_OBJECT_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def apply_pro_color(
    image: ImagePayload,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.PRO_COLOR_PROMPT,
        image,
        failure_message=PRO_COLOR_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def recolor_image(
    image: ImagePayload,
    style: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.recolor_prompt(style),
        image,
        failure_message=RECOLOR_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def apply_artistic_style(
    image: ImagePayload,
    style: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.artistic_style_prompt(style),
        image,
        failure_message=STYLE_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def blur_background(
    image: ImagePayload,
    intensity: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.blur_background_prompt(intensity),
        image,
        failure_message=BLUR_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def restore_document(
    image: ImagePayload,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompts.DOCUMENT_PROMPT,
        image,
        failure_message=DOCUMENT_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def mimic_image_style(
    subject: ImagePayload,
    style: ImagePayload,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    """Re-render subject in the look of the style reference."""
    return await _run_transform(
        prompts.MIMIC_STYLE_PROMPT,
        subject,
        [style],
        failure_message=MIMIC_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def generate_styled_image(
    image: ImagePayload,
    prompt_text: str,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    return await _run_transform(
        prompt_text,
        image,
        failure_message=GENERATE_FAILED,
        credentials=credentials,
        settings=settings,
    )


async def change_subject_background(
    subject: ImagePayload,
    background: BackgroundSpec,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
) -> TransformResult:
    """A prompt background is described in the text; an image background is sent after the subject."""
    if background.kind == "prompt":
        instruction = prompts.subject_background_prompt(str(background.value))
        aux: List[Optional[ImagePayload]] = []
    elif background.kind == "image" and isinstance(background.value, ImagePayload):
        instruction = prompts.subject_background_prompt()
        aux = [background.value]
    else:
        return TransformResult.failure(f"Unsupported background: {background.kind!r}")
    return await _run_transform(
        instruction,
        subject,
        aux,
        failure_message=BACKGROUND_FAILED,
        credentials=credentials,
        settings=settings,
    )


# Endpoint name -> operation, listed by the HTTP root.
OPERATIONS: Dict[str, Any] = {
    "restore": restore_image,
    "id-photo": create_id_photo,
    "change-background": change_image_background,
    "upscale": upscale_image,
    "remove-object": remove_object,
    "pro-color": apply_pro_color,
    "recolor": recolor_image,
    "artistic-style": apply_artistic_style,
    "blur-background": blur_background,
    "restore-document": restore_document,
    "mimic-style": mimic_image_style,
    "generate": generate_styled_image,
    "subject-background": change_subject_background,
}
