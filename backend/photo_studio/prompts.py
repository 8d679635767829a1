"""
Instruction text for every operation.

Only text is built here; which images go with each instruction is decided in
transforms.py. Identity-sensitive operations (restoration, ID photos) start with
IDENTITY_DIRECTIVE.
"""
from typing import Literal

IDENTITY_DIRECTIVE = """
// ABSOLUTE REQUIREMENTS FOR THE AI:
// Preserve 100% of the subject's identity and facial structure.
// Do not move the eyes, nose or mouth. Keep the subject's expression and presence.
// The result MUST be a photorealistic image in ultra-sharp 8K quality.
// Assume the subject is Vietnamese by default.
"""

DEFAULT_RESTORE_REQUEST = "Natural colors"

BackgroundColor = Literal["white", "blue"]


def restoration_prompt(custom_request: str = "") -> str:
    request = custom_request.strip() if custom_request else ""
    return (
        f"{IDENTITY_DIRECTIVE}\n"
        "Task: Restore this old photo into a modern, ultra-sharp color photo. "
        f"Requirements: {request or DEFAULT_RESTORE_REQUEST}"
    )


def id_photo_prompt(background_color: str, clothing_description: str) -> str:
    return (
        f"{IDENTITY_DIRECTIVE}\n"
        f"Create an ID photo with a {background_color} background, wearing {clothing_description}."
    )


def background_color_prompt(color: BackgroundColor) -> str:
    if color not in ("white", "blue"):
        raise ValueError(f"Unsupported background color: {color!r}")
    return f"Change the photo background to {color}."


def upscale_prompt(factor: int) -> str:
    if factor < 1:
        raise ValueError("Upscale factor must be >= 1")
    return f"Upscale x{factor}, extremely sharp."


REMOVE_OBJECT_PROMPT = "Remove the object marked by the mask."
PRO_COLOR_PROMPT = "Beauty Retouch."
DOCUMENT_PROMPT = "Clean up the document text."
MIMIC_STYLE_PROMPT = "Mimic the style of the reference image."
SUBJECT_BACKGROUND_PROMPT = "Replace the background."


def recolor_prompt(style: str) -> str:
    return f"Color grade the photo: {style}"


def artistic_style_prompt(style: str) -> str:
    return f"Style {style}"


def blur_background_prompt(intensity: str) -> str:
    return f"Blur the background: {intensity}"


def subject_background_prompt(description: str = "") -> str:
    if description:
        return f"{SUBJECT_BACKGROUND_PROMPT} New background: {description}"
    return SUBJECT_BACKGROUND_PROMPT


# Analysis (text answers)

ANALYZE_RESTORATION_PROMPT = "Analyze this old photo and suggest a prompt for restoring it."
ANALYZE_CONCEPT_PROMPT = "Describe the style of this photo so it can be used as an AI prompt."


def school_logo_prompt(school_name: str) -> str:
    return (
        f'Find the link to the official logo of: "{school_name}". '
        'Return JSON: {"logoUrl": "link"} or {"logoUrl": null}'
    )


# Video

ORBIT_VIDEO_PROMPT = "360 degree orbit animation."
PORTRAIT_VIDEO_PROMPT = "Subtle facial animation."
