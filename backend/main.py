from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from typing import Optional
import uvicorn
import os
import sys
import io
import logging
import time
import uuid
from pathlib import Path
from dotenv import load_dotenv
from PIL import Image, UnidentifiedImageError

# Add current directory to path to find the photo_studio package
sys.path.insert(0, str(Path(__file__).parent))

from photo_studio import analysis, transforms, video
from photo_studio.config import load_settings
from photo_studio.credentials import CredentialProvider, JsonFileKeyStore
from photo_studio.gemini import ImagePayload
from photo_studio.storage import get_storage_backend

load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = load_settings()

app = FastAPI(title="Photo Studio API")

# Comma-separated list, e.g. "https://app.example.com,https://www.example.com"
allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "")
if allowed_origins_str:
    allowed_origins = [origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()]
else:
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Gemini-Api-Key", "X-Request-Id"],
    expose_headers=["X-Request-Id"],
)

UPLOADS_DIR = Path(settings.uploads_dir)
UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
storage = get_storage_backend(str(UPLOADS_DIR))

# Server-side saved key; the deploy default comes from GEMINI_API_KEY / API_KEY.
key_store = JsonFileKeyStore()

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}

_rate_buckets: dict[str, tuple[int, float]] = {}


def check_rate_limit(key: str, limit: int, window_seconds: int) -> bool:
    """
    Simple best-effort in-memory rate limiter (per-instance).
    Returns True if allowed, False if rate-limited.
    """
    now = time.time()
    count, expires_at = _rate_buckets.get(key, (0, 0.0))
    if expires_at <= now:
        _rate_buckets[key] = (1, now + window_seconds)
        return True
    if count >= limit:
        return False
    _rate_buckets[key] = (count + 1, expires_at)
    return True


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or "unknown"
    if request.headers.get("x-real-ip"):
        return request.headers["x-real-ip"]
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request, name: str, limit: int) -> None:
    ip = get_client_ip(request)
    if not check_rate_limit(f"{name}:{ip}", limit=limit, window_seconds=60):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again shortly.")


def validate_image_file(file: UploadFile) -> tuple[bool, str]:
    """Validate that uploaded file is a valid image"""
    if not file.content_type or file.content_type.lower() not in ALLOWED_IMAGE_TYPES:
        return False, f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_IMAGE_TYPES))}"

    if not file.filename:
        return False, "Filename is required"

    file_ext = Path(file.filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        return False, f"Invalid file extension. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"

    return True, ""


async def read_image_upload(file: UploadFile, label: str = "Image") -> ImagePayload:
    """Validate an upload and turn it into an ImagePayload with a sniffed MIME type."""
    is_valid, error_msg = validate_image_file(file)
    if not is_valid:
        raise HTTPException(status_code=400, detail=f"{label} validation failed: {error_msg}")

    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail=f"{label} is empty")
    if len(raw) > settings.max_file_size:
        raise HTTPException(
            status_code=413,
            detail=f"{label} too large. Maximum size: {settings.max_file_size / (1024*1024):.1f}MB"
        )

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
            mime_type = Image.MIME.get(img.format or "", None)
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise HTTPException(status_code=400, detail=f"{label} is not a readable image")

    content_type = file.content_type.lower()
    mime_type = mime_type or ("image/jpeg" if content_type == "image/jpg" else content_type)
    return ImagePayload.from_bytes(raw, mime_type)


def get_credentials(x_gemini_api_key: Optional[str] = Header(None)) -> CredentialProvider:
    """A key sent with the request wins; otherwise the saved key, then the environment."""
    if x_gemini_api_key and x_gemini_api_key.strip():
        return CredentialProvider.fixed(x_gemini_api_key)
    return CredentialProvider(store=key_store)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    return response


# Generated videos are served from here
app.mount("/uploads", StaticFiles(directory=str(UPLOADS_DIR)), name="uploads")


@app.get("/")
async def root():
    return {
        "message": "Photo Studio API is running",
        "operations": sorted(transforms.OPERATIONS),
    }


# API key settings

@app.get("/api/key")
async def key_status():
    return {"hasKey": CredentialProvider(store=key_store).has_user_key()}


@app.put("/api/key")
async def save_key(api_key: str = Form("")):
    saved = CredentialProvider(store=key_store).save_key(api_key)
    return {"hasKey": saved}


@app.delete("/api/key")
async def clear_key():
    CredentialProvider(store=key_store).clear_key()
    return {"hasKey": False}


# Image operations: always 200 with {"image", "error"}; 4xx only for bad requests.

@app.post("/api/restore")
async def restore(
    request: Request,
    image: UploadFile = File(...),
    custom_request: str = Form(""),
    clothing_image: Optional[UploadFile] = File(None),
    reference_image: Optional[UploadFile] = File(None),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "restore", limit=20)
    photo = await read_image_upload(image, "Photo")
    clothing = await read_image_upload(clothing_image, "Clothing image") if clothing_image else None
    reference = await read_image_upload(reference_image, "Reference image") if reference_image else None
    logger.info(f"Restore request (clothing={clothing is not None}, reference={reference is not None})")
    result = await transforms.restore_image(
        photo,
        transforms.RestorationOptions(custom_request=custom_request),
        clothing,
        reference,
        credentials=credentials,
        settings=settings,
    )
    return result.as_dict()


@app.post("/api/id-photo")
async def id_photo(
    request: Request,
    image: UploadFile = File(...),
    background_color: str = Form("white"),
    clothing_description: str = Form("a formal shirt"),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "id-photo", limit=20)
    subject = await read_image_upload(image, "Photo")
    options = transforms.IdPhotoOptions(
        background_color=background_color, clothing_description=clothing_description
    )
    result = await transforms.create_id_photo(subject, options, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/change-background")
async def change_background(
    request: Request,
    image: UploadFile = File(...),
    color: str = Form(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "change-background", limit=20)
    if color not in ("white", "blue"):
        raise HTTPException(status_code=422, detail="color must be 'white' or 'blue'")
    photo = await read_image_upload(image, "Photo")
    result = await transforms.change_image_background(photo, color, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/upscale")
async def upscale(
    request: Request,
    image: UploadFile = File(...),
    factor: int = Form(2),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "upscale", limit=20)
    if factor < 1 or factor > 8:
        raise HTTPException(status_code=422, detail="factor must be between 1 and 8")
    photo = await read_image_upload(image, "Photo")
    result = await transforms.upscale_image(photo, factor, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/remove-object")
async def remove_object(
    request: Request,
    image: UploadFile = File(...),
    mask: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "remove-object", limit=20)
    photo = await read_image_upload(image, "Photo")
    mask_payload = await read_image_upload(mask, "Mask")
    result = await transforms.remove_object(
        photo, mask_payload.data, mask_payload.mime_type, credentials=credentials, settings=settings
    )
    return result.as_dict()


@app.post("/api/pro-color")
async def pro_color(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "pro-color", limit=20)
    photo = await read_image_upload(image, "Photo")
    result = await transforms.apply_pro_color(photo, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/recolor")
async def recolor(
    request: Request,
    image: UploadFile = File(...),
    style: str = Form(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "recolor", limit=20)
    photo = await read_image_upload(image, "Photo")
    result = await transforms.recolor_image(photo, style, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/artistic-style")
async def artistic_style(
    request: Request,
    image: UploadFile = File(...),
    style: str = Form(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "artistic-style", limit=20)
    photo = await read_image_upload(image, "Photo")
    result = await transforms.apply_artistic_style(photo, style, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/blur-background")
async def blur_background(
    request: Request,
    image: UploadFile = File(...),
    intensity: str = Form("medium"),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "blur-background", limit=20)
    photo = await read_image_upload(image, "Photo")
    result = await transforms.blur_background(photo, intensity, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/restore-document")
async def restore_document(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "restore-document", limit=20)
    photo = await read_image_upload(image, "Document")
    result = await transforms.restore_document(photo, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/mimic-style")
async def mimic_style(
    request: Request,
    image: UploadFile = File(...),
    style_image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "mimic-style", limit=20)
    subject = await read_image_upload(image, "Photo")
    style = await read_image_upload(style_image, "Style image")
    result = await transforms.mimic_image_style(subject, style, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/generate")
async def generate(
    request: Request,
    image: UploadFile = File(...),
    prompt: str = Form(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "generate", limit=20)
    if not prompt.strip():
        raise HTTPException(status_code=422, detail="prompt must not be empty")
    photo = await read_image_upload(image, "Photo")
    result = await transforms.generate_styled_image(photo, prompt, credentials=credentials, settings=settings)
    return result.as_dict()


@app.post("/api/subject-background")
async def subject_background(
    request: Request,
    image: UploadFile = File(...),
    background_prompt: Optional[str] = Form(None),
    background_image: Optional[UploadFile] = File(None),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "subject-background", limit=20)
    if background_image is not None:
        background = transforms.BackgroundSpec(
            kind="image", value=await read_image_upload(background_image, "Background image")
        )
    elif background_prompt and background_prompt.strip():
        background = transforms.BackgroundSpec(kind="prompt", value=background_prompt.strip())
    else:
        raise HTTPException(status_code=422, detail="Provide background_prompt or background_image")
    subject = await read_image_upload(image, "Photo")
    result = await transforms.change_subject_background(
        subject, background, credentials=credentials, settings=settings
    )
    return result.as_dict()


# Analysis

@app.post("/api/analyze/restoration")
async def analyze_restoration(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "analyze", limit=30)
    photo = await read_image_upload(image, "Photo")
    return await analysis.analyze_image_for_restoration(photo, credentials=credentials, settings=settings)


@app.post("/api/analyze/concept")
async def analyze_concept(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "analyze", limit=30)
    photo = await read_image_upload(image, "Photo")
    return await analysis.analyze_image_for_concept(photo, credentials=credentials, settings=settings)


@app.post("/api/school-logo")
async def school_logo(
    request: Request,
    school_name: str = Form(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "school-logo", limit=30)
    if not school_name.strip():
        raise HTTPException(status_code=422, detail="school_name must not be empty")
    return await analysis.find_school_logo(school_name.strip(), credentials=credentials, settings=settings)


# Video: long-running, returns {"video": "/uploads/videos/...", "error"}

@app.post("/api/video/orbit")
async def video_orbit(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "video", limit=5)
    photo = await read_image_upload(image, "Photo")
    result = await video.generate_360_video(photo, credentials=credentials, settings=settings, storage=storage)
    return result.as_dict()


@app.post("/api/video/portrait")
async def video_portrait(
    request: Request,
    image: UploadFile = File(...),
    credentials: CredentialProvider = Depends(get_credentials),
):
    enforce_rate_limit(request, "video", limit=5)
    photo = await read_image_upload(image, "Photo")
    result = await video.animate_portrait(photo, credentials=credentials, settings=settings, storage=storage)
    return result.as_dict()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "0") == "1",
        timeout_keep_alive=600,  # video jobs can take several minutes
        timeout_graceful_shutdown=30
    )
