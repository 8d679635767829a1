"""
Image-to-video jobs (Veo) via the Gemini long-running operations API.

A job goes Submitted -> Polling -> Done. While the operation is not done we
wait one poll interval and fetch its status once. Status fetches are retried
with backoff on transient failures; the whole wait is capped by
VIDEO_MAX_WAIT_SECONDS; a cancel event stops the job at the next await,
including an in-flight HTTP call. The finished video is downloaded with the
API key as a query parameter and saved to local storage.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_random_exponential

from . import gemini, prompts
from .config import Settings, load_settings
from .credentials import CredentialProvider
from .errors import (
    JobCancelled,
    JobTimedOut,
    NoAssetProduced,
    ProviderError,
    normalize_error,
    provider_error_from_response,
)
from .gemini import ImagePayload
from .storage import StorageBackend, get_storage_backend, new_asset_path

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

VIDEO_FAILED = "The AI did not return a video. Try again with a different photo."


@dataclass(frozen=True)
class VideoPreset:
    model: str
    prompt: str
    aspect_ratio: str
    resolution: str = "720p"

    def parameters(self) -> Dict[str, Any]:
        return {"sampleCount": 1, "resolution": self.resolution, "aspectRatio": self.aspect_ratio}


ORBIT_PRESET = VideoPreset("veo-3.1-fast-generate-preview", prompts.ORBIT_VIDEO_PROMPT, "16:9")
PORTRAIT_PRESET = VideoPreset("veo-3.1-generate-preview", prompts.PORTRAIT_VIDEO_PROMPT, "9:16")


@dataclass
class VideoJob:
    operation_name: str
    state: str = "submitted"
    done: bool = False
    result_uri: Optional[str] = None
    polls: int = 0


@dataclass
class VideoAsset:
    url: str
    mime_type: str
    size: int


@dataclass
class VideoResult:
    video: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {"video": self.video, "error": self.error}


async def _gemini_get_json(client: httpx.AsyncClient, *, url: str, headers: Dict[str, str]) -> httpx.Response:
    """Status fetch seam, monkeypatched in tests."""
    return await client.get(url, headers=headers)


async def _fetch_bytes(client: httpx.AsyncClient, *, url: str) -> httpx.Response:
    """Asset download seam, monkeypatched in tests."""
    return await client.get(url)


async def _before_deadline(awaitable: Awaitable[Any], deadline: float, max_wait: float) -> Any:
    remaining = max(deadline - asyncio.get_running_loop().time(), 0)
    try:
        return await asyncio.wait_for(awaitable, timeout=remaining)
    except asyncio.TimeoutError:
        raise JobTimedOut(max_wait) from None


async def _until_cancelled(
    awaitable: Awaitable[Any],
    cancel_event: Optional[asyncio.Event],
    deadline: Optional[float] = None,
    max_wait: float = 0.0,
) -> Any:
    """
    Await awaitable, abandoning it with JobCancelled as soon as cancel_event is set.

    With a deadline (loop clock), the awaitable also fails with JobTimedOut once
    the deadline passes, even while a request is in flight.
    """
    if cancel_event is not None and cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise JobCancelled()
    if deadline is not None:
        awaitable = _before_deadline(awaitable, deadline, max_wait)
    if cancel_event is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        abandoned = not task.done()
        if abandoned:
            task.cancel()
        # Let the abandoned request unwind before the caller closes its client
        await asyncio.gather(task, waiter, return_exceptions=True)
    if abandoned:
        raise JobCancelled()
    return task.result()


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, ProviderError):
        return exc.status_code is not None and (exc.status_code == 429 or exc.status_code >= 500)
    return False


def extract_video_uri(operation: Dict[str, Any]) -> Optional[str]:
    """First generated video URI in a finished operation (REST or SDK naming)."""
    response = operation.get("response") or {}
    generated = response.get("generateVideoResponse") or {}
    samples = generated.get("generatedSamples") or response.get("generatedVideos") or []
    for sample in samples:
        uri = ((sample or {}).get("video") or {}).get("uri")
        if uri:
            return uri
    return None


def with_api_key(uri: str, api_key: str) -> str:
    separator = "&" if "?" in uri else "?"
    return f"{uri}{separator}key={quote(api_key, safe='')}"


async def submit_video_job(
    client: httpx.AsyncClient,
    image: ImagePayload,
    preset: VideoPreset,
    *,
    api_key: str,
    settings: Settings,
) -> VideoJob:
    endpoint = f"{settings.api_base}/models/{preset.model}:predictLongRunning"
    payload = {
        "instances": [
            {
                "prompt": preset.prompt,
                "image": {"bytesBase64Encoded": image.data, "mimeType": image.mime_type},
            }
        ],
        "parameters": preset.parameters(),
    }
    response = await gemini._gemini_post_json(
        client,
        url=endpoint,
        headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
        payload=payload,
    )
    if not response.is_success:
        logger.error(f"Video submit failed: {response.status_code} - {response.text[:500]}")
        raise provider_error_from_response(response.status_code, gemini._response_json(response), response.text)

    data = gemini._response_json(response) or {}
    name = data.get("name") if isinstance(data, dict) else None
    if not name:
        raise ProviderError(f"Video job was not accepted: no operation name in {str(data)[:200]}")
    logger.info(f"Submitted video job {name} ({preset.model}, {preset.aspect_ratio})")
    job = VideoJob(operation_name=name)
    if isinstance(data, dict):
        _apply_status(job, data)
    return job


async def fetch_job_status(
    client: httpx.AsyncClient,
    job: VideoJob,
    *,
    api_key: str,
    settings: Settings,
    sleep: Sleep = asyncio.sleep,
) -> Dict[str, Any]:
    """One logical status fetch, retried with backoff on transient failures."""
    url = f"{settings.api_base}/{job.operation_name}"

    async def fetch_once() -> Dict[str, Any]:
        response = await _gemini_get_json(client, url=url, headers={"x-goog-api-key": api_key})
        if not response.is_success:
            raise provider_error_from_response(response.status_code, gemini._response_json(response), response.text)
        data = gemini._response_json(response)
        if not isinstance(data, dict):
            raise ProviderError("Video job status is not JSON")
        return data

    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.video_poll_retries),
        wait=wait_random_exponential(multiplier=1, max=30),
        retry=retry_if_exception(_is_transient),
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                logger.warning(
                    f"Retrying status fetch for {job.operation_name} "
                    f"(attempt {attempt.retry_state.attempt_number}/{settings.video_poll_retries})"
                )
            data = await fetch_once()
    return data


def _apply_status(job: VideoJob, operation: Dict[str, Any]) -> None:
    job.done = bool(operation.get("done"))
    if not job.done:
        return

    error = operation.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ProviderError(f"Video job failed: {message}")

    job.result_uri = extract_video_uri(operation)
    job.state = "done"
    if not job.result_uri:
        generated = (operation.get("response") or {}).get("generateVideoResponse") or {}
        reasons = generated.get("raiMediaFilteredReasons") or []
        if reasons:
            raise NoAssetProduced(f"{VIDEO_FAILED} ({'; '.join(str(r) for r in reasons)})")
        raise NoAssetProduced(VIDEO_FAILED)


async def run_video_job(
    image: ImagePayload,
    preset: VideoPreset,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
    storage: Optional[StorageBackend] = None,
    cancel_event: Optional[asyncio.Event] = None,
    sleep: Sleep = asyncio.sleep,
) -> VideoAsset:
    """
    Submit a video job, poll until done, download and store the result.

    Raises:
        MissingCredential, ProviderError, NoAssetProduced, JobTimedOut, JobCancelled
    """
    settings = settings or load_settings()
    storage = storage or get_storage_backend(settings.uploads_dir)
    api_key = credentials.resolve()
    loop = asyncio.get_running_loop()

    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout)) as client:
        job = await _until_cancelled(
            submit_video_job(client, image, preset, api_key=api_key, settings=settings), cancel_event
        )

        started = loop.time()
        deadline = started + settings.video_max_wait
        waited = 0.0
        while not job.done:
            elapsed = max(waited, loop.time() - started)
            if elapsed + settings.video_poll_interval > settings.video_max_wait:
                logger.error(f"Video job {job.operation_name} timed out after {elapsed:.0f}s")
                raise JobTimedOut(settings.video_max_wait)

            job.state = "polling"
            await _until_cancelled(
                sleep(settings.video_poll_interval), cancel_event, deadline, settings.video_max_wait
            )
            waited += settings.video_poll_interval

            # A hanging status fetch (retries included) is still held to the job deadline
            operation = await _until_cancelled(
                fetch_job_status(client, job, api_key=api_key, settings=settings, sleep=sleep),
                cancel_event,
                deadline,
                settings.video_max_wait,
            )
            job.polls += 1
            _apply_status(job, operation)
            logger.info(f"Video job {job.operation_name}: poll {job.polls}, done={job.done}")

        download_url = with_api_key(job.result_uri, api_key)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.video_download_timeout), follow_redirects=True
        ) as download_client:
            response = await _until_cancelled(_fetch_bytes(download_client, url=download_url), cancel_event)
        if not response.is_success:
            raise ProviderError(f"Video download failed: HTTP {response.status_code}", status_code=response.status_code)

    content = response.content
    if not content:
        raise NoAssetProduced(VIDEO_FAILED)
    mime_type = (response.headers.get("content-type") or "video/mp4").split(";")[0].strip()
    if not mime_type.startswith("video/"):
        mime_type = "video/mp4"
    url = await storage.save_file(content, new_asset_path("videos", mime_type), content_type=mime_type)
    logger.info(f"Video job {job.operation_name} finished after {job.polls} poll(s): {url}")
    return VideoAsset(url=url, mime_type=mime_type, size=len(content))


async def generate_video(
    image: ImagePayload,
    preset: VideoPreset,
    *,
    credentials: CredentialProvider,
    settings: Optional[Settings] = None,
    storage: Optional[StorageBackend] = None,
    cancel_event: Optional[asyncio.Event] = None,
    sleep: Sleep = asyncio.sleep,
) -> VideoResult:
    """run_video_job with failures normalized like the image operations. Never raises."""
    try:
        asset = await run_video_job(
            image,
            preset,
            credentials=credentials,
            settings=settings,
            storage=storage,
            cancel_event=cancel_event,
            sleep=sleep,
        )
        return VideoResult(video=asset.url, error=None)
    except Exception as e:
        return VideoResult(video=None, error=normalize_error(e))


async def generate_360_video(image: ImagePayload, **kwargs: Any) -> VideoResult:
    """16:9 orbit animation around the subject."""
    return await generate_video(image, ORBIT_PRESET, **kwargs)


async def animate_portrait(image: ImagePayload, **kwargs: Any) -> VideoResult:
    """9:16 subtle facial animation."""
    return await generate_video(image, PORTRAIT_PRESET, **kwargs)
