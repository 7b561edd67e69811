# ============================================================================
# MEDIA FINALIZATION
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - Move generated media into permanent storage
# PURPOSE: Replace expiring provider URLs before a result is persisted
# CREATED: 17 OCT 2026
# ============================================================================
"""
Media Finalization

Generated images, videos and audio often come back as provider URLs that
expire (video links within an hour). Before a result is persisted it is
copied into permanent storage and the stored URL replaces the original.

Detection heuristics per media type:
- image: http(s) URL with an image extension or from a known image
  service (dalle, openai, imagen, recraft, flux, blob storage), or a
  data:image URL
- video: http(s) URL with a video extension, an OpenAI video/content URL,
  or a known video service (sora, runway, pika, stable-video)
- audio: http(s) URL with an audio extension, or a data:audio URL

URLs already in permanent storage are left alone. Upload failures are not
fatal: the original URL is kept and a warning is returned.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from core.contracts import GenerationType, RunPhase
from core.errors import UploadFailure
from core.interfaces import MediaStorage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[RunPhase], None]

_IMAGE_EXTENSION = re.compile(r"^https?://.+\.(?:jpg|jpeg|png|gif|webp)", re.IGNORECASE)
_VIDEO_EXTENSION = re.compile(r"^https?://.+\.(?:mp4|webm|mov)", re.IGNORECASE)
_AUDIO_EXTENSION = re.compile(r"^https?://.+\.(?:mp3|wav|ogg)", re.IGNORECASE)

_IMAGE_SERVICES = ("dalle", "openai", "blob.core.windows.net", "imagen", "recraft", "flux")
_VIDEO_SERVICES = ("sora", "runway", "pika", "stable-video")


def _is_image_media(output: str) -> bool:
    if output.startswith("data:image/"):
        return True
    if not output.startswith("http"):
        return False
    return bool(_IMAGE_EXTENSION.match(output)) or any(s in output for s in _IMAGE_SERVICES)


def _is_video_media(output: str) -> bool:
    if not output.startswith("http"):
        return False
    if _VIDEO_EXTENSION.match(output):
        return True
    if "openai.com" in output and ("video" in output or "/videos/" in output):
        return True
    if "cdn.openai.com" in output:
        return True
    return any(s in output for s in _VIDEO_SERVICES)


def _is_audio_media(output: str) -> bool:
    return bool(_AUDIO_EXTENSION.match(output)) or output.startswith("data:audio")


def needs_permanent_storage(output: Optional[str], model_type: GenerationType) -> bool:
    """True when a result looks like media that should be copied."""
    if not output:
        return False
    text = output.strip()
    if model_type == GenerationType.IMAGE:
        return _is_image_media(text)
    if model_type == GenerationType.VIDEO:
        return _is_video_media(text)
    if model_type == GenerationType.AUDIO:
        return _is_audio_media(text)
    return False


@dataclass(frozen=True)
class MediaOutcome:
    """Output to persist, and whether it was moved."""
    output: str
    uploaded: bool = False
    warning: Optional[str] = None


class MediaFinalizer:
    """
    Copies media results into permanent storage.

    A finalizer without storage (local development) keeps every URL.
    """

    def __init__(self, storage: Optional[MediaStorage] = None):
        self.storage = storage

    async def finalize(
        self,
        output: str,
        model_type: GenerationType,
        owner_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaOutcome:
        """
        Move media to permanent storage when needed.

        Args:
            output: Raw generation output
            model_type: Type of the model that produced it
            owner_path: user/project/sheet/cell prefix for the stored object
            on_progress: Optional phase callback (uploading/uploaded)

        Returns:
            MediaOutcome; never raises for upload failures
        """
        if self.storage is None or not needs_permanent_storage(output, model_type):
            return MediaOutcome(output=output)

        url = output.strip()
        if self.storage.is_permanent(url):
            return MediaOutcome(output=output)

        if on_progress:
            on_progress(RunPhase.UPLOADING)
        logger.info(f"Uploading {model_type.value} to permanent storage: {url[:100]}")

        try:
            permanent = await self.storage.upload_media_from_url(url, owner_path, model_type)
        except UploadFailure as e:
            logger.warning(f"{e}; keeping original URL")
            return MediaOutcome(output=output, warning=str(e))

        if on_progress:
            on_progress(RunPhase.UPLOADED)
        logger.info(f"Stored {model_type.value} at {permanent[:100]}")
        return MediaOutcome(output=permanent, uploaded=True)


__all__ = [
    "needs_permanent_storage",
    "MediaOutcome",
    "MediaFinalizer",
]
