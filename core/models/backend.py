# ============================================================================
# GENERATION BACKEND CONTRACTS
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core model - Generate / CheckJobStatus payloads
# PURPOSE: Typed request and response shapes for the generation backend
# CREATED: 17 OCT 2026
# EXPORTS: VideoSettings, AudioSettings, GenerationRequest,
#          GenerationResponse, JobStatusResponse
# DEPENDENCIES: pydantic
# ============================================================================
"""
Generation Backend Contracts

Generate returns one of three shapes:
    {success: true, output}              synchronous result
    {success: true, job_id, status}      async handle, poll for the result
    {success: false, error}              rejected

CheckJobStatus returns {success, status, output?}.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from core.contracts import JobState


class VideoSettings(BaseModel):
    seconds: str = "8"
    resolution: str = "720p"
    aspect_ratio: str = "9:16"


class AudioSettings(BaseModel):
    voice: str = "alloy"
    speed: float = 1.0
    format: str = "mp3"


class GenerationRequest(BaseModel):
    """One call to the generation backend."""
    prompt: str
    model: str
    temperature: float = 0.7
    max_tokens: Optional[int] = Field(default=None, gt=0)
    video: Optional[VideoSettings] = None
    audio: Optional[AudioSettings] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire body for POST /api/llm."""
        payload: Dict[str, Any] = {
            "prompt": self.prompt,
            "model": self.model,
            "temperature": self.temperature,
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.video is not None:
            payload["videoSeconds"] = self.video.seconds
            payload["videoResolution"] = self.video.resolution
            payload["videoAspectRatio"] = self.video.aspect_ratio
        if self.audio is not None:
            payload["audioVoice"] = self.audio.voice
            payload["audioSpeed"] = self.audio.speed
            payload["audioFormat"] = self.audio.format
        return payload


class GenerationResponse(BaseModel):
    """Result of Generate."""
    success: bool
    output: Optional[str] = None
    job_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_async(self) -> bool:
        return self.success and self.job_id is not None and not self.output

    @classmethod
    def failed(cls, error: str) -> "GenerationResponse":
        return cls(success=False, error=error)


class JobStatusResponse(BaseModel):
    """Result of CheckJobStatus."""
    success: bool
    status: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def state(self) -> Optional[JobState]:
        return JobState.parse(self.status)

    @property
    def is_success(self) -> bool:
        """Terminal success: a success status, or any output at all."""
        state = self.state
        return bool(self.output) or (state is not None and state.is_success())

    @property
    def is_failure(self) -> bool:
        state = self.state
        return state is not None and state.is_failure()


__all__ = [
    "VideoSettings",
    "AudioSettings",
    "GenerationRequest",
    "GenerationResponse",
    "JobStatusResponse",
]
