# ============================================================================
# HTTP GENERATION BACKEND
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Infrastructure - Generation API client
# PURPOSE: Generate and CheckJobStatus over HTTP
# CREATED: 17 OCT 2026
# ============================================================================
"""
HTTP Generation Backend

Client for the model gateway:
    POST {base_url}/api/llm                   run a generation
    GET  {base_url}/api/job-status/{job_id}   poll an async job

Responses from /api/llm:
    {"text": "..."} or {"output": "..."}      synchronous result
    {"jobId": "...", "status": "queued"}      async job handle

Responses from /api/job-status:
    {"status": "...", "videoUrl": "..."}      (output/text also accepted)

Transport and HTTP errors are returned as success=False; nothing here
raises for a backend-side failure.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from core.config import BackendDefaults, get_defaults
from core.interfaces import GenerationBackend
from core.models import GenerationRequest, GenerationResponse, JobStatusResponse

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull a readable error out of a non-2xx response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"API error: {response.status_code}"

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, str) and error:
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"API error: {response.status_code}"


class HttpGenerationBackend(GenerationBackend):
    """GenerationBackend over httpx.AsyncClient."""

    def __init__(
        self,
        defaults: Optional[BackendDefaults] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the backend client.

        Args:
            defaults: Base URL and timeouts
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.defaults = defaults or get_defaults().backend
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(
                self.defaults.timeout_seconds,
                connect=self.defaults.connect_timeout_seconds,
            )
            self._client = httpx.AsyncClient(
                base_url=self.defaults.base_url.rstrip("/"),
                timeout=timeout,
                headers={"Content-Type": "application/json"},
            )
            logger.debug(f"Generation client created for {self.defaults.base_url}")
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send a request and decode the JSON body.

        Raises:
            RuntimeError: With a readable message for any failure
        """
        try:
            response = await self._get_client().request(method, path, **kwargs)
        except httpx.ConnectError:
            raise RuntimeError(f"Generation backend unreachable at {self.defaults.base_url}")
        except httpx.TimeoutException:
            raise RuntimeError("Generation backend request timed out")
        except httpx.HTTPError as e:
            raise RuntimeError(f"Generation backend request failed: {e}")

        if response.status_code >= 400:
            raise RuntimeError(_error_message(response))

        try:
            data = response.json()
        except ValueError:
            raise RuntimeError("Generation backend returned invalid JSON")
        if not isinstance(data, dict):
            raise RuntimeError("Generation backend returned an unexpected body")
        return data

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        try:
            data = await self._request("POST", "/api/llm", json=request.to_payload())
        except RuntimeError as e:
            logger.warning(f"Generate failed for model {request.model}: {e}")
            return GenerationResponse.failed(str(e))

        job_id = data.get("jobId")
        status = data.get("status")
        if job_id and status:
            logger.info(f"Generation job created: {job_id} ({status})")
            return GenerationResponse(success=True, job_id=str(job_id), status=str(status))

        output = data.get("text") or data.get("output") or ""
        return GenerationResponse(success=True, output=str(output))

    async def check_job_status(self, job_id: str) -> JobStatusResponse:
        try:
            data = await self._request("GET", f"/api/job-status/{job_id}")
        except RuntimeError as e:
            logger.warning(f"Job status check failed for {job_id}: {e}")
            return JobStatusResponse(success=False, error=str(e))

        output = data.get("videoUrl") or data.get("output") or data.get("text")
        return JobStatusResponse(
            success=True,
            status=data.get("status"),
            output=str(output) if output else None,
            error=data.get("error") if isinstance(data.get("error"), str) else None,
        )


__all__ = ["HttpGenerationBackend"]
