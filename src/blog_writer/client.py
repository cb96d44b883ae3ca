"""Async HTTP client for the external Blog Writer API.

The Blog Writer API does the heavy lifting this service delegates:
- Async blog generation jobs (POST /api/v1/blog/generate-enhanced?async_mode=true)
- Job status (GET /api/v1/blog/jobs/{job_id})
- LiteLLM-backed chat completions (POST /api/v1/llm/chat)
- Image generation (POST /api/v1/images/generate)
- Cloudinary uploads (POST /api/v1/media/upload/cloudinary)

Configuration (environment):
    BLOG_WRITER_API_URL: base URL of the API
    BLOG_WRITER_API_KEY: optional bearer token (the API may run open)
    BLOG_WRITER_TIMEOUT: default request timeout in seconds

Non-2xx responses raise BlogWriterAPIError carrying the status code and
the first 500 characters of the response body.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

BLOG_WRITER_API_URL = os.environ.get("BLOG_WRITER_API_URL", "http://localhost:8000")
BLOG_WRITER_API_KEY = os.environ.get("BLOG_WRITER_API_KEY", "")
BLOG_WRITER_TIMEOUT = float(os.environ.get("BLOG_WRITER_TIMEOUT", "60"))

ERROR_BODY_LIMIT = 500


class BlogWriterAPIError(Exception):
    """Non-2xx response from the Blog Writer API."""

    def __init__(self, status_code: int, body: str, endpoint: str = ""):
        self.status_code = status_code
        self.body = (body or "")[:ERROR_BODY_LIMIT]
        self.endpoint = endpoint
        super().__init__(f"API error {status_code}: {self.body}")


@dataclass
class GenerationJob:
    """Result of submitting an async generation job."""

    job_id: Optional[str]
    status: str = "queued"
    message: str = ""
    estimated_completion_time: Optional[Any] = None
    raw: dict = field(default_factory=dict)


@dataclass
class ChatResult:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_ms: int = 0


@dataclass
class GeneratedImage:
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    public_id: Optional[str] = None


class BlogWriterClient:
    """Thin async wrapper over the Blog Writer REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or BLOG_WRITER_API_URL).rstrip("/")
        api_key = BLOG_WRITER_API_KEY if api_key is None else api_key

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key and api_key.strip():
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or BLOG_WRITER_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        kwargs: dict[str, Any] = {"json": json, "params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout

        response = await self._client.request(method, path, **kwargs)

        if not response.is_success:
            logger.error(
                f"Blog Writer API error: {method} {path} -> {response.status_code}"
            )
            raise BlogWriterAPIError(response.status_code, response.text, path)

        if not response.content:
            return {}
        return response.json()

    async def create_generation_job(self, payload: dict) -> GenerationJob:
        """Submit an async blog generation job.

        A missing job_id in a 2xx response is returned as-is (job_id=None);
        the caller decides how to record it.
        """
        data = await self._request(
            "POST",
            "/api/v1/blog/generate-enhanced",
            json=payload,
            params={"async_mode": "true"},
        )
        job = GenerationJob(
            job_id=data.get("job_id"),
            status=data.get("status") or "queued",
            message=data.get("message") or "Blog generation job created",
            estimated_completion_time=data.get("estimated_completion_time"),
            raw=data,
        )
        if job.job_id:
            logger.info(f"Blog Writer job created: {job.job_id}")
        else:
            logger.warning(
                f"Blog Writer accepted request without a job_id (keys: {sorted(data)})"
            )
        return job

    async def get_job(self, job_id: str) -> dict:
        return await self._request("GET", f"/api/v1/blog/jobs/{job_id}")

    async def chat(
        self,
        model: str,
        user_prompt: str,
        *,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        timeout: Optional[float] = None,
    ) -> ChatResult:
        """Single chat completion through the API's LiteLLM router."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        start_time = time.time()
        data = await self._request(
            "POST",
            "/api/v1/llm/chat",
            json={
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            timeout=timeout,
        )
        duration_ms = int((time.time() - start_time) * 1000)

        content = data.get("content") or data.get("text") or ""
        if not content and data.get("choices"):
            content = (data["choices"][0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}

        return ChatResult(
            content=content,
            model=data.get("model") or model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            duration_ms=duration_ms,
        )

    async def generate_image(self, prompt: str, **options: Any) -> Optional[GeneratedImage]:
        """Generate one image. Returns None when the API reports no images."""
        payload = {
            "provider": "stability_ai",
            "prompt": prompt,
            "style": "photographic",
            "aspect_ratio": "16:9",
            "quality": "high",
            "width": 1920,
            "height": 1080,
            "negative_prompt": "blurry, low quality, watermark, text overlay, logo",
        }
        payload.update(options)

        data = await self._request("POST", "/api/v1/images/generate", json=payload)
        images = data.get("images") or []
        if not data.get("success", True) or not images:
            logger.warning(
                f"Image generation returned no images: {data.get('error_message')}"
            )
            return None

        first = images[0]
        return GeneratedImage(
            url=first.get("image_url") or first.get("url") or "",
            width=first.get("width"),
            height=first.get("height"),
        )

    async def upload_to_cloudinary(
        self,
        image_url: str,
        file_name: str,
        folder: str,
        credentials: dict,
    ) -> GeneratedImage:
        data = await self._request(
            "POST",
            "/api/v1/media/upload/cloudinary",
            json={
                "image_url": image_url,
                "file_name": file_name,
                "folder": folder,
                "cloudinary_credentials": credentials,
            },
        )
        return GeneratedImage(
            url=data.get("secure_url") or data.get("url") or image_url,
            width=data.get("width"),
            height=data.get("height"),
            public_id=data.get("public_id"),
        )


# Global client instance
_client: Optional[BlogWriterClient] = None


def get_blog_writer_client() -> BlogWriterClient:
    """Get the global Blog Writer client instance."""
    global _client
    if _client is None:
        _client = BlogWriterClient()
    return _client
