"""
OpenRouter Vision Adapter

Async client for OpenRouter's OpenAI-compatible chat completions endpoint,
using httpx.

One call = one user turn holding the base64 image and the prompt. The
order of the two parts is switchable per model because some models read
better when the image comes first.
"""

import asyncio
import base64
from typing import Any, Optional

import httpx
import structlog

from receipt_scanner.config import OpenRouterSettings, get_settings
from receipt_scanner.exceptions import ModelInvocationError
from receipt_scanner.models.receipt import (
    ContentOrder,
    VisionRequest,
    VisionResponse,
)
from receipt_scanner.services.vision.interface import VisionModelAdapter


logger = structlog.get_logger(__name__)

# Upstream bodies can be large HTML error pages
MAX_ERROR_BODY_CHARS = 2000


def build_message_content(request: VisionRequest) -> list[dict[str, Any]]:
    """Multimodal content parts in the order the model prefers (text first by default)."""
    encoded = base64.b64encode(request.image_bytes).decode("ascii")
    image_part = {
        "type": "image_url",
        "image_url": {"url": f"data:{request.mime_type};base64,{encoded}"},
    }
    text_part = {"type": "text", "text": request.prompt}

    if request.content_order == ContentOrder.IMAGE_FIRST:
        return [image_part, text_part]
    return [text_part, image_part]


def build_payload(request: VisionRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model_id,
        "temperature": request.temperature,
        "messages": [
            {"role": "user", "content": build_message_content(request)},
        ],
        "response_format": {"type": "text"},
    }
    if request.top_p is not None:
        payload["top_p"] = request.top_p
    if request.stop:
        payload["stop"] = request.stop
    return payload


def extract_text(data: dict[str, Any]) -> str:
    """Pull choices[0].message.content out of a completion, tolerating odd shapes."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict)
        )
    return ""


class OpenRouterVisionAdapter(VisionModelAdapter):
    """
    Vision adapter backed by OpenRouter.

    Uses httpx.AsyncClient for non-blocking requests. The request timeout
    is enforced per call with asyncio.wait_for.
    """

    def __init__(
        self,
        settings: Optional[OpenRouterSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_settings().openrouter
        self._client = client

    def _get_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._settings.api_key}",
            "HTTP-Referer": self._settings.referer,
            "X-Title": self._settings.app_name,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None or self._client.is_closed:
            # No transport-level timeout: each call is bounded by wait_for
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def invoke(self, request: VisionRequest) -> VisionResponse:
        if not self._settings.api_key:
            raise ModelInvocationError(
                "Missing OPENROUTER_API_KEY",
                model_id=request.model_id,
            )

        client = await self._get_client()
        url = f"{self._settings.base_url}/chat/completions"

        try:
            response = await asyncio.wait_for(
                client.post(url, json=build_payload(request), headers=self._get_headers()),
                timeout=request.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            raise ModelInvocationError(
                f"OpenRouter request timed out after {request.timeout_ms}ms",
                model_id=request.model_id,
            ) from e
        except httpx.HTTPError as e:
            raise ModelInvocationError(
                f"OpenRouter request failed: {e}",
                model_id=request.model_id,
            ) from e

        if not response.is_success:
            body = response.text[:MAX_ERROR_BODY_CHARS]
            raise ModelInvocationError(
                f"OpenRouter error {response.status_code}: {body}",
                status_code=response.status_code,
                response_body=body,
                model_id=request.model_id,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ModelInvocationError(
                "OpenRouter returned a non-JSON body",
                status_code=response.status_code,
                response_body=response.text[:MAX_ERROR_BODY_CHARS],
                model_id=request.model_id,
            ) from e

        if not isinstance(data, dict):
            data = {"data": data}

        text = extract_text(data)
        if not text:
            logger.warning(
                "vision_model_empty_content",
                model=request.model_id,
                response_preview=str(data)[:400],
            )

        return VisionResponse(text=text, raw=data, model=request.model_id)
