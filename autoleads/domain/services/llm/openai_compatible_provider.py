"""
Provider for OpenAI-compatible chat completion endpoints (POST {base}/chat/completions).
"""
from __future__ import annotations

import asyncio
import base64
import mimetypes
from pathlib import Path
from typing import Any, Optional

import httpx

from autoleads.core.circuit_breaker import CircuitBreaker
from autoleads.core.exceptions import LLMServiceError, ServiceTimeoutError
from autoleads.core.logging import get_logger
from autoleads.domain.services.llm.base_provider import BaseLLMProvider

logger = get_logger(__name__)

UPLOADS_URL_PREFIX = "/uploads/"


class OpenAICompatibleProvider(BaseLLMProvider):
    """Chat completions over httpx with an explicit timeout and circuit breaker"""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        vision_model: str,
        circuit_breaker: CircuitBreaker,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        timeout_seconds: float = 30.0,
        upload_dir: str = "./data/uploads",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._vision_model = vision_model
        self._circuit_breaker = circuit_breaker
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds
        self._upload_dir = Path(upload_dir)
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @property
    def provider_name(self) -> str:
        return "openai-compatible"

    async def generate(self, prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        return await self._chat(self._model, messages, "generate")

    async def analyze_image(self, image_ref: str, prompt: str) -> str:
        image_url = await self._resolve_image_url(image_ref)
        messages = [{
            "role": "user",
            "content": [
                {"type": "image_url", "image_url": {"url": image_url}},
                {"type": "text", "text": prompt},
            ],
        }]
        return await self._chat(self._vision_model, messages, "analyze_image")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _resolve_image_url(self, image_ref: str) -> str:
        """Stored media is not reachable from the model host, so it is inlined"""
        if image_ref.startswith(("http://", "https://", "data:")):
            return image_ref
        if not image_ref.startswith(UPLOADS_URL_PREFIX):
            raise LLMServiceError("unsupported image reference", details={"image_ref": image_ref})

        path = self._upload_dir / image_ref[len(UPLOADS_URL_PREFIX):]
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise LLMServiceError(
                "stored image could not be read",
                details={"image_ref": image_ref, "error": str(exc)},
            ) from exc
        mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        return f"data:{mime};base64,{base64.b64encode(raw).decode('ascii')}"

    async def _chat(self, model: str, messages: list[dict[str, Any]], operation: str) -> str:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async def _call() -> str:
            try:
                response = await self._client.post(
                    f"{self._base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                    timeout=self._timeout_seconds,
                )
            except httpx.TimeoutException as exc:
                raise ServiceTimeoutError("llm", self._timeout_seconds) from exc
            except httpx.RequestError as exc:
                raise LLMServiceError(
                    f"{operation} transport error",
                    details={"operation": operation, "error": str(exc)},
                ) from exc

            if response.status_code != 200:
                raise LLMServiceError.from_response(operation, response)

            return self._extract_content(response, operation)

        return await self._circuit_breaker.execute(_call)

    @staticmethod
    def _extract_content(response: httpx.Response, operation: str) -> str:
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMServiceError(
                f"{operation} returned an unexpected body",
                details={"operation": operation, "response_text": response.text[:500]},
            ) from exc

        # some providers return content parts instead of a string
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        if not isinstance(content, str) or not content.strip():
            raise LLMServiceError(f"{operation} returned empty content", details={"operation": operation})
        return content
