"""
Base interface for language model providers.

The intake pipeline depends only on this interface: text generation for extraction and
copywriting, and image analysis for the vision check on the first photo.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from autoleads.core.exceptions import CircuitBreakerOpenError, ExternalServiceException, LLMServiceError
from autoleads.core.logging import get_logger

logger = get_logger(__name__)


class BaseLLMProvider(ABC):
    """
    Uniform access to a chat-completion style model.

    Implementations own the HTTP transport, timeouts and circuit breaker, and raise
    ExternalServiceException subclasses on any failure.
    """

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        """
        Single text completion.

        Raises:
            ExternalServiceException: transport failure, timeout, bad status or empty body.
        """

    @abstractmethod
    async def analyze_image(self, image_ref: str, prompt: str) -> str:
        """
        Completion over one image plus a text prompt.

        Args:
            image_ref: public URL, data URL, or a stored media reference ("/uploads/...").
            prompt: instruction text.
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name used in logs"""

    async def generate_with_retry(
        self,
        prompt: str,
        max_attempts: int = 2,
        backoff_seconds: float = 1.0,
    ) -> str:
        """generate() with exponential backoff between attempts.

        An open circuit is not retried: the next attempt would be rejected as well.
        """
        last_error: ExternalServiceException = LLMServiceError(
            "generation was not attempted", details={"max_attempts": max_attempts}
        )
        for attempt in range(max_attempts):
            try:
                return await self.generate(prompt)
            except CircuitBreakerOpenError:
                raise
            except ExternalServiceException as exc:
                last_error = exc
                if attempt < max_attempts - 1:
                    backoff = backoff_seconds * (2 ** attempt)
                    logger.warning(
                        "LLM generation failed, retrying",
                        extra_data={
                            "provider": self.provider_name,
                            "attempt": attempt + 1,
                            "max_attempts": max_attempts,
                            "backoff_seconds": backoff,
                            "error": exc.message,
                        },
                    )
                    await asyncio.sleep(backoff)
        raise last_error

    async def aclose(self) -> None:
        """Release transport resources"""
