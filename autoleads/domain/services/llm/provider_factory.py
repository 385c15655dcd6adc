"""
Provider Factory: the process-wide language model provider.

get_llm_provider() returns None when no API key is configured; callers then take
their non-LLM path (parser extraction, template copy).
"""
from __future__ import annotations

import threading
from typing import Optional

from autoleads.core.circuit_breaker import get_llm_circuit_breaker
from autoleads.core.config import settings
from autoleads.core.logging import get_logger
from autoleads.domain.services.llm.base_provider import BaseLLMProvider

logger = get_logger(__name__)

_provider: BaseLLMProvider | None = None
_lock = threading.Lock()


def _create_provider() -> BaseLLMProvider:
    from autoleads.domain.services.llm.openai_compatible_provider import OpenAICompatibleProvider

    return OpenAICompatibleProvider(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_API_URL,
        model=settings.LLM_MODEL,
        vision_model=settings.LLM_VISION_MODEL,
        circuit_breaker=get_llm_circuit_breaker(),
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        upload_dir=settings.UPLOAD_DIR,
    )


def get_llm_provider() -> Optional[BaseLLMProvider]:
    global _provider
    if not settings.LLM_API_KEY:
        return None
    if _provider is None:
        with _lock:
            if _provider is None:
                _provider = _create_provider()
                logger.info(
                    "LLM provider initialized",
                    extra_data={"provider": _provider.provider_name, "model": settings.LLM_MODEL},
                )
    return _provider


async def close_llm_provider() -> None:
    """Close the provider's HTTP client; called on app shutdown"""
    global _provider
    provider = _provider
    _provider = None
    if provider is not None:
        await provider.aclose()


def reset_providers() -> None:
    """Forget the cached provider (tests, config reload)"""
    global _provider
    with _lock:
        _provider = None
