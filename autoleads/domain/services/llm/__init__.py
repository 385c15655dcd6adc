from autoleads.domain.services.llm.base_provider import BaseLLMProvider
from autoleads.domain.services.llm.provider_factory import (
    close_llm_provider,
    get_llm_provider,
    reset_providers,
)

__all__ = [
    "BaseLLMProvider",
    "close_llm_provider",
    "get_llm_provider",
    "reset_providers",
]
