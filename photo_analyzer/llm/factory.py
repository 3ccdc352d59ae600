"""
LLM Factory - Creates the chat completion adapter named in configuration.
"""
from typing import Optional, Dict, Type
from enum import Enum

from photo_analyzer.llm.base import LLMAdapter
from photo_analyzer.core.config import settings
from photo_analyzer.core.logging import get_logger

logger = get_logger("llm.factory")


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"


# Registry of adapters
_ADAPTERS: Dict[LLMProvider, Type[LLMAdapter]] = {}
_instances: Dict[LLMProvider, LLMAdapter] = {}


def register_adapter(provider: LLMProvider, adapter_class: Type[LLMAdapter]):
    """Register an adapter class for a provider."""
    _ADAPTERS[provider] = adapter_class
    logger.debug(f"Registered LLM adapter: {provider.value}")


def _register_default_adapters():
    from photo_analyzer.llm.openai_adapter import OpenAIAdapter
    
    register_adapter(LLMProvider.OPENAI, OpenAIAdapter)


def get_llm(provider: Optional[str] = None, **kwargs) -> LLMAdapter:
    """
    Get the LLM adapter for a provider.
    
    Args:
        provider: Provider name. Defaults to settings.llm_provider.
        **kwargs: Adapter constructor overrides (uncached when given).
    
    Raises:
        ValueError: If the provider is unknown.
    """
    if not _ADAPTERS:
        _register_default_adapters()
    
    provider_name = provider or settings.llm_provider
    try:
        provider_enum = LLMProvider(provider_name.lower())
    except ValueError:
        raise ValueError(f"Unknown LLM provider: {provider_name}")
    
    if provider_enum in _instances and not kwargs:
        return _instances[provider_enum]
    
    adapter = _ADAPTERS[provider_enum](**kwargs)
    if not kwargs:
        _instances[provider_enum] = adapter
    if not adapter.is_available():
        logger.warning(f"LLM provider {provider_enum.value} is not configured")
    return adapter

