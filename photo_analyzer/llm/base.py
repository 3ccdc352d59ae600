"""
LLM Adapter Base Class - Abstract interface for chat completion providers.
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Union
from dataclasses import dataclass

# Plain text or a list of OpenAI-style content parts (text / image_url)
UserContent = Union[str, List[Dict[str, Any]]]


@dataclass
class LLMResponse:
    """Standardized LLM response across all providers."""
    content: str
    model: str
    provider: str
    usage: Optional[Dict[str, int]] = None  # tokens used
    finish_reason: Optional[str] = None
    raw_response: Optional[Any] = None


class LLMAdapter(ABC):
    """
    Abstract base class for chat completion adapters.
    
    All providers must implement this interface so the models service can
    swap them without touching the pipeline.
    """
    
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'openai')."""
        pass
    
    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the default model."""
        pass
    
    @abstractmethod
    async def generate(
        self,
        prompt: UserContent,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        model: Optional[str] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> LLMResponse:
        """
        Generate a chat completion.
        
        Args:
            prompt: User message, text or content parts (images included)
            system_prompt: System message for context
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            model: Model override for this call
            response_format: Provider response format, e.g. {"type": "json_object"}
            
        Returns:
            LLMResponse with generated content
        """
        pass
    
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is usable (API key set, etc.)."""
        pass
    
    async def close(self) -> None:
        """Release network resources (optional)."""
        pass
