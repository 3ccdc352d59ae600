"""
OpenAI LLM Adapter - chat completions over any OpenAI-compatible endpoint.
"""
from typing import Optional, Dict, Any
from openai import AsyncOpenAI

from photo_analyzer.llm.base import LLMAdapter, LLMResponse, UserContent
from photo_analyzer.core.config import settings
from photo_analyzer.core.logging import get_logger

logger = get_logger("llm.openai")


class OpenAIAdapter(LLMAdapter):
    """OpenAI adapter using the official async SDK."""
    
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        self._api_key = api_key or settings.openai_api_key
        self._model = model or settings.openai_model
        self._base_url = base_url or settings.openai_base_url
        self._client: Optional[AsyncOpenAI] = None
    
    @property
    def provider_name(self) -> str:
        return "openai"
    
    @property
    def model_name(self) -> str:
        return self._model
    
    def _get_client(self) -> AsyncOpenAI:
        """Lazy-load the OpenAI client."""
        if self._client is None:
            kwargs = {"api_key": self._api_key}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client
    
    def is_available(self) -> bool:
        return bool(self._api_key)
    
    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
    
    async def generate(
        self,
        prompt: UserContent,
        system_prompt: Optional[str] = None,
        max_tokens: int = 1000,
        temperature: float = 0.1,
        model: Optional[str] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> LLMResponse:
        """Generate a completion using the OpenAI API."""
        if not self.is_available():
            raise ValueError("OpenAI API key not configured")
        
        client = self._get_client()
        model = model or self._model
        
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        
        kwargs: Dict[str, Any] = {}
        if response_format:
            kwargs["response_format"] = response_format
        
        logger.debug(f"Generating with OpenAI {model}...")
        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs
        )
        
        usage = response.usage
        logger.debug(f"OpenAI generation successful ({usage.total_tokens if usage else '?'} tokens)")
        
        return LLMResponse(
            content=response.choices[0].message.content or "",
            model=model,
            provider=self.provider_name,
            usage={
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            } if usage else None,
            finish_reason=response.choices[0].finish_reason,
            raw_response=response
        )
