"""
LLM Module - provider-agnostic chat completion interface.
"""
from photo_analyzer.llm.factory import get_llm, LLMProvider
from photo_analyzer.llm.base import LLMAdapter, LLMResponse

__all__ = ["get_llm", "LLMProvider", "LLMAdapter", "LLMResponse"]
