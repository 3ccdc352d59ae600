"""
Models service - the single inference boundary used by the pipeline.

Combines the chat completion adapter (OpenAI-compatible) with the local model
service client. Every failure (transport, HTTP status, SDK error, malformed
payload) surfaces as ModelCallError so the runner can convert it into failed
entries for the batch that issued the call. No response caching happens here.
"""
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import openai

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.core.logging import get_logger
from photo_analyzer.llm import LLMAdapter, get_llm
from photo_analyzer.llm.base import UserContent
from photo_analyzer.model_client import ModelClient, get_model_client

logger = get_logger("services.models")

# USD per token
PRICES: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 2.5 / 1_000_000, "output": 10.0 / 1_000_000},
    "gpt-4o-mini": {"input": 0.15 / 1_000_000, "output": 0.6 / 1_000_000},
    "gpt-4.1": {"input": 2.0 / 1_000_000, "output": 8.0 / 1_000_000},
    "deepseek-chat": {"input": 0.27 / 1_000_000, "output": 1.1 / 1_000_000},
}

JSON_OBJECT = {"type": "json_object"}

_FENCE_RE = re.compile(r"```(?:json)?\s*")
_ARRAY_RE = re.compile(r"\[.*?\]", re.S)
_OBJECT_RE = re.compile(r"\{.*?\}", re.S)


@dataclass
class CallCost:
    """Token usage and cost of one chat completion, in EUR."""
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost_eur: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "totalCostInEur": self.total_cost_eur,
        }


@dataclass
class ChatResult:
    """Parsed chat completion: `result` is the JSON payload, unwrapped."""
    result: Any
    cost: CallCost = field(default_factory=lambda: CallCost(model="unknown"))


def compute_cost(model: str, usage: Optional[Dict[str, int]]) -> CallCost:
    """Price a completion from its token usage. Unknown models cost zero."""
    usage = usage or {}
    prompt_tokens = usage.get("prompt_tokens", 0)
    completion_tokens = usage.get("completion_tokens", 0)
    prices = PRICES.get(model, {"input": 0.0, "output": 0.0})
    input_cost = prompt_tokens * prices["input"] * settings.usd_to_eur
    output_cost = completion_tokens * prices["output"] * settings.usd_to_eur
    return CallCost(
        model=model,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
        input_cost=input_cost,
        output_cost=output_cost,
        total_cost_eur=input_cost + output_cost,
    )


def parse_json_response(raw: str) -> Any:
    """
    Extract the JSON payload of a completion.

    Accepts fenced blocks and falls back to the first embedded array or
    object. A top-level `result` / `results` key is unwrapped. Returns an
    empty dict when nothing parses.
    """
    try:
        parsed = json.loads(_FENCE_RE.sub("", raw).strip())
    except (json.JSONDecodeError, TypeError):
        parsed = {}
        for pattern in (_ARRAY_RE, _OBJECT_RE):
            match = pattern.search(raw or "")
            if match:
                try:
                    parsed = json.loads(match.group(0))
                    break
                except json.JSONDecodeError:
                    continue
    if isinstance(parsed, dict):
        if parsed.get("result"):
            return parsed["result"]
        if parsed.get("results"):
            return parsed["results"]
    return parsed


class ModelsService:
    """
    Batched inference operations consumed by the pipeline.

    Usage:
        models = ModelsService()
        chat = await models.chat_completion(system, user, "gpt-4o-mini")
        vectors = await models.text_embeddings(["beach", "dog"])
    """

    def __init__(self, llm: Optional[LLMAdapter] = None, client: Optional[ModelClient] = None):
        self._llm = llm
        self._client = client

    @property
    def llm(self) -> LLMAdapter:
        if self._llm is None:
            self._llm = get_llm()
        return self._llm

    @property
    def client(self) -> ModelClient:
        if self._client is None:
            self._client = get_model_client()
        return self._client

    async def chat_completion(
        self,
        system_prompt: Optional[str],
        user_content: UserContent,
        model: Optional[str] = None,
        response_format: Optional[Dict[str, Any]] = JSON_OBJECT,
    ) -> ChatResult:
        """Run a chat completion and return its parsed JSON result and cost."""
        model = model or settings.openai_model
        try:
            response = await self.llm.generate(
                user_content,
                system_prompt=system_prompt,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
                model=model,
                response_format=response_format,
            )
        except (openai.OpenAIError, httpx.HTTPError, ValueError) as e:
            raise ModelCallError("chat_completion", str(e)) from e

        result = parse_json_response(response.content)
        return ChatResult(result=result, cost=compute_cost(model, response.usage))

    async def text_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Vectors in request order; a count mismatch is a failed call."""
        vectors = await self._call("text_embeddings", self.client.get_embeddings(texts))
        if len(vectors) != len(texts):
            raise ModelCallError("text_embeddings", f"expected {len(texts)} vectors, got {len(vectors)}")
        return vectors

    async def image_embeddings(self, items: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        return await self._call("image_embeddings", self.client.get_image_embeddings(items))

    async def object_detection(self, items: List[Dict[str, str]], categories: List[str]) -> List[Dict[str, Any]]:
        return await self._call("object_detection", self.client.detect_objects(items, categories))

    async def color_embeddings(self, items: List[Dict[str, str]]) -> List[Dict[str, Any]]:
        return await self._call("color_embeddings", self.client.get_color_embeddings(items))

    async def clean_descriptions(self, texts: List[str], threshold: float = None) -> List[str]:
        threshold = settings.cleaning_threshold if threshold is None else threshold
        cleaned = await self._call("clean_descriptions", self.client.clean_descriptions(texts, threshold))
        if not isinstance(cleaned, list) or len(cleaned) != len(texts):
            raise ModelCallError("clean_descriptions", f"unexpected result: {cleaned!r:.200}")
        return cleaned

    async def molmo_descriptions(self, items: List[Dict[str, str]], prompts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return await self._call("molmo_descriptions", self.client.molmo_describe(items, prompts))

    async def _call(self, operation: str, awaitable) -> Any:
        try:
            return await awaitable
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise ModelCallError(operation, str(e)) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        if self._llm is not None:
            await self._llm.close()
