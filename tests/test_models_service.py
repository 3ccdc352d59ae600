"""
Tests for the models service boundary: response parsing, pricing and
error conversion.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from photo_analyzer.core.config import settings
from photo_analyzer.core.exceptions import ModelCallError
from photo_analyzer.llm import get_llm
from photo_analyzer.llm.base import LLMResponse
from photo_analyzer.llm.openai_adapter import OpenAIAdapter
from photo_analyzer.model_client import ModelClient
from photo_analyzer.services.models_service import ModelsService, compute_cost, parse_json_response


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"tags": ["a | b"]}') == {"tags": ["a | b"]}

    def test_fenced_block(self):
        raw = '```json\n[{"context": "a beach"}]\n```'
        assert parse_json_response(raw) == [{"context": "a beach"}]

    def test_embedded_array(self):
        raw = 'Here you go: [{"context": "x"}] hope it helps'
        assert parse_json_response(raw) == [{"context": "x"}]

    @pytest.mark.parametrize("key", ["result", "results"])
    def test_result_key_unwrapped(self, key):
        assert parse_json_response(json.dumps({key: [1, 2]})) == [1, 2]

    def test_junk_gives_empty_dict(self):
        assert parse_json_response("no json at all") == {}


class TestComputeCost:

    def test_known_model(self):
        cost = compute_cost("gpt-4o-mini", {"prompt_tokens": 1_000_000, "completion_tokens": 0})
        assert cost.total_tokens == 1_000_000
        assert cost.total_cost_eur == pytest.approx(0.15 * settings.usd_to_eur)

    def test_unknown_model_is_free(self):
        cost = compute_cost("local-llm", {"prompt_tokens": 10, "completion_tokens": 5})
        assert cost.total_tokens == 15
        assert cost.total_cost_eur == 0.0

    def test_cost_dict_keys(self):
        data = compute_cost("gpt-4o", None).to_dict()
        assert data["model"] == "gpt-4o"
        assert data["totalCostInEur"] == 0.0


class TestChatCompletion:

    def _service(self, generate):
        llm = MagicMock()
        llm.generate = generate
        return ModelsService(llm=llm, client=MagicMock())

    def test_parses_result_and_cost(self):
        generate = AsyncMock(return_value=LLMResponse(
            content='{"tags": ["dog | animal"]}',
            model="gpt-4o-mini",
            provider="openai",
            usage={"prompt_tokens": 100, "completion_tokens": 20},
        ))
        service = self._service(generate)

        chat = asyncio.run(service.chat_completion("system", "user", "gpt-4o-mini"))

        assert chat.result == {"tags": ["dog | animal"]}
        assert chat.cost.total_tokens == 120
        assert generate.await_args.kwargs["system_prompt"] == "system"
        assert generate.await_args.kwargs["response_format"] == {"type": "json_object"}

    def test_transport_error_becomes_model_call_error(self):
        service = self._service(AsyncMock(side_effect=httpx.ConnectError("refused")))
        with pytest.raises(ModelCallError) as exc_info:
            asyncio.run(service.chat_completion("system", "user"))
        assert exc_info.value.operation == "chat_completion"


def _client_with(handler) -> ModelClient:
    client = ModelClient(base_url="http://models.test")
    client._client = httpx.AsyncClient(base_url="http://models.test", transport=httpx.MockTransport(handler))
    return client


class TestModelOperations:

    def test_text_embeddings(self):
        def handler(request):
            assert request.url.path == "/get_embeddings"
            texts = json.loads(request.content)["tags"]
            return httpx.Response(200, json={"embeddings": [[0.1] * 3 for _ in texts]})

        service = ModelsService(llm=MagicMock(), client=_client_with(handler))
        assert asyncio.run(service.text_embeddings(["a", "b"])) == [[0.1] * 3, [0.1] * 3]

    def test_vector_count_mismatch_fails(self):
        service = ModelsService(
            llm=MagicMock(),
            client=_client_with(lambda request: httpx.Response(200, json={"embeddings": [[0.1]]})),
        )
        with pytest.raises(ModelCallError):
            asyncio.run(service.text_embeddings(["a", "b"]))

    def test_http_status_becomes_model_call_error(self):
        service = ModelsService(
            llm=MagicMock(),
            client=_client_with(lambda request: httpx.Response(503, json={"detail": "busy"})),
        )
        with pytest.raises(ModelCallError) as exc_info:
            asyncio.run(service.object_detection([{"id": "1", "base64": ""}], ["dog"]))
        assert exc_info.value.operation == "object_detection"

    def test_clean_descriptions_sends_threshold(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={"result": ["clean"]})

        service = ModelsService(llm=MagicMock(), client=_client_with(handler))
        assert asyncio.run(service.clean_descriptions(["dirty"])) == ["clean"]
        assert seen == {"texts": ["dirty"], "threshold": settings.cleaning_threshold}


class TestOpenAIAdapter:

    def _completion(self, content):
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = content
        response.choices[0].finish_reason = "stop"
        response.usage.prompt_tokens = 12
        response.usage.completion_tokens = 3
        response.usage.total_tokens = 15
        return response

    def test_generate_builds_messages(self):
        with patch("photo_analyzer.llm.openai_adapter.AsyncOpenAI") as sdk:
            create = AsyncMock(return_value=self._completion('{"tags": []}'))
            sdk.return_value.chat.completions.create = create
            adapter = OpenAIAdapter(api_key="sk-test", model="gpt-4o-mini")

            response = asyncio.run(adapter.generate(
                [{"type": "image_url", "image_url": {"url": "data:"}}],
                system_prompt="describe",
                response_format={"type": "json_object"},
            ))

        assert response.content == '{"tags": []}'
        assert response.usage == {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15}
        messages = create.await_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert create.await_args.kwargs["response_format"] == {"type": "json_object"}

    def test_response_format_omitted_when_none(self):
        with patch("photo_analyzer.llm.openai_adapter.AsyncOpenAI") as sdk:
            create = AsyncMock(return_value=self._completion("[]"))
            sdk.return_value.chat.completions.create = create
            asyncio.run(OpenAIAdapter(api_key="sk-test").generate("hi"))
        assert "response_format" not in create.await_args.kwargs

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")
        with pytest.raises(ValueError):
            asyncio.run(OpenAIAdapter(api_key="").generate("hi"))

    def test_factory(self):
        adapter = get_llm("openai", api_key="sk-test")
        assert isinstance(adapter, OpenAIAdapter)
        with pytest.raises(ValueError):
            get_llm("nope")
