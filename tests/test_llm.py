"""Tests for LLM backends, the backend factory and JSON parsing helpers."""

import json
from types import SimpleNamespace

import pytest

from src.blog_writer.client import ChatResult
from src.llm import AnthropicBackend, BlogWriterBackend, ModelBackend, get_backend
from src.llm.client import extract_json, parse_llm_json_response


class FakeChatClient:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def chat(self, model, user_prompt, **kwargs):
        self.calls.append((model, user_prompt, kwargs))
        return ChatResult(content=self.content, model=model, prompt_tokens=10, completion_tokens=5, duration_ms=7)


class FakeMessages:
    def __init__(self, text):
        self.text = text
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(
            content=[SimpleNamespace(text=self.text)],
            usage=SimpleNamespace(input_tokens=20, output_tokens=8),
        )


class TestFactory:
    def test_prefix_routes_to_anthropic(self):
        backend = get_backend("anthropic/claude-sonnet-4-5")
        assert isinstance(backend, AnthropicBackend)
        assert backend.api_model == "claude-sonnet-4-5"

    def test_default_routes_to_blog_writer(self):
        backend = get_backend("gpt-4o-mini")
        assert isinstance(backend, BlogWriterBackend)
        assert isinstance(backend, ModelBackend)
        assert backend.model_id == "gpt-4o-mini"

    @pytest.mark.parametrize("model_id", ["", "   "])
    def test_empty_model_id(self, model_id):
        with pytest.raises(ValueError):
            get_backend(model_id)


class TestBlogWriterBackend:
    @pytest.mark.asyncio
    async def test_generate(self):
        client = FakeChatClient("  Generated intro  ")
        backend = BlogWriterBackend("gpt-4o", client=client)
        result = await backend.generate("system", "user", temperature=0.5, max_tokens=300, label="intro")

        assert result.content == "Generated intro"
        assert result.input_tokens == 10
        model, prompt, kwargs = client.calls[0]
        assert (model, prompt) == ("gpt-4o", "user")
        assert kwargs["system_prompt"] == "system"
        assert kwargs["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_empty_response_raises(self):
        backend = BlogWriterBackend("gpt-4o", client=FakeChatClient("   "))
        with pytest.raises(RuntimeError):
            await backend.generate(None, "user", temperature=0.5, max_tokens=10)


class TestAnthropicBackend:
    @pytest.mark.asyncio
    async def test_generate_strips_prefix_and_caps_temperature(self):
        messages = FakeMessages("Claude says hi")
        backend = AnthropicBackend("anthropic/claude-sonnet-4-5", client=SimpleNamespace(messages=messages))
        result = await backend.generate("Be terse", "Hi", temperature=1.4, max_tokens=100)

        assert messages.kwargs["model"] == "claude-sonnet-4-5"
        assert messages.kwargs["temperature"] == 1.0
        assert messages.kwargs["system"] == "Be terse"
        assert result.content == "Claude says hi"
        assert result.model_id == "anthropic/claude-sonnet-4-5"
        assert result.output_tokens == 8

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        backend = AnthropicBackend()
        with pytest.raises(RuntimeError):
            await backend.generate(None, "Hi", temperature=0.2, max_tokens=10)


class TestJsonParsing:
    def test_plain_json(self):
        assert parse_llm_json_response('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_llm_json_response('```json\n{"links": []}\n```') == {"links": []}

    def test_parse_invalid(self):
        with pytest.raises(json.JSONDecodeError):
            parse_llm_json_response("not json")

    def test_extract_from_prose(self):
        raw = 'Here are the links:\n[{"url": "/a", "anchor_text": "a"}]\nHope that helps.'
        assert extract_json(raw) == [{"url": "/a", "anchor_text": "a"}]

    def test_extract_without_json(self):
        with pytest.raises(ValueError):
            extract_json("no structured data here")
