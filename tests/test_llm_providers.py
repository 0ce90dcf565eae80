from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

import pytest

from glai.models import (
    AnthropicClient,
    LLMMessage,
    LLMResponseFormatError,
    LLMTransportError,
    OllamaClient,
    OpenAIClient,
    create_llm_client,
    parse_json_payload,
)


class RecordingTransport:
    def __init__(self, body: Dict[str, Any] | str) -> None:
        self.body = body if isinstance(body, str) else json.dumps(body)
        self.requests: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, url: str, payload: Dict[str, Any]) -> str:
        self.requests.append((url, payload))
        return self.body


def test_openai_client_posts_chat_completion() -> None:
    transport = RecordingTransport(
        {
            "choices": [{"message": {"role": "assistant", "content": "feature/add-login"}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16},
        }
    )
    client = OpenAIClient(model="gpt-4o-mini", api_key="sk-test", transport=transport)

    response = client.chat([LLMMessage("user", "name it")], system_prompt="be brief", max_tokens=50)

    url, payload = transport.requests[0]
    assert url == "https://api.openai.com/v1/chat/completions"
    assert payload["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "name it"},
    ]
    assert payload["max_tokens"] == 50
    assert payload["temperature"] == 0.3
    assert response.content == "feature/add-login"
    assert response.usage.total_tokens == 16
    assert client._headers()["Authorization"] == "Bearer sk-test"


def test_anthropic_client_moves_system_prompt() -> None:
    transport = RecordingTransport(
        {"content": [{"type": "text", "text": "fix: bug"}], "usage": {"input_tokens": 3, "output_tokens": 2}}
    )
    client = AnthropicClient(model="claude", api_key="key", transport=transport)

    answer = client.ask("commit?", system_prompt="rules", temperature=0.1)

    url, payload = transport.requests[0]
    assert url.endswith("/v1/messages")
    assert payload["system"] == "rules"
    assert payload["messages"] == [{"role": "user", "content": "commit?"}]
    assert payload["temperature"] == 0.1
    assert answer == "fix: bug"
    headers = client._headers()
    assert headers["x-api-key"] == "key"
    assert headers["anthropic-version"] == "2023-06-01"


def test_ollama_client_disables_streaming() -> None:
    transport = RecordingTransport({"message": {"content": "ok"}, "prompt_eval_count": 5, "eval_count": 1})
    client = OllamaClient(model="llama3", base_url="http://ollama:11434/", transport=transport)

    response = client.chat([LLMMessage("user", "hi")], max_tokens=10)

    url, payload = transport.requests[0]
    assert url == "http://ollama:11434/api/chat"
    assert payload["stream"] is False
    assert payload["options"] == {"num_predict": 10, "temperature": 0.3}
    assert response.usage.total_tokens == 6


def test_malformed_provider_bodies_raise_format_errors() -> None:
    with pytest.raises(LLMResponseFormatError):
        OpenAIClient(model="m", transport=RecordingTransport("<html>")).ask("x")
    with pytest.raises(LLMResponseFormatError):
        OpenAIClient(model="m", transport=RecordingTransport({"choices": []})).ask("x")
    with pytest.raises(LLMResponseFormatError):
        AnthropicClient(model="m", transport=RecordingTransport({"content": "text"})).ask("x")


def test_transport_failures_are_wrapped() -> None:
    def broken(url: str, payload: Dict[str, Any]) -> str:
        raise ConnectionError("refused")

    with pytest.raises(LLMTransportError):
        OpenAIClient(model="m", transport=broken).ask("x")


def test_create_llm_client_by_provider() -> None:
    transport = RecordingTransport({"choices": [{"message": {"content": "ok"}}]})

    client = create_llm_client("custom", model="local", api_url="http://llm.internal/v1", transport=transport)
    client.ask("ping")

    assert transport.requests[0][0] == "http://llm.internal/v1/chat/completions"
    with pytest.raises(ValueError):
        create_llm_client("custom", model="local")
    with pytest.raises(ValueError):
        create_llm_client("bard", model="x")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"a": 1}', {"a": 1}),
        ('Here you go:\n```json\n{"a": [1, 2,],}\n```', {"a": [1, 2]}),
        ('Scope [draft]: {"title": "x"} trailing', {"title": "x"}),
        ("{'a': True, 'b': None}", {"a": True, "b": None}),
        ("{oops", None),
    ],
)
def test_parse_json_payload(raw: str, expected: Any) -> None:
    if expected is None:
        with pytest.raises(LLMResponseFormatError):
            parse_json_payload(raw)
        return
    assert parse_json_payload(raw) == expected


def test_parse_json_payload_rejects_empty_output() -> None:
    with pytest.raises(LLMResponseFormatError):
        parse_json_payload("   ")
