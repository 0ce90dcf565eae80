"""HTTP chat clients for the supported LLM providers."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMMessage,
    LLMResponse,
    LLMResponseFormatError,
    LLMTransportError,
    LLMUsage,
)

__all__ = [
    "AnthropicClient",
    "CustomClient",
    "DEFAULT_API_URLS",
    "OllamaClient",
    "OpenAIClient",
    "PROVIDERS",
    "create_llm_client",
]

LOGGER = logging.getLogger(__name__)

Transport = Callable[[str, Dict[str, Any]], str]

DEFAULT_API_URLS: Dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "ollama": "http://localhost:11434",
}
PROVIDERS = ("openai", "anthropic", "ollama", "custom")


class _HTTPChatClient(LLMClient):
    """Shared JSON-over-HTTP plumbing for provider clients."""

    provider = "openai"
    endpoint = "/chat/completions"

    def __init__(
        self,
        *,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ) -> None:
        super().__init__(model=model, max_tokens=max_tokens, temperature=temperature)
        self._api_key = api_key
        resolved_url = base_url or DEFAULT_API_URLS.get(self.provider)
        if not resolved_url:
            raise ValueError(f"An API URL is required for the {self.provider} provider.")
        self._base_url = resolved_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport or self._http_transport

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}{self.endpoint}"
        LOGGER.debug("POST %s model=%s", url, self.model)
        try:
            raw = self._transport(url, payload)
        except LLMClientError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as error:
            raise LLMResponseFormatError(f"{self.provider} returned non-JSON body: {raw[:200]}") from error
        if not isinstance(data, dict):
            raise LLMResponseFormatError(f"{self.provider} returned an unexpected payload.")
        return data

    def _http_transport(self, url: str, payload: Dict[str, Any]) -> str:
        """Default HTTP transport based on ``urllib``."""
        import urllib.error
        import urllib.request

        if os.getenv("GLAI_DEBUG_LLM_PAYLOAD"):
            LOGGER.debug("LLM request payload: %s", json.dumps(payload, indent=2, sort_keys=True))

        request = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=self._headers(),
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"{self.provider} request timed out after {self._timeout:g}s.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach {url}: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")


class OpenAIClient(_HTTPChatClient):
    """OpenAI chat completions, also used for OpenAI-compatible endpoints."""

    provider = "openai"
    endpoint = "/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _complete(self, messages: List[LLMMessage], *, max_tokens: int, temperature: float) -> LLMResponse:
        data = self._post(
            {
                "model": self.model,
                "messages": [message.to_dict() for message in messages],
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            raise LLMResponseFormatError("Chat completion did not contain a message.") from error
        usage = data.get("usage") or {}
        return LLMResponse(
            content=content or "",
            usage=LLMUsage(
                prompt_tokens=int(usage.get("prompt_tokens", 0)),
                completion_tokens=int(usage.get("completion_tokens", 0)),
                total_tokens=int(usage.get("total_tokens", 0)),
            ),
        )


class CustomClient(OpenAIClient):
    provider = "custom"


class AnthropicClient(_HTTPChatClient):
    """Anthropic messages API; the system prompt travels outside the message list."""

    provider = "anthropic"
    endpoint = "/messages"
    api_version = "2023-06-01"

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self._api_key:
            headers["x-api-key"] = self._api_key
        headers["anthropic-version"] = self.api_version
        return headers

    def _complete(self, messages: List[LLMMessage], *, max_tokens: int, temperature: float) -> LLMResponse:
        system = "\n\n".join(message.content for message in messages if message.role == "system")
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [message.to_dict() for message in messages if message.role != "system"],
        }
        if system:
            payload["system"] = system
        data = self._post(payload)

        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise LLMResponseFormatError("Anthropic response did not contain content blocks.")
        text = "".join(
            block.get("text", "") for block in blocks if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens", 0))
        completion_tokens = int(usage.get("output_tokens", 0))
        return LLMResponse(
            content=text,
            usage=LLMUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
        )


class OllamaClient(_HTTPChatClient):
    """Local Ollama chat endpoint with streaming disabled."""

    provider = "ollama"
    endpoint = "/api/chat"

    def _complete(self, messages: List[LLMMessage], *, max_tokens: int, temperature: float) -> LLMResponse:
        data = self._post(
            {
                "model": self.model,
                "messages": [message.to_dict() for message in messages],
                "stream": False,
                "options": {"num_predict": max_tokens, "temperature": temperature},
            }
        )
        message = data.get("message")
        if not isinstance(message, dict):
            raise LLMResponseFormatError("Ollama response did not contain a message.")
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        return LLMResponse(
            content=str(message.get("content") or ""),
            usage=LLMUsage(prompt_tokens, completion_tokens, prompt_tokens + completion_tokens),
        )


_CLIENTS = {
    "openai": OpenAIClient,
    "custom": CustomClient,
    "anthropic": AnthropicClient,
    "ollama": OllamaClient,
}


def create_llm_client(
    provider: str,
    *,
    model: str,
    api_key: Optional[str] = None,
    api_url: Optional[str] = None,
    timeout: float = 120.0,
    max_tokens: int = 4096,
    temperature: float = 0.3,
    transport: Optional[Transport] = None,
) -> LLMClient:
    """Instantiate the chat client for ``provider``."""
    try:
        client_cls = _CLIENTS[provider]
    except KeyError as error:
        raise ValueError(f"Unsupported LLM provider: {provider}") from error
    return client_cls(
        model=model,
        api_key=api_key,
        base_url=api_url or None,
        transport=transport,
        timeout=timeout,
        max_tokens=max_tokens,
        temperature=temperature,
    )
