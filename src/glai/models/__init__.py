"""Convenience exports for the LLM chat clients."""

from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMMessage,
    LLMResponse,
    LLMResponseFormatError,
    LLMTransportError,
    LLMUsage,
    parse_json_payload,
)
from .providers import (
    AnthropicClient,
    CustomClient,
    OllamaClient,
    OpenAIClient,
    PROVIDERS,
    create_llm_client,
)

__all__ = [
    "AnthropicClient",
    "CustomClient",
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMResponse",
    "LLMResponseFormatError",
    "LLMTransportError",
    "LLMUsage",
    "OllamaClient",
    "OpenAIClient",
    "PROVIDERS",
    "create_llm_client",
    "parse_json_payload",
]
