"""Chat client base class shared by all language-model integrations."""

from __future__ import annotations

import ast
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMResponse",
    "LLMResponseFormatError",
    "LLMTransportError",
    "LLMUsage",
    "parse_json_payload",
]


class LLMClientError(RuntimeError):
    """Base error raised for LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the provider or model returns an unusable payload."""


@dataclass(slots=True)
class LLMMessage:
    """Single role-tagged chat message."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(slots=True)
class LLMResponse:
    """Generated text plus provider usage counters."""

    content: str
    usage: LLMUsage = field(default_factory=LLMUsage)


class LLMClient:
    """Provider-neutral chat interface.

    Subclasses translate the neutral message list into their provider's request
    shape in ``_complete``.  The base class only assembles messages and applies
    defaults; it never retries.
    """

    def __init__(self, model: str, *, max_tokens: int = 4096, temperature: float = 0.3) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def model(self) -> str:
        """Return the model name configured for this client."""
        return self._model

    def chat(
        self,
        messages: Sequence[LLMMessage],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
    ) -> LLMResponse:
        """Send ``messages`` and return the generated text."""
        all_messages: List[LLMMessage] = []
        if system_prompt:
            all_messages.append(LLMMessage("system", system_prompt))
        all_messages.extend(messages)
        return self._complete(
            all_messages,
            max_tokens=self._max_tokens if max_tokens is None else max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

    def ask(
        self,
        prompt: str,
        *,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Single-turn convenience wrapper returning only the generated text."""
        response = self.chat(
            [LLMMessage("user", prompt)],
            max_tokens=max_tokens,
            temperature=temperature,
            system_prompt=system_prompt,
        )
        return response.content

    def _complete(
        self,
        messages: List[LLMMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        """Perform the provider call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _complete().")


# ------------------------------------------------------------------ JSON helpers
_FENCED_BLOCK = re.compile(r"```[A-Za-z]*[ \t]*\n(.*?)```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_TYPOGRAPHIC = str.maketrans(
    {"\u201c": '"', "\u201d": '"', "\u2018": "'", "\u2019": "'", "\u00a0": " ", "\ufeff": ""}
)


def parse_json_payload(raw_response: str) -> Any:
    """Parse JSON embedded in model output and normalise errors."""
    text = (raw_response or "").strip().translate(_TYPOGRAPHIC)
    if not text:
        raise LLMResponseFormatError("Model returned an empty response.")

    candidates = [text]
    repaired = _repair_json_payload(text)
    if repaired and repaired != text:
        candidates.append(repaired)

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            literal = _python_literal(candidate)
            if literal is not None:
                return literal

    raise LLMResponseFormatError(f"Model returned invalid JSON: {text[:200]}")


def _repair_json_payload(raw: str) -> str | None:
    """Return the first balanced JSON object or array found in noisy output."""
    fenced = _FENCED_BLOCK.search(raw)
    body = fenced.group(1).strip() if fenced else raw.strip()
    if not body:
        return None

    fallback: str | None = None
    for start, char in enumerate(body):
        if char not in "{[":
            continue
        span = _balanced_from(body, start)
        if span is None:
            continue
        candidate = _TRAILING_COMMA.sub(r"\1", span)
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            fallback = fallback or candidate
            continue
        return candidate
    return fallback


def _balanced_from(text: str, start: int) -> str | None:
    """Return the bracket-balanced span opening at ``start``, ignoring brackets in strings."""
    expected: list[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected:
                return text[start : index + 1]
    return None


def _python_literal(candidate: str) -> Any | None:
    """Accept Python-style dict/list literals (single quotes, ``True``/``None``)."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, TypeError, MemoryError, RecursionError):
        return None
    if not isinstance(literal, (dict, list, tuple)):
        return None
    try:
        return json.loads(json.dumps(literal, default=str))
    except (TypeError, ValueError):
        return None
