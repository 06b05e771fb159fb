"""Config-driven LLM client behind one capability set.

``analyze`` turns a snapshot summary into an ``AnalysisResult``; ``chat`` and
``analyze_entity`` return free text. The provider is a tagged kind, each with a
request/response adapter; OpenAI goes through its SDK, the others through httpx.
Without an API key the client answers deterministically offline.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import httpx
import openai
from openai import OpenAI

from vmlens.core.config import LLMConfig
from vmlens.core.errors import ConfigError, LLMError
from vmlens.prompting.registry import PromptRegistry

from .results import AnalysisMetrics, AnalysisResult

logger = logging.getLogger(__name__)


class ProviderKind(str, enum.Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        aliases = {"claude": "anthropic", "google": "gemini"}
        try:
            return cls(aliases.get(value.lower(), value.lower()))
        except ValueError as exc:
            raise ConfigError(f"Unknown LLM provider: {value}") from exc


DEFAULT_MODELS = {
    ProviderKind.OPENAI: "gpt-4o",
    ProviderKind.ANTHROPIC: "claude-sonnet-4-20250514",
    ProviderKind.GEMINI: "gemini-1.5-flash",
}

DEFAULT_BASE_URLS = {
    ProviderKind.OPENAI: "https://api.openai.com/v1",
    ProviderKind.ANTHROPIC: "https://api.anthropic.com",
    ProviderKind.GEMINI: "https://generativelanguage.googleapis.com",
}

ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def _anthropic_request(client: "LLMClient", messages: list[ChatMessage], json_mode: bool) -> httpx.Request:
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    body: dict[str, Any] = {
        "model": client.model,
        "max_tokens": client.config.max_tokens,
        "temperature": client.config.temperature,
        "messages": [
            {"role": m.role, "content": m.content} for m in messages if m.role != "system"
        ],
    }
    if system:
        body["system"] = system
    return client.http.build_request(
        "POST",
        f"{client.base_url}/v1/messages",
        headers={
            "x-api-key": client.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        },
        json=body,
    )


def _anthropic_response(payload: dict[str, Any]) -> Completion:
    text = "".join(
        block.get("text", "") for block in payload.get("content") or [] if block.get("type") == "text"
    )
    usage = payload.get("usage") or {}
    return Completion(text, usage.get("input_tokens", 0), usage.get("output_tokens", 0))


def _gemini_request(client: "LLMClient", messages: list[ChatMessage], json_mode: bool) -> httpx.Request:
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    contents = [
        {"role": "model" if m.role == "assistant" else "user", "parts": [{"text": m.content}]}
        for m in messages
        if m.role != "system"
    ]
    generation: dict[str, Any] = {
        "temperature": client.config.temperature,
        "maxOutputTokens": client.config.max_tokens,
    }
    if json_mode:
        generation["responseMimeType"] = "application/json"
    body: dict[str, Any] = {"contents": contents, "generationConfig": generation}
    if system:
        body["systemInstruction"] = {"parts": [{"text": system}]}
    return client.http.build_request(
        "POST",
        f"{client.base_url}/v1beta/models/{client.model}:generateContent",
        params={"key": client.config.api_key or ""},
        json=body,
    )


def _gemini_response(payload: dict[str, Any]) -> Completion:
    candidates = payload.get("candidates") or []
    if not candidates:
        raise LLMError("Gemini returned no candidates")
    parts = (candidates[0].get("content") or {}).get("parts") or []
    usage = payload.get("usageMetadata") or {}
    return Completion(
        "".join(p.get("text", "") for p in parts),
        usage.get("promptTokenCount", 0),
        usage.get("candidatesTokenCount", 0),
    )


HttpAdapter = tuple[
    Callable[["LLMClient", list[ChatMessage], bool], httpx.Request],
    Callable[[dict[str, Any]], Completion],
]

HTTP_ADAPTERS: dict[ProviderKind, HttpAdapter] = {
    ProviderKind.ANTHROPIC: (_anthropic_request, _anthropic_response),
    ProviderKind.GEMINI: (_gemini_request, _gemini_response),
}


class LLMClient:
    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        prompts: Optional[PromptRegistry] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config or LLMConfig()
        self.kind = ProviderKind.parse(self.config.provider)
        self.model = self.config.model or DEFAULT_MODELS[self.kind]
        self.base_url = (self.config.base_url or DEFAULT_BASE_URLS[self.kind]).rstrip("/")
        self.prompts = prompts or PromptRegistry(self.config.prompts_dir)
        self.http = http_client or httpx.Client(timeout=self.config.timeout_sec)
        self._offline = not self.config.api_key
        self._openai: Optional[OpenAI] = None
        if self.kind is ProviderKind.OPENAI and not self._offline:
            self._openai = OpenAI(
                base_url=self.base_url, api_key=self.config.api_key, timeout=self.config.timeout_sec
            )

    @property
    def offline(self) -> bool:
        return self._offline

    def _offline_answer(self, messages: list[ChatMessage]) -> str:
        # Deterministic echo of the last message for offline mode
        content = messages[-1].content if messages else "no prompt"
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:12]
        return f"[offline-llm:{digest}] {content[:300]}"

    def complete(self, messages: Iterable[ChatMessage], json_mode: bool = False) -> Completion:
        msgs = list(messages)
        if self._offline:
            return Completion(self._offline_answer(msgs))
        logger.debug("LLM request: provider=%s model=%s messages=%d", self.kind.value, self.model, len(msgs))
        if self.kind is ProviderKind.OPENAI:
            return self._complete_openai(msgs, json_mode)
        build, parse = HTTP_ADAPTERS[self.kind]
        try:
            response = self.http.send(build(self, msgs, json_mode))
            response.raise_for_status()
            return parse(response.json())
        except httpx.HTTPStatusError as exc:
            raise LLMError(
                f"{self.kind.value} API error: {exc.response.status_code} - {exc.response.text[:500]}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMError(f"{self.kind.value} request failed: {exc}") from exc

    def _complete_openai(self, msgs: list[ChatMessage], json_mode: bool) -> Completion:
        assert self._openai is not None
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in msgs],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = self._openai.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise LLMError(f"openai request failed: {exc}") from exc
        usage = resp.usage
        return Completion(
            resp.choices[0].message.content or "",
            usage.prompt_tokens if usage else 0,
            usage.completion_tokens if usage else 0,
        )

    def analyze(self, summary: dict[str, Any]) -> AnalysisResult:
        system, user = self.prompts.render("performance_analysis", data=json.dumps(summary))
        started = time.monotonic()
        try:
            completion = self.complete(
                [ChatMessage("system", system), ChatMessage("user", user)], json_mode=True
            )
        except LLMError as exc:
            logger.warning("Analysis request failed: %s", exc)
            return AnalysisResult.from_error(str(exc), int((time.monotonic() - started) * 1000))
        metrics = AnalysisMetrics(
            tokens_used=completion.input_tokens + completion.output_tokens,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            response_time_ms=int((time.monotonic() - started) * 1000),
        )
        return AnalysisResult.from_llm_response(completion.text, metrics)

    def chat(
        self,
        message: str,
        history: Optional[Iterable[ChatMessage]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> str:
        system, _ = self.prompts.render("chat", context="", message="")
        msgs = [ChatMessage("system", system), *(history or [])]
        if context:
            _, user = self.prompts.render("chat", context=json.dumps(context), message=message)
        else:
            user = message
        msgs.append(ChatMessage("user", user))
        try:
            return self.complete(msgs).text
        except LLMError as exc:
            logger.warning("Chat request failed: %s", exc)
            return f"Error: {exc}"

    def analyze_entity(self, entity: dict[str, Any]) -> str:
        system, user = self.prompts.render("class_analysis", entity=json.dumps(entity))
        try:
            return self.complete([ChatMessage("system", system), ChatMessage("user", user)]).text
        except LLMError as exc:
            logger.warning("Entity analysis failed: %s", exc)
            return f"Error: {exc}"

    def close(self) -> None:
        self.http.close()
