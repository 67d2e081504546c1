"""Clients for hosted generative-text models.

Every client exposes the same small contract used throughout the application::

    client.generate(prompt) -> str

A call either returns non-empty text or raises :class:`ClientError`; an empty
completion is reported as a failure rather than as an empty string so callers
never mistake it for a successful chunk. The Flask layer obtains the
configured client through :func:`get_text_client`, which builds one instance
per application and reuses it across requests. Clients hold no per-run state
and can be shared by concurrent generation runs.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol

import openai
import requests
from flask import current_app

from ..errors import ClientError, ConfigurationError


CLIENT_INSTANCE_KEY = "_TEXT_CLIENT_INSTANCE"

DEFAULT_GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.9
DEFAULT_TOP_K = 40
DEFAULT_MAX_OUTPUT_TOKENS = 8192


class TextGenerationClient(Protocol):
    def generate(self, prompt: str, **overrides: Any) -> str:
        ...


class GeminiClient:
    """Call the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        api_base: str = DEFAULT_GEMINI_API_BASE,
        temperature: float = DEFAULT_TEMPERATURE,
        top_p: float = DEFAULT_TOP_P,
        top_k: int = DEFAULT_TOP_K,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not (api_key or "").strip():
            raise ConfigurationError("A Gemini API key is required.")
        if not (model or "").strip():
            raise ConfigurationError("A Gemini model name is required.")
        self.api_key = api_key.strip()
        self.model = model.strip()
        self.api_base = api_base.rstrip("/")
        self.temperature = temperature
        self.top_p = top_p
        self.top_k = top_k
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def generation_config(self, **overrides: Any) -> Dict[str, Any]:
        values = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "max_output_tokens": self.max_output_tokens,
        }
        for key, value in overrides.items():
            if key in values and value is not None:
                values[key] = value
        return {
            "temperature": float(values["temperature"]),
            "topP": float(values["top_p"]),
            "topK": int(values["top_k"]),
            "maxOutputTokens": int(values["max_output_tokens"]),
        }

    def generate(self, prompt: str, **overrides: Any) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": self.generation_config(**overrides),
        }
        try:
            response = self._session.post(
                self.endpoint,
                params={"key": self.api_key},
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ClientError(f"Gemini request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ClientError(
                f"Gemini API returned HTTP {response.status_code}: {_shorten_debug(response.text)}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ClientError("Gemini API returned a non-JSON response.") from exc

        text = extract_gemini_text(body)
        if text:
            return text

        block_reason = (body.get("promptFeedback") or {}).get("blockReason") if isinstance(body, dict) else None
        if block_reason:
            raise ClientError(f"Gemini blocked the prompt: {block_reason}")
        raise ClientError(f"Gemini returned no text. Raw response (truncated): {_shorten_debug(str(body))}")


def extract_gemini_text(body: Any) -> str:
    """Join the text parts of the first candidate that carries any text."""

    if not isinstance(body, dict):
        return ""
    for candidate in body.get("candidates") or []:
        content = candidate.get("content") or {}
        texts = [str(part.get("text") or "") for part in content.get("parts") or [] if isinstance(part, dict)]
        joined = "".join(texts).strip()
        if joined:
            return joined
    return ""


class OpenAIChatClient:
    """Chat Completions backend for deployments that prefer an OpenAI model."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        top_p: float = DEFAULT_TOP_P,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        timeout: float = 120.0,
    ) -> None:
        if not (api_key or "").strip():
            raise ConfigurationError("An OpenAI API key is required.")
        if not (model or "").strip():
            raise ConfigurationError("An OpenAI model name is required.")
        self.model = model.strip()
        self.temperature = temperature
        self.top_p = top_p
        self.max_output_tokens = max_output_tokens
        self._client = openai.OpenAI(api_key=api_key.strip(), timeout=timeout)

    def generate(self, prompt: str, **overrides: Any) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        temperature = overrides.get("temperature")
        top_p = overrides.get("top_p")
        max_tokens = overrides.get("max_output_tokens")
        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": int(max_tokens if max_tokens is not None else self.max_output_tokens),
            "temperature": float(temperature if temperature is not None else self.temperature),
            "top_p": float(top_p if top_p is not None else self.top_p),
            "n": 1,
        }
        try:
            resp = self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise ClientError(f"OpenAI request failed: {exc}") from exc

        text = _extract_text_from_chat(resp).strip()
        if text:
            return text
        raise ClientError(f"Chat completion returned no text. Raw response (truncated): {_shorten_debug(str(resp))}")


def _extract_text_from_chat(resp: Any) -> str:
    choices = getattr(resp, "choices", []) or []
    if not choices:
        return ""
    first = choices[0]
    msg = getattr(first, "message", None)
    content = msg.get("content") if isinstance(msg, dict) else getattr(msg, "content", None)
    if isinstance(content, list):
        parts: List[str] = []
        for p in content:
            if isinstance(p, dict) and p.get("type") == "text":
                parts.append(str(p.get("text") or ""))
        return "\n".join([p for p in parts if p])
    return str(content or "")


def _shorten_debug(s: str, limit: int = 600) -> str:
    s = s.replace("\n", " ")
    return (s[:limit] + "…") if len(s) > limit else s


def build_text_client(config: Mapping[str, Any]) -> TextGenerationClient:
    """Create the client selected by ``LLM_BACKEND``.

    Raises :class:`ConfigurationError` before any request is attempted when the
    backend is unknown or its credentials are missing.
    """

    backend = str(config.get("LLM_BACKEND") or "gemini").strip().lower()
    timeout = float(config.get("GENERATION_TIMEOUT") or 120.0)
    temperature = float(config.get("GENERATION_TEMPERATURE", DEFAULT_TEMPERATURE))
    top_p = float(config.get("GENERATION_TOP_P", DEFAULT_TOP_P))
    max_output_tokens = int(config.get("GENERATION_MAX_OUTPUT_TOKENS", DEFAULT_MAX_OUTPUT_TOKENS))

    if backend == "gemini":
        return GeminiClient(
            config.get("GEMINI_API_KEY") or "",
            config.get("GEMINI_MODEL") or "",
            api_base=config.get("GEMINI_API_BASE") or DEFAULT_GEMINI_API_BASE,
            temperature=temperature,
            top_p=top_p,
            top_k=int(config.get("GENERATION_TOP_K", DEFAULT_TOP_K)),
            max_output_tokens=max_output_tokens,
            timeout=timeout,
        )
    if backend == "openai":
        return OpenAIChatClient(
            config.get("OPENAI_API_KEY") or "",
            config.get("OPENAI_MODEL") or "",
            temperature=temperature,
            top_p=top_p,
            max_output_tokens=max_output_tokens,
            timeout=timeout,
        )
    raise ConfigurationError(f"Unsupported LLM_BACKEND '{backend}'.")


def get_text_client() -> TextGenerationClient:  # pragma: no cover - integration point
    app = current_app
    client = app.config.get(CLIENT_INSTANCE_KEY)
    if client is not None:
        return client

    client = build_text_client(app.config)
    app.logger.info("Initialised %s text client.", type(client).__name__)
    app.config[CLIENT_INSTANCE_KEY] = client
    return client
