"""
LLM Backend Abstraction Layer
==============================
Pluggable hosted-model backends used by the watering advisor.

Supported backends
------------------
* **OpenAIBackend** - Chat Completions via the ``openai`` SDK (also works
  with compatible endpoints through ``base_url``).
* **AnthropicBackend** - Messages API via the ``anthropic`` SDK.

SDKs are imported lazily inside :meth:`LLMBackend.initialize`, so a missing
package only disables the advisor; the rule-based strategy keeps working.

Quick-start
-----------
::

    backend = create_backend("openai", api_key="sk-...", model="gpt-4o-mini")
    if backend is not None:
        reply = backend.generate(
            system_prompt="You are an irrigation assistant.",
            user_prompt="Soil moisture is 22%. Water now?",
            json_mode=True,
        )
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Standardised wrapper around every backend response."""

    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)  # prompt_tokens, completion_tokens, total_tokens
    latency_ms: float = 0.0
    raw: Any = None


class LLMBackend(ABC):
    """
    Abstract base for every LLM backend.

    Subclasses implement :meth:`_create_client` and :meth:`_complete`; the
    base class handles key checks, lazy client creation and timing.
    """

    default_model: str = ""

    def __init__(self, api_key: str, model: str = "", timeout: int = 30):
        self._api_key = api_key
        self._model = model or self.default_model
        self._timeout = timeout
        self._client: Any = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier for this backend (e.g. ``"openai"``)."""

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def initialize(self) -> bool:
        """Create the SDK client. Returns ``True`` on success."""
        if not self._api_key:
            logger.warning("%s backend: no API key provided", self.name)
            return False
        try:
            self._client = self._create_client()
        except ImportError:
            logger.error("%s backend: SDK not installed.  Run: pip install %s", self.name, self.name)
            return False
        except Exception as exc:
            logger.error("%s backend init failed: %s", self.name, exc)
            return False
        logger.info("%s backend initialised (model=%s)", self.name, self._model)
        return True

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 512,
        temperature: float = 0.3,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a text completion.

        Parameters
        ----------
        system_prompt:
            Role / persona instruction.
        user_prompt:
            The concrete request.
        max_tokens:
            Upper-bound on generated tokens.
        temperature:
            Sampling temperature (0 = deterministic).
        json_mode:
            Ask the backend for a JSON-only reply where supported.
        """
        if not self.is_available:
            raise RuntimeError(f"{self.name} backend not initialised")
        t0 = time.perf_counter()
        response = self._complete(system_prompt, user_prompt, max_tokens, temperature, json_mode)
        response.latency_ms = (time.perf_counter() - t0) * 1000
        return response

    @abstractmethod
    def _create_client(self) -> Any: ...

    @abstractmethod
    def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool,
    ) -> LLMResponse: ...


class OpenAIBackend(LLMBackend):
    """Backend for OpenAI's Chat Completions API (``pip install openai``)."""

    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str, model: str = "", base_url: str | None = None, timeout: int = 30):
        super().__init__(api_key, model, timeout)
        self._base_url = base_url

    @property
    def name(self) -> str:
        return "openai"

    def _create_client(self) -> Any:
        import openai

        kwargs: dict[str, Any] = {"api_key": self._api_key, "timeout": self._timeout}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return openai.OpenAI(**kwargs)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = self._client.chat.completions.create(**kwargs)
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        return LLMResponse(
            text=response.choices[0].message.content or "",
            model=response.model,
            usage=usage,
            raw=response,
        )


class AnthropicBackend(LLMBackend):
    """Backend for Anthropic's Messages API (``pip install anthropic``)."""

    default_model = "claude-3-5-haiku-latest"

    @property
    def name(self) -> str:
        return "anthropic"

    def _create_client(self) -> Any:
        import anthropic

        return anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout)

    def _complete(self, system_prompt, user_prompt, max_tokens, temperature, json_mode) -> LLMResponse:
        # No native JSON mode; the system prompt goes in a top-level param
        prompt = user_prompt
        if json_mode:
            prompt += "\n\nRespond ONLY with valid JSON, no markdown fences."

        response = self._client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt}],
        )
        text = response.content[0].text if response.content else ""
        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            }
        return LLMResponse(text=text, model=response.model, usage=usage, raw=response)


_BACKENDS: dict[str, type[LLMBackend]] = {
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
}


def create_backend(
    provider: str,
    *,
    api_key: str = "",
    model: str = "",
    base_url: str | None = None,
    timeout: int = 30,
) -> LLMBackend | None:
    """
    Create and initialise the backend named by *provider*.

    Returns ``None`` for ``"none"``, an unknown provider, or a failed
    initialisation; the caller then runs without an advisor.
    """
    provider = (provider or "").strip().lower()
    if provider in ("none", ""):
        logger.info("LLM provider set to 'none'; advisory strategy disabled")
        return None

    backend_cls = _BACKENDS.get(provider)
    if backend_cls is None:
        logger.error("Unknown LLM provider '%s'", provider)
        return None

    if backend_cls is OpenAIBackend:
        backend: LLMBackend = OpenAIBackend(api_key=api_key, model=model, base_url=base_url, timeout=timeout)
    else:
        backend = backend_cls(api_key=api_key, model=model, timeout=timeout)

    if backend.initialize():
        return backend

    logger.warning("LLM backend '%s' failed to initialise; advisory strategy disabled", provider)
    return None
