"""
Text Generator — the single boundary to the generative-text provider

Everything the provider can do is collapsed, once, into a closed set of
outcomes:

    GenerationSuccess(text)          usable text
    GenerationEmpty()                provider answered with no text
    GenerationFailure(kind, message) kind ∈ {permission, configuration, transient}

Callers never see provider exceptions or raw response shapes. The
LangChainTextGenerator builds a ChatOpenAI / AzureChatOpenAI model (the same
builders the rest of the platform uses) and classifies exceptions by class
name, so there is no hard import dependency on the openai SDK's error types.

Classification:
  permission    : AuthenticationError, PermissionDeniedError (401/403)
  configuration : NotFoundError, BadRequestError, UnprocessableEntityError,
                  missing credentials / endpoint, invalid model name
  transient     : RateLimitError, timeouts, connection errors, 5xx, anything else
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class FailureKind(str, Enum):
    PERMISSION    = "permission"
    CONFIGURATION = "configuration"
    TRANSIENT     = "transient"


@dataclass(frozen=True)
class GenerationSuccess:
    text: str


@dataclass(frozen=True)
class GenerationEmpty:
    pass


@dataclass(frozen=True)
class GenerationFailure:
    kind:    FailureKind
    message: str


GenerationOutcome = Union[GenerationSuccess, GenerationEmpty, GenerationFailure]


# ---------------------------------------------------------------------------
# Exception classification
# ---------------------------------------------------------------------------

_PERMISSION_EXCEPTION_TYPES = (
    "AuthenticationError",
    "PermissionDeniedError",
)

_CONFIGURATION_EXCEPTION_TYPES = (
    "NotFoundError",
    "BadRequestError",
    "UnprocessableEntityError",
    "OpenAIError",          # raised by the SDK when no api_key is resolvable
    "ValidationError",      # pydantic model validation of ChatOpenAI params
    "ValueError",           # unsupported provider name
)


def classify_exception(exc: BaseException) -> FailureKind:
    """Map a provider exception to a FailureKind by class-name suffix."""
    if isinstance(exc, asyncio.TimeoutError):
        return FailureKind.TRANSIENT
    name = type(exc).__name__
    if any(name.endswith(p) for p in _PERMISSION_EXCEPTION_TYPES):
        return FailureKind.PERMISSION
    if any(name.endswith(c) for c in _CONFIGURATION_EXCEPTION_TYPES):
        return FailureKind.CONFIGURATION
    return FailureKind.TRANSIENT


def content_to_text(content: Any) -> str:
    """
    Normalise an AIMessage.content value to plain text.

    content is either a string or a list of parts; a part is a string or a
    dict like {"type": "text", "text": "..."}. The first text part wins.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for part in content:
            if isinstance(part, str) and part.strip():
                return part
            if isinstance(part, dict) and part.get("type", "text") == "text":
                text = part.get("text") or ""
                if text.strip():
                    return text
    return ""


# ---------------------------------------------------------------------------
# Generator interface
# ---------------------------------------------------------------------------

class TextGenerator(ABC):
    """A prompt in, a GenerationOutcome out. Implementations never raise."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier recorded on every generated result."""

    @property
    def provider_name(self) -> str:
        return "unknown"

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def generate(self, prompt: str) -> GenerationOutcome:
        """Run one completion."""


class LangChainTextGenerator(TextGenerator):
    """
    Generator backed by a LangChain chat model.

    The model object is built lazily on first use so the application can
    start (and report its status) without provider credentials.
    """

    def __init__(self, settings, llm: BaseChatModel | None = None) -> None:
        self._settings = settings
        self._llm      = llm
        self._timeout  = settings.llm_timeout_seconds

    @property
    def model_name(self) -> str:
        if self._settings.llm_provider == "azure_openai":
            return self._settings.azure_openai_deployment
        return self._settings.llm_model

    @property
    def provider_name(self) -> str:
        return self._settings.llm_provider

    @property
    def is_configured(self) -> bool:
        if self._llm is not None:
            return True
        if self._settings.llm_provider == "azure_openai":
            return bool(self._settings.azure_openai_api_key and self._settings.azure_openai_endpoint)
        return bool(self._settings.openai_api_key)

    async def generate(self, prompt: str) -> GenerationOutcome:
        if not self.is_configured:
            logger.error("TextGenerator | provider=%s has no credentials configured", self.provider_name)
            return GenerationFailure(
                FailureKind.CONFIGURATION,
                f"LLM provider '{self.provider_name}' is missing credentials.",
            )

        t0 = time.perf_counter()
        try:
            llm = self._get_llm()
            message = await asyncio.wait_for(
                llm.ainvoke([HumanMessage(content=prompt)]),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "TextGenerator | provider=%s model=%s timed out after %.0fs",
                self.provider_name, self.model_name, self._timeout,
            )
            return GenerationFailure(FailureKind.TRANSIENT, f"timed out after {self._timeout:.0f}s")
        except Exception as exc:
            kind = classify_exception(exc)
            logger.warning(
                "TextGenerator | provider=%s model=%s kind=%s error=%s: %s",
                self.provider_name, self.model_name, kind.value, type(exc).__name__, exc,
            )
            return GenerationFailure(kind, f"{type(exc).__name__}: {exc}")

        latency = (time.perf_counter() - t0) * 1000
        text = content_to_text(message.content)
        logger.info(
            "TextGenerator | provider=%s model=%s prompt_chars=%d output_chars=%d latency_ms=%.1f",
            self.provider_name, self.model_name, len(prompt), len(text), latency,
        )
        if not text.strip():
            return GenerationEmpty()
        return GenerationSuccess(text)

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = build_chat_model(self._settings)
        return self._llm


def build_chat_model(settings) -> BaseChatModel:
    """Instantiate the LangChain chat model for the configured provider."""
    if settings.llm_provider == "azure_openai":
        from langchain_openai import AzureChatOpenAI
        return AzureChatOpenAI(
            azure_deployment=settings.azure_openai_deployment,
            azure_endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,   # type: ignore[arg-type]
            api_version=settings.azure_openai_api_version,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    if settings.llm_provider == "openai":
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=settings.llm_model,
            api_key=settings.openai_api_key,   # type: ignore[arg-type]
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )

    raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")
