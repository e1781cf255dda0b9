"""
Unit Tests — TextGenerator boundary
════════════════════════════════════
Coverage targets:
  ✅ classify_exception: permission / configuration / transient by class name
  ✅ content_to_text: str, list of parts, empty
  ✅ LangChainTextGenerator outcomes: success, empty, failure, timeout,
     missing credentials, unsupported provider
  ✅ build_chat_model: OpenAI and Azure OpenAI
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage

from legalease.llm.provider import (
    FailureKind,
    GenerationEmpty,
    GenerationFailure,
    GenerationSuccess,
    LangChainTextGenerator,
    build_chat_model,
    classify_exception,
    content_to_text,
)


# Provider SDK exceptions are matched by class name only
class AuthenticationError(Exception):
    pass


class PermissionDeniedError(Exception):
    pass


class NotFoundError(Exception):
    pass


class BadRequestError(Exception):
    pass


class RateLimitError(Exception):
    pass


class APIConnectionError(Exception):
    pass


def _llm(result=None, side_effect=None) -> MagicMock:
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=result, side_effect=side_effect)
    return llm


@pytest.fixture
def llm_settings(test_settings):
    return test_settings.model_copy(update={"openai_api_key": "sk-test", "llm_timeout_seconds": 5.0})


@pytest.mark.unit
class TestClassifyException:

    @pytest.mark.parametrize("exc_type", [AuthenticationError, PermissionDeniedError])
    def test_permission(self, exc_type):
        assert classify_exception(exc_type("denied")) == FailureKind.PERMISSION

    @pytest.mark.parametrize("exc", [NotFoundError("model"), BadRequestError("bad"), ValueError("provider")])
    def test_configuration(self, exc):
        assert classify_exception(exc) == FailureKind.CONFIGURATION

    @pytest.mark.parametrize("exc", [RateLimitError("429"), APIConnectionError("down"), asyncio.TimeoutError()])
    def test_transient(self, exc):
        assert classify_exception(exc) == FailureKind.TRANSIENT


@pytest.mark.unit
class TestContentToText:

    def test_string(self):
        assert content_to_text("plain answer") == "plain answer"

    def test_list_of_parts_first_text_wins(self):
        content = [{"type": "image_url", "image_url": "x"}, {"type": "text", "text": "answer"}, "later"]
        assert content_to_text(content) == "answer"

    def test_list_with_plain_strings(self):
        assert content_to_text(["", "first"]) == "first"

    def test_unknown_shape(self):
        assert content_to_text(None) == ""


@pytest.mark.unit
class TestLangChainTextGenerator:

    async def test_success(self, llm_settings):
        llm = _llm(AIMessage(content="Plain-language summary."))
        generator = LangChainTextGenerator(llm_settings, llm=llm)

        outcome = await generator.generate("prompt")

        assert outcome == GenerationSuccess("Plain-language summary.")
        llm.ainvoke.assert_awaited_once()
        messages = llm.ainvoke.await_args.args[0]
        assert messages[0].content == "prompt"

    async def test_blank_text_is_empty(self, llm_settings):
        generator = LangChainTextGenerator(llm_settings, llm=_llm(AIMessage(content="   ")))
        assert isinstance(await generator.generate("prompt"), GenerationEmpty)

    async def test_exception_is_classified(self, llm_settings):
        generator = LangChainTextGenerator(llm_settings, llm=_llm(side_effect=AuthenticationError("bad key")))

        outcome = await generator.generate("prompt")

        assert isinstance(outcome, GenerationFailure)
        assert outcome.kind == FailureKind.PERMISSION
        assert "AuthenticationError" in outcome.message

    async def test_timeout_is_transient(self, llm_settings):
        async def _slow(*args, **kwargs):
            await asyncio.sleep(1)

        llm = MagicMock()
        llm.ainvoke = _slow
        settings = llm_settings.model_copy(update={"llm_timeout_seconds": 0.01})
        generator = LangChainTextGenerator(settings, llm=llm)

        outcome = await generator.generate("prompt")

        assert isinstance(outcome, GenerationFailure)
        assert outcome.kind == FailureKind.TRANSIENT

    async def test_missing_credentials_is_configuration(self, test_settings):
        generator = LangChainTextGenerator(test_settings)

        assert generator.is_configured is False
        outcome = await generator.generate("prompt")

        assert isinstance(outcome, GenerationFailure)
        assert outcome.kind == FailureKind.CONFIGURATION

    async def test_unsupported_provider_is_configuration(self, llm_settings):
        settings = llm_settings.model_copy(update={"llm_provider": "bogus"})
        outcome = await LangChainTextGenerator(settings).generate("prompt")

        assert isinstance(outcome, GenerationFailure)
        assert outcome.kind == FailureKind.CONFIGURATION

    def test_model_name_follows_provider(self, llm_settings):
        azure = llm_settings.model_copy(update={
            "llm_provider": "azure_openai",
            "azure_openai_deployment": "legal-gpt",
        })
        assert LangChainTextGenerator(llm_settings).model_name == llm_settings.llm_model
        assert LangChainTextGenerator(azure).model_name == "legal-gpt"


@pytest.mark.unit
class TestBuildChatModel:

    def test_openai(self, llm_settings):
        from langchain_openai import ChatOpenAI
        assert isinstance(build_chat_model(llm_settings), ChatOpenAI)

    def test_azure_openai(self, llm_settings):
        from langchain_openai import AzureChatOpenAI
        settings = llm_settings.model_copy(update={
            "llm_provider": "azure_openai",
            "azure_openai_api_key": "azure-key",
            "azure_openai_endpoint": "https://legalease.openai.azure.com",
        })
        assert isinstance(build_chat_model(settings), AzureChatOpenAI)

    def test_unsupported(self, llm_settings):
        with pytest.raises(ValueError):
            build_chat_model(llm_settings.model_copy(update={"llm_provider": "bogus"}))
