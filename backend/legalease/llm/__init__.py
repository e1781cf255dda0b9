"""
LLM layer.

    from legalease.llm import GenerationAdapter, LangChainTextGenerator

    adapter = GenerationAdapter(LangChainTextGenerator(settings))
    summary = await adapter.summarize(text, Language.ENGLISH)
    if summary.failed:
        ...
"""

from legalease.llm.generation import FALLBACK_MESSAGES, GenerationAdapter
from legalease.llm.provider import (
    FailureKind,
    GenerationEmpty,
    GenerationFailure,
    GenerationOutcome,
    GenerationSuccess,
    LangChainTextGenerator,
    TextGenerator,
)

__all__ = [
    "FALLBACK_MESSAGES",
    "FailureKind",
    "GenerationAdapter",
    "GenerationEmpty",
    "GenerationFailure",
    "GenerationOutcome",
    "GenerationSuccess",
    "LangChainTextGenerator",
    "TextGenerator",
]
