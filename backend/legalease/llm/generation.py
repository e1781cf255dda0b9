"""
Generation Adapter — summary, risks, answers, clause explanations

Composes prompt rendering, the TextGenerator boundary and result shaping:

  ┌──────────────────────────────────────────────────────────┐
  │  GenerationAdapter.summarize() / .analyze_risks() / ...  │
  │       │                                                  │
  │       ▼                                                  │
  │  prompts.*_prompt()        ← truncation + language       │
  │       │                                                  │
  │       ▼                                                  │
  │  TextGenerator.generate()  ← GenerationOutcome           │
  │       │                                                  │
  │       ▼                                                  │
  │  Success → result(text)                                  │
  │  Empty / Failure → result(fallback text, failure=kind)   │
  └──────────────────────────────────────────────────────────┘

The adapter never raises for provider problems. A non-success outcome
produces a result whose text is a fixed, category-specific fallback message
and whose `failure` field names the category; `result.failed` is the
explicit signal, `result.raise_for_failure()` converts it to
GenerationError for callers that must surface a 502.
"""

from __future__ import annotations

import logging
from typing import Final

from legalease.llm import prompts
from legalease.llm.provider import (
    GenerationEmpty,
    GenerationFailure,
    GenerationOutcome,
    GenerationSuccess,
    TextGenerator,
)
from legalease.rag.relevance import select_relevant
from legalease.schemas.documents import (
    AnswerResult,
    ExplanationResult,
    Language,
    RiskResult,
    SummaryResult,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Fallback texts: deterministic per failure category
# ---------------------------------------------------------------------------

FALLBACK_MESSAGES: Final[dict[str, str]] = {
    "permission": (
        "AI SERVICE PERMISSION ERROR\n\n"
        "The configured credentials are not allowed to call the text-generation service. "
        "Grant the service account access to the model, then retry this document."
    ),
    "configuration": (
        "AI SERVICE CONFIGURATION NEEDED\n\n"
        "The text-generation service is not configured correctly (missing credentials, "
        "unknown model or endpoint). The analysis will appear here once it is configured."
    ),
    "transient": (
        "AI SERVICE TEMPORARILY UNAVAILABLE\n\n"
        "The text-generation service could not be reached or did not respond in time. "
        "Please retry in a few minutes."
    ),
    "empty": (
        "AI SERVICE RETURNED NO CONTENT\n\n"
        "The text-generation service answered without any text. Please retry."
    ),
}


def _failure_kind(outcome: GenerationOutcome) -> str | None:
    if isinstance(outcome, GenerationSuccess):
        return None
    if isinstance(outcome, GenerationEmpty):
        return "empty"
    return outcome.kind.value


def _text_or_fallback(outcome: GenerationOutcome) -> tuple[str, str | None]:
    kind = _failure_kind(outcome)
    if kind is None:
        return outcome.text, None   # type: ignore[union-attr]
    return FALLBACK_MESSAGES[kind], kind


class GenerationAdapter:
    """Stateless; one instance shared by the pipeline and the Q&A service."""

    def __init__(self, generator: TextGenerator) -> None:
        self._generator = generator

    @property
    def generator(self) -> TextGenerator:
        return self._generator

    @property
    def model_name(self) -> str:
        return self._generator.model_name

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    async def summarize(self, text: str, language: Language) -> SummaryResult:
        outcome = await self._generator.generate(prompts.summary_prompt(text, language))
        body, failure = _text_or_fallback(outcome)
        self._log("summary", language, outcome)
        return SummaryResult(
            summary=body,
            language=language,
            model=self.model_name,
            failure=failure,
        )

    async def analyze_risks(self, text: str, language: Language) -> RiskResult:
        outcome = await self._generator.generate(prompts.risk_prompt(text, language))
        body, failure = _text_or_fallback(outcome)
        self._log("risks", language, outcome)
        return RiskResult(
            risks=body,
            language=language,
            model=self.model_name,
            failure=failure,
        )

    async def answer_question(self, question: str, text: str, language: Language) -> AnswerResult:
        relevant = select_relevant(question, text)
        outcome  = await self._generator.generate(
            prompts.answer_prompt(question, relevant, text, language)
        )
        body, failure = _text_or_fallback(outcome)
        if failure is None and prompts.DISCLAIMER not in body:
            body = f"{body.rstrip()}\n\n{prompts.DISCLAIMER}"

        self._log("answer", language, outcome)
        return AnswerResult(
            question=question,
            answer=body,
            relevant_sections=bool(relevant),
            language=language,
            model=self.model_name,
            failure=failure,
        )

    async def explain_clause(self, clause: str, language: Language) -> ExplanationResult:
        outcome = await self._generator.generate(prompts.clause_prompt(clause, language))
        body, failure = _text_or_fallback(outcome)
        self._log("clause", language, outcome)
        return ExplanationResult(
            original_clause=clause,
            explanation=body,
            language=language,
            model=self.model_name,
            failure=failure,
        )

    def _log(self, task: str, language: Language, outcome: GenerationOutcome) -> None:
        if isinstance(outcome, GenerationSuccess):
            logger.info(
                "Generation | task=%s language=%s model=%s ok chars=%d",
                task, Language(language).value, self.model_name, len(outcome.text),
            )
        elif isinstance(outcome, GenerationFailure):
            logger.warning(
                "Generation | task=%s language=%s model=%s failed kind=%s: %s",
                task, Language(language).value, self.model_name, outcome.kind.value, outcome.message,
            )
        else:
            logger.warning(
                "Generation | task=%s language=%s model=%s returned empty text",
                task, Language(language).value, self.model_name,
            )
