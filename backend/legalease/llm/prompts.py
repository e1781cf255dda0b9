"""
Prompt templates for the four generation tasks.

Each template is rendered with str.format; substituted values are never
re-interpreted, so braces inside document text are safe.

Input caps (characters, applied before rendering):
  summary / risks   : DOCUMENT_CHAR_LIMIT      (15 000)
  answer full text  : QA_CONTEXT_CHAR_LIMIT    (10 000)
"""

from __future__ import annotations

from typing import Final

from legalease.schemas.documents import Language

DOCUMENT_CHAR_LIMIT:   Final[int] = 15_000
QA_CONTEXT_CHAR_LIMIT: Final[int] = 10_000

DISCLAIMER: Final[str] = (
    "**Disclaimer**: This is informational analysis only and not legal advice. "
    "For legal guidance specific to your situation, please consult a qualified attorney."
)

_LANGUAGE_INSTRUCTIONS: Final[dict[Language, str]] = {
    Language.ENGLISH: "Please respond in English.",
    Language.HINDI:   "Please respond in Hindi (हिंदी में उत्तर दें).",
}


def language_instruction(language: Language) -> str:
    return _LANGUAGE_INSTRUCTIONS[Language(language)]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_SUMMARY_TEMPLATE: Final[str] = """\
You are a legal expert helping ordinary citizens understand legal documents.
{language_instruction}

Analyze this legal document and provide:

1. DOCUMENT TYPE: What kind of legal document this is
2. KEY PARTIES: Who are the main parties involved
3. MAIN PURPOSE: What is the primary purpose of this document
4. KEY TERMS: The most important terms, conditions, and obligations
5. IMPORTANT DATES: Critical dates, deadlines, or time periods
6. FINANCIAL TERMS: Money, fees, penalties, or financial obligations
7. RIGHTS & OBLIGATIONS: What each party can do and must do
8. TERMINATION CONDITIONS: How and when the agreement can end
9. DISPUTE RESOLUTION: How conflicts will be resolved

Format your response as clear bullet points under each section.
Use simple, everyday language that a non-lawyer can understand.

Document text:
{document_text}

Please provide a comprehensive but concise analysis.
"""

_RISK_TEMPLATE: Final[str] = """\
You are a legal expert specializing in risk analysis. Identify potential risks and red flags in this legal document.
{language_instruction}

Provide a risk analysis covering:

1. HIGH-RISK CLAUSES: Clauses that pose significant legal or financial risks
2. FINANCIAL RISKS: Hidden costs, penalties, or unfavorable financial terms
3. UNFAIR TERMS: One-sided obligations that heavily favor one party
4. UNCLEAR LANGUAGE: Vague or ambiguous terms that could cause disputes
5. MISSING PROTECTIONS: Protections or rights that should be included
6. TERMINATION RISKS: Unfavorable termination conditions or penalties
7. LIABILITY CONCERNS: Excessive liability or indemnification requirements
8. COMPLIANCE ISSUES: Terms that might conflict with laws or regulations

For each risk, indicate:
- Risk Level: HIGH, MEDIUM, or LOW
- Brief explanation of why it is risky
- Potential consequences

Format as clear bullet points under each category.
Use simple language that non-lawyers can understand.

Document text:
{document_text}

Provide a thorough but concise risk analysis.
"""

_ANSWER_TEMPLATE: Final[str] = """\
You are a legal expert helping people understand legal documents. A user has asked a specific question about their legal document.
{language_instruction}

User's Question: "{question}"

Based on this legal document, provide an answer that covers:

1. DIRECT ANSWER: Answer the specific question clearly and directly
2. RELEVANT CLAUSES: Quote and explain the clauses that relate to the question
3. IMPLICATIONS: What this means in practical terms
4. IMPORTANT DETAILS: Important dates, conditions, or requirements
5. POTENTIAL ISSUES: Problems or things to watch out for
6. NEXT STEPS: What the user should do or consider

Use simple, clear language that a non-lawyer can understand.
Always include relevant quotes from the document to support your answer.

Relevant document sections:
{relevant_sections}

Full document context (if needed):
{document_text}
"""

_CLAUSE_TEMPLATE: Final[str] = """\
You are a legal expert who specializes in explaining complex legal language in simple terms.
{language_instruction}

Explain this legal clause so that anyone can understand it:

"{clause}"

Your explanation should include:

1. SIMPLE EXPLANATION: What the clause means in everyday language
2. KEY OBLIGATIONS: What each party has to do because of this clause
3. RIGHTS GRANTED: What rights or protections the clause provides
4. CONSEQUENCES: What happens if someone does not follow it
5. PRACTICAL IMPACT: How it affects the people involved in real life
6. POTENTIAL RISKS: Risks or downsides to be aware of
7. IMPORTANT NOTES: Critical details, exceptions, or conditions

Avoid legal jargon and explain any technical terms you must use.
Format your response with headings and bullet points where appropriate.
"""


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

def summary_prompt(document_text: str, language: Language) -> str:
    return _SUMMARY_TEMPLATE.format(
        language_instruction=language_instruction(language),
        document_text=document_text[:DOCUMENT_CHAR_LIMIT],
    )


def risk_prompt(document_text: str, language: Language) -> str:
    return _RISK_TEMPLATE.format(
        language_instruction=language_instruction(language),
        document_text=document_text[:DOCUMENT_CHAR_LIMIT],
    )


def answer_prompt(question: str, relevant_sections: str, document_text: str, language: Language) -> str:
    return _ANSWER_TEMPLATE.format(
        language_instruction=language_instruction(language),
        question=question,
        relevant_sections=relevant_sections or "(no matching sections found)",
        document_text=document_text[:QA_CONTEXT_CHAR_LIMIT],
    )


def clause_prompt(clause: str, language: Language) -> str:
    return _CLAUSE_TEMPLATE.format(
        language_instruction=language_instruction(language),
        clause=clause,
    )
