"""
Relevance Selector — keyword-based excerpt for question answering

Given a question and the extracted document text, pick the first few
sentences that share a keyword with the question. The excerpt is placed in
the answer prompt ahead of the (truncated) full text so the model sees the
most relevant clauses first, even for documents longer than the context cap.

Algorithm:
  1. Split the document on runs of '.', '!' or '?'.
  2. Keep sentence units longer than 20 characters after stripping.
  3. Keywords = lowercased whitespace tokens of the question, stripped of
     surrounding punctuation, longer than 3 characters, minus a stoplist of
     interrogatives and modal verbs.
  4. Keep sentences containing any keyword as a case-insensitive substring.
  5. First max_sentences kept sentences, joined by ". ", truncated to max_chars.

Kept sentences are whitespace-stripped before joining, so line breaks and
indentation around a sentence never reach the excerpt.

Pure function: no I/O, deterministic for a given input.
"""

from __future__ import annotations

import re
import string

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")

MIN_SENTENCE_CHARS = 20
MIN_KEYWORD_CHARS  = 3

STOPWORDS: frozenset[str] = frozenset(
    {"what", "when", "where", "how", "why", "does", "will", "can", "should"}
)

_STRIP_CHARS = string.punctuation + "“”‘’«»"


def extract_keywords(question: str) -> list[str]:
    """Lowercased question tokens that are long enough and not stopwords."""
    keywords: list[str] = []
    for token in question.lower().split():
        word = token.strip(_STRIP_CHARS)
        if len(word) > MIN_KEYWORD_CHARS and word not in STOPWORDS:
            keywords.append(word)
    return keywords


def split_sentences(document_text: str) -> list[str]:
    """Sentence units longer than MIN_SENTENCE_CHARS, stripped, in document order."""
    units = (s.strip() for s in _SENTENCE_SPLIT_RE.split(document_text))
    return [s for s in units if len(s) > MIN_SENTENCE_CHARS]


def select_relevant(
    question:      str,
    document_text: str,
    max_sentences: int = 5,
    max_chars:     int = 2000,
) -> str:
    """
    Return an excerpt of document_text relevant to question.

    Returns "" when the question has no usable keywords or nothing matches.
    """
    keywords = extract_keywords(question)
    if not keywords or not document_text:
        return ""

    matches: list[str] = []
    for sentence in split_sentences(document_text):
        lowered = sentence.lower()
        if any(k in lowered for k in keywords):
            matches.append(sentence)
            if len(matches) == max_sentences:
                break

    return ". ".join(matches)[:max_chars]
