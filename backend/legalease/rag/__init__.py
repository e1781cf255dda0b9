"""
Question-answering context selection.

    from legalease.rag import select_relevant
    excerpt = select_relevant(question, document_text)
"""

from legalease.rag.relevance import extract_keywords, select_relevant, split_sentences

__all__ = ["extract_keywords", "select_relevant", "split_sentences"]
