"""Second-pass reranking of fused results.

The lexical reranker boosts results whose content shares alphanumeric
tokens with the query. The boost is multiplicative and capped, so it can
reorder close neighbours without overturning the fused ranking.
"""

import re
from abc import ABC, abstractmethod

from knowledge.core.fusion import sort_by_score
from knowledge.entities import RetrievalResult

_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9]+")


def tokenize(text: str, case_sensitive: bool = True) -> list[str]:
    """Split text into contiguous ASCII alphanumeric runs."""
    tokens = _TOKEN_PATTERN.findall(text or "")
    if not case_sensitive:
        tokens = [token.lower() for token in tokens]
    return tokens


def term_overlap(query_tokens: list[str], content_tokens: list[str]) -> float:
    """Fraction of distinct query tokens present in the content, in [0, 1]."""
    query_set = set(query_tokens)
    if not query_set:
        return 0.0
    return len(query_set & set(content_tokens)) / len(query_set)


class Reranker(ABC):
    """Reorders an already fused result list."""

    @abstractmethod
    async def rerank(self, query: str, results: list[RetrievalResult]) -> list[RetrievalResult]:
        """Return results re-sorted best-first."""
        pass


class LexicalOverlapReranker(Reranker):
    """Boosts scores by query/content token overlap.

    score *= 1 + boost * overlap, so with the default boost of 0.2 a result
    gains at most 20%. Results sharing no token keep their score. Scores are
    updated in place.
    """

    def __init__(self, boost: float = 0.2, case_sensitive: bool = True) -> None:
        if boost < 0:
            raise ValueError(f"boost must be non-negative, got {boost}")
        self.boost = boost
        self.case_sensitive = case_sensitive

    async def rerank(self, query: str, results: list[RetrievalResult]) -> list[RetrievalResult]:
        query_tokens = tokenize(query, self.case_sensitive)

        for result in results:
            overlap = term_overlap(query_tokens, tokenize(result.content, self.case_sensitive))
            if overlap > 0:
                result.score *= 1.0 + overlap * self.boost

        return sort_by_score(results)
