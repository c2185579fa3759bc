"""Rank fusion of vector and graph result lists.

Reciprocal Rank Fusion scores each result by its position, not its raw
score, so lists with incomparable score scales can be merged:

    RRF(d) = sum over lists containing d of 1 / (k + rank(d))

rank is the 1-based position in the list as supplied.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from knowledge.config.schema import DEFAULT_RRF_K
from knowledge.entities import RetrievalResult, RetrievalSource


def sort_by_score(results: list[RetrievalResult]) -> list[RetrievalResult]:
    """Sort in place by score descending, ties broken by ascending id."""
    results.sort(key=lambda r: (-r.score, r.id))
    return results


class FusionStrategy(ABC):
    """Merges two ranked lists into one."""

    @abstractmethod
    def fuse(
        self,
        vector_results: Sequence[RetrievalResult],
        graph_results: Sequence[RetrievalResult],
    ) -> list[RetrievalResult]:
        """Return the merged list sorted best-first."""
        pass


class ReciprocalRankFusion(FusionStrategy):
    """RRF over the vector and graph lists.

    An id present in both lists is reported once, with the sum of both
    contributions, metadata merged (graph keys win), and source HYBRID.
    Inputs are never mutated; every returned result is a copy.
    """

    def __init__(self, k: float = DEFAULT_RRF_K) -> None:
        if k <= 0:
            raise ValueError(f"RRF constant k must be positive, got {k}")
        self.k = float(k)

    def fuse(
        self,
        vector_results: Sequence[RetrievalResult],
        graph_results: Sequence[RetrievalResult],
    ) -> list[RetrievalResult]:
        fused: dict[str, RetrievalResult] = {}

        self._accumulate(fused, vector_results, RetrievalSource.VECTOR)
        self._accumulate(fused, graph_results, RetrievalSource.GRAPH)

        return sort_by_score(list(fused.values()))

    def _accumulate(
        self,
        fused: dict[str, RetrievalResult],
        results: Sequence[RetrievalResult],
        source: RetrievalSource,
    ) -> None:
        seen: set[str] = set()
        for position, result in enumerate(results):
            # A repeated id within one list keeps its best (first) rank only
            if result.id in seen:
                continue
            seen.add(result.id)

            rrf_score = 1.0 / (self.k + position + 1)
            existing = fused.get(result.id)

            if existing is None:
                fused[result.id] = RetrievalResult(
                    id=result.id,
                    content=result.content,
                    score=rrf_score,
                    metadata=dict(result.metadata),
                    source=source,
                )
                continue

            existing.score += rrf_score
            existing.metadata.update(result.metadata)
            existing.source = RetrievalSource.HYBRID
