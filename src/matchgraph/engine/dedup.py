"""Duplicate-insight policies.

Before a non-profile insight is written, a ``DuplicatePolicy`` decides
whether the person already holds an equivalent value for that dimension.
"""

from __future__ import annotations

import logging
from abc import ABC
from abc import abstractmethod
from collections.abc import Sequence

from matchgraph.graph.search import SimilaritySearch
from matchgraph.graph.store import GraphRepository
from matchgraph.models.nodes import Dimension
from matchgraph.models.nodes import normalize_value

logger = logging.getLogger(__name__)


class DuplicatePolicy(ABC):
    """Decides whether an insight is already known for a person."""

    @abstractmethod
    async def is_duplicate(
        self,
        person_id: str,
        dimension: Dimension,
        text: str,
        embedding: Sequence[float],
    ) -> bool:
        """Return ``True`` if the insight should not be written."""


class NeverDuplicate(DuplicatePolicy):
    async def is_duplicate(
        self,
        person_id: str,
        dimension: Dimension,
        text: str,
        embedding: Sequence[float],
    ) -> bool:
        return False


class NormalizedTextPolicy(DuplicatePolicy):
    """Duplicate when the person already has the same normalized text."""

    def __init__(self, repository: GraphRepository) -> None:
        self._repo = repository

    async def is_duplicate(
        self,
        person_id: str,
        dimension: Dimension,
        text: str,
        embedding: Sequence[float],
    ) -> bool:
        wanted = normalize_value(text)
        existing = await self._repo.list_dimensions(person_id, dimension)
        return any(normalize_value(node.value) == wanted for node in existing)


class EmbeddingSimilarityPolicy(DuplicatePolicy):
    """Duplicate when one of the person's own values scores at or above *threshold*.

    Scores are the vector index's normalized similarity in ``[0, 1]``.
    Without an embedding nothing can be compared and the insight is kept.
    """

    def __init__(
        self,
        search: SimilaritySearch,
        threshold: float = 0.9,
        candidate_k: int = 100,
    ) -> None:
        self._search = search
        self.threshold = threshold
        self.candidate_k = candidate_k

    async def is_duplicate(
        self,
        person_id: str,
        dimension: Dimension,
        text: str,
        embedding: Sequence[float],
    ) -> bool:
        if not embedding:
            return False
        insights = await self._search.search_across_dimensions(
            [dimension], person_id, embedding, total_limit=1, candidate_k=self.candidate_k
        )
        if insights and insights[0].score >= self.threshold:
            logger.info(
                "Insight %r for %s is a near-duplicate of %r (score %.3f)",
                text,
                person_id,
                insights[0].value,
                insights[0].score,
            )
            return True
        return False
