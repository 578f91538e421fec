"""Per-dimension vector similarity search.

Queries the dimension's vector index for an oversampled window of raw hits,
joins each hit to the people owning it and applies the scope filters.  Hits
removed by filtering are not backfilled from beyond the oversampled window,
so a heavily filtered query can return fewer than ``limit`` people even when
more eligible ones exist further down the ranking.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from neo4j import AsyncSession
from pydantic import BaseModel
from pydantic import Field

from matchgraph.config import SearchConfig
from matchgraph.graph.connection import ConnectionManager
from matchgraph.graph.schema import IndexManager
from matchgraph.models.nodes import Dimension
from matchgraph.models.nodes import PersonStatus

logger = logging.getLogger(__name__)


class SearchScope(BaseModel):
    """Filters applied to candidate people after the index lookup."""

    statuses: list[PersonStatus] = Field(
        default_factory=lambda: [PersonStatus.active],
        description="Only people in one of these statuses are returned.",
    )
    agent_id: str | None = Field(
        default=None,
        description="Only people managed by this agent.",
    )
    allow_ids: list[str] | None = Field(
        default=None,
        description="If set, only these people are eligible.",
    )


class SimilarPerson(BaseModel):
    """A candidate person and the best-scoring value that matched."""

    person_id: str
    value: str
    score: float
    dimension: str


class DimensionInsight(BaseModel):
    """One of a person's own dimension values similar to a query."""

    value: str
    dimension: str
    kind: str
    score: float


_SIMILAR_PEOPLE_QUERY = (
    "CALL db.index.vector.queryNodes($index_name, $k, $embedding) YIELD node, score "
    "MATCH (p:Person)-[:HAS_DIMENSION]->(node) "
    "WHERE p.status IN $statuses "
    "  AND NOT p.id IN $exclude_ids "
    "  AND ($allow_ids IS NULL OR p.id IN $allow_ids) "
    "  AND ($agent_id IS NULL OR EXISTS { "
    "      MATCH (p)-[:MANAGED_BY]->(:Agent {agent_id: $agent_id}) }) "
    "RETURN p.id AS person_id, node.value AS value, score "
    "ORDER BY score DESC"
)

_OWN_INSIGHTS_QUERY = (
    "CALL db.index.vector.queryNodes($index_name, $k, $embedding) YIELD node, score "
    "MATCH (:Person {id: $person_id})-[:HAS_DIMENSION]->(node) "
    "RETURN node.value AS value, score "
    "ORDER BY score DESC "
    "LIMIT $limit"
)


class SimilaritySearch:
    """Vector search over dimension nodes."""

    def __init__(
        self,
        connection: ConnectionManager,
        indexes: IndexManager,
        config: SearchConfig | None = None,
    ) -> None:
        self._connection = connection
        self._indexes = indexes
        self._config = config or SearchConfig()

    async def search_similar(
        self,
        dimension: Dimension,
        query_embedding: Sequence[float],
        limit: int | None = None,
        *,
        exclude_ids: Sequence[str] = (),
        scope: SearchScope | None = None,
    ) -> list[SimilarPerson]:
        """Rank people by how close their *dimension* values are to the query."""
        limit = self._config.default_limit if limit is None else limit
        if limit <= 0 or not query_embedding:
            return []
        scope = scope or SearchScope()
        if not await self._indexes.has_vector_index(dimension):
            logger.info("No vector index for %s yet; nothing to search", dimension.index_name)
            return []

        k = limit * max(1, self._config.oversample_factor)

        async def _op(session: AsyncSession) -> list[dict]:
            result = await session.run(
                _SIMILAR_PEOPLE_QUERY,
                index_name=dimension.index_name,
                k=k,
                embedding=list(query_embedding),
                statuses=[PersonStatus(s).value for s in scope.statuses],
                exclude_ids=list(exclude_ids),
                allow_ids=list(scope.allow_ids) if scope.allow_ids is not None else None,
                agent_id=scope.agent_id,
            )
            return [record.data() async for record in result]

        records = await self._connection.with_session(_op, operation="search.similar")
        if not records:
            return []

        best: dict[str, SimilarPerson] = {}
        for record in records:
            person_id = record["person_id"]
            current = best.get(person_id)
            if current is None or record["score"] > current.score:
                best[person_id] = SimilarPerson(
                    person_id=person_id,
                    value=record["value"],
                    score=record["score"],
                    dimension=dimension.value,
                )
        ranked = sorted(best.values(), key=lambda hit: hit.score, reverse=True)
        return ranked[:limit]

    async def search_across_dimensions(
        self,
        dimensions: Sequence[Dimension],
        person_id: str,
        query_embedding: Sequence[float],
        total_limit: int,
        *,
        candidate_k: int | None = None,
    ) -> list[DimensionInsight]:
        """Find the person's own values closest to the query, across dimensions.

        Each dimension gets ``ceil(total_limit / len(dimensions))`` slots.
        The index is asked for at least *candidate_k* nearest nodes before
        they are narrowed to the person.
        Dimensions without a vector index, or whose query fails, are skipped.
        """
        if total_limit <= 0 or not dimensions or not query_embedding:
            return []
        per_dimension = math.ceil(total_limit / len(dimensions))
        k = max(per_dimension * max(1, self._config.oversample_factor), candidate_k or 0)

        insights: list[DimensionInsight] = []
        for dimension in dimensions:
            if not await self._indexes.has_vector_index(dimension):
                logger.debug("Skipping %s: no vector index", dimension.index_name)
                continue

            async def _op(session: AsyncSession, dimension: Dimension = dimension) -> list[dict]:
                result = await session.run(
                    _OWN_INSIGHTS_QUERY,
                    index_name=dimension.index_name,
                    k=k,
                    embedding=list(query_embedding),
                    person_id=person_id,
                    limit=per_dimension,
                )
                return [record.data() async for record in result]

            records = await self._connection.with_session(
                _op, operation="search.across_dimensions"
            )
            if records is None:
                logger.warning("Skipping %s: search failed", dimension.index_name)
                continue
            insights.extend(
                DimensionInsight(
                    value=record["value"],
                    dimension=dimension.value,
                    kind=dimension.kind.value,
                    score=record["score"],
                )
                for record in records
            )

        insights.sort(key=lambda insight: insight.score, reverse=True)
        return insights[:total_limit]
