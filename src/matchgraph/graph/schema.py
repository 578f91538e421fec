"""Neo4j schema management: constraints, lookup indexes and vector indexes.

Structural statements use ``IF NOT EXISTS`` and are safe to run repeatedly.
Vector indexes are created lazily, the first time a dimension node with an
embedding is written, and remembered per ``(index_name, dimensions)`` so each
one is requested at most once per process.  Schema commands run as separate
auto-commit statements, never inside a data transaction.
"""

from __future__ import annotations

import logging
import re

from neo4j import AsyncSession
from neo4j.exceptions import ClientError

from matchgraph.config import SearchConfig
from matchgraph.graph.connection import ConnectionManager
from matchgraph.models.nodes import ALL_DIMENSIONS
from matchgraph.models.nodes import Dimension

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constraint statements (Community Edition: uniqueness only)
# ---------------------------------------------------------------------------

_CONSTRAINTS = [
    "CREATE CONSTRAINT person_unique_id IF NOT EXISTS FOR (n:Person) REQUIRE n.id IS UNIQUE",
    "CREATE CONSTRAINT agent_unique_id IF NOT EXISTS FOR (n:Agent) REQUIRE n.agent_id IS UNIQUE",
    "CREATE CONSTRAINT place_unique_name IF NOT EXISTS FOR (n:Place) REQUIRE n.name IS UNIQUE",
] + [
    # Merged dimension values are shared between people: one node per value.
    (
        f"CREATE CONSTRAINT {dimension.kind.value}_{dimension.value}_unique_value "
        f"IF NOT EXISTS FOR (n:{dimension.label}) REQUIRE n.normalized_value IS UNIQUE"
    )
    for dimension in ALL_DIMENSIONS
    if not dimension.is_profile
]

# ---------------------------------------------------------------------------
# Index statements
# ---------------------------------------------------------------------------

_NODE_INDEXES = [
    "CREATE INDEX person_status IF NOT EXISTS FOR (n:Person) ON (n.status)",
    "CREATE INDEX account_lookup IF NOT EXISTS FOR (n:Account) ON (n.platform, n.identifier)",
    "CREATE INDEX persona_profile_value IF NOT EXISTS FOR (n:PersonaProfile) ON (n.normalized_value)",
    "CREATE INDEX desired_profile_value IF NOT EXISTS FOR (n:DesiredProfile) ON (n.normalized_value)",
]

_REL_INDEXES = [
    "CREATE INDEX matched_with_status IF NOT EXISTS FOR ()-[r:MATCHED_WITH]-() ON (r.status)",
]

_ALREADY_EXISTS_RE = re.compile(r"already exists|equivalent", re.IGNORECASE)
_SIMILARITY_FUNCTIONS = {"cosine", "euclidean"}


def _is_already_exists(exc: ClientError) -> bool:
    code = getattr(exc, "code", "") or ""
    return "EquivalentSchemaRule" in code or "AlreadyExists" in code or bool(
        _ALREADY_EXISTS_RE.search(str(exc))
    )


def vector_index_statement(
    dimension: Dimension,
    embedding_length: int,
    similarity_function: str = "cosine",
) -> str:
    """Return the DDL for *dimension*'s vector index.

    Index options cannot be parameterized in Cypher, so the dimension count
    is validated as a positive ``int`` before interpolation.  Label and index
    name come from the closed dimension enums.
    """
    if not isinstance(embedding_length, int) or isinstance(embedding_length, bool):
        msg = f"embedding_length must be an int, got {type(embedding_length).__name__}"
        raise ValueError(msg)
    if embedding_length <= 0:
        msg = f"embedding_length must be positive, got {embedding_length}"
        raise ValueError(msg)
    if similarity_function not in _SIMILARITY_FUNCTIONS:
        msg = f"Invalid similarity_function: {similarity_function!r}"
        raise ValueError(msg)
    return (
        f"CREATE VECTOR INDEX {dimension.index_name} IF NOT EXISTS "
        f"FOR (n:{dimension.label}) ON (n.embedding) "
        "OPTIONS {indexConfig: {"
        f"`vector.dimensions`: {embedding_length}, "
        f"`vector.similarity_function`: '{similarity_function}'"
        "}}"
    )


class IndexManager:
    """Creates structural indexes eagerly and vector indexes on first use."""

    def __init__(
        self,
        connection: ConnectionManager,
        config: SearchConfig | None = None,
    ) -> None:
        self._connection = connection
        self._config = config or SearchConfig()
        self._created: set[tuple[str, int]] = set()

    def is_cached(self, dimension: Dimension, embedding_length: int) -> bool:
        return (dimension.index_name, embedding_length) in self._created

    def clear_cache(self) -> None:
        self._created.clear()

    async def ensure_structural_indexes(self) -> bool:
        """Create all constraints and lookup indexes (idempotent)."""
        statements = _CONSTRAINTS + _NODE_INDEXES + _REL_INDEXES

        async def _op(session: AsyncSession) -> bool:
            for stmt in statements:
                try:
                    result = await session.run(stmt)
                    await result.consume()
                except ClientError as exc:
                    if not _is_already_exists(exc):
                        raise
                    logger.debug("Schema rule already present: %s", exc)
            return True

        ok = await self._connection.with_session(
            _op, operation="schema.ensure_structural_indexes"
        )
        return bool(ok)

    async def ensure_vector_index(self, dimension: Dimension, embedding_length: int) -> bool:
        """Create the vector index for *dimension* once per embedding length.

        Returns ``True`` when the index exists or was created.  Raises
        ``ValueError`` for a non-positive length.
        """
        statement = vector_index_statement(
            dimension, embedding_length, self._config.similarity_function
        )
        key = (dimension.index_name, embedding_length)
        if key in self._created:
            return True

        async def _op(session: AsyncSession) -> bool:
            try:
                result = await session.run(statement)
                await result.consume()
            except ClientError as exc:
                if not _is_already_exists(exc):
                    raise
                logger.debug("Vector index %s already exists", dimension.index_name)
            return True

        ok = await self._connection.with_session(
            _op, operation="schema.ensure_vector_index"
        )
        if ok:
            self._created.add(key)
            logger.info(
                "Vector index %s ready (%d dimensions)",
                dimension.index_name,
                embedding_length,
            )
            return True
        return False

    async def has_vector_index(self, dimension: Dimension) -> bool:
        """True when the store reports an index named for *dimension*."""
        if any(name == dimension.index_name for name, _ in self._created):
            return True

        async def _op(session: AsyncSession) -> bool:
            result = await session.run(
                "SHOW INDEXES YIELD name, type WHERE name = $name AND type = 'VECTOR' "
                "RETURN count(*) AS cnt",
                name=dimension.index_name,
            )
            record = await result.single()
            return record is not None and record["cnt"] > 0

        found = await self._connection.with_session(
            _op, operation="schema.has_vector_index", retry=False
        )
        return bool(found)

    async def await_indexes(self, timeout_seconds: int = 20) -> bool:
        """Block until all indexes are online (used before searching in tests)."""

        async def _op(session: AsyncSession) -> bool:
            result = await session.run(
                "CALL db.awaitIndexes($timeout)", timeout=int(timeout_seconds)
            )
            await result.consume()
            return True

        return bool(
            await self._connection.with_session(_op, operation="schema.await_indexes")
        )
