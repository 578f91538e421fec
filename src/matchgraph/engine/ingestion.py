"""Dimension ingestion: the entry point for extracted insights."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum

from matchgraph.audit import AuditEventType
from matchgraph.audit import AuditLogger
from matchgraph.engine.dedup import DuplicatePolicy
from matchgraph.engine.dedup import NeverDuplicate
from matchgraph.graph.store import GraphRepository
from matchgraph.models.nodes import clean_value
from matchgraph.models.nodes import Dimension

logger = logging.getLogger(__name__)


class RecordOutcome(str, Enum):
    recorded = "recorded"
    duplicate = "duplicate"
    skipped = "skipped"
    invalid = "invalid"


class DimensionRecorder:
    """Writes insights for a person, filtering duplicates first.

    ``skipped`` means the write did not happen: the person is unknown or
    the store is unavailable.
    """

    def __init__(
        self,
        repository: GraphRepository,
        duplicate_policy: DuplicatePolicy | None = None,
        *,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._repo = repository
        self._policy = duplicate_policy or NeverDuplicate()
        self._audit = audit_logger

    async def record_dimension(
        self,
        person_id: str,
        dimension: Dimension,
        text: str,
        embedding: Sequence[float] | None = None,
        evidence: str | None = None,
    ) -> RecordOutcome:
        value = clean_value(text or "")
        if not value:
            return RecordOutcome.invalid
        vector = list(embedding or [])

        # Profiles are replaced wholesale; there is nothing to deduplicate against.
        if not dimension.is_profile and await self._policy.is_duplicate(
            person_id, dimension, value, vector
        ):
            return RecordOutcome.duplicate

        if not await self._repo.upsert_dimension(person_id, dimension, value, vector, evidence):
            return RecordOutcome.skipped

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.DIMENSION_RECORDED,
                person_id=person_id,
                kind=dimension.kind.value,
                dimension=dimension.value,
                embedding_length=len(vector),
            )
        logger.debug("Recorded %s for %s", dimension.label, person_id)
        return RecordOutcome.recorded
