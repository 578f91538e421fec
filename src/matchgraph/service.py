"""Engine facade wiring connection, schema, repository, search and coordination.

``MatchmakingService`` is the Python API external collaborators use: the
extraction step records insights, the matcher searches and creates matches,
the conversation layer advances matches, and a scheduler runs the sweep.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from matchgraph.audit import AuditEventType
from matchgraph.audit import AuditLogger
from matchgraph.config import AuditConfig
from matchgraph.config import CoordinationConfig
from matchgraph.config import GraphConfig
from matchgraph.config import RetryConfig
from matchgraph.config import SearchConfig
from matchgraph.coordination.events import CoordinationEvent
from matchgraph.coordination.machine import AdvanceResult
from matchgraph.coordination.machine import LinkHook
from matchgraph.coordination.machine import MatchCoordinator
from matchgraph.coordination.session import ConversationSession
from matchgraph.coordination.sweep import MatchSweeper
from matchgraph.coordination.sweep import SweepReport
from matchgraph.engine.dedup import DuplicatePolicy
from matchgraph.engine.dedup import EmbeddingSimilarityPolicy
from matchgraph.engine.ingestion import DimensionRecorder
from matchgraph.engine.ingestion import RecordOutcome
from matchgraph.graph.connection import ConnectionManager
from matchgraph.graph.connection import DriverFactory
from matchgraph.graph.schema import IndexManager
from matchgraph.graph.search import DimensionInsight
from matchgraph.graph.search import SearchScope
from matchgraph.graph.search import SimilarPerson
from matchgraph.graph.search import SimilaritySearch
from matchgraph.graph.store import GraphRepository
from matchgraph.models.nodes import Account
from matchgraph.models.nodes import dimension_for
from matchgraph.models.nodes import DimensionKind
from matchgraph.models.nodes import dimensions_of
from matchgraph.models.nodes import Person
from matchgraph.models.relations import HasAccount
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus

logger = logging.getLogger(__name__)


class MatchmakingService:
    """Owns one engine instance and its lifecycle."""

    def __init__(
        self,
        graph_config: GraphConfig | None = None,
        *,
        retry_config: RetryConfig | None = None,
        search_config: SearchConfig | None = None,
        coordination_config: CoordinationConfig | None = None,
        audit_config: AuditConfig | None = None,
        link_hook: LinkHook | None = None,
        duplicate_policy: DuplicatePolicy | None = None,
        driver_factory: DriverFactory | None = None,
    ) -> None:
        self.search_config = search_config or SearchConfig()
        self.coordination_config = coordination_config or CoordinationConfig()
        self.connection = ConnectionManager(
            graph_config, retry_config, driver_factory=driver_factory
        )
        self.indexes = IndexManager(self.connection, self.search_config)
        self.repository = GraphRepository(self.connection, self.indexes)
        self.search = SimilaritySearch(self.connection, self.indexes, self.search_config)
        self.audit = AuditLogger(audit_config) if audit_config is not None else None
        self.recorder = DimensionRecorder(
            self.repository,
            duplicate_policy
            or EmbeddingSimilarityPolicy(
                self.search,
                self.search_config.duplicate_threshold,
                self.search_config.duplicate_candidate_k,
            ),
            audit_logger=self.audit,
        )
        self.coordinator = MatchCoordinator(
            self.repository,
            self.coordination_config,
            link_hook=link_hook,
            audit_logger=self.audit,
        )
        self.sweeper = MatchSweeper(
            self.repository, self.coordination_config, audit_logger=self.audit
        )
        self.connection.add_connect_listener(self.indexes.ensure_structural_indexes)

    # ----- Lifecycle -----

    async def start(self) -> bool:
        """Connect and start supervision.  Returns whether the store is reachable."""
        await self.connection.start()
        if not self.connection.is_connected:
            logger.warning("Starting in degraded mode: graph store unreachable")
        return self.connection.is_connected

    async def stop(self) -> None:
        await self.connection.stop()

    @property
    def is_available(self) -> bool:
        return self.connection.is_connected

    # ----- People -----

    async def upsert_person(self, person: Person) -> bool:
        return await self.repository.upsert_person(person)

    async def link_account(
        self,
        person_id: str,
        account: Account,
        link: HasAccount | None = None,
    ) -> bool:
        return await self.repository.link_account(person_id, account, link)

    # ----- Dimensions -----

    async def record_dimension(
        self,
        person_id: str,
        kind: DimensionKind | str,
        dimension_name: str,
        text: str,
        embedding: Sequence[float] | None = None,
        evidence: str | None = None,
    ) -> RecordOutcome:
        """Record one extracted insight.  Unknown dimension names raise ``ValueError``."""
        dimension = dimension_for(kind, dimension_name)
        return await self.recorder.record_dimension(
            person_id, dimension, text, embedding, evidence
        )

    # ----- Search -----

    async def search_similar(
        self,
        kind: DimensionKind | str,
        dimension_name: str,
        query_embedding: Sequence[float],
        limit: int | None = None,
        *,
        exclude_ids: Sequence[str] = (),
        scope: SearchScope | None = None,
    ) -> list[SimilarPerson]:
        dimension = dimension_for(kind, dimension_name)
        return await self.search.search_similar(
            dimension, query_embedding, limit, exclude_ids=exclude_ids, scope=scope
        )

    async def search_across_dimensions(
        self,
        person_id: str,
        kind: DimensionKind | str,
        query_embedding: Sequence[float],
        total_limit: int | None = None,
        dimension_names: Sequence[str] | None = None,
    ) -> list[DimensionInsight]:
        """Search a person's own values of *kind* (all non-profile dimensions by default)."""
        kind = DimensionKind(kind)
        if dimension_names:
            dimensions = [dimension_for(kind, name) for name in dimension_names]
        else:
            dimensions = dimensions_of(kind)
        if total_limit is None:
            total_limit = (
                self.search_config.persona_total_limit
                if kind is DimensionKind.persona
                else self.search_config.desired_total_limit
            )
        return await self.search.search_across_dimensions(
            dimensions, person_id, query_embedding, total_limit
        )

    # ----- Matches -----

    async def has_existing_match(self, a_id: str, b_id: str) -> bool:
        return await self.repository.has_existing_match(a_id, b_id)

    async def create_match(
        self,
        from_id: str,
        to_id: str,
        reasoning: str,
        *,
        compatibility_score: float | None = None,
        agent_facilitated: bool = False,
        venue_context: str | None = None,
    ) -> bool:
        """Introduce two people.  ``False`` if they already share a match."""
        if await self.repository.has_existing_match(from_id, to_id):
            logger.info("Pair %s / %s already matched", from_id, to_id)
            return False
        created = await self.repository.create_match(
            from_id,
            to_id,
            reasoning,
            compatibility_score=compatibility_score,
            agent_facilitated=agent_facilitated,
            venue_context=venue_context,
        )
        if created and self.audit is not None:
            await self.audit.record(
                AuditEventType.MATCH_CREATED,
                from_id=from_id,
                to_id=to_id,
                compatibility_score=compatibility_score,
            )
        return created

    async def advance_match(
        self,
        session: ConversationSession,
        event: CoordinationEvent,
    ) -> AdvanceResult:
        return await self.coordinator.advance_match(session, event)

    async def list_active_matches(
        self,
        statuses: list[MatchStatus] | None = None,
    ) -> list[Match]:
        return await self.repository.list_active_matches(statuses)

    async def list_upcoming_meetings(
        self,
        hours: float | None = None,
        *,
        now: datetime | None = None,
    ) -> list[Match]:
        if hours is None:
            hours = self.coordination_config.upcoming_meeting_window_hours
        return await self.repository.list_upcoming_scheduled(hours, now=now)

    async def list_past_meetings(
        self,
        hours: float | None = None,
        *,
        now: datetime | None = None,
    ) -> list[Match]:
        if hours is None:
            hours = self.coordination_config.feedback_window_hours
        return await self.repository.list_past_scheduled(hours, now=now)

    async def sweep_matches(self, now: datetime | None = None) -> SweepReport:
        return await self.sweeper.sweep(now)
