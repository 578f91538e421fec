"""Neo4j-backed repository for people, dimensions and matches.

``GraphRepository`` runs every statement through
``ConnectionManager.with_session``, so unavailability never raises: writes
return ``False`` (or ``None``), reads return ``None`` or ``[]``.  Callers that
need to tell "not found" from "store unavailable" check
``ConnectionManager.is_connected``.

Multi-step match mutations are single statements.  Each one takes the write
lock on the relationship (or both people) with ``SET ... REMOVE`` before
reading the state it decides on, which linearizes concurrent updates to
the same pair.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from datetime import timedelta
from enum import Enum
from typing import Any

from neo4j import AsyncSession
from neo4j import time as neo4j_time

from matchgraph.graph.connection import ConnectionManager
from matchgraph.graph.schema import IndexManager
from matchgraph.models.nodes import Account
from matchgraph.models.nodes import Agent
from matchgraph.models.nodes import clean_value
from matchgraph.models.nodes import DesiredDimension
from matchgraph.models.nodes import Dimension
from matchgraph.models.nodes import DimensionKind
from matchgraph.models.nodes import DimensionNode
from matchgraph.models.nodes import normalize_value
from matchgraph.models.nodes import Person
from matchgraph.models.nodes import PersonaDimension
from matchgraph.models.nodes import PersonStatus
from matchgraph.models.nodes import Place
from matchgraph.models.relations import ACTIVE_STATUSES
from matchgraph.models.relations import Clue
from matchgraph.models.relations import FeedbackEntry
from matchgraph.models.relations import HasAccount
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus
from matchgraph.models.relations import MEETING_STATUSES
from matchgraph.models.relations import PlaceRole
from matchgraph.models.relations import TERMINAL_STATUSES
from matchgraph.timeutil import parse_iso
from matchgraph.timeutil import utcnow

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Query safety guards
# ---------------------------------------------------------------------------

# Properties callers may set through ``update_match_properties``.
_UPDATABLE_MATCH_FIELDS = {
    "status",
    "reasoning",
    "compatibility_score",
    "venue",
    "venue_context",
    "proposed_time",
    "proposal_sent_at",
    "proposed_by",
}
_CLUE_FIELDS = {"initiator_clues", "recipient_clues"}
_DEFAULT_EVIDENCE = "Extracted from automated analysis"
_ACTIVE = sorted(s.value for s in ACTIVE_STATUSES)
_TERMINAL = sorted(s.value for s in TERMINAL_STATUSES)
_MEETING = sorted(s.value for s in MEETING_STATUSES)


def _require_allowed(value: str, allowed: set[str], *, field_name: str) -> str:
    if value not in allowed:
        msg = f"Invalid {field_name}: {value!r}"
        raise ValueError(msg)
    return value


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _neo4j_to_python(value: object) -> object:
    """Convert Neo4j temporal types to Python stdlib equivalents."""
    if isinstance(value, neo4j_time.DateTime):
        return value.to_native()
    if isinstance(value, neo4j_time.Date):
        return value.to_native()
    return value


def _convert_props(props: dict) -> dict:
    """Convert all Neo4j types in a property dict to Python types."""
    return {k: _neo4j_to_python(v) for k, v in props.items()}


def _serialize_value(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _match_from_record(record: dict) -> Match:
    props = _convert_props(record["props"])
    return Match.model_validate(
        {**props, "from_id": record["from_id"], "to_id": record["to_id"]}
    )


def _dimension_from_record(record: dict, dimension: Dimension) -> DimensionNode:
    return DimensionNode(
        dimension=dimension.value,
        kind=dimension.kind,
        value=record["value"],
        embedding=record.get("embedding") or [],
        evidence=record.get("evidence"),
        created_at=_neo4j_to_python(record.get("created_at")),
    )


# Resets the matched endpoints of ``r`` to active when ``r`` is terminal and
# no other non-terminal match still touches them.  Expects ``a``, ``b`` and
# ``r`` in scope; ``{carry}`` lists extra columns to keep.
_RELEASE_PARTICIPANTS = """
WITH a, b, r{carry}
UNWIND [a, b] AS p
OPTIONAL MATCH (p)-[o:MATCHED_WITH]-()
WHERE o.status IN $active_statuses
WITH r, p, count(o) AS open_matches{carry}
FOREACH (_ IN CASE
    WHEN r.status IN $terminal_statuses AND p.status = 'matched' AND open_matches = 0
    THEN [1] ELSE [] END |
    SET p.status = 'active', p.updated_at = $now)
WITH r, count(p) AS released{carry}
RETURN properties(r) AS props{carry}
"""


def _release_clause(*carry: str) -> str:
    suffix = "".join(f", {name}" for name in carry)
    return _RELEASE_PARTICIPANTS.format(carry=suffix)


class FeedbackOutcome(str, Enum):
    """Result of an atomic feedback append."""

    recorded = "recorded"
    completed = "completed"
    duplicate = "duplicate"
    not_allowed = "not_allowed"


# ---------------------------------------------------------------------------
# GraphRepository
# ---------------------------------------------------------------------------


class GraphRepository:
    """Async CRUD interface to the matching graph."""

    def __init__(
        self,
        connection: ConnectionManager,
        indexes: IndexManager | None = None,
    ) -> None:
        self._connection = connection
        self._indexes = indexes or IndexManager(connection)

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def indexes(self) -> IndexManager:
        return self._indexes

    @property
    def is_available(self) -> bool:
        return self._connection.is_connected

    async def _fetch(
        self,
        operation: str,
        query: str,
        **params: Any,
    ) -> list[dict] | None:
        """Run *query* and return its records as dicts, ``None`` if unavailable."""

        async def _op(session: AsyncSession) -> list[dict]:
            result = await session.run(query, **params)
            return [record.data() async for record in result]

        return await self._connection.with_session(_op, operation=operation)

    async def _fetch_one(self, operation: str, query: str, **params: Any) -> dict | None:
        records = await self._fetch(operation, query, **params)
        if not records:
            return None
        return records[0]

    # ----- People -----

    async def upsert_person(self, person: Person) -> bool:
        """Create or update a person.  Status is only set on creation."""
        query = (
            "MERGE (p:Person {id: $id}) "
            "ON CREATE SET p.created_at = $created_at, p.status = $status "
            "SET p.name = coalesce($name, p.name), "
            "    p.metadata = coalesce($metadata, p.metadata), "
            "    p.updated_at = $now "
            "RETURN p.id AS id"
        )
        record = await self._fetch_one(
            "graph.upsert_person",
            query,
            id=person.id,
            name=person.name,
            status=person.status.value,
            metadata=json.dumps(person.metadata) if person.metadata else None,
            created_at=person.created_at,
            now=utcnow(),
        )
        return record is not None

    async def get_person(self, person_id: str) -> Person | None:
        record = await self._fetch_one(
            "graph.get_person",
            "MATCH (p:Person {id: $id}) RETURN properties(p) AS props",
            id=person_id,
        )
        if record is None:
            return None
        return Person.model_validate(_convert_props(record["props"]))

    async def update_person_status(self, person_id: str, status: PersonStatus) -> bool:
        record = await self._fetch_one(
            "graph.update_person_status",
            "MATCH (p:Person {id: $id}) SET p.status = $status, p.updated_at = $now "
            "RETURN p.id AS id",
            id=person_id,
            status=PersonStatus(status).value,
            now=utcnow(),
        )
        return record is not None

    async def deactivate_person(self, person_id: str) -> bool:
        """Mark a person inactive.  People are never deleted."""
        return await self.update_person_status(person_id, PersonStatus.inactive)

    # ----- Dimensions -----

    async def upsert_dimension(
        self,
        person_id: str,
        dimension: Dimension,
        value: str,
        embedding: list[float] | None = None,
        evidence: str | None = None,
    ) -> bool:
        """Write one dimension value for a person.

        Profile dimensions are replaced atomically (at most one per person
        and kind).  Other dimensions are merged by normalized value and the
        ownership edge's evidence is refreshed.  When the stored node carries
        an embedding, its vector index is ensured afterwards in a separate
        statement.
        """
        text = clean_value(value)
        if not text:
            msg = "Dimension value must not be blank"
            raise ValueError(msg)
        label = dimension.label
        params = {
            "person_id": person_id,
            "value": text,
            "normalized": normalize_value(text),
            "embedding": list(embedding) if embedding else None,
            "evidence": evidence or _DEFAULT_EVIDENCE,
            "now": utcnow(),
        }
        if dimension.is_profile:
            query = (
                "MATCH (p:Person {id: $person_id}) "
                "SET p._lock = true "
                "REMOVE p._lock "
                "WITH p "
                f"OPTIONAL MATCH (p)-[:HAS_DIMENSION]->(old:{label}) "
                "WITH p, collect(old) AS olds "
                "FOREACH (o IN olds | DETACH DELETE o) "
                f"CREATE (n:{label} {{value: $value, normalized_value: $normalized, "
                "embedding: $embedding, created_at: $now}) "
                "CREATE (p)-[:HAS_DIMENSION {evidence: $evidence, occurrences: 1, "
                "created_at: $now, updated_at: $now}]->(n) "
                "RETURN size(coalesce(n.embedding, [])) AS length"
            )
        else:
            query = (
                "MATCH (p:Person {id: $person_id}) "
                f"MERGE (n:{label} {{normalized_value: $normalized}}) "
                "ON CREATE SET n.value = $value, n.created_at = $now "
                "SET n.embedding = coalesce(n.embedding, $embedding) "
                "MERGE (p)-[r:HAS_DIMENSION]->(n) "
                "ON CREATE SET r.created_at = $now, r.occurrences = 0 "
                "SET r.evidence = $evidence, r.updated_at = $now, "
                "    r.occurrences = r.occurrences + 1 "
                "RETURN size(coalesce(n.embedding, [])) AS length"
            )
        record = await self._fetch_one("graph.upsert_dimension", query, **params)
        if record is None:
            if self._connection.is_connected:
                logger.info("Cannot record %s for unknown person %s", label, person_id)
            return False

        length = record["length"]
        if length > 0:
            await self._indexes.ensure_vector_index(dimension, length)
        return True

    async def get_profile(self, person_id: str, kind: DimensionKind) -> DimensionNode | None:
        """Return the person's profile node of *kind*, if any."""
        dimension = (
            PersonaDimension.profile
            if DimensionKind(kind) is DimensionKind.persona
            else DesiredDimension.profile
        )
        nodes = await self.list_dimensions(person_id, dimension)
        return nodes[0] if nodes else None

    async def list_dimensions(self, person_id: str, dimension: Dimension) -> list[DimensionNode]:
        query = (
            f"MATCH (:Person {{id: $person_id}})-[r:HAS_DIMENSION]->(n:{dimension.label}) "
            "RETURN n.value AS value, n.embedding AS embedding, "
            "       r.evidence AS evidence, n.created_at AS created_at "
            "ORDER BY n.created_at DESC"
        )
        records = await self._fetch("graph.list_dimensions", query, person_id=person_id)
        return [_dimension_from_record(r, dimension) for r in records or []]

    # ----- Accounts, agents and places -----

    async def upsert_account(self, account: Account) -> bool:
        query = (
            "MERGE (acc:Account {platform: $platform, identifier: $identifier}) "
            "ON CREATE SET acc.created_at = $now "
            "SET acc.username = coalesce($username, acc.username), "
            "    acc.display_name = coalesce($display_name, acc.display_name), "
            "    acc.channel_id = coalesce($channel_id, acc.channel_id), "
            "    acc.updated_at = $now "
            "RETURN acc.identifier AS identifier"
        )
        record = await self._fetch_one(
            "graph.upsert_account", query, **account.model_dump(), now=utcnow()
        )
        return record is not None

    async def link_account(
        self,
        person_id: str,
        account: Account,
        link: HasAccount | None = None,
    ) -> bool:
        """Merge *account* and attach it to the person."""
        link = link or HasAccount()
        if not await self.upsert_account(account):
            return False
        query = (
            "MATCH (p:Person {id: $person_id}) "
            "MATCH (acc:Account {platform: $platform, identifier: $identifier}) "
            "MERGE (p)-[h:HAS_ACCOUNT]->(acc) "
            "ON CREATE SET h.created_at = $now "
            "SET h.status = $status, h.is_primary = $is_primary, h.updated_at = $now "
            "RETURN p.id AS id"
        )
        record = await self._fetch_one(
            "graph.link_account",
            query,
            person_id=person_id,
            platform=account.platform,
            identifier=account.identifier,
            status=link.status.value,
            is_primary=link.is_primary,
            now=utcnow(),
        )
        return record is not None

    async def get_person_accounts(self, person_id: str) -> list[Account]:
        query = (
            "MATCH (:Person {id: $person_id})-[h:HAS_ACCOUNT]->(acc:Account) "
            "RETURN properties(acc) AS props ORDER BY h.is_primary DESC"
        )
        records = await self._fetch("graph.get_person_accounts", query, person_id=person_id)
        return [Account.model_validate(_convert_props(r["props"])) for r in records or []]

    async def find_person_by_account(self, platform: str, identifier: str) -> Person | None:
        query = (
            "MATCH (p:Person)-[:HAS_ACCOUNT]->"
            "(:Account {platform: $platform, identifier: $identifier}) "
            "RETURN properties(p) AS props LIMIT 1"
        )
        record = await self._fetch_one(
            "graph.find_person_by_account", query, platform=platform, identifier=identifier
        )
        if record is None:
            return None
        return Person.model_validate(_convert_props(record["props"]))

    async def upsert_agent(self, agent: Agent) -> bool:
        query = (
            "MERGE (ag:Agent {agent_id: $agent_id}) "
            "ON CREATE SET ag.created_at = $now "
            "SET ag.name = coalesce($name, ag.name), "
            "    ag.username = coalesce($username, ag.username), "
            "    ag.description = coalesce($description, ag.description), "
            "    ag.updated_at = $now "
            "RETURN ag.agent_id AS agent_id"
        )
        record = await self._fetch_one(
            "graph.upsert_agent", query, **agent.model_dump(), now=utcnow()
        )
        return record is not None

    async def link_managed_by(self, person_id: str, agent_id: str) -> bool:
        """Attach the person to the agent facilitating them."""
        query = (
            "MATCH (p:Person {id: $person_id}) "
            "MATCH (ag:Agent {agent_id: $agent_id}) "
            "MERGE (p)-[m:MANAGED_BY]->(ag) "
            "ON CREATE SET m.management_started_at = $now "
            "SET m.last_interaction_at = $now "
            "RETURN p.id AS id"
        )
        record = await self._fetch_one(
            "graph.link_managed_by", query, person_id=person_id, agent_id=agent_id, now=utcnow()
        )
        return record is not None

    async def get_person_agent(self, person_id: str) -> Agent | None:
        query = (
            "MATCH (:Person {id: $person_id})-[m:MANAGED_BY]->(ag:Agent) "
            "RETURN properties(ag) AS props ORDER BY m.last_interaction_at DESC LIMIT 1"
        )
        record = await self._fetch_one("graph.get_person_agent", query, person_id=person_id)
        if record is None:
            return None
        return Agent.model_validate(_convert_props(record["props"]))

    async def link_managed_on(self, agent_id: str, account: Account, *, active: bool = True) -> bool:
        if not await self.upsert_account(account):
            return False
        query = (
            "MATCH (ag:Agent {agent_id: $agent_id}) "
            "MATCH (acc:Account {platform: $platform, identifier: $identifier}) "
            "MERGE (ag)-[m:MANAGED_ON]->(acc) "
            "SET m.active = $active "
            "RETURN ag.agent_id AS agent_id"
        )
        record = await self._fetch_one(
            "graph.link_managed_on",
            query,
            agent_id=agent_id,
            platform=account.platform,
            identifier=account.identifier,
            active=active,
        )
        return record is not None

    async def upsert_place(self, place: Place) -> bool:
        query = (
            "MERGE (pl:Place {name: $name}) "
            "ON CREATE SET pl.created_at = $now "
            "SET pl.venue_type = coalesce($venue_type, pl.venue_type), "
            "    pl.description = coalesce($description, pl.description), "
            "    pl.address = coalesce($address, pl.address), "
            "    pl.url = coalesce($url, pl.url) "
            "RETURN pl.name AS name"
        )
        record = await self._fetch_one(
            "graph.upsert_place", query, **place.model_dump(), now=utcnow()
        )
        return record is not None

    async def get_place(self, name: str) -> Place | None:
        record = await self._fetch_one(
            "graph.get_place",
            "MATCH (pl:Place {name: $name}) RETURN properties(pl) AS props",
            name=name,
        )
        if record is None:
            return None
        return Place.model_validate(_convert_props(record["props"]))

    async def link_attends(self, person_id: str, place_name: str, frequency: str | None = None) -> bool:
        query = (
            "MATCH (p:Person {id: $person_id}) "
            "MATCH (pl:Place {name: $place_name}) "
            "MERGE (p)-[a:ATTENDS]->(pl) "
            "SET a.frequency = coalesce($frequency, a.frequency) "
            "RETURN p.id AS id"
        )
        record = await self._fetch_one(
            "graph.link_attends",
            query,
            person_id=person_id,
            place_name=place_name,
            frequency=frequency,
        )
        return record is not None

    async def link_operates_at(
        self,
        agent_id: str,
        place_name: str,
        role: PlaceRole = PlaceRole.host,
    ) -> bool:
        query = (
            "MATCH (ag:Agent {agent_id: $agent_id}) "
            "MATCH (pl:Place {name: $place_name}) "
            "MERGE (ag)-[o:OPERATES_AT]->(pl) "
            "SET o.role = $role "
            "RETURN ag.agent_id AS agent_id"
        )
        record = await self._fetch_one(
            "graph.link_operates_at",
            query,
            agent_id=agent_id,
            place_name=place_name,
            role=PlaceRole(role).value,
        )
        return record is not None

    # ----- Matches -----

    async def has_existing_match(self, a_id: str, b_id: str) -> bool:
        """True if a match exists between the two people in either direction."""
        record = await self._fetch_one(
            "graph.has_existing_match",
            "MATCH (:Person {id: $a})-[r:MATCHED_WITH]-(:Person {id: $b}) "
            "RETURN count(r) > 0 AS found",
            a=a_id,
            b=b_id,
        )
        return bool(record and record["found"])

    async def create_match(
        self,
        from_id: str,
        to_id: str,
        reasoning: str,
        *,
        status: MatchStatus = MatchStatus.match_found,
        compatibility_score: float | None = None,
        agent_facilitated: bool = False,
        venue_context: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Create the pair's match, or refresh it when it already exists.

        Returns ``False`` when either person is missing, when ``from_id`` and
        ``to_id`` are the same person, or when the reverse direction already
        holds a match.  Both people are write-locked before the reverse
        check, so concurrent calls for the same pair cannot both create.
        """
        status = MatchStatus(status)
        query = (
            "MATCH (a:Person {id: $from_id}) "
            "MATCH (b:Person {id: $to_id}) "
            "WHERE a <> b "
            "SET a._lock = true, b._lock = true "
            "REMOVE a._lock, b._lock "
            "WITH a, b "
            "WHERE NOT EXISTS { MATCH (b)-[:MATCHED_WITH]->(a) } "
            "MERGE (a)-[r:MATCHED_WITH]->(b) "
            "ON CREATE SET r.status = $status, r.created_at = $now, "
            "    r.agent_facilitated = $agent_facilitated, "
            "    r.venue_context = $venue_context "
            "SET r.reasoning = $reasoning, "
            "    r.compatibility_score = coalesce($score, r.compatibility_score), "
            "    r.updated_at = $now "
            "WITH a, b, r "
            "FOREACH (p IN CASE WHEN r.status IN $active_statuses THEN [a, b] ELSE [] END | "
            "    SET p.status = 'matched', p.updated_at = $now) "
            "RETURN r.status AS status"
        )
        record = await self._fetch_one(
            "graph.create_match",
            query,
            from_id=from_id,
            to_id=to_id,
            status=status.value,
            reasoning=reasoning,
            score=compatibility_score,
            agent_facilitated=agent_facilitated,
            venue_context=venue_context,
            active_statuses=_ACTIVE,
            now=now or utcnow(),
        )
        if record is None:
            if self._connection.is_connected:
                logger.info(
                    "Match %s -> %s not created (missing person or existing reverse match)",
                    from_id,
                    to_id,
                )
            return False
        return True

    async def get_match(self, a_id: str, b_id: str) -> Match | None:
        """Return the match between two people, whichever direction it has."""
        query = (
            "MATCH (:Person {id: $a})-[r:MATCHED_WITH]-(:Person {id: $b}) "
            "RETURN startNode(r).id AS from_id, endNode(r).id AS to_id, "
            "       properties(r) AS props "
            "LIMIT 1"
        )
        record = await self._fetch_one("graph.get_match", query, a=a_id, b=b_id)
        if record is None:
            return None
        return _match_from_record(record)

    async def get_matches_for(
        self,
        user_id: str,
        statuses: list[MatchStatus] | None = None,
    ) -> list[Match]:
        """All matches touching *user_id*, newest first."""
        query = (
            "MATCH (:Person {id: $user_id})-[r:MATCHED_WITH]-(:Person) "
            "WHERE $statuses IS NULL OR r.status IN $statuses "
            "RETURN startNode(r).id AS from_id, endNode(r).id AS to_id, "
            "       properties(r) AS props "
            "ORDER BY r.created_at DESC"
        )
        records = await self._fetch(
            "graph.get_matches_for",
            query,
            user_id=user_id,
            statuses=[MatchStatus(s).value for s in statuses] if statuses else None,
        )
        return [_match_from_record(r) for r in records or []]

    async def list_active_matches(
        self,
        statuses: list[MatchStatus] | None = None,
    ) -> list[Match]:
        """Matches in *statuses* (default: awaiting proposal or response), newest first."""
        wanted = statuses or [MatchStatus.match_found, MatchStatus.proposal_sent]
        query = (
            "MATCH (a:Person)-[r:MATCHED_WITH]->(b:Person) "
            "WHERE r.status IN $statuses "
            "RETURN a.id AS from_id, b.id AS to_id, properties(r) AS props "
            "ORDER BY r.created_at DESC"
        )
        records = await self._fetch(
            "graph.list_active_matches",
            query,
            statuses=[MatchStatus(s).value for s in wanted],
        )
        return [_match_from_record(r) for r in records or []]

    async def update_match_properties(
        self,
        from_id: str,
        to_id: str,
        fields: dict[str, Any],
        *,
        expected_status: MatchStatus | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Set the given match fields and touch ``updated_at``.

        With *expected_status*, the write only happens if the match is still
        in that status (compare-and-set).  A terminal status releases both
        people back to ``active`` unless another open match still holds
        them, in the same statement.
        """
        props = {
            _require_allowed(key, _UPDATABLE_MATCH_FIELDS, field_name="match field"): _serialize_value(v)
            for key, v in fields.items()
        }
        if "status" in props:
            props["status"] = MatchStatus(props["status"]).value
        query = (
            "MATCH (a:Person {id: $from_id})-[r:MATCHED_WITH]->(b:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH a, b, r "
            "WHERE $expected IS NULL OR r.status = $expected "
            "SET r += $props, r.updated_at = $now "
        ) + _release_clause()
        record = await self._fetch_one(
            "graph.update_match_properties",
            query,
            from_id=from_id,
            to_id=to_id,
            props=props,
            expected=MatchStatus(expected_status).value if expected_status else None,
            active_statuses=_ACTIVE,
            terminal_statuses=_TERMINAL,
            now=now or utcnow(),
        )
        return record is not None

    async def append_clue(
        self,
        match: Match,
        user_id: str,
        clue: Clue,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Append *clue* to the sender's list unless the same text is already there."""
        field = _require_allowed(
            "initiator_clues" if match.is_initiator(user_id) else "recipient_clues",
            _CLUE_FIELDS,
            field_name="clue field",
        )
        query = (
            "MATCH (:Person {id: $from_id})-[r:MATCHED_WITH]->(:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH r "
            "WHERE r.status IN $meeting_statuses "
            f"  AND NOT $text IN coalesce(r.{field}_texts, []) "
            f"SET r.{field} = coalesce(r.{field}, []) + $entry, "
            f"    r.{field}_texts = coalesce(r.{field}_texts, []) + $text, "
            "    r.updated_at = $now "
            "RETURN true AS appended"
        )
        record = await self._fetch_one(
            "graph.append_clue",
            query,
            from_id=match.from_id,
            to_id=match.to_id,
            text=clue.text,
            entry=clue.encode(),
            meeting_statuses=_MEETING,
            now=now or utcnow(),
        )
        return record is not None

    async def append_feedback(
        self,
        from_id: str,
        to_id: str,
        entry: FeedbackEntry,
        *,
        now: datetime | None = None,
    ) -> FeedbackOutcome | None:
        """Record one participant's feedback; complete the match once both have.

        Returns ``None`` when the store is unavailable.
        """
        query = (
            "MATCH (a:Person {id: $from_id})-[r:MATCHED_WITH]->(b:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH a, b, r "
            "WHERE r.status IN $meeting_statuses "
            "WITH a, b, r, $user_id IN coalesce(r.feedback_user_ids, []) AS duplicate "
            "FOREACH (_ IN CASE WHEN duplicate THEN [] ELSE [1] END | "
            "    SET r.feedback = coalesce(r.feedback, []) + $entry, "
            "        r.feedback_user_ids = coalesce(r.feedback_user_ids, []) + $user_id, "
            "        r.updated_at = $now) "
            "WITH a, b, r, duplicate, "
            "     (a.id IN r.feedback_user_ids AND b.id IN r.feedback_user_ids) AS complete "
            "FOREACH (_ IN CASE WHEN complete THEN [1] ELSE [] END | "
            "    SET r.status = 'completed', r.updated_at = $now) "
        ) + _release_clause("duplicate", "complete")

        async def _op(session: AsyncSession) -> FeedbackOutcome:
            result = await session.run(
                query,
                from_id=from_id,
                to_id=to_id,
                user_id=entry.user_id,
                entry=entry.encode(),
                meeting_statuses=_MEETING,
                active_statuses=_ACTIVE,
                terminal_statuses=_TERMINAL,
                now=now or utcnow(),
            )
            record = await result.single()
            if record is None:
                return FeedbackOutcome.not_allowed
            if record["duplicate"]:
                return FeedbackOutcome.duplicate
            if record["complete"]:
                return FeedbackOutcome.completed
            return FeedbackOutcome.recorded

        return await self._connection.with_session(_op, operation="graph.append_feedback")

    async def claim_link(self, from_id: str, to_id: str, *, now: datetime | None = None) -> bool:
        """Reserve the pair's one-time link.  Only the first caller gets ``True``."""
        query = (
            "MATCH (:Person {id: $from_id})-[r:MATCHED_WITH]->(:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH r "
            "WHERE r.connection_id IS NULL AND r.link_claimed_at IS NULL "
            "SET r.link_claimed_at = $now "
            "RETURN true AS claimed"
        )
        record = await self._fetch_one(
            "graph.claim_link", query, from_id=from_id, to_id=to_id, now=now or utcnow()
        )
        return record is not None

    async def release_link_claim(self, from_id: str, to_id: str) -> bool:
        query = (
            "MATCH (:Person {id: $from_id})-[r:MATCHED_WITH]->(:Person {id: $to_id}) "
            "WHERE r.connection_id IS NULL "
            "REMOVE r.link_claimed_at "
            "RETURN true AS released"
        )
        record = await self._fetch_one(
            "graph.release_link_claim", query, from_id=from_id, to_id=to_id
        )
        return record is not None

    async def record_link(
        self,
        from_id: str,
        to_id: str,
        connection_id: str,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Store the link identifier, only if none is recorded yet."""
        query = (
            "MATCH (:Person {id: $from_id})-[r:MATCHED_WITH]->(:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH r "
            "WHERE r.connection_id IS NULL "
            "SET r.connection_id = $connection_id, r.linked_at = $now, r.updated_at = $now "
            "RETURN true AS recorded"
        )
        record = await self._fetch_one(
            "graph.record_link",
            query,
            from_id=from_id,
            to_id=to_id,
            connection_id=connection_id,
            now=now or utcnow(),
        )
        return record is not None

    async def add_reminder(self, from_id: str, to_id: str, key: str) -> bool:
        """Record reminder *key* on the match; ``False`` if it was already recorded."""
        query = (
            "MATCH (:Person {id: $from_id})-[r:MATCHED_WITH]->(:Person {id: $to_id}) "
            "SET r._lock = true "
            "REMOVE r._lock "
            "WITH r "
            "WHERE NOT $key IN coalesce(r.reminders, []) "
            "SET r.reminders = coalesce(r.reminders, []) + $key "
            "RETURN true AS added"
        )
        record = await self._fetch_one(
            "graph.add_reminder", query, from_id=from_id, to_id=to_id, key=key
        )
        return record is not None

    # ----- Meeting windows -----

    async def _meeting_matches(self, operation: str) -> list[tuple[datetime, Match]]:
        query = (
            "MATCH (a:Person)-[r:MATCHED_WITH]->(b:Person) "
            "WHERE r.status IN $statuses AND r.proposed_time IS NOT NULL "
            "RETURN a.id AS from_id, b.id AS to_id, properties(r) AS props"
        )
        records = await self._fetch(operation, query, statuses=_MEETING)
        timed: list[tuple[datetime, Match]] = []
        for record in records or []:
            match = _match_from_record(record)
            when = parse_iso(match.proposed_time)
            if when is None:
                logger.warning(
                    "Skipping match %s -> %s with unparseable proposed_time %r",
                    match.from_id,
                    match.to_id,
                    match.proposed_time,
                )
                continue
            timed.append((when, match))
        timed.sort(key=lambda item: item[0])
        return timed

    async def list_upcoming_scheduled(
        self,
        hours: float = 24.0,
        *,
        now: datetime | None = None,
    ) -> list[Match]:
        """Agreed meetings starting within the next *hours*, soonest first."""
        now = now or utcnow()
        horizon = now + timedelta(hours=hours)
        timed = await self._meeting_matches("graph.list_upcoming_scheduled")
        return [match for when, match in timed if now <= when <= horizon]

    async def list_past_scheduled(
        self,
        hours: float = 24.0,
        *,
        now: datetime | None = None,
    ) -> list[Match]:
        """Agreed meetings whose time passed within the last *hours*."""
        now = now or utcnow()
        horizon = now - timedelta(hours=hours)
        timed = await self._meeting_matches("graph.list_past_scheduled")
        return [match for when, match in timed if horizon <= when < now]
