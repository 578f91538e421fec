"""matchgraph: FastMCP v2 server exposing the matchmaking engine.

Tools delegate to a ``MatchmakingService``.  Call ``configure(...)`` before
using the server and ``shutdown()`` to release the driver.
"""

from __future__ import annotations

from time import perf_counter

from fastmcp import FastMCP
from pydantic import ValidationError

from matchgraph.config import AuditConfig
from matchgraph.config import CoordinationConfig
from matchgraph.config import GraphConfig
from matchgraph.config import RetryConfig
from matchgraph.config import SearchConfig
from matchgraph.coordination.events import parse_event
from matchgraph.coordination.machine import LinkHook
from matchgraph.coordination.session import ConversationSession
from matchgraph.coordination.sweep import SweepReport
from matchgraph.engine.dedup import DuplicatePolicy
from matchgraph.engine.ingestion import RecordOutcome
from matchgraph.graph.connection import DriverFactory
from matchgraph.models.nodes import Account
from matchgraph.models.nodes import Person
from matchgraph.models.relations import MatchStatus
from matchgraph.models.schemas import AdvanceMatchInput
from matchgraph.models.schemas import AdvanceMatchResult
from matchgraph.models.schemas import CreateMatchInput
from matchgraph.models.schemas import CreateMatchResult
from matchgraph.models.schemas import MatchListResult
from matchgraph.models.schemas import RecordDimensionInput
from matchgraph.models.schemas import RecordDimensionResult
from matchgraph.models.schemas import SearchSimilarInput
from matchgraph.models.schemas import SearchSimilarResult
from matchgraph.models.schemas import UpsertPersonInput
from matchgraph.models.schemas import UpsertPersonResult
from matchgraph.observability import record_latency
from matchgraph.service import MatchmakingService

mcp = FastMCP("matchgraph")

# ---------------------------------------------------------------------------
# Service instance (set via configure())
# ---------------------------------------------------------------------------

_service: MatchmakingService | None = None


async def configure(
    graph_config: GraphConfig | None = None,
    *,
    retry_config: RetryConfig | None = None,
    search_config: SearchConfig | None = None,
    coordination_config: CoordinationConfig | None = None,
    audit_config: AuditConfig | None = None,
    link_hook: LinkHook | None = None,
    duplicate_policy: DuplicatePolicy | None = None,
    driver_factory: DriverFactory | None = None,
) -> MatchmakingService:
    """Build and start the engine.

    Must be called before the MCP tools can function.  An unreachable
    store is not an error: the server starts degraded and reconnects.
    """
    global _service
    if _service is not None:
        try:
            await _service.stop()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
    _service = MatchmakingService(
        graph_config or GraphConfig.from_env(),
        retry_config=retry_config,
        search_config=search_config,
        coordination_config=coordination_config,
        audit_config=audit_config or AuditConfig(),
        link_hook=link_hook,
        duplicate_policy=duplicate_policy,
        driver_factory=driver_factory,
    )
    await _service.start()
    return _service


async def shutdown() -> None:
    """Stop the engine and release the driver."""
    global _service
    if _service is not None:
        await _service.stop()
        _service = None


def _get_service() -> MatchmakingService:
    """Return the service instance or raise."""
    if _service is None:
        raise RuntimeError("Matchmaking service not configured. Call configure() first.")
    return _service


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    return str(err.get("msg", "Invalid input"))


def _record_rejected(error_code: str, message: str) -> RecordDimensionResult:
    return RecordDimensionResult(status="rejected", error_code=error_code, message=message)


def _create_rejected(error_code: str, message: str) -> CreateMatchResult:
    return CreateMatchResult(status="rejected", error_code=error_code, message=message)


def _advance_rejected(error_code: str, message: str) -> AdvanceMatchResult:
    return AdvanceMatchResult(status="rejected", error_code=error_code, message=message)


def _parse_statuses(statuses: list[str] | None) -> list[MatchStatus] | None:
    if not statuses:
        return None
    return [MatchStatus(s) for s in statuses]


def _list_result(service: MatchmakingService, matches, statuses=None) -> MatchListResult:
    if not matches and not service.is_available:
        return MatchListResult(status="unavailable", statuses=statuses or [])
    return MatchListResult(statuses=statuses or [], matches=matches)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def upsert_person(
    person_id: str,
    name: str | None = None,
    status: str = "active",
    metadata: dict | None = None,
) -> UpsertPersonResult:
    """Create or update a person.

    Args:
        person_id: Stable external identifier.
        name: Display name.
        status: Initial status (only applied when the person is created).
        metadata: Free-form attributes.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = UpsertPersonInput.model_validate(
                {
                    "person_id": person_id,
                    "name": name,
                    "status": status,
                    "metadata": metadata or {},
                }
            )
        except ValidationError as exc:
            return UpsertPersonResult(
                person_id=person_id,
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        stored = await service.upsert_person(
            Person(
                id=validated.person_id,
                name=validated.name,
                status=validated.status,
                metadata=validated.metadata,
            )
        )
        ok = stored
        return UpsertPersonResult(
            person_id=validated.person_id,
            status="stored" if stored else "unavailable",
        )
    finally:
        record_latency(
            operation="mcp.upsert_person",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def link_account(
    person_id: str,
    platform: str,
    identifier: str,
    username: str | None = None,
    display_name: str | None = None,
) -> UpsertPersonResult:
    """Attach a messaging account to a person.

    Args:
        person_id: Owner of the account.
        platform: Messaging platform, e.g. "telegram".
        identifier: Platform-specific account id.
        username: Optional handle.
        display_name: Optional display name.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            account = Account.model_validate(
                {
                    "platform": platform,
                    "identifier": identifier,
                    "username": username,
                    "display_name": display_name,
                }
            )
        except ValidationError as exc:
            return UpsertPersonResult(
                person_id=person_id,
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )
        linked = await service.link_account(person_id, account)
        ok = linked
        if not linked and service.is_available:
            return UpsertPersonResult(
                person_id=person_id,
                status="rejected",
                error_code="person_not_found",
                message=f"No person with id {person_id!r}.",
            )
        return UpsertPersonResult(
            person_id=person_id,
            status="stored" if linked else "unavailable",
        )
    finally:
        record_latency(
            operation="mcp.link_account",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def record_dimension(
    person_id: str,
    kind: str,
    dimension: str,
    text: str,
    embedding: list[float] | None = None,
    evidence: str | None = None,
) -> RecordDimensionResult:
    """Record an extracted insight about a person.

    Args:
        person_id: Person the insight is about.
        kind: "persona" (who they are) or "desired" (who they want to meet).
        dimension: Dimension name within the kind, e.g. "goal" or "who".
        text: The insight as free text.
        embedding: Embedding of the text.
        evidence: Provenance of the insight.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = RecordDimensionInput.model_validate(
                {
                    "person_id": person_id,
                    "kind": kind,
                    "dimension": dimension,
                    "text": text,
                    "embedding": embedding,
                    "evidence": evidence,
                }
            )
        except ValidationError as exc:
            return _record_rejected("validation_error", _validation_message(exc))

        try:
            outcome = await service.record_dimension(
                validated.person_id,
                validated.kind,
                validated.dimension,
                validated.text,
                validated.embedding,
                validated.evidence,
            )
        except ValueError as exc:
            return _record_rejected("invalid_dimension", str(exc))

        ok = outcome is not RecordOutcome.skipped
        return RecordDimensionResult(status=outcome.value)
    finally:
        record_latency(
            operation="mcp.record_dimension",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def create_match(
    from_id: str,
    to_id: str,
    reasoning: str,
    compatibility_score: float | None = None,
) -> CreateMatchResult:
    """Introduce two people.

    Args:
        from_id: Initiator (the person who proposes a meeting).
        to_id: Recipient.
        reasoning: Why they were matched.
        compatibility_score: Optional score between 0 and 1.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = CreateMatchInput.model_validate(
                {
                    "from_id": from_id,
                    "to_id": to_id,
                    "reasoning": reasoning,
                    "compatibility_score": compatibility_score,
                }
            )
        except ValidationError as exc:
            return _create_rejected("validation_error", _validation_message(exc))

        if validated.from_id == validated.to_id:
            return _create_rejected("self_match", "A person cannot be matched with themselves.")

        created = await service.create_match(
            validated.from_id,
            validated.to_id,
            validated.reasoning,
            compatibility_score=validated.compatibility_score,
        )
        ok = created
        if created:
            return CreateMatchResult(status="created")
        if not service.is_available:
            return CreateMatchResult(
                status="unavailable",
                error_code="store_unavailable",
                message="The graph store is unreachable.",
            )
        return CreateMatchResult(
            status="exists",
            error_code="match_exists",
            message="These people already share a match, or one of them does not exist.",
        )
    finally:
        record_latency(
            operation="mcp.create_match",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def search_similar(
    kind: str,
    dimension: str,
    embedding: list[float],
    limit: int = 10,
    exclude_ids: list[str] | None = None,
) -> SearchSimilarResult:
    """Find active people whose dimension values are closest to an embedding.

    Args:
        kind: "persona" or "desired".
        dimension: Dimension name within the kind.
        embedding: Query embedding.
        limit: Maximum number of people returned.
        exclude_ids: Person ids to leave out (e.g. the searcher).
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = SearchSimilarInput.model_validate(
                {
                    "kind": kind,
                    "dimension": dimension,
                    "embedding": embedding,
                    "limit": limit,
                    "exclude_ids": exclude_ids or [],
                }
            )
        except ValidationError as exc:
            return SearchSimilarResult(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            results = await service.search_similar(
                validated.kind,
                validated.dimension,
                validated.embedding,
                validated.limit,
                exclude_ids=validated.exclude_ids,
            )
        except ValueError as exc:
            return SearchSimilarResult(
                status="rejected",
                error_code="invalid_dimension",
                message=str(exc),
            )

        if not results and not service.is_available:
            return SearchSimilarResult(
                status="unavailable",
                error_code="store_unavailable",
                message="The graph store is unreachable.",
            )
        ok = True
        return SearchSimilarResult(results=results)
    finally:
        record_latency(
            operation="mcp.search_similar",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def advance_match(
    user_id: str,
    event: dict,
    agent_id: str | None = None,
    room_id: str | None = None,
    raw_text: str = "",
) -> AdvanceMatchResult:
    """Apply a coordination event from a user to their open introduction.

    Args:
        user_id: Person sending the event.
        event: Event payload, e.g. {"type": "propose_meeting", "proposed_time": "..."}.
        agent_id: Agent handling the conversation.
        room_id: Conversation room.
        raw_text: Original message text.
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            validated = AdvanceMatchInput.model_validate(
                {
                    "user_id": user_id,
                    "event": event,
                    "agent_id": agent_id,
                    "room_id": room_id,
                    "raw_text": raw_text,
                }
            )
            parsed = parse_event(validated.event)
        except ValidationError as exc:
            return _advance_rejected("validation_error", _validation_message(exc))

        session = ConversationSession(
            user_id=validated.user_id,
            agent_id=validated.agent_id,
            room_id=validated.room_id,
            raw_text=validated.raw_text,
        )
        result = await service.advance_match(session, parsed)
        ok = True
        return AdvanceMatchResult(result=result)
    finally:
        record_latency(
            operation="mcp.advance_match",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def list_active_matches(statuses: list[str] | None = None) -> MatchListResult:
    """List matches awaiting action, newest first.

    Args:
        statuses: Statuses to include (default: match_found and proposal_sent).
    """
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        try:
            wanted = _parse_statuses(statuses)
        except ValueError as exc:
            return MatchListResult(
                status="rejected",
                error_code="invalid_status",
                message=str(exc),
            )
        matches = await service.list_active_matches(wanted)
        result = _list_result(service, matches, wanted)
        ok = result.status == "ok"
        return result
    finally:
        record_latency(
            operation="mcp.list_active_matches",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def list_upcoming_meetings(hours: float = 24.0) -> MatchListResult:
    """List scheduled meetings happening within the next *hours*."""
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        result = _list_result(service, await service.list_upcoming_meetings(hours))
        ok = result.status == "ok"
        return result
    finally:
        record_latency(
            operation="mcp.list_upcoming_meetings",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def list_past_meetings(hours: float = 24.0) -> MatchListResult:
    """List scheduled meetings whose time passed within the last *hours*."""
    start = perf_counter()
    ok = False
    try:
        service = _get_service()
        result = _list_result(service, await service.list_past_meetings(hours))
        ok = result.status == "ok"
        return result
    finally:
        record_latency(
            operation="mcp.list_past_meetings",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def sweep_matches() -> SweepReport:
    """Expire stale matches and report reminders that became due."""
    start = perf_counter()
    ok = False
    try:
        report = await _get_service().sweep_matches()
        ok = not report.store_unavailable
        return report
    finally:
        record_latency(
            operation="mcp.sweep_matches",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )
