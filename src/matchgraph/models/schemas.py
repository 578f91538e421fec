"""Pydantic models for the MCP interface.

Input models validate tool arguments; output models shape responses.
FastMCP v2 serializes Pydantic models automatically.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from matchgraph.coordination.machine import AdvanceResult
from matchgraph.graph.search import SimilarPerson
from matchgraph.models.nodes import DimensionKind
from matchgraph.models.nodes import PersonStatus
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus

# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class RecordDimensionInput(BaseModel):
    """Input for record_dimension tool."""

    person_id: str = Field(min_length=1, description="Person the insight is about.")
    kind: DimensionKind = Field(description="persona or desired.")
    dimension: str = Field(
        min_length=1,
        description="Dimension name within the kind, e.g. 'goal' or 'who'.",
    )
    text: str = Field(description="The extracted insight as free text.")
    embedding: list[float] | None = Field(
        default=None,
        description="Embedding of the text; enables similarity search.",
    )
    evidence: str | None = Field(
        default=None,
        description="Where the insight came from.",
    )


class CreateMatchInput(BaseModel):
    """Input for create_match tool."""

    from_id: str = Field(min_length=1, description="Initiator person id.")
    to_id: str = Field(min_length=1, description="Recipient person id.")
    reasoning: str = Field(description="Why the two people were matched.")
    compatibility_score: float | None = Field(default=None, ge=0.0, le=1.0)


class SearchSimilarInput(BaseModel):
    """Input for search_similar tool."""

    kind: DimensionKind
    dimension: str = Field(min_length=1)
    embedding: list[float] = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)
    exclude_ids: list[str] = Field(default_factory=list)


class AdvanceMatchInput(BaseModel):
    """Input for advance_match tool."""

    user_id: str = Field(min_length=1, description="Person sending the event.")
    event: dict = Field(description="Event payload with a 'type' discriminator.")
    agent_id: str | None = None
    room_id: str | None = None
    raw_text: str = ""


class UpsertPersonInput(BaseModel):
    person_id: str = Field(min_length=1)
    name: str | None = None
    status: PersonStatus = PersonStatus.active
    metadata: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class RecordDimensionResult(BaseModel):
    """Response from record_dimension."""

    status: str = Field(
        description="recorded, duplicate, skipped, invalid or rejected.",
    )
    error_code: str | None = None
    message: str | None = None


class CreateMatchResult(BaseModel):
    """Response from create_match."""

    status: str = Field(
        description="created, exists, unavailable or rejected.",
    )
    error_code: str | None = None
    message: str | None = None


class SearchSimilarResult(BaseModel):
    status: str = Field(default="ok", description="ok, unavailable or rejected.")
    error_code: str | None = None
    message: str | None = None
    results: list[SimilarPerson] = Field(default_factory=list)


class AdvanceMatchResult(BaseModel):
    """Response from advance_match."""

    status: str = Field(
        default="ok",
        description="ok when the event reached the state machine, otherwise rejected.",
    )
    error_code: str | None = None
    message: str | None = None
    result: AdvanceResult | None = None


class MatchListResult(BaseModel):
    """Response from the match listing tools."""

    status: str = Field(default="ok", description="ok, unavailable or rejected.")
    error_code: str | None = None
    message: str | None = None
    statuses: list[MatchStatus] = Field(default_factory=list)
    matches: list[Match] = Field(default_factory=list)


class UpsertPersonResult(BaseModel):
    person_id: str
    status: str = Field(description="stored, unavailable or rejected.")
    error_code: str | None = None
    message: str | None = None
