"""Pydantic models for the relationship types of the matching graph.

``MATCHED_WITH`` carries the whole coordination state of an introduction.
Clue and feedback entries are maps, which Neo4j cannot store as list
elements, so each entry is persisted as a JSON string.
"""

from __future__ import annotations

import json
from datetime import datetime
from datetime import timezone
from enum import Enum

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MatchStatus(str, Enum):
    """States of the introduction protocol."""

    match_found = "match_found"
    proposal_sent = "proposal_sent"
    accepted = "accepted"
    scheduled = "scheduled"
    completed = "completed"
    declined = "declined"
    cancelled = "cancelled"
    expired_no_proposal = "expired_no_proposal"
    expired_no_response = "expired_no_response"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        MatchStatus.completed,
        MatchStatus.declined,
        MatchStatus.cancelled,
        MatchStatus.expired_no_proposal,
        MatchStatus.expired_no_response,
    }
)
ACTIVE_STATUSES = frozenset(
    {
        MatchStatus.match_found,
        MatchStatus.proposal_sent,
        MatchStatus.accepted,
        MatchStatus.scheduled,
    }
)
# Statuses in which a meeting time is agreed.
MEETING_STATUSES = frozenset({MatchStatus.accepted, MatchStatus.scheduled})


class AccountLinkStatus(str, Enum):
    """Verification state of a HAS_ACCOUNT link."""

    active = "active"
    inactive = "inactive"
    pending_verification = "pending_verification"


class PlaceRole(str, Enum):
    """Role of an agent at a venue."""

    host = "host"
    assistant = "assistant"
    manager = "manager"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_entries(value: object) -> object:
    if value is None:
        return []
    if isinstance(value, list):
        return [json.loads(v) if isinstance(v, str) else v for v in value]
    return value


# ---------------------------------------------------------------------------
# Match
# ---------------------------------------------------------------------------


class Clue(BaseModel):
    """Identifying detail one participant shares before meeting."""

    text: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def encode(self) -> str:
        return self.model_dump_json()


class FeedbackEntry(BaseModel):
    """Post-meeting feedback from one participant."""

    user_id: str
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)

    def encode(self) -> str:
        return self.model_dump_json()


class Match(BaseModel):
    """Directed ``(initiator)-[:MATCHED_WITH]->(recipient)`` relationship."""

    from_id: str = Field(description="Initiator person id.")
    to_id: str = Field(description="Recipient person id.")
    status: MatchStatus = Field(
        default=MatchStatus.match_found,
        description="Current protocol state.",
    )
    reasoning: str = Field(
        default="",
        description="Why the pair was matched.",
    )
    compatibility_score: float | None = Field(
        default=None,
        description="Optional compatibility score from the matcher.",
    )
    venue: str | None = Field(
        default=None,
        description="Proposed or agreed venue.",
    )
    venue_context: str | None = Field(
        default=None,
        description="Extra detail about the venue.",
    )
    proposed_time: str | None = Field(
        default=None,
        description="Meeting time, ISO-8601 UTC.",
    )
    proposed_by: str | None = Field(
        default=None,
        description="Person who made the pending proposal.",
    )
    initiator_clues: list[Clue] = Field(default_factory=list)
    recipient_clues: list[Clue] = Field(default_factory=list)
    feedback: list[FeedbackEntry] = Field(default_factory=list)
    reminders: list[str] = Field(
        default_factory=list,
        description="Reminder keys already delivered.",
    )
    connection_id: str | None = Field(
        default=None,
        description="Identifier returned by the linking side effect.",
    )
    linked_at: datetime | None = None
    agent_facilitated: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    proposal_sent_at: datetime | None = None

    @field_validator("initiator_clues", "recipient_clues", "feedback", mode="before")
    @classmethod
    def _decode_json_entries(cls, value: object) -> object:
        return _decode_entries(value)

    @field_validator("reminders", mode="before")
    @classmethod
    def _default_reminders(cls, value: object) -> object:
        return [] if value is None else value

    # ----- Roles -----

    def involves(self, user_id: str) -> bool:
        return user_id in (self.from_id, self.to_id)

    def is_initiator(self, user_id: str) -> bool:
        return user_id == self.from_id

    def other_party(self, user_id: str) -> str:
        if user_id == self.from_id:
            return self.to_id
        if user_id == self.to_id:
            return self.from_id
        msg = f"{user_id!r} is not part of match {self.from_id}->{self.to_id}"
        raise ValueError(msg)

    def clues_of(self, user_id: str) -> list[Clue]:
        return self.initiator_clues if self.is_initiator(user_id) else self.recipient_clues

    def has_feedback_from(self, user_id: str) -> bool:
        return any(entry.user_id == user_id for entry in self.feedback)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# ---------------------------------------------------------------------------
# Supporting edges
# ---------------------------------------------------------------------------


class HasAccount(BaseModel):
    """``(Person)-[:HAS_ACCOUNT]->(Account)``."""

    status: AccountLinkStatus = AccountLinkStatus.active
    is_primary: bool = False

