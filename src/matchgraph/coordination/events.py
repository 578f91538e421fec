"""Typed coordination events.

The conversation layer decides which event a user message represents; the
state machine only ever sees these models.  ``type`` is the discriminator
used when events arrive as plain dicts (e.g. through the MCP surface).
"""

from __future__ import annotations

from typing import Annotated
from typing import Literal
from typing import Union

from pydantic import BaseModel
from pydantic import Field
from pydantic import TypeAdapter
from pydantic import field_validator


class _TextEvent(BaseModel):
    """An event carrying free text; surrounding whitespace is dropped."""

    text: str = Field(min_length=1)

    @field_validator("text")
    @classmethod
    def _require_text(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("text must not be blank")
        return text


class ProposeMeeting(BaseModel):
    """Suggest (or revise) a venue and time."""

    type: Literal["propose_meeting"] = "propose_meeting"
    proposed_time: str = Field(description="Meeting time, ISO-8601.")
    venue: str | None = Field(default=None, description="Venue; a default is used if omitted.")
    venue_context: str | None = Field(default=None, description="Extra detail about the venue.")


class AcceptProposal(BaseModel):
    type: Literal["accept_proposal"] = "accept_proposal"


class DeclineProposal(BaseModel):
    type: Literal["decline_proposal"] = "decline_proposal"
    reason: str | None = None


class CounterPropose(BaseModel):
    """Answer a pending proposal with a different time (and optionally venue)."""

    type: Literal["counter_propose"] = "counter_propose"
    proposed_time: str = Field(description="Alternative time, ISO-8601.")
    venue: str | None = None


class CancelMatch(BaseModel):
    type: Literal["cancel_match"] = "cancel_match"
    reason: str | None = None


class ProvideClue(_TextEvent):
    """Share a detail that helps the other person recognize the sender."""

    type: Literal["provide_clue"] = "provide_clue"


class ConfirmMeeting(BaseModel):
    type: Literal["confirm_meeting"] = "confirm_meeting"


class AcknowledgeMeeting(BaseModel):
    """A vague "we met" without usable feedback."""

    type: Literal["acknowledge_meeting"] = "acknowledge_meeting"


class SubmitFeedback(_TextEvent):
    type: Literal["submit_feedback"] = "submit_feedback"


class RelayMessage(_TextEvent):
    """Forward a message to the counterpart without changing state."""

    type: Literal["relay_message"] = "relay_message"


CoordinationEvent = Annotated[
    Union[
        ProposeMeeting,
        AcceptProposal,
        DeclineProposal,
        CounterPropose,
        CancelMatch,
        ProvideClue,
        ConfirmMeeting,
        AcknowledgeMeeting,
        SubmitFeedback,
        RelayMessage,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[CoordinationEvent] = TypeAdapter(CoordinationEvent)


def parse_event(data: dict) -> CoordinationEvent:
    """Validate a dict into its event model (raises ``ValidationError``)."""
    return _EVENT_ADAPTER.validate_python(data)
