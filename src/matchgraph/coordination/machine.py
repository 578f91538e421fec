"""Match coordination state machine.

``MatchCoordinator.advance_match`` applies one typed event from one user to
that user's most recently created open match::

    match_found -> proposal_sent -> accepted -> scheduled -> completed
                              \\-> declined      (any open) -> cancelled
    match_found -(window)-> expired_no_proposal
    proposal_sent -(window)-> expired_no_response

Every write is read -> decide -> compare-and-set on the observed status.
When the status moved underneath us the match is re-read and the decision
made once more.  Completion from feedback is an AND-join: the match is only
completed once both participants have submitted feedback, in either order.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field

from matchgraph.audit import AuditEventType
from matchgraph.audit import AuditLogger
from matchgraph.config import CoordinationConfig
from matchgraph.coordination.events import AcceptProposal
from matchgraph.coordination.events import AcknowledgeMeeting
from matchgraph.coordination.events import CancelMatch
from matchgraph.coordination.events import ConfirmMeeting
from matchgraph.coordination.events import CoordinationEvent
from matchgraph.coordination.events import CounterPropose
from matchgraph.coordination.events import DeclineProposal
from matchgraph.coordination.events import ProposeMeeting
from matchgraph.coordination.events import ProvideClue
from matchgraph.coordination.events import RelayMessage
from matchgraph.coordination.events import SubmitFeedback
from matchgraph.coordination.session import ConversationSession
from matchgraph.graph.store import FeedbackOutcome
from matchgraph.graph.store import GraphRepository
from matchgraph.models.relations import ACTIVE_STATUSES
from matchgraph.models.relations import Clue
from matchgraph.models.relations import FeedbackEntry
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus
from matchgraph.models.relations import MEETING_STATUSES
from matchgraph.timeutil import ensure_aware
from matchgraph.timeutil import normalize_iso
from matchgraph.timeutil import parse_iso

logger = logging.getLogger(__name__)

LinkHook = Callable[[Match], Awaitable[str]]

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

MSG_UNAVAILABLE = "The service is temporarily unavailable. Please try again shortly."
MSG_NO_MATCH = "You have no active introduction right now."
MSG_NOT_ALLOWED = "That action is not available at this stage of your introduction."
MSG_CONFLICT = "Your introduction changed while we were updating it. Please try again."
MSG_BAD_TIME = "That meeting time could not be understood. Please use a full date and time."
MSG_PAST_TIME = "That meeting time is in the past. Please suggest a future time."
MSG_BEFORE_MEETING = "Your meeting has not happened yet. Share feedback after you meet."


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class AdvanceOutcome(str, Enum):
    """What ``advance_match`` did with an event."""

    applied = "applied"
    unchanged = "unchanged"
    rejected = "rejected"
    no_active_match = "no_active_match"
    store_unavailable = "store_unavailable"
    conflict = "conflict"


class AdvanceResult(BaseModel):
    """Outcome of one event plus the messages for both participants."""

    outcome: AdvanceOutcome
    status: MatchStatus | None = Field(
        default=None,
        description="Match status after the event.",
    )
    previous_status: MatchStatus | None = None
    message_to_user: str = ""
    message_to_other: str | None = None
    other_user_id: str | None = None
    match: Match | None = None
    link_error: str | None = None


class _Write(str, Enum):
    update = "update"
    clue = "clue"
    feedback = "feedback"


@dataclass
class _Decision:
    outcome: AdvanceOutcome
    message_to_user: str
    message_to_other: str | None = None
    write: _Write | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    clue: Clue | None = None
    feedback: FeedbackEntry | None = None


def _reject(message: str = MSG_NOT_ALLOWED) -> _Decision:
    return _Decision(outcome=AdvanceOutcome.rejected, message_to_user=message)


def _unchanged(message: str, message_to_other: str | None = None) -> _Decision:
    return _Decision(
        outcome=AdvanceOutcome.unchanged,
        message_to_user=message,
        message_to_other=message_to_other,
    )


def _update(message: str, message_to_other: str | None, **fields: Any) -> _Decision:
    return _Decision(
        outcome=AdvanceOutcome.applied,
        message_to_user=message,
        message_to_other=message_to_other,
        write=_Write.update,
        fields=fields,
    )


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class MatchCoordinator:
    """Drives matches through the introduction protocol."""

    def __init__(
        self,
        repository: GraphRepository,
        config: CoordinationConfig | None = None,
        *,
        link_hook: LinkHook | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._repo = repository
        self._config = config or CoordinationConfig()
        self._link_hook = link_hook
        self._audit = audit_logger

    async def current_match(self, user_id: str) -> Match | None:
        """The user's most recently created open match, if any."""
        matches = await self._repo.get_matches_for(user_id, statuses=list(ACTIVE_STATUSES))
        if not matches:
            return None
        return matches[0]

    async def advance_match(
        self,
        session: ConversationSession,
        event: CoordinationEvent,
    ) -> AdvanceResult:
        """Apply *event* from ``session.user_id`` to their current match."""
        for attempt in (1, 2):
            match = await self.current_match(session.user_id)
            if match is None:
                if not self._repo.is_available:
                    return AdvanceResult(
                        outcome=AdvanceOutcome.store_unavailable,
                        message_to_user=MSG_UNAVAILABLE,
                    )
                return AdvanceResult(
                    outcome=AdvanceOutcome.no_active_match,
                    message_to_user=MSG_NO_MATCH,
                )

            decision = self._decide(match, session, event)
            if decision.write is None:
                return self._result(decision, match, match, session.user_id)

            written = await self._write(match, session, decision)
            if written is None:
                return AdvanceResult(
                    outcome=AdvanceOutcome.store_unavailable,
                    status=match.status,
                    previous_status=match.status,
                    message_to_user=MSG_UNAVAILABLE,
                    match=match,
                )
            if isinstance(written, Match):
                return await self._after_write(match, written, session, event, decision)
            if isinstance(written, _Decision):
                return self._result(written, match, match, session.user_id)

            logger.info(
                "Match %s -> %s changed during %s (attempt %d); re-reading",
                match.from_id,
                match.to_id,
                type(event).__name__,
                attempt,
            )

        return AdvanceResult(outcome=AdvanceOutcome.conflict, message_to_user=MSG_CONFLICT)

    # ----- Decide -----

    def _decide(
        self,
        match: Match,
        session: ConversationSession,
        event: CoordinationEvent,
    ) -> _Decision:
        user_id = session.user_id
        now = ensure_aware(session.received_at)
        status = match.status

        if isinstance(event, CancelMatch):
            return _update(
                "The introduction has been cancelled.",
                "The other person cancelled the introduction.",
                status=MatchStatus.cancelled,
            )

        if isinstance(event, RelayMessage):
            return _unchanged("Message forwarded.", event.text)

        if isinstance(event, ProposeMeeting):
            return self._decide_proposal(match, user_id, event, now)

        if isinstance(event, CounterPropose):
            if status is not MatchStatus.proposal_sent or self._proposer(match) == user_id:
                return _reject()
            when = normalize_iso(event.proposed_time)
            if when is None:
                return _reject(MSG_BAD_TIME)
            if parse_iso(when) < now:
                return _reject(MSG_PAST_TIME)
            venue = event.venue or match.venue or self._config.default_venue
            return _update(
                "Your suggested time was sent.",
                f"A different time was suggested: {when} at {venue}.",
                proposed_time=when,
                venue=venue,
                proposed_by=user_id,
            )

        if isinstance(event, AcceptProposal):
            if status is not MatchStatus.proposal_sent or self._proposer(match) == user_id:
                return _reject()
            return _update(
                "You accepted the meeting.",
                f"Your proposal was accepted: {match.proposed_time} at {match.venue}.",
                status=MatchStatus.accepted,
            )

        if isinstance(event, DeclineProposal):
            if status is not MatchStatus.proposal_sent or self._proposer(match) == user_id:
                return _reject()
            return _update(
                "You declined the meeting.",
                "Your proposal was declined.",
                status=MatchStatus.declined,
            )

        if isinstance(event, ProvideClue):
            if status not in MEETING_STATUSES:
                return _reject()
            text = event.text
            if any(clue.text == text for clue in match.clues_of(user_id)):
                return _unchanged("You already shared that clue.")
            return _Decision(
                outcome=AdvanceOutcome.applied,
                message_to_user="Clue shared.",
                message_to_other=f"A clue to help you find your match: {text}",
                write=_Write.clue,
                clue=Clue(text=text, timestamp=now),
            )

        if isinstance(event, ConfirmMeeting):
            if status is not MatchStatus.accepted or match.proposed_time is None:
                return _reject()
            return _update(
                "Your meeting is confirmed.",
                f"The meeting is confirmed: {match.proposed_time} at {match.venue}.",
                status=MatchStatus.scheduled,
            )

        if isinstance(event, AcknowledgeMeeting):
            if status not in MEETING_STATUSES:
                return _reject()
            if not self._meeting_elapsed(match, now):
                return _unchanged(MSG_BEFORE_MEETING)
            return _unchanged("Good to hear you met. How did it go?")

        if isinstance(event, SubmitFeedback):
            if status not in MEETING_STATUSES:
                return _reject()
            if not self._meeting_elapsed(match, now):
                return _reject(MSG_BEFORE_MEETING)
            if match.has_feedback_from(user_id):
                return _unchanged("Your feedback was already recorded.")
            return _Decision(
                outcome=AdvanceOutcome.applied,
                message_to_user="Thank you for your feedback.",
                write=_Write.feedback,
                feedback=FeedbackEntry(user_id=user_id, text=event.text, timestamp=now),
            )

        return _reject()

    def _decide_proposal(
        self,
        match: Match,
        user_id: str,
        event: ProposeMeeting,
        now: datetime,
    ) -> _Decision:
        when = normalize_iso(event.proposed_time)
        if match.status is MatchStatus.match_found:
            if not match.is_initiator(user_id):
                return _reject()
        elif match.status is MatchStatus.proposal_sent:
            if self._proposer(match) != user_id:
                return _reject()
        else:
            return _reject()
        if when is None:
            return _reject(MSG_BAD_TIME)
        if parse_iso(when) < now:
            return _reject(MSG_PAST_TIME)

        venue = event.venue or match.venue or self._config.default_venue
        fields: dict[str, Any] = {"proposed_time": when, "venue": venue, "proposed_by": user_id}
        if event.venue_context is not None:
            fields["venue_context"] = event.venue_context
        if match.status is MatchStatus.match_found:
            return _update(
                "Your meeting proposal was sent.",
                f"You have a meeting proposal: {when} at {venue}.",
                status=MatchStatus.proposal_sent,
                proposal_sent_at=now,
                **fields,
            )
        return _update(
            "Your proposal was updated.",
            f"The meeting proposal changed: {when} at {venue}.",
            **fields,
        )

    @staticmethod
    def _proposer(match: Match) -> str:
        return match.proposed_by or match.from_id

    @staticmethod
    def _meeting_elapsed(match: Match, now: datetime) -> bool:
        when = parse_iso(match.proposed_time)
        return when is not None and when <= ensure_aware(now)

    # ----- Write -----

    async def _write(
        self,
        match: Match,
        session: ConversationSession,
        decision: _Decision,
    ) -> Match | _Decision | bool | None:
        """Persist *decision*.

        Returns the updated match, a replacement decision (no state change),
        ``False`` when the match moved underneath us, or ``None`` when the
        store is unavailable.
        """
        now = session.received_at
        if decision.write is _Write.clue:
            ok = await self._repo.append_clue(match, session.user_id, decision.clue, now=now)
            if not ok:
                return None if not self._repo.is_available else False
            field_name = "initiator_clues" if match.is_initiator(session.user_id) else "recipient_clues"
            return match.model_copy(
                update={field_name: [*match.clues_of(session.user_id), decision.clue], "updated_at": now}
            )

        if decision.write is _Write.feedback:
            outcome = await self._repo.append_feedback(
                match.from_id, match.to_id, decision.feedback, now=now
            )
            if outcome is None:
                return None
            if outcome is FeedbackOutcome.not_allowed:
                return False
            if outcome is FeedbackOutcome.duplicate:
                return _unchanged("Your feedback was already recorded.")
            update: dict[str, Any] = {
                "feedback": [*match.feedback, decision.feedback],
                "updated_at": now,
            }
            if outcome is FeedbackOutcome.completed:
                update["status"] = MatchStatus.completed
                decision.message_to_other = (
                    "You have both shared feedback. This introduction is complete."
                )
            return match.model_copy(update=update)

        ok = await self._repo.update_match_properties(
            match.from_id,
            match.to_id,
            decision.fields,
            expected_status=match.status,
            now=now,
        )
        if not ok:
            return None if not self._repo.is_available else False
        return match.model_copy(update={**decision.fields, "updated_at": now})

    async def _after_write(
        self,
        before: Match,
        after: Match,
        session: ConversationSession,
        event: CoordinationEvent,
        decision: _Decision,
    ) -> AdvanceResult:
        link_error: str | None = None
        if (
            after.status is MatchStatus.accepted
            and before.status is not MatchStatus.accepted
            and after.connection_id is None
        ):
            after, link_error = await self._establish_link(after, session)

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.MATCH_TRANSITION,
                from_id=after.from_id,
                to_id=after.to_id,
                user_id=session.user_id,
                event=event.type,
                previous_status=before.status.value,
                status=after.status.value,
            )
            if decision.write is _Write.feedback:
                await self._audit.record(
                    AuditEventType.FEEDBACK_RECORDED,
                    from_id=after.from_id,
                    to_id=after.to_id,
                    user_id=session.user_id,
                    completed=after.status is MatchStatus.completed,
                )

        logger.info(
            "Match %s -> %s: %s by %s (%s -> %s)",
            after.from_id,
            after.to_id,
            event.type,
            session.user_id,
            before.status.value,
            after.status.value,
        )
        result = self._result(decision, before, after, session.user_id)
        result.link_error = link_error
        return result

    async def _establish_link(
        self,
        match: Match,
        session: ConversationSession,
    ) -> tuple[Match, str | None]:
        """Run the link hook once per pair; the claim guards concurrent callers."""
        if self._link_hook is None:
            return match, None
        if not await self._repo.claim_link(match.from_id, match.to_id, now=session.received_at):
            logger.debug("Link for %s -> %s already claimed", match.from_id, match.to_id)
            return match, None
        try:
            connection_id = await self._link_hook(match)
        except Exception as exc:
            logger.exception("Link hook failed for %s -> %s", match.from_id, match.to_id)
            await self._repo.release_link_claim(match.from_id, match.to_id)
            return match, str(exc)

        if not await self._repo.record_link(
            match.from_id, match.to_id, connection_id, now=session.received_at
        ):
            logger.warning(
                "Could not record link %s for %s -> %s",
                connection_id,
                match.from_id,
                match.to_id,
            )
            return match, "link could not be recorded"
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.LINK_ESTABLISHED,
                from_id=match.from_id,
                to_id=match.to_id,
                connection_id=connection_id,
            )
        return match.model_copy(
            update={"connection_id": connection_id, "linked_at": session.received_at}
        ), None

    def _result(
        self,
        decision: _Decision,
        before: Match,
        after: Match,
        user_id: str,
    ) -> AdvanceResult:
        return AdvanceResult(
            outcome=decision.outcome,
            status=after.status,
            previous_status=before.status,
            message_to_user=decision.message_to_user,
            message_to_other=decision.message_to_other,
            other_user_id=after.other_party(user_id),
            match=after,
        )
