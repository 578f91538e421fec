"""Unit tests for the match coordination state machine.

The repository is an in-memory stand-in with the same atomic semantics as
the Cypher statements; the link hook and audit logger are mocked.
"""

from __future__ import annotations

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from matchgraph.audit import AuditEventType
from matchgraph.coordination import AcceptProposal
from matchgraph.coordination import AcknowledgeMeeting
from matchgraph.coordination import AdvanceOutcome
from matchgraph.coordination import CancelMatch
from matchgraph.coordination import ConfirmMeeting
from matchgraph.coordination import ConversationSession
from matchgraph.coordination import CounterPropose
from matchgraph.coordination import DeclineProposal
from matchgraph.coordination import MatchCoordinator
from matchgraph.coordination import parse_event
from matchgraph.coordination import ProposeMeeting
from matchgraph.coordination import ProvideClue
from matchgraph.coordination import RelayMessage
from matchgraph.coordination import SubmitFeedback
from matchgraph.coordination.machine import MSG_BAD_TIME
from matchgraph.coordination.machine import MSG_BEFORE_MEETING
from matchgraph.coordination.machine import MSG_NO_MATCH
from matchgraph.coordination.machine import MSG_PAST_TIME
from matchgraph.coordination.machine import MSG_UNAVAILABLE
from matchgraph.models.relations import MatchStatus
from tests.unit.helpers.repository import InMemoryMatchRepository
from tests.unit.helpers.repository import make_match
from tests.unit.helpers.repository import T0

MEETING_TIME = "2026-03-05T19:00:00.000Z"
AFTER_MEETING = datetime(2026, 3, 6, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def repo():
    return InMemoryMatchRepository(make_match())


@pytest.fixture()
def audit_logger():
    return AsyncMock()


@pytest.fixture()
def coordinator(repo, audit_logger):
    return MatchCoordinator(repo, audit_logger=audit_logger)


def _session(user_id: str, at: datetime = T0) -> ConversationSession:
    return ConversationSession(user_id=user_id, received_at=at)


def _meeting_match(**overrides):
    defaults = {
        "status": MatchStatus.accepted,
        "proposed_time": MEETING_TIME,
        "venue": "Cafe Central",
        "proposed_by": "alice",
    }
    defaults.update(overrides)
    return make_match(**defaults)


async def _propose(coordinator, user_id="alice", when="2026-03-05T19:00:00Z", at=T0):
    return await coordinator.advance_match(
        _session(user_id, at), ProposeMeeting(proposed_time=when, venue="Cafe Central")
    )


# ===================================================================
# Resolution of the current match
# ===================================================================


class TestCurrentMatch:
    async def test_no_active_match(self, coordinator):
        result = await coordinator.advance_match(_session("carol"), AcceptProposal())
        assert result.outcome is AdvanceOutcome.no_active_match
        assert result.message_to_user == MSG_NO_MATCH

    async def test_store_unavailable(self, coordinator, repo):
        repo.available = False
        result = await coordinator.advance_match(_session("alice"), AcceptProposal())
        assert result.outcome is AdvanceOutcome.store_unavailable
        assert result.message_to_user == MSG_UNAVAILABLE

    async def test_terminal_matches_are_ignored(self, repo, coordinator):
        repo.add(make_match(status=MatchStatus.declined))
        result = await coordinator.advance_match(_session("alice"), CancelMatch())
        assert result.outcome is AdvanceOutcome.no_active_match

    async def test_most_recent_open_match_wins(self, repo, coordinator):
        repo.add(make_match(to_id="dave", created_at=T0 + timedelta(hours=1)))
        result = await _propose(coordinator)
        assert result.outcome is AdvanceOutcome.applied
        assert repo.get("alice", "dave").status is MatchStatus.proposal_sent
        assert repo.get("alice", "bob").status is MatchStatus.match_found


# ===================================================================
# Proposals
# ===================================================================


class TestProposal:
    async def test_initiator_proposes(self, coordinator, repo):
        result = await _propose(coordinator)

        assert result.outcome is AdvanceOutcome.applied
        assert result.status is MatchStatus.proposal_sent
        assert result.previous_status is MatchStatus.match_found
        assert result.other_user_id == "bob"
        assert "2026-03-05T19:00:00.000Z" in result.message_to_other
        stored = repo.get()
        assert stored.proposed_time == MEETING_TIME
        assert stored.proposed_by == "alice"
        assert stored.proposal_sent_at == T0

    async def test_recipient_cannot_propose_first(self, coordinator, repo):
        result = await _propose(coordinator, user_id="bob")
        assert result.outcome is AdvanceOutcome.rejected
        assert repo.get().status is MatchStatus.match_found

    async def test_unparseable_time_is_rejected(self, coordinator):
        result = await _propose(coordinator, when="next friday evening")
        assert result.outcome is AdvanceOutcome.rejected
        assert result.message_to_user == MSG_BAD_TIME

    async def test_past_time_is_rejected(self, coordinator):
        result = await _propose(coordinator, when="2026-02-01T19:00:00Z")
        assert result.outcome is AdvanceOutcome.rejected
        assert result.message_to_user == MSG_PAST_TIME

    async def test_default_venue_when_omitted(self, coordinator, repo):
        await coordinator.advance_match(
            _session("alice"), ProposeMeeting(proposed_time=MEETING_TIME)
        )
        assert repo.get().venue == "a public venue agreed by both parties"

    async def test_proposer_can_revise_pending_proposal(self, coordinator, repo):
        await _propose(coordinator)
        result = await _propose(coordinator, when="2026-03-06T18:00:00Z")

        assert result.outcome is AdvanceOutcome.applied
        assert result.status is MatchStatus.proposal_sent
        assert repo.get().proposed_time == "2026-03-06T18:00:00.000Z"


class TestResponse:
    async def test_recipient_accepts(self, coordinator, repo):
        await _propose(coordinator)
        result = await coordinator.advance_match(_session("bob"), AcceptProposal())

        assert result.outcome is AdvanceOutcome.applied
        assert result.status is MatchStatus.accepted
        assert result.other_user_id == "alice"
        assert repo.get().feedback == []

    async def test_proposer_cannot_accept_own_proposal(self, coordinator):
        await _propose(coordinator)
        result = await coordinator.advance_match(_session("alice"), AcceptProposal())
        assert result.outcome is AdvanceOutcome.rejected

    async def test_accept_without_proposal_is_rejected(self, coordinator):
        result = await coordinator.advance_match(_session("bob"), AcceptProposal())
        assert result.outcome is AdvanceOutcome.rejected

    async def test_decline_is_terminal(self, coordinator, repo):
        await _propose(coordinator)
        result = await coordinator.advance_match(
            _session("bob"), DeclineProposal(reason="busy")
        )
        assert result.status is MatchStatus.declined
        assert repo.get().is_terminal

    async def test_counter_proposal_hands_over_acceptance(self, coordinator, repo):
        await _propose(coordinator)
        counter = await coordinator.advance_match(
            _session("bob"), CounterPropose(proposed_time="2026-03-07T12:00:00Z")
        )
        assert counter.outcome is AdvanceOutcome.applied
        assert repo.get().proposed_by == "bob"

        rejected = await coordinator.advance_match(_session("bob"), AcceptProposal())
        assert rejected.outcome is AdvanceOutcome.rejected

        accepted = await coordinator.advance_match(_session("alice"), AcceptProposal())
        assert accepted.status is MatchStatus.accepted
        assert repo.get().proposed_time == "2026-03-07T12:00:00.000Z"


class TestCancel:
    @pytest.mark.parametrize(
        "status",
        [MatchStatus.match_found, MatchStatus.proposal_sent, MatchStatus.scheduled],
    )
    async def test_cancel_from_any_open_state(self, status):
        repo = InMemoryMatchRepository(_meeting_match(status=status))
        coordinator = MatchCoordinator(repo)

        result = await coordinator.advance_match(_session("bob"), CancelMatch())

        assert result.outcome is AdvanceOutcome.applied
        assert repo.get().status is MatchStatus.cancelled


# ===================================================================
# Meeting phase
# ===================================================================


class TestMeeting:
    async def test_clue_recorded_and_forwarded(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)

        result = await coordinator.advance_match(
            _session("bob"), ProvideClue(text="  green jacket ")
        )

        assert result.outcome is AdvanceOutcome.applied
        assert result.message_to_other.endswith("green jacket")
        assert [c.text for c in repo.get().recipient_clues] == ["green jacket"]

    async def test_duplicate_clue_is_unchanged(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)
        await coordinator.advance_match(_session("bob"), ProvideClue(text="green jacket"))

        result = await coordinator.advance_match(
            _session("bob"), ProvideClue(text="green jacket")
        )

        assert result.outcome is AdvanceOutcome.unchanged
        assert len(repo.get().recipient_clues) == 1

    async def test_clue_before_acceptance_is_rejected(self, coordinator):
        result = await coordinator.advance_match(
            _session("alice"), ProvideClue(text="red scarf")
        )
        assert result.outcome is AdvanceOutcome.rejected

    async def test_confirm_schedules_meeting(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)

        result = await coordinator.advance_match(_session("alice"), ConfirmMeeting())

        assert result.status is MatchStatus.scheduled

    async def test_acknowledge_does_not_change_state(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)

        result = await coordinator.advance_match(
            _session("alice", AFTER_MEETING), AcknowledgeMeeting()
        )

        assert result.outcome is AdvanceOutcome.unchanged
        assert repo.get().status is MatchStatus.accepted

    async def test_relay_forwards_text(self, coordinator, repo):
        result = await coordinator.advance_match(
            _session("alice"), RelayMessage(text="Running 5 minutes late")
        )
        assert result.outcome is AdvanceOutcome.unchanged
        assert result.message_to_other == "Running 5 minutes late"
        assert result.other_user_id == "bob"
        assert repo.update_calls == 0


# ===================================================================
# Feedback AND-join
# ===================================================================


class TestFeedback:
    @pytest.mark.parametrize("first,second", [("alice", "bob"), ("bob", "alice")])
    async def test_completion_needs_both_participants(self, first, second):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)

        one = await coordinator.advance_match(
            _session(first, AFTER_MEETING), SubmitFeedback(text="great time")
        )
        assert one.outcome is AdvanceOutcome.applied
        assert one.status is MatchStatus.accepted

        two = await coordinator.advance_match(
            _session(second, AFTER_MEETING), SubmitFeedback(text="had fun too")
        )
        assert two.status is MatchStatus.completed
        assert two.message_to_other is not None
        assert {f.user_id for f in repo.get().feedback} == {"alice", "bob"}

    async def test_duplicate_feedback_is_unchanged(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)
        await coordinator.advance_match(
            _session("alice", AFTER_MEETING), SubmitFeedback(text="great")
        )

        result = await coordinator.advance_match(
            _session("alice", AFTER_MEETING), SubmitFeedback(text="great again")
        )

        assert result.outcome is AdvanceOutcome.unchanged
        assert len(repo.get().feedback) == 1
        assert repo.get().status is MatchStatus.accepted

    async def test_blank_feedback_never_completes_the_match(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)
        await coordinator.advance_match(
            _session("alice", AFTER_MEETING), SubmitFeedback(text="great time")
        )

        with pytest.raises(ValidationError):
            SubmitFeedback(text="\t\n")

        assert repo.get().status is MatchStatus.accepted
        assert [f.text for f in repo.get().feedback] == ["great time"]

    async def test_feedback_before_meeting_is_rejected(self):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo)

        result = await coordinator.advance_match(
            _session("alice"), SubmitFeedback(text="great")
        )

        assert result.outcome is AdvanceOutcome.rejected
        assert result.message_to_user == MSG_BEFORE_MEETING

    async def test_feedback_is_audited(self, audit_logger):
        repo = InMemoryMatchRepository(_meeting_match())
        coordinator = MatchCoordinator(repo, audit_logger=audit_logger)

        await coordinator.advance_match(
            _session("alice", AFTER_MEETING), SubmitFeedback(text="great")
        )

        event_types = [call.args[0] for call in audit_logger.record.await_args_list]
        assert event_types == [
            AuditEventType.MATCH_TRANSITION,
            AuditEventType.FEEDBACK_RECORDED,
        ]


# ===================================================================
# Link side effect
# ===================================================================


class TestLinkHook:
    async def test_link_established_once_on_acceptance(self, repo):
        hook = AsyncMock(return_value="room-42")
        coordinator = MatchCoordinator(repo, link_hook=hook)
        await _propose(coordinator)

        result = await coordinator.advance_match(_session("bob"), AcceptProposal())

        assert result.match.connection_id == "room-42"
        assert repo.get().connection_id == "room-42"
        hook.assert_awaited_once()

        await coordinator.advance_match(_session("alice"), ConfirmMeeting())
        hook.assert_awaited_once()

    async def test_hook_failure_keeps_acceptance(self, repo):
        hook = AsyncMock(side_effect=RuntimeError("chat service down"))
        coordinator = MatchCoordinator(repo, link_hook=hook)
        await _propose(coordinator)

        result = await coordinator.advance_match(_session("bob"), AcceptProposal())

        assert result.status is MatchStatus.accepted
        assert result.link_error == "chat service down"
        assert repo.get().connection_id is None
        assert repo.link_claims == set()

    async def test_claimed_link_is_not_repeated(self, repo):
        hook = AsyncMock(return_value="room-42")
        coordinator = MatchCoordinator(repo, link_hook=hook)
        await _propose(coordinator)
        repo.link_claims.add(("alice", "bob"))

        result = await coordinator.advance_match(_session("bob"), AcceptProposal())

        assert result.status is MatchStatus.accepted
        hook.assert_not_awaited()


# ===================================================================
# Concurrency
# ===================================================================


class TestConcurrentUpdates:
    async def test_rereads_after_status_moved(self, repo):
        coordinator = MatchCoordinator(repo)
        original = repo.update_match_properties

        async def cancel_first(from_id, to_id, fields, **kwargs):
            if repo.update_calls == 0:
                repo.add(repo.get().model_copy(update={"status": MatchStatus.cancelled}))
            return await original(from_id, to_id, fields, **kwargs)

        repo.update_match_properties = cancel_first
        result = await _propose(coordinator)

        assert result.outcome is AdvanceOutcome.no_active_match
        assert repo.get().status is MatchStatus.cancelled

    async def test_persistent_conflict_reports_conflict(self, repo):
        coordinator = MatchCoordinator(repo)
        repo.update_match_properties = AsyncMock(return_value=False)

        result = await _propose(coordinator)

        assert result.outcome is AdvanceOutcome.conflict
        assert repo.update_match_properties.await_count == 2


# ===================================================================
# Event parsing
# ===================================================================


class TestParseEvent:
    def test_discriminates_on_type(self):
        event = parse_event({"type": "propose_meeting", "proposed_time": MEETING_TIME})
        assert isinstance(event, ProposeMeeting)

    def test_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            parse_event({"type": "teleport"})

    def test_rejects_empty_clue(self):
        with pytest.raises(ValidationError):
            parse_event({"type": "provide_clue", "text": ""})

    @pytest.mark.parametrize("event_type", ["provide_clue", "submit_feedback", "relay_message"])
    @pytest.mark.parametrize("text", ["   ", "\t\n"])
    def test_rejects_blank_text(self, event_type, text):
        with pytest.raises(ValidationError):
            parse_event({"type": event_type, "text": text})

    def test_text_is_stripped(self):
        event = parse_event({"type": "submit_feedback", "text": "  lovely evening \n"})
        assert event.text == "lovely evening"
