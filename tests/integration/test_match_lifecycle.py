"""Integration tests for match creation and coordination against Neo4j."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from matchgraph.coordination import AdvanceOutcome
from matchgraph.coordination import ConversationSession
from matchgraph.coordination.events import AcceptProposal
from matchgraph.coordination.events import CancelMatch
from matchgraph.coordination.events import ConfirmMeeting
from matchgraph.coordination.events import ProposeMeeting
from matchgraph.coordination.events import SubmitFeedback
from matchgraph.models.nodes import Person
from matchgraph.models.nodes import PersonStatus
from matchgraph.models.relations import MatchStatus
from matchgraph.timeutil import to_iso
from matchgraph.timeutil import utcnow


async def _people(service, *ids: str) -> None:
    for person_id in ids:
        assert await service.upsert_person(Person(id=person_id, name=person_id.title()))


async def _status(service, person_id: str) -> PersonStatus:
    person = await service.repository.get_person(person_id)
    assert person is not None
    return person.status


def _at(user_id: str, when) -> ConversationSession:
    return ConversationSession(user_id=user_id, received_at=when)


class TestMatchUniqueness:
    async def test_reverse_pair_is_not_created(self, service):
        await _people(service, "alice", "bob")

        assert await service.create_match("alice", "bob", "Both climb") is True
        assert await service.create_match("bob", "alice", "Both climb") is False

        match = await service.repository.get_match("bob", "alice")
        assert (match.from_id, match.to_id) == ("alice", "bob")

    async def test_store_rejects_reverse_even_without_precheck(self, service):
        await _people(service, "alice", "bob")
        assert await service.repository.create_match("alice", "bob", "first")

        assert await service.repository.create_match("bob", "alice", "second") is False

    async def test_concurrent_opposite_creates_yield_one_match(self, service):
        await _people(service, "alice", "bob")

        results = await asyncio.gather(
            service.repository.create_match("alice", "bob", "a->b"),
            service.repository.create_match("bob", "alice", "b->a"),
        )

        assert sorted(results) == [False, True]
        assert await service.has_existing_match("alice", "bob")

    async def test_missing_person_is_not_matched(self, service):
        await _people(service, "alice")

        assert await service.create_match("alice", "ghost", "n/a") is False

    async def test_creation_marks_both_people_matched(self, service):
        await _people(service, "alice", "bob")

        await service.create_match("alice", "bob", "Both climb", compatibility_score=0.8)

        assert await _status(service, "alice") is PersonStatus.matched
        assert await _status(service, "bob") is PersonStatus.matched
        match = await service.repository.get_match("alice", "bob")
        assert match.status is MatchStatus.match_found
        assert match.compatibility_score == 0.8


class TestCoordinationLifecycle:
    async def test_meeting_to_completion(self, make_service):
        links: list[str] = []

        async def link_hook(match):
            links.append(f"{match.from_id}:{match.to_id}")
            return "room-42"

        service = await make_service(link_hook=link_hook)
        await _people(service, "alice", "bob")
        await service.create_match("alice", "bob", "Both climb")

        start = utcnow() - timedelta(days=2)
        meeting = start + timedelta(hours=1)

        proposed = await service.advance_match(
            _at("alice", start),
            ProposeMeeting(proposed_time=to_iso(meeting), venue="Boulder Hall"),
        )
        assert proposed.status is MatchStatus.proposal_sent
        assert proposed.other_user_id == "bob"

        accepted = await service.advance_match(
            _at("bob", start + timedelta(minutes=10)), AcceptProposal()
        )
        assert accepted.status is MatchStatus.accepted
        assert accepted.match.connection_id == "room-42"

        confirmed = await service.advance_match(
            _at("alice", start + timedelta(minutes=20)), ConfirmMeeting()
        )
        assert confirmed.status is MatchStatus.scheduled

        first = await service.advance_match(_at("bob", utcnow()), SubmitFeedback(text="Great"))
        assert first.status is MatchStatus.scheduled
        assert await _status(service, "bob") is PersonStatus.matched

        second = await service.advance_match(
            _at("alice", utcnow()), SubmitFeedback(text="Lovely")
        )
        assert second.status is MatchStatus.completed

        stored = await service.repository.get_match("alice", "bob")
        assert stored.status is MatchStatus.completed
        assert {f.user_id for f in stored.feedback} == {"alice", "bob"}
        assert stored.connection_id == "room-42"
        assert links == ["alice:bob"]
        assert await _status(service, "alice") is PersonStatus.active
        assert await _status(service, "bob") is PersonStatus.active

    async def test_cancel_releases_people_without_other_matches(self, service):
        await _people(service, "alice", "bob", "carol")
        await service.create_match("alice", "bob", "Both climb")
        await service.create_match("carol", "bob", "Both paint")

        result = await service.advance_match(_at("alice", utcnow()), CancelMatch())

        assert result.outcome is AdvanceOutcome.applied
        assert result.status is MatchStatus.cancelled
        assert await _status(service, "alice") is PersonStatus.active
        # bob still has the open match with carol
        assert await _status(service, "bob") is PersonStatus.matched

    async def test_user_without_match_gets_no_active_match(self, service):
        await _people(service, "alice")

        result = await service.advance_match(_at("alice", utcnow()), CancelMatch())

        assert result.outcome is AdvanceOutcome.no_active_match


class TestMeetingListings:
    async def test_upcoming_and_past_windows(self, service):
        await _people(service, "alice", "bob", "carol", "dave")
        await service.create_match("alice", "bob", "soon")
        await service.create_match("carol", "dave", "earlier")
        now = utcnow()

        await service.repository.update_match_properties(
            "alice",
            "bob",
            {"status": MatchStatus.scheduled, "proposed_time": to_iso(now + timedelta(hours=3))},
        )
        await service.repository.update_match_properties(
            "carol",
            "dave",
            {"status": MatchStatus.accepted, "proposed_time": to_iso(now - timedelta(hours=3))},
        )

        upcoming = await service.list_upcoming_meetings(now=now)
        past = await service.list_past_meetings(now=now)

        assert [(m.from_id, m.to_id) for m in upcoming] == [("alice", "bob")]
        assert [(m.from_id, m.to_id) for m in past] == [("carol", "dave")]

    async def test_sweep_expires_stale_match(self, service):
        await _people(service, "alice", "bob")
        await service.repository.create_match(
            "alice", "bob", "stale", now=utcnow() - timedelta(days=3)
        )

        report = await service.sweep_matches()

        assert [e.status for e in report.expired] == [MatchStatus.expired_no_proposal]
        stored = await service.repository.get_match("alice", "bob")
        assert stored.status is MatchStatus.expired_no_proposal
        assert await _status(service, "alice") is PersonStatus.active
