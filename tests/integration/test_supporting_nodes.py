"""Integration tests for accounts, agents and places."""

from __future__ import annotations

from matchgraph.models.nodes import Account
from matchgraph.models.nodes import Agent
from matchgraph.models.nodes import Person
from matchgraph.models.nodes import PersonStatus
from matchgraph.models.nodes import Place
from matchgraph.models.relations import HasAccount


class TestPeople:
    async def test_status_is_only_set_on_creation(self, service):
        await service.upsert_person(Person(id="alice", status=PersonStatus.onboarding))
        await service.upsert_person(
            Person(id="alice", name="Alice", status=PersonStatus.active, metadata={"city": "Oslo"})
        )

        person = await service.repository.get_person("alice")
        assert person.status is PersonStatus.onboarding
        assert person.name == "Alice"
        assert person.metadata == {"city": "Oslo"}

    async def test_deactivate(self, service):
        await service.upsert_person(Person(id="alice"))

        assert await service.repository.deactivate_person("alice")

        person = await service.repository.get_person("alice")
        assert person.status is PersonStatus.inactive

    async def test_unknown_person(self, service):
        assert await service.repository.get_person("ghost") is None
        assert await service.repository.update_person_status("ghost", PersonStatus.active) is False


class TestAccounts:
    async def test_link_and_lookup(self, service):
        await service.upsert_person(Person(id="alice"))
        account = Account(platform="telegram", identifier="1001", username="alice_k")

        assert await service.link_account("alice", account, HasAccount(is_primary=True))
        assert await service.link_account("alice", account, HasAccount(is_primary=True))

        accounts = await service.repository.get_person_accounts("alice")
        assert [(a.platform, a.identifier, a.username) for a in accounts] == [
            ("telegram", "1001", "alice_k")
        ]
        owner = await service.repository.find_person_by_account("telegram", "1001")
        assert owner.id == "alice"

    async def test_link_to_missing_person_fails(self, service):
        account = Account(platform="telegram", identifier="1002")

        assert await service.link_account("ghost", account) is False


class TestAgentsAndPlaces:
    async def test_agent_manages_person_and_account(self, service):
        await service.upsert_person(Person(id="alice"))
        assert await service.repository.upsert_agent(Agent(agent_id="cupid", name="Cupid"))

        assert await service.repository.link_managed_by("alice", "cupid")
        assert await service.repository.link_managed_on(
            "cupid", Account(platform="telegram", identifier="bot-1")
        )

        agent = await service.repository.get_person_agent("alice")
        assert agent.agent_id == "cupid"
        assert agent.name == "Cupid"

    async def test_places(self, service):
        await service.upsert_person(Person(id="alice"))
        await service.repository.upsert_agent(Agent(agent_id="cupid"))
        place = Place(name="Boulder Hall", venue_type="climbing gym")

        assert await service.repository.upsert_place(place)
        assert await service.repository.link_attends("alice", "Boulder Hall", "weekly")
        assert await service.repository.link_operates_at("cupid", "Boulder Hall")

        stored = await service.repository.get_place("Boulder Hall")
        assert stored.venue_type == "climbing gym"
        assert await service.repository.link_attends("alice", "Nowhere") is False
