"""Integration fixtures: a started engine against the Neo4j testcontainer."""

from __future__ import annotations

import pytest

from matchgraph import MatchmakingService
from matchgraph.config import AuditConfig
from matchgraph.config import GraphConfig


@pytest.fixture()
async def make_service(neo4j_container, tmp_path):
    """Yield a factory for started services; all of them are stopped on teardown."""
    started: list[MatchmakingService] = []

    async def _make(**kwargs) -> MatchmakingService:
        kwargs.setdefault("audit_config", AuditConfig(file_path=str(tmp_path / "audit.jsonl")))
        service = MatchmakingService(GraphConfig(uri=neo4j_container), **kwargs)
        assert await service.start()
        started.append(service)
        return service

    yield _make

    for service in started:
        await service.stop()


@pytest.fixture()
async def service(make_service):
    return await make_service()


@pytest.fixture(autouse=True)
async def clean_graph(neo4j_driver):
    """Empty the database before and after each test."""
    async with neo4j_driver.session() as session:
        await session.run("MATCH (n) DETACH DELETE n")
    yield
    async with neo4j_driver.session() as session:
        await session.run("MATCH (n) DETACH DELETE n")
