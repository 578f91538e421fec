"""Shared fixtures: suite markers and the Neo4j instance used by integration tests.

Integration tests run against ``MATCHGRAPH_TEST_NEO4J_URI`` when it is set
(in the environment or a repository-root ``.env``), otherwise against a
throwaway ``neo4j:5-community`` testcontainer.  Without either, they skip.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import pytest
from dotenv import load_dotenv
from neo4j import AsyncGraphDatabase
from neo4j.exceptions import DriverError
from neo4j.exceptions import Neo4jError
from testcontainers.core.container import DockerContainer

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
NEO4J_IMAGE = "neo4j:5-community"
BOLT_PORT = 7687

load_dotenv(dotenv_path=ROOT / ".env", override=False)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Mark items under ``tests/<suite>/`` with the ``<suite>`` marker."""
    suites = {"unit": pytest.mark.unit, "integration": pytest.mark.integration}
    for item in items:
        try:
            parts = Path(str(item.fspath)).resolve().relative_to(ROOT / "tests").parts
        except ValueError:
            continue
        if len(parts) > 1 and parts[0] in suites:
            item.add_marker(suites[parts[0]])


async def _wait_for_bolt(uri: str, *, attempts: int = 30, interval: float = 1.0) -> None:
    driver = AsyncGraphDatabase.driver(uri)
    try:
        for attempt in range(1, attempts + 1):
            try:
                await driver.verify_connectivity()
                return
            except (DriverError, Neo4jError, OSError) as exc:
                if attempt == attempts:
                    raise
                logger.debug("Neo4j at %s not ready (%d/%d): %s", uri, attempt, attempts, exc)
                await asyncio.sleep(interval)
    finally:
        await driver.close()


# ---------------------------------------------------------------------------
# Neo4j
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def neo4j_container():
    """Bolt URI of the Neo4j instance shared by the whole session."""
    external = os.environ.get("MATCHGRAPH_TEST_NEO4J_URI")
    if external:
        asyncio.run(_wait_for_bolt(external, attempts=3))
        yield external
        return

    container = (
        DockerContainer(NEO4J_IMAGE)
        .with_exposed_ports(BOLT_PORT)
        .with_env("NEO4J_AUTH", "none")
    )
    try:
        container.start()
    except Exception as exc:  # docker SDK raises its own hierarchy
        pytest.skip(f"Docker unavailable for Neo4j container: {exc}")

    try:
        uri = f"bolt://{container.get_container_host_ip()}:{container.get_exposed_port(BOLT_PORT)}"
        asyncio.run(_wait_for_bolt(uri))
        yield uri
    finally:
        container.stop()


@pytest.fixture()
async def neo4j_driver(neo4j_container):
    """Raw async driver for assertions that bypass the repository."""
    driver = AsyncGraphDatabase.driver(neo4j_container)
    yield driver
    await driver.close()
