"""Unit test fixtures: FastMCP client over an unreachable graph store."""

from __future__ import annotations

import pytest
from fastmcp import Client
from neo4j.exceptions import ServiceUnavailable

from matchgraph.config import AuditConfig
from matchgraph.config import GraphConfig


def _unreachable_driver(config):
    raise ServiceUnavailable(f"Cannot resolve {config.uri}")


@pytest.fixture()
async def mcp_client(tmp_path):
    """Yield a FastMCP Client wired to a server running in degraded mode."""
    from matchgraph.server import configure
    from matchgraph.server import mcp
    from matchgraph.server import shutdown

    await configure(
        GraphConfig(
            uri="bolt://unreachable.invalid:7687",
            reconnect_delay_seconds=0.01,
            max_reconnect_attempts=1,
        ),
        audit_config=AuditConfig(file_path=str(tmp_path / "audit.jsonl")),
        driver_factory=_unreachable_driver,
    )

    async with Client(mcp) as client:
        yield client

    await shutdown()
