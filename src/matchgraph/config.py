"""Application configuration dataclasses.

Frozen dataclasses with defaults for each subsystem.  Only the graph
connection settings can be read from the environment; everything else is
overridden at construction time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class GraphConfig:
    """Bolt connection, pool and supervision settings."""

    uri: str = "bolt://localhost:7687"
    user: str | None = None
    password: str | None = None
    database: str | None = None
    # Driver pool
    max_pool_size: int = 50
    acquisition_timeout_seconds: float = 10.0
    connection_timeout_seconds: float = 10.0
    max_connection_lifetime_seconds: float = 3600.0
    # Liveness
    probe_timeout_seconds: float = 5.0
    operation_timeout_seconds: float = 30.0
    # Reconnect supervision
    reconnect_delay_seconds: float = 5.0
    max_reconnect_attempts: int = 5
    health_check_interval_seconds: float = 30.0
    health_check_min_spacing_seconds: float = 15.0
    failed_health_reconnect_delay_seconds: float = 1.0

    @classmethod
    def from_env(cls, prefix: str = "MATCHGRAPH_GRAPH_") -> GraphConfig:
        """Build a config from ``{prefix}URI``/``USER``/``PASSWORD``/``DATABASE``."""
        return cls(
            uri=os.environ.get(f"{prefix}URI", cls.uri),
            user=os.environ.get(f"{prefix}USER") or None,
            password=os.environ.get(f"{prefix}PASSWORD") or None,
            database=os.environ.get(f"{prefix}DATABASE") or None,
        )

    @property
    def auth(self) -> tuple[str, str] | None:
        if self.user is None:
            return None
        return (self.user, self.password or "")


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry for transaction conflicts."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.1


@dataclass(frozen=True)
class SearchConfig:
    """Similarity search and duplicate detection tuning."""

    oversample_factor: int = 2
    similarity_function: str = "cosine"
    duplicate_threshold: float = 0.9
    duplicate_candidate_k: int = 100
    default_limit: int = 10
    persona_total_limit: int = 15
    desired_total_limit: int = 12


@dataclass(frozen=True)
class CoordinationConfig:
    """Windows and reminder offsets for the match protocol."""

    proposal_window_hours: float = 24.0
    response_window_hours: float = 24.0
    reminder_offsets_hours: tuple[float, ...] = (8.0, 16.0)
    upcoming_meeting_window_hours: float = 24.0
    feedback_window_hours: float = 24.0
    default_venue: str = "a public venue agreed by both parties"


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "matchgraph_audit.jsonl"
    enabled: bool = True
