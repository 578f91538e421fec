"""Audit subsystem: async JSONL log of match and ingestion events."""

from matchgraph.audit.schemas import AuditEvent
from matchgraph.audit.schemas import AuditEventType
from matchgraph.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
