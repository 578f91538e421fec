"""Audit records for match and ingestion activity."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field

# Payload keys that name a person; their values are indexed in ``person_ids``.
PERSON_KEYS = ("person_id", "user_id", "from_id", "to_id")


class AuditEventType(str, Enum):
    MATCH_CREATED = "MATCH_CREATED"
    MATCH_TRANSITION = "MATCH_TRANSITION"
    MATCH_EXPIRED = "MATCH_EXPIRED"
    FEEDBACK_RECORDED = "FEEDBACK_RECORDED"
    LINK_ESTABLISHED = "LINK_ESTABLISHED"
    DIMENSION_RECORDED = "DIMENSION_RECORDED"


class AuditEvent(BaseModel):
    """One line of the audit file."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType
    person_ids: list[str] = Field(
        default_factory=list,
        description="People the event concerns, in payload order.",
    )
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, event_type: AuditEventType, payload: dict[str, Any]) -> AuditEvent:
        people: list[str] = []
        for key in PERSON_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value not in people:
                people.append(value)
        return cls(event_type=event_type, person_ids=people, payload=payload)

    def concerns(self, person_id: str) -> bool:
        return person_id in self.person_ids
