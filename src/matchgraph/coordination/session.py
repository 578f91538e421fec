"""Per-request conversation context passed explicitly to the coordinator."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from datetime import datetime

from matchgraph.timeutil import utcnow


@dataclass(frozen=True)
class ConversationSession:
    """Who is speaking, where, and when the message arrived."""

    user_id: str
    agent_id: str | None = None
    room_id: str | None = None
    raw_text: str = ""
    received_at: datetime = field(default_factory=utcnow)
