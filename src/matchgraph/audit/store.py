"""JSONL audit trail.

Each event is one JSON object per line.  Writes happen off the event loop
and are serialized per logger; a write that fails is logged and dropped so
auditing never fails a match or ingestion operation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from matchgraph.audit.schemas import AuditEvent
from matchgraph.audit.schemas import AuditEventType
from matchgraph.config import AuditConfig

logger = logging.getLogger(__name__)


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(line)


def _parse_lines(path: Path, raw: str) -> Iterator[AuditEvent]:
    for line_no, line in enumerate(raw.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            yield AuditEvent.model_validate_json(line)
        except ValidationError:
            logger.warning("Ignoring unreadable audit line %d in %s", line_no, path)


class AuditLogger:
    def __init__(self, config: AuditConfig) -> None:
        self.config = config
        self.path = Path(config.file_path)
        self._lock = asyncio.Lock()

    async def log(self, event: AuditEvent) -> None:
        if not self.config.enabled:
            return
        line = event.model_dump_json() + "\n"
        try:
            async with self._lock:
                await asyncio.to_thread(_append_line, self.path, line)
        except OSError as exc:
            logger.error(
                "Dropped %s audit event (cannot write %s): %s",
                event.event_type.value,
                self.path,
                exc,
            )

    async def record(self, event_type: AuditEventType, **payload: Any) -> None:
        """Log an event built from keyword payload; person ids are extracted."""
        await self.log(AuditEvent.build(event_type, payload))

    async def read_events(
        self,
        *,
        event_type: AuditEventType | None = None,
        person_id: str | None = None,
        since: float | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        """Events in file order, filtered; with *limit*, only the most recent ones."""
        if not self.path.exists():
            return []
        async with self._lock:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")

        events = [
            event
            for event in _parse_lines(self.path, raw)
            if (event_type is None or event.event_type is event_type)
            and (person_id is None or event.concerns(person_id))
            and (since is None or event.timestamp >= since)
        ]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events
