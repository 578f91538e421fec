"""Time-driven expiry and reminder sweep.

The caller owns the cadence (a scheduler, a cron tick, a test).  Each sweep
expires stale matches and reports reminders that became due; every reminder
key is recorded on its match atomically so it is reported exactly once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta

from pydantic import BaseModel
from pydantic import Field

from matchgraph.audit import AuditEventType
from matchgraph.audit import AuditLogger
from matchgraph.config import CoordinationConfig
from matchgraph.graph.store import GraphRepository
from matchgraph.models.relations import Match
from matchgraph.models.relations import MatchStatus
from matchgraph.timeutil import ensure_aware
from matchgraph.timeutil import utcnow

logger = logging.getLogger(__name__)

MEETING_UPCOMING = "meeting_upcoming"
FEEDBACK_REQUEST = "feedback_request"


class ExpiredMatch(BaseModel):
    from_id: str
    to_id: str
    status: MatchStatus


class ReminderDue(BaseModel):
    """A reminder to deliver, with the people it is addressed to."""

    from_id: str
    to_id: str
    key: str
    recipients: list[str]
    status: MatchStatus


class SweepReport(BaseModel):
    store_unavailable: bool = False
    expired: list[ExpiredMatch] = Field(default_factory=list)
    reminders: list[ReminderDue] = Field(default_factory=list)


def _reminder_key(offset_hours: float, prefix: str = "") -> str:
    return f"{prefix}{offset_hours:g}h"


class MatchSweeper:
    """Expires unanswered matches and collects due reminders."""

    def __init__(
        self,
        repository: GraphRepository,
        config: CoordinationConfig | None = None,
        *,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._repo = repository
        self._config = config or CoordinationConfig()
        self._audit = audit_logger

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        now = ensure_aware(now or utcnow())
        report = SweepReport()

        pending = await self._repo.list_active_matches(
            [MatchStatus.match_found, MatchStatus.proposal_sent]
        )
        if not pending and not self._repo.is_available:
            report.store_unavailable = True
            return report

        for match in pending:
            if match.status is MatchStatus.match_found:
                await self._sweep_pending(
                    match,
                    now,
                    report,
                    started_at=match.created_at,
                    window_hours=self._config.proposal_window_hours,
                    expired_status=MatchStatus.expired_no_proposal,
                    key_prefix="",
                    recipients=[match.from_id],
                )
            else:
                await self._sweep_pending(
                    match,
                    now,
                    report,
                    started_at=match.proposal_sent_at or match.created_at,
                    window_hours=self._config.response_window_hours,
                    expired_status=MatchStatus.expired_no_response,
                    key_prefix="proposal_",
                    recipients=[match.other_party(match.proposed_by or match.from_id)],
                )

        upcoming = await self._repo.list_upcoming_scheduled(
            self._config.upcoming_meeting_window_hours, now=now
        )
        for match in upcoming:
            await self._remind(match, MEETING_UPCOMING, [match.from_id, match.to_id], report)

        past = await self._repo.list_past_scheduled(self._config.feedback_window_hours, now=now)
        for match in past:
            missing = [uid for uid in (match.from_id, match.to_id) if not match.has_feedback_from(uid)]
            if missing:
                await self._remind(match, FEEDBACK_REQUEST, missing, report)

        if report.expired or report.reminders:
            logger.info(
                "Sweep expired %d match(es), %d reminder(s) due",
                len(report.expired),
                len(report.reminders),
            )
        return report

    async def _sweep_pending(
        self,
        match: Match,
        now: datetime,
        report: SweepReport,
        *,
        started_at: datetime | None,
        window_hours: float,
        expired_status: MatchStatus,
        key_prefix: str,
        recipients: list[str],
    ) -> None:
        if started_at is None:
            logger.warning("Match %s -> %s has no start time; skipping", match.from_id, match.to_id)
            return
        age = now - ensure_aware(started_at)
        if age >= timedelta(hours=window_hours):
            expired = await self._repo.update_match_properties(
                match.from_id,
                match.to_id,
                {"status": expired_status},
                expected_status=match.status,
                now=now,
            )
            if not expired:
                return
            report.expired.append(
                ExpiredMatch(from_id=match.from_id, to_id=match.to_id, status=expired_status)
            )
            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.MATCH_EXPIRED,
                    from_id=match.from_id,
                    to_id=match.to_id,
                    previous_status=match.status.value,
                    status=expired_status.value,
                )
            return

        for offset in sorted(self._config.reminder_offsets_hours, reverse=True):
            if age >= timedelta(hours=offset):
                await self._remind(match, _reminder_key(offset, key_prefix), recipients, report)
                break

    async def _remind(
        self,
        match: Match,
        key: str,
        recipients: list[str],
        report: SweepReport,
    ) -> None:
        if key in match.reminders:
            return
        if await self._repo.add_reminder(match.from_id, match.to_id, key):
            report.reminders.append(
                ReminderDue(
                    from_id=match.from_id,
                    to_id=match.to_id,
                    key=key,
                    recipients=recipients,
                    status=match.status,
                )
            )
