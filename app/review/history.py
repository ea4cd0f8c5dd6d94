from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.context import RequestContext
from app.core.errors import ValidationError
from app.core.extensions import db
from app.core.models import ApplicationStatus, HistoryAction, HistoryEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainReport:
    valid: bool
    entries: int
    broken_at: int | None = None


@dataclass(frozen=True)
class ReplayResult:
    status: ApplicationStatus | None
    consistent: bool
    transitions: int
    broken_at: int | None = None


def _status_value(status: ApplicationStatus | str | None) -> str | None:
    if status is None:
        return None
    return status.value if isinstance(status, ApplicationStatus) else str(status)


def _last_entry(application_id: int) -> HistoryEntry | None:
    return (
        HistoryEntry.query.filter_by(application_id=application_id)
        .order_by(HistoryEntry.created_at.desc(), HistoryEntry.id.desc())
        .first()
    )


def append(
    application_id: int | None,
    action: HistoryAction | None,
    ctx: RequestContext | None,
    old_status: ApplicationStatus | str | None = None,
    new_status: ApplicationStatus | str | None = None,
    reason: str | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> HistoryEntry:
    """Add one entry to the current unit of work. The caller commits."""
    if not application_id:
        raise ValidationError("History entry requires an application")
    if action is None:
        raise ValidationError("History entry requires an action")
    if ctx is None or not ctx.actor_id:
        raise ValidationError("History entry requires an actor")

    previous = _last_entry(application_id)
    entry = HistoryEntry(
        application_id=application_id,
        action=action,
        old_status=_status_value(old_status),
        new_status=_status_value(new_status),
        reason=reason or None,
        note=note or None,
        actor_id=ctx.actor_id,
        ip_address=ctx.ip_address,
        user_agent=(ctx.user_agent or "")[:500] or None,
        payload=dict(payload or {}),
        previous_hash=previous.entry_hash if previous else "",
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_for(application_id: int):
    """Entries oldest first. Returns a query, so iterating again re-reads storage."""
    return HistoryEntry.query.filter_by(application_id=application_id).order_by(
        HistoryEntry.created_at.asc(), HistoryEntry.id.asc()
    )


def verify_chain(application_id: int) -> ChainReport:
    previous_hash = ""
    count = 0
    for entry in list_for(application_id):
        count += 1
        if entry.previous_hash != previous_hash or entry.compute_hash() != entry.entry_hash:
            logger.warning("History chain broken for application %s at entry %s", application_id, entry.id)
            return ChainReport(valid=False, entries=count, broken_at=entry.id)
        previous_hash = entry.entry_hash
    return ChainReport(valid=True, entries=count)


def reconstruct_status(application_id: int) -> ReplayResult:
    status: str | None = None
    transitions = 0
    for entry in list_for(application_id):
        if entry.new_status is None:
            continue
        if entry.old_status != status:
            return ReplayResult(
                status=ApplicationStatus(status) if status else None,
                consistent=False,
                transitions=transitions,
                broken_at=entry.id,
            )
        status = entry.new_status
        transitions += 1
    return ReplayResult(
        status=ApplicationStatus(status) if status else None,
        consistent=True,
        transitions=transitions,
    )
