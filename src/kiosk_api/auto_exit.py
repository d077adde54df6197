"""
Automatic closing of visits nobody checked out.

Two entry points share the job:

- close_todays_open_visits: run by the kiosk on every authenticated start.
  After the local cutoff hour it closes today's open visits at the cutoff.
- sweep_open_visits: server job, run on a schedule or on demand. Closes
  every open visit on its own entry day, whatever day that was.

Both only ever touch rows whose exit_time is still NULL, so re-running
either one, or running them concurrently, closes nothing twice.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import bindparam, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .audit import AuditEvent
from .errors import AutoExitUpdateFailure
from .models import Visit
from .tz_clock import UTC, as_utc, day_bounds, local_to_utc, wall_clock_parts

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    count: int
    timestamp: datetime.datetime
    visit_ids: List[int] = field(default_factory=list)


def _utcnow():
    return datetime.datetime.now(UTC)


def _audit(audit_sink, source: str, count: int, context: dict) -> None:
    if audit_sink is None or count == 0:
        return
    audit_sink.log_event(
        AuditEvent(
            event_type="visit.auto_exit",
            level="audit",
            action="auto_exit",
            actor={"type": "system", "name": "auto-exit"},
            resource={"type": "visit"},
            source=source,
            context={"count": count, **context},
        )
    )


# PUBLIC_INTERFACE
def close_todays_open_visits(
    db: Session,
    tz,
    cutoff_hour: int,
    now: Optional[datetime.datetime] = None,
    audit_sink=None,
) -> int:
    """
    Kiosk-side daily trigger.

    Before `cutoff_hour` (local time in `tz`) this does nothing. From the
    cutoff hour on, every visit that entered today (local calendar day) and
    is still open gets exit_time = today's cutoff instant and
    is_system_exit = True, in one conditional UPDATE.

    Returns:
        int: number of visits closed.

    Raises:
        AutoExitUpdateFailure: the update failed and was rolled back.
    """
    now = as_utc(now or _utcnow())
    parts = wall_clock_parts(now, tz)
    if parts.hour < cutoff_hour:
        return 0

    start_of_today, start_of_tomorrow = day_bounds(now, tz)
    cutoff = local_to_utc(parts.year, parts.month, parts.day, cutoff_hour, tz=tz)

    try:
        closed = (
            db.query(Visit)
            .filter(
                Visit.exit_time.is_(None),
                Visit.entry_time >= start_of_today,
                Visit.entry_time < start_of_tomorrow,
            )
            .update(
                {Visit.exit_time: cutoff, Visit.is_system_exit: True},
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Daily auto-exit update failed")
        raise AutoExitUpdateFailure(str(e)) from e

    if closed:
        logger.info("Daily auto-exit closed %d visit(s) at %s", closed, cutoff.isoformat())
    _audit(audit_sink, "client", closed, {"cutoff": cutoff.isoformat()})
    return closed


# PUBLIC_INTERFACE
def system_exit_time_for(entry_time: datetime.datetime, exit_hour: int) -> datetime.datetime:
    """
    Exit instant stamped by the sweep: `exit_hour`:00 UTC on the entry date,
    or 23:59:59 on that date when the visit started at or after that hour.
    The result is always later than `entry_time`.
    """
    entry = as_utc(entry_time)
    target = entry.replace(hour=exit_hour, minute=0, second=0, microsecond=0)
    if target <= entry:
        target = entry.replace(hour=23, minute=59, second=59, microsecond=0)
    if target <= entry:
        target = entry.replace(hour=23, minute=59, second=59, microsecond=999999)
    return target


# PUBLIC_INTERFACE
def sweep_open_visits(
    db: Session,
    exit_hour: int,
    now: Optional[datetime.datetime] = None,
    audit_sink=None,
) -> SweepResult:
    """
    Server-side sweep: closes every open visit on its own entry day.

    Only exit_time and is_system_exit are written; every other column of
    the visit is left as it is. Each row update is conditional on
    exit_time still being NULL, so an overlapping run cannot overwrite a
    checkout that landed in between. The count, visit_ids and audit event
    cover only the rows this run actually closed.

    Raises:
        AutoExitUpdateFailure: the batch failed and was rolled back.
    """
    now = as_utc(now or _utcnow())
    try:
        open_visits = (
            db.query(Visit.id, Visit.entry_time)
            .filter(Visit.exit_time.is_(None))
            .order_by(Visit.id)
            .all()
        )
        if not open_visits:
            return SweepResult(count=0, timestamp=now)

        table = Visit.__table__
        stmt = (
            update(table)
            .where(table.c.id == bindparam("b_id"), table.c.exit_time.is_(None))
            .values(exit_time=bindparam("b_exit_time"), is_system_exit=True)
        )
        visit_ids = []
        for visit_id, entry_time in open_visits:
            # rowcount is 0 when the row was closed after it was read.
            result = db.execute(stmt, {"b_id": visit_id, "b_exit_time": system_exit_time_for(entry_time, exit_hour)})
            if result.rowcount:
                visit_ids.append(visit_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Auto-exit sweep failed")
        raise AutoExitUpdateFailure(str(e)) from e

    logger.info("Auto-exit sweep closed %d visit(s)", len(visit_ids))
    _audit(audit_sink, "server", len(visit_ids), {"visit_ids": visit_ids})
    return SweepResult(count=len(visit_ids), timestamp=now, visit_ids=visit_ids)
