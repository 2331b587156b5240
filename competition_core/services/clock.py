"""
Round window evaluation.

Everything here is pure: callers pass ``now`` explicitly so schedulers, repair
jobs and tests agree on a single instant.
"""

from datetime import datetime, timezone
from typing import Optional

from competition_core.core.errors import InvalidRoundWindow
from competition_core.models.enums import RoundPhase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_window(start_date: datetime, end_date: datetime) -> None:
    """Reject rounds whose end is not strictly after their start."""
    if ensure_utc(end_date) <= ensure_utc(start_date):
        raise InvalidRoundWindow(
            "Round end date must be after its start date",
            {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def phase_at(start_date: datetime, end_date: datetime, now: datetime) -> RoundPhase:
    start, end, now = ensure_utc(start_date), ensure_utc(end_date), ensure_utc(now)
    if now < start:
        return RoundPhase.UPCOMING
    if now < end:
        return RoundPhase.ACTIVE
    return RoundPhase.ENDED


def phase_of(round_, now: Optional[datetime] = None) -> RoundPhase:
    """
    Phase of a round at ``now``.

    ACTIVE iff start_date <= now < end_date. Accepts anything with
    ``start_date`` and ``end_date`` attributes (ORM rows or snapshots).
    """
    return phase_at(round_.start_date, round_.end_date, now or utcnow())


def window_contains(round_, moment: datetime) -> bool:
    return phase_at(round_.start_date, round_.end_date, moment) is RoundPhase.ACTIVE
