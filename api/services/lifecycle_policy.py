"""
Lifecycle policy for cases: display labels, activity and legal transitions.

Pure functions, no I/O. Every case view computes status and activity here
(through ``case_service``) so the in-rehab rule lives in one place.
"""
import os
from datetime import date, datetime
from typing import Optional, Union

from ..exceptions import InvalidStatusTransition, ValidationError
from ..models.cases import CaseStatus, DisplayStatus

NEW_CASE_WINDOW_DAYS = int(os.getenv("NEW_CASE_WINDOW_DAYS", "7"))

ACTIVE_CASE_STATUSES = frozenset({
    CaseStatus.NEW,
    CaseStatus.TRIAGED,
    CaseStatus.ASSESSED,
    CaseStatus.IN_REHAB,
})
COMPLETED_CASE_STATUSES = frozenset({
    CaseStatus.RETURN_TO_WORK,
    CaseStatus.CLOSED,
})

STATUS_LABELS = {
    CaseStatus.NEW: DisplayStatus.NEW_CASE,
    CaseStatus.TRIAGED: DisplayStatus.TRIAGED,
    CaseStatus.ASSESSED: DisplayStatus.ASSESSED,
    CaseStatus.IN_REHAB: DisplayStatus.IN_REHAB,
    CaseStatus.RETURN_TO_WORK: DisplayStatus.RETURN_TO_WORK,
    CaseStatus.CLOSED: DisplayStatus.CLOSED,
}

_ALL_STATUSES = frozenset(CaseStatus)

# Once a worker is back at work the case can only be closed.
ALLOWED_TRANSITIONS = {
    CaseStatus.NEW: _ALL_STATUSES,
    CaseStatus.TRIAGED: _ALL_STATUSES,
    CaseStatus.ASSESSED: _ALL_STATUSES,
    CaseStatus.IN_REHAB: _ALL_STATUSES,
    CaseStatus.RETURN_TO_WORK: frozenset({CaseStatus.RETURN_TO_WORK, CaseStatus.CLOSED}),
    CaseStatus.CLOSED: _ALL_STATUSES,
}

DateLike = Union[date, datetime, str]


def to_day(value: Optional[DateLike]) -> Optional[date]:
    """
    Normalize a date, datetime or ISO string to a calendar day.

    Raises:
        ValidationError: If a string is not an ISO date or datetime.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid date value: {value!r}")


def is_completed(status: Optional[CaseStatus]) -> bool:
    return status in COMPLETED_CASE_STATUSES


def is_within_date_range(today: DateLike, start_date: DateLike, end_date: Optional[DateLike]) -> bool:
    """Inclusive day-granularity check; a missing end date is open-ended"""
    day = to_day(today)
    if day < to_day(start_date):
        return False
    end = to_day(end_date)
    return end is None or day <= end


def is_currently_active(
    status: Optional[CaseStatus],
    is_active_flag: bool,
    today: DateLike,
    start_date: DateLike,
    end_date: Optional[DateLike],
) -> bool:
    """
    Whether the worker is currently exempted from normal duty by the case.

    A false flag always wins. An in-rehab case with a true flag is active
    whatever its end date, since rehab programs run past their estimated end.
    Every other status also needs today inside [start_date, end_date].
    """
    if not is_active_flag:
        return False
    if status == CaseStatus.IN_REHAB:
        return True
    return is_within_date_range(today, start_date, end_date)


def display_status(
    status: Optional[CaseStatus],
    is_active_flag: bool,
    is_within_range: bool,
    created_at: Optional[DateLike] = None,
    today: Optional[DateLike] = None,
) -> DisplayStatus:
    """
    Label shown for a case.

    Without a stored status the label comes from age and activity: NEW CASE
    while active and younger than the new-case window, IN PROGRESS while
    active, CLOSED otherwise. A stored status maps to its own label, except
    that an active-category status with a false flag shows as CLOSED.
    """
    if status is None:
        currently_active = is_active_flag and is_within_range
        if not currently_active:
            return DisplayStatus.CLOSED
        if created_at is not None and today is not None:
            age_days = (to_day(today) - to_day(created_at)).days
            if age_days < NEW_CASE_WINDOW_DAYS:
                return DisplayStatus.NEW_CASE
        return DisplayStatus.IN_PROGRESS

    if not is_active_flag and status in ACTIVE_CASE_STATUSES:
        return DisplayStatus.CLOSED
    return STATUS_LABELS[status]


def can_transition(current: CaseStatus, target: CaseStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def assert_transition(current: CaseStatus, target: CaseStatus) -> None:
    if not can_transition(current, target):
        allowed = ", ".join(sorted(s.value for s in ALLOWED_TRANSITIONS[current]))
        raise InvalidStatusTransition(
            current.value,
            target.value,
            f"Cannot change case status from {current.value} to {target.value}. "
            f"Allowed: {allowed}",
        )
