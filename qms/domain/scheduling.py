"""Due-date arithmetic for maintenance schedules and NCRs.

Calendar-month steps use ``relativedelta``, which clamps to the last valid
day of a shorter month (2024-01-31 + 1 month == 2024-02-29).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import StrEnum

from dateutil.relativedelta import relativedelta

from qms.domain.errors import ValidationError
from qms.domain.models import MaintenanceFrequency, NcrSeverity

DUE_SOON_DAYS = 7

SEVERITY_DUE_DAYS: dict[NcrSeverity, int] = {
    NcrSeverity.CRITICAL: 1,
    NcrSeverity.HIGH: 3,
    NcrSeverity.MEDIUM: 7,
    NcrSeverity.LOW: 14,
}


class DueBucket(StrEnum):
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    SCHEDULED = "scheduled"


def _validate_multiplier(multiplier: object) -> int:
    if isinstance(multiplier, bool) or not isinstance(multiplier, int) or multiplier < 1:
        raise ValidationError("frequency value must be a positive integer")
    return multiplier


def _validate_frequency(frequency: object) -> MaintenanceFrequency:
    try:
        return MaintenanceFrequency(frequency)
    except ValueError as exc:
        raise ValidationError(f"invalid frequency: {frequency!r}") from exc


def compute_next_due(base_date: date, frequency: MaintenanceFrequency | str, multiplier: int) -> date:
    unit = _validate_frequency(frequency)
    step = _validate_multiplier(multiplier)
    try:
        if unit == MaintenanceFrequency.DAILY:
            return base_date + timedelta(days=step)
        if unit == MaintenanceFrequency.WEEKLY:
            return base_date + timedelta(days=step * 7)
        if unit == MaintenanceFrequency.MONTHLY:
            return base_date + relativedelta(months=step)
        if unit == MaintenanceFrequency.QUARTERLY:
            return base_date + relativedelta(months=step * 3)
        return base_date + relativedelta(years=step)
    except (ValueError, OverflowError) as exc:
        raise ValidationError("next due date out of range") from exc


def classify_due(next_due: date, today: date) -> DueBucket:
    if next_due < today:
        return DueBucket.OVERDUE
    if next_due <= today + timedelta(days=DUE_SOON_DAYS):
        return DueBucket.DUE_SOON
    return DueBucket.SCHEDULED


def ncr_due_date(created_at: datetime | date, severity: NcrSeverity | str) -> date:
    try:
        offset = SEVERITY_DUE_DAYS[NcrSeverity(severity)]
    except ValueError as exc:
        raise ValidationError(f"invalid severity: {severity!r}") from exc
    base = created_at.date() if isinstance(created_at, datetime) else created_at
    return base + timedelta(days=offset)
