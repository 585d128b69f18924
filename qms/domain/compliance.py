from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta

from qms.domain.errors import ValidationError
from qms.domain.models import Checklist, ChecklistStatus, ComplianceTrendPoint

TREND_MONTHS = 6


@dataclass(frozen=True)
class ComplianceResult:
    total: int
    completed: int
    rate: float


@dataclass(frozen=True)
class MonthWindow:
    label: str
    start: date
    end: date


def day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=UTC)


def created_on(value: datetime) -> date:
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(UTC).date()


def compliance_rate(completed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(completed / total * 100, 1)


def compute_compliance(
    checklists: Iterable[Checklist],
    window_start: date,
    window_end: date,
) -> ComplianceResult:
    if window_end < window_start:
        raise ValidationError("window end must not precede window start")
    total = 0
    completed = 0
    for checklist in checklists:
        if not window_start <= created_on(checklist.created_at) <= window_end:
            continue
        total += 1
        if checklist.status == ChecklistStatus.COMPLETED:
            completed += 1
    return ComplianceResult(total=total, completed=completed, rate=compliance_rate(completed, total))


def month_windows(as_of: date, months: int = TREND_MONTHS) -> list[MonthWindow]:
    """Trailing calendar months ending with the month of ``as_of``, oldest first."""
    current = as_of.replace(day=1)
    windows: list[MonthWindow] = []
    for offset in range(months - 1, -1, -1):
        start = current - relativedelta(months=offset)
        end = start + relativedelta(months=1) - timedelta(days=1)
        windows.append(MonthWindow(label=start.strftime("%b %Y"), start=start, end=end))
    return windows


def compliance_trend(
    checklists: Sequence[Checklist],
    as_of: date,
    months: int = TREND_MONTHS,
) -> list[ComplianceTrendPoint]:
    points: list[ComplianceTrendPoint] = []
    for window in month_windows(as_of, months):
        result = compute_compliance(checklists, window.start, window.end)
        points.append(
            ComplianceTrendPoint(
                month=window.label,
                month_start=window.start,
                month_end=window.end,
                total=result.total,
                completed=result.completed,
                rate=result.rate,
            )
        )
    return points
