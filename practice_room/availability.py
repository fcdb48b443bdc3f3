"""Calendar and slot availability derived from a reservation snapshot.

Everything here is pure: no I/O, no clock. Callers pass ``today`` in.
Dates are ``datetime.date`` values, which carry explicit year/month/day
fields and no time zone.
"""
import calendar
from collections import Counter
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import (
    FIRST_HOUR,
    LAST_HOUR,
    DayCell,
    DayView,
    MonthView,
    Reservation,
    SlotStatus,
)

GRID_CELLS = 42  # six Sunday-to-Saturday weeks

HOURS = list(range(FIRST_HOUR, LAST_HOUR + 1))

DateLike = Union[date, str]


def _as_date(day: DateLike) -> date:
    if isinstance(day, date):
        return day
    return date.fromisoformat(day)


def _iso(day: DateLike) -> str:
    return day.isoformat() if isinstance(day, date) else day


def hour_label(hour: int) -> str:
    """``9`` -> ``"09:00 ~ 10:00"``"""
    return f"{hour:02d}:00 ~ {hour + 1:02d}:00"


def shift_month(year: int, month: int, delta: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last day of the month, both inclusive."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_cells(year: int, month: int) -> List[DayCell]:
    """The 42 cells of a Sunday-first month grid.

    Cell 0 is the Sunday on or before the 1st. Leading and trailing cells
    belong to the neighbouring months and are flagged out of month.
    """
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")

    first = date(year, month, 1)
    # date.weekday() is Monday=0; shift so Sunday=0
    lead = (first.weekday() + 1) % 7
    try:
        start = first - timedelta(days=lead)
        days = [start + timedelta(days=offset) for offset in range(GRID_CELLS)]
    except OverflowError as e:
        # Grid would run past date.min or date.max
        raise ValueError(f"{year:04d}-{month:02d} is outside the supported calendar range") from e

    cells = []
    for day in days:
        cells.append(
            DayCell(
                date=day,
                day=day.day,
                in_current_month=(day.year, day.month) == (year, month),
            )
        )
    return cells


def is_past(day: DateLike, today: DateLike) -> bool:
    # ISO dates are fixed width, so string order is date order
    return _iso(day) < _iso(today)


def count_for_date(day: DateLike, snapshot: Iterable[Reservation]) -> int:
    target = _as_date(day)
    return sum(1 for r in snapshot if r.date == target)


def counts_by_date(snapshot: Iterable[Reservation]) -> Dict[date, int]:
    return dict(Counter(r.date for r in snapshot))


def slots_for_date(
    day: DateLike, snapshot: Iterable[Reservation]
) -> List[Tuple[int, Optional[Reservation]]]:
    """Fourteen ``(hour, reservation or None)`` pairs, 9 through 22."""
    target = _as_date(day)
    # Key: hour -> Reservation, single pass over the snapshot
    booked = {r.hour: r for r in snapshot if r.date == target}
    return [(hour, booked.get(hour)) for hour in HOURS]


def reservations_for_user(user: str, snapshot: Iterable[Reservation]) -> List[Reservation]:
    return [r for r in snapshot if r.user == user]


def build_month_view(
    year: int, month: int, snapshot: Iterable[Reservation], today: date
) -> MonthView:
    counts = counts_by_date(snapshot)
    cells = []
    for cell in month_cells(year, month):
        past = is_past(cell.date, today)
        cells.append(
            cell.model_copy(
                update={
                    "is_past": past,
                    "count": counts.get(cell.date, 0),
                    "selectable": cell.in_current_month and not past,
                }
            )
        )
    return MonthView(year=year, month=month, cells=cells)


def build_day_view(day: DateLike, snapshot: Iterable[Reservation]) -> DayView:
    slots = []
    for hour, reservation in slots_for_date(day, snapshot):
        if reservation:
            slots.append(
                SlotStatus(
                    time_label=hour_label(hour),
                    slot_hour=hour,
                    status="occupied",
                    user=reservation.user,
                    reservation_id=reservation.id,
                )
            )
        else:
            slots.append(
                SlotStatus(time_label=hour_label(hour), slot_hour=hour, status="available")
            )
    return DayView(date=_as_date(day), slots=slots)
