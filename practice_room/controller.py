"""Session state and the user actions that change it.

A ``BookingController`` owns one ``BookingSession``. Every action checks its
input against the session snapshot before calling the store, and only
touches the snapshot after the store confirms. Failures are logged, put in
``session.notice`` for display, then re-raised.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from functools import wraps
from typing import Callable, Hashable, List, Optional, Set, Tuple

from . import availability
from .errors import BookingError, NotFound, OperationInProgress, ValidationError
from .models import FIRST_HOUR, LAST_HOUR, DayView, MonthView, Reservation, SessionRead
from .store import ReservationBackend

logger = logging.getLogger(__name__)

USER = "user"
ADMIN = "admin"
ROLES = (USER, ADMIN)


@dataclass
class BookingSession:
    year: int
    month: int
    role: str = USER
    active_user: str = ""
    personal_name: Optional[str] = None
    selected_date: Optional[date] = None
    editing_reservation: Optional[Reservation] = None
    snapshot: List[Reservation] = field(default_factory=list)
    loaded_month: Optional[Tuple[int, int]] = None
    notice: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    def to_read(self) -> SessionRead:
        return SessionRead(
            role=self.role,
            active_user=self.active_user,
            name_editable=not self.is_admin,
            year=self.year,
            month=self.month,
            selected_date=self.selected_date,
            editing_reservation_id=self.editing_reservation.id if self.editing_reservation else None,
            notice=self.notice,
        )


def reports_errors(action):
    """Log a failed action and put its message in the session notice."""

    @wraps(action)
    async def wrapper(self, *args, **kwargs):
        try:
            return await action(self, *args, **kwargs)
        except BookingError as e:
            level = logging.WARNING if isinstance(e, (ValidationError, OperationInProgress)) else logging.ERROR
            logger.log(level, "%s failed: %s", action.__name__, e.message)
            self.session.notice = e.message
            raise

    return wrapper


class BookingController:

    def __init__(
        self,
        backend: ReservationBackend,
        session: Optional[BookingSession] = None,
        *,
        today: Callable[[], date] = date.today,
        admin_label: str = "Admin",
        default_user_name: str = "Guest",
    ):
        self.backend = backend
        self.today = today
        self.admin_label = admin_label
        self.default_user_name = default_user_name
        if session is None:
            current = today()
            session = BookingSession(year=current.year, month=current.month)
        if not session.active_user:
            session.active_user = session.personal_name or default_user_name
        self.session = session
        self._pending: Set[Hashable] = set()

    @contextmanager
    def _in_flight(self, key: Hashable):
        if key in self._pending:
            raise OperationInProgress("Another request for this item is still running.")
        self._pending.add(key)
        try:
            yield
        finally:
            self._pending.discard(key)

    def _find(self, reservation_id: int) -> Reservation:
        for reservation in self.session.snapshot:
            if reservation.id == reservation_id:
                return reservation
        raise NotFound(f"Reservation {reservation_id} does not exist.")

    def _drop(self, reservation_id: int) -> None:
        self.session.snapshot = [r for r in self.session.snapshot if r.id != reservation_id]
        editing = self.session.editing_reservation
        if editing is not None and editing.id == reservation_id:
            self.session.editing_reservation = None

    # --- Role and name ---

    def set_role(self, role: str) -> None:
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        session = self.session
        if role == ADMIN:
            if not session.is_admin:
                session.personal_name = session.active_user
            session.active_user = self.admin_label
        else:
            session.active_user = session.personal_name or self.default_user_name
            session.editing_reservation = None
        session.role = role
        logger.info("Role switched to %s", role)

    def set_user_name(self, name: str) -> None:
        if self.session.is_admin:
            raise ValidationError("Name cannot be changed in admin mode.")
        self.session.active_user = name.strip()
        self.session.personal_name = self.session.active_user

    # --- Calendar navigation ---

    @reports_errors
    async def load_month(self, year: int, month: int) -> List[Reservation]:
        """Select a month and fetch its reservations.

        If another month is selected while the fetch is running, the
        result is dropped and the snapshot is left alone.
        """
        try:
            availability.month_cells(year, month)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        session = self.session
        session.year, session.month = year, month
        if session.selected_date and (session.selected_date.year, session.selected_date.month) != (year, month):
            session.selected_date = None

        first, last = availability.month_range(year, month)
        rows = await self.backend.list(first, last)

        if (session.year, session.month) != (year, month):
            logger.info("Discarding stale load for %04d-%02d", year, month)
            return session.snapshot
        session.snapshot = rows
        session.loaded_month = (year, month)
        return rows

    async def next_month(self) -> List[Reservation]:
        return await self.load_month(*availability.shift_month(self.session.year, self.session.month, 1))

    async def previous_month(self) -> List[Reservation]:
        return await self.load_month(*availability.shift_month(self.session.year, self.session.month, -1))

    def open_date(self, day: date) -> DayView:
        if (day.year, day.month) != (self.session.year, self.session.month):
            raise ValidationError("That date is not in the selected month.")
        if availability.is_past(day, self.today()):
            raise ValidationError("Past dates cannot be booked.")
        self.session.selected_date = day
        return self.day_view(day)

    def close_date(self) -> None:
        self.session.selected_date = None

    # --- Reservations ---

    @reports_errors
    async def reserve(self, day: date, hour: int, user: Optional[str] = None) -> Reservation:
        user = (self.session.active_user if user is None else user).strip()
        if not user:
            raise ValidationError("empty name")
        if not FIRST_HOUR <= hour <= LAST_HOUR:
            raise ValidationError(f"Hour must be between {FIRST_HOUR} and {LAST_HOUR}.")
        if dict(availability.slots_for_date(day, self.session.snapshot))[hour] is not None:
            raise ValidationError("slot taken")

        loaded_before = self.session.loaded_month
        with self._in_flight(("slot", day, hour)):
            reservation = await self.backend.create(day, hour, user)

        # Another month was loaded while the insert was running: the
        # snapshot it belongs to is gone
        if self.session.loaded_month == loaded_before:
            # A reload of the same month may already carry the new row
            if not any(r.id == reservation.id for r in self.session.snapshot):
                self.session.snapshot.append(reservation)
        else:
            logger.info("Reservation %s confirmed after the month changed, not merged", reservation.id)
        self.session.notice = "Reserved!"
        return reservation

    @reports_errors
    async def cancel(self, reservation_id: int) -> None:
        with self._in_flight(("reservation", reservation_id)):
            await self.backend.delete(reservation_id)
        self._drop(reservation_id)
        self.session.notice = "Cancelled."

    def require_admin(self) -> None:
        """Role gate for the admin screens. Not a security boundary."""
        if not self.session.is_admin:
            raise ValidationError("Only the administrator can edit reservations.")

    def begin_edit(self, reservation_id: int) -> Reservation:
        self.require_admin()
        self.session.editing_reservation = self._find(reservation_id)
        return self.session.editing_reservation

    def end_edit(self) -> None:
        self.session.editing_reservation = None

    @reports_errors
    async def admin_rename(self, reservation_id: int, new_name: str) -> None:
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationError("empty name")
        with self._in_flight(("reservation", reservation_id)):
            await self.backend.update_user(reservation_id, new_name)

        for reservation in self.session.snapshot:
            if reservation.id == reservation_id:
                reservation.user = new_name
        self.end_edit()
        self.session.notice = "Updated."

    @reports_errors
    async def admin_delete(self, reservation_id: int) -> None:
        with self._in_flight(("reservation", reservation_id)):
            await self.backend.delete(reservation_id)
        self._drop(reservation_id)
        self.session.notice = "Deleted."

    # --- Views ---

    def my_reservations(self) -> List[Reservation]:
        return availability.reservations_for_user(self.session.active_user, self.session.snapshot)

    def month_view(self) -> MonthView:
        return availability.build_month_view(
            self.session.year, self.session.month, self.session.snapshot, self.today()
        )

    def day_view(self, day: Optional[date] = None) -> DayView:
        day = day or self.session.selected_date
        if day is None:
            raise ValidationError("No date selected.")
        return availability.build_day_view(day, self.session.snapshot)
