"""Reservation storage.

``ReservationBackend`` is the only thing the rest of the app talks to.
``SqlReservationBackend`` runs on any SQLAlchemy async engine;
``InMemoryReservationBackend`` is used when no database is configured and
behaves the same way from the outside, including the one-booking-per-slot
rule.
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Dict, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import select

from .config import Settings
from .database import build_engine, init_db, session_factory
from .errors import BackendUnavailable, InvalidInput, NotFound, PersistenceError
from .models import FIRST_HOUR, LAST_HOUR, Reservation

logger = logging.getLogger(__name__)


def _check_hour(hour: int) -> None:
    if not FIRST_HOUR <= hour <= LAST_HOUR:
        raise InvalidInput(f"Hour must be between {FIRST_HOUR} and {LAST_HOUR}.")


def _check_user(user: str) -> str:
    user = (user or "").strip()
    if not user:
        raise InvalidInput("User name must not be empty.")
    return user


class ReservationBackend(ABC):

    async def init(self) -> None:
        """Prepare storage. Called once at startup."""

    async def dispose(self) -> None:
        """Release connections. Called once at shutdown."""

    @abstractmethod
    async def list(self, range_start: date, range_end: date) -> List[Reservation]:
        """Reservations with ``range_start <= date <= range_end``, ordered by (date, hour)."""

    @abstractmethod
    async def create(self, day: date, hour: int, user: str) -> Reservation:
        """Insert a reservation and return it with its assigned id."""

    @abstractmethod
    async def update_user(self, reservation_id: int, new_user: str) -> None:
        ...

    @abstractmethod
    async def delete(self, reservation_id: int) -> None:
        ...


class SqlReservationBackend(ReservationBackend):

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._sessions = session_factory(engine)

    async def init(self) -> None:
        await init_db(self.engine)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def list(self, range_start: date, range_end: date) -> List[Reservation]:
        statement = (
            select(Reservation)
            .where(Reservation.date >= range_start, Reservation.date <= range_end)
            .order_by(Reservation.date, Reservation.hour)
        )
        try:
            async with self._sessions() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Loading reservations %s..%s failed: %s", range_start, range_end, e)
            raise BackendUnavailable("Could not load reservations.") from e

    async def create(self, day: date, hour: int, user: str) -> Reservation:
        _check_hour(hour)
        user = _check_user(user)
        new_reservation = Reservation(date=day, hour=hour, user=user)

        async with self._sessions() as session:
            try:
                session.add(new_reservation)
                await session.commit()
                await session.refresh(new_reservation)
            except IntegrityError as e:
                # This catches the UniqueConstraint violation
                await session.rollback()
                logger.warning("Duplicate booking rejected for %s %s:00", day, hour)
                raise PersistenceError("Slot already booked for this date and time.") from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Reservation insert failed: %s", e)
                raise PersistenceError("Could not save the reservation.") from e
        logger.info("Reservation %s created for %s %s:00", new_reservation.id, day, hour)
        return new_reservation

    async def update_user(self, reservation_id: int, new_user: str) -> None:
        new_user = _check_user(new_user)
        async with self._sessions() as session:
            try:
                reservation = await session.get(Reservation, reservation_id)
                if reservation is None:
                    raise NotFound(f"Reservation {reservation_id} does not exist.")
                reservation.user = new_user
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Reservation %s update failed: %s", reservation_id, e)
                raise PersistenceError("Could not update the reservation.") from e
        logger.info("Reservation %s renamed", reservation_id)

    async def delete(self, reservation_id: int) -> None:
        async with self._sessions() as session:
            try:
                reservation = await session.get(Reservation, reservation_id)
                if reservation is None:
                    raise NotFound(f"Reservation {reservation_id} does not exist.")
                await session.delete(reservation)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("Reservation %s delete failed: %s", reservation_id, e)
                raise PersistenceError("Could not delete the reservation.") from e
        logger.info("Reservation %s deleted", reservation_id)


class InMemoryReservationBackend(ReservationBackend):
    """Process-local storage. Nothing survives a restart."""

    def __init__(self, clock: Callable[[], int] = time.time_ns):
        self._rows: Dict[int, Reservation] = {}
        self._clock = clock
        self._last_id = 0

    def _next_id(self) -> int:
        # Microsecond timestamp, bumped so ids strictly increase
        self._last_id = max(self._clock() // 1000, self._last_id + 1)
        return self._last_id

    @staticmethod
    def _copy(reservation: Reservation) -> Reservation:
        return Reservation(
            id=reservation.id, date=reservation.date, hour=reservation.hour, user=reservation.user
        )

    def _get(self, reservation_id: int) -> Reservation:
        reservation = self._rows.get(reservation_id)
        if reservation is None:
            raise NotFound(f"Reservation {reservation_id} does not exist.")
        return reservation

    async def list(self, range_start: date, range_end: date) -> List[Reservation]:
        rows = [r for r in self._rows.values() if range_start <= r.date <= range_end]
        rows.sort(key=lambda r: (r.date, r.hour))
        return [self._copy(r) for r in rows]

    async def create(self, day: date, hour: int, user: str) -> Reservation:
        _check_hour(hour)
        user = _check_user(user)
        # Same rule the SQL table enforces with its unique constraint
        if any(r.date == day and r.hour == hour for r in self._rows.values()):
            logger.warning("Duplicate booking rejected for %s %s:00", day, hour)
            raise PersistenceError("Slot already booked for this date and time.")

        reservation = Reservation(id=self._next_id(), date=day, hour=hour, user=user)
        self._rows[reservation.id] = reservation
        logger.info("Reservation %s created for %s %s:00", reservation.id, day, hour)
        return self._copy(reservation)

    async def update_user(self, reservation_id: int, new_user: str) -> None:
        new_user = _check_user(new_user)
        self._get(reservation_id).user = new_user
        logger.info("Reservation %s renamed", reservation_id)

    async def delete(self, reservation_id: int) -> None:
        self._get(reservation_id)
        del self._rows[reservation_id]
        logger.info("Reservation %s deleted", reservation_id)


def select_backend(settings: Settings) -> ReservationBackend:
    if settings.backend_configured:
        logger.info("Using SQL reservation backend")
        return SqlReservationBackend(build_engine(settings))
    logger.info("No database credentials set, reservations are kept in memory")
    return InMemoryReservationBackend()
