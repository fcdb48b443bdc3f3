from datetime import date

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from practice_room.controller import BookingController
from practice_room.store import InMemoryReservationBackend, SqlReservationBackend

TODAY = date(2024, 5, 15)


def make_sqlite_backend() -> SqlReservationBackend:
    # One shared connection so every session sees the same in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    return SqlReservationBackend(engine)


@pytest.fixture(params=["memory", "sql"])
async def backend(request):
    """Every store test runs against both backends."""
    if request.param == "memory":
        yield InMemoryReservationBackend()
        return
    sql_backend = make_sqlite_backend()
    await sql_backend.init()
    yield sql_backend
    await sql_backend.dispose()


@pytest.fixture
async def sql_backend():
    sql_backend = make_sqlite_backend()
    await sql_backend.init()
    yield sql_backend
    await sql_backend.dispose()


@pytest.fixture
def controller(backend) -> BookingController:
    return BookingController(backend, today=lambda: TODAY)
