import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .controller import BookingController
from .errors import (
    BackendUnavailable,
    BookingError,
    InvalidInput,
    NotFound,
    OperationInProgress,
    PersistenceError,
    ValidationError,
)
from .logging_config import setup_logging
from .models import (
    DayView,
    MonthView,
    NameChange,
    ReservationCreate,
    ReservationRead,
    ReservationRename,
    RoleChange,
    SessionRead,
)
from .store import ReservationBackend, select_backend

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidInput, 422),
    (OperationInProgress, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_502_BAD_GATEWAY),
    (BackendUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]

router = APIRouter()


class SessionRegistry:
    """Controllers keyed by session id, least recently used evicted first."""

    def __init__(self, factory: Callable[[], BookingController], max_sessions: int):
        self._factory = factory
        self.max_sessions = max_sessions
        self._controllers: "OrderedDict[str, BookingController]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._controllers

    def get(self, session_id: str) -> BookingController:
        controller = self._controllers.get(session_id)
        if controller is None:
            controller = self._factory()
            self._controllers[session_id] = controller
        self._controllers.move_to_end(session_id)
        while len(self._controllers) > self.max_sessions:
            evicted, _ = self._controllers.popitem(last=False)
            logger.info("Session %s evicted", evicted)
        return controller


def get_controller(
    request: Request, x_session_id: str = Header(default="default")
) -> BookingController:
    """One controller (and session) per browser tab, keyed by header."""
    return request.app.state.sessions.get(x_session_id)


def get_admin_controller(controller: BookingController = Depends(get_controller)) -> BookingController:
    controller.require_admin()
    return controller


async def _ensure_selected_month(controller: BookingController) -> None:
    session = controller.session
    if session.loaded_month != (session.year, session.month):
        await controller.load_month(session.year, session.month)


# --- Session ---

@router.get("/session", response_model=SessionRead)
async def read_session(controller: BookingController = Depends(get_controller)):
    return controller.session.to_read()


@router.put("/session/role", response_model=SessionRead)
async def change_role(change: RoleChange, controller: BookingController = Depends(get_controller)):
    controller.set_role(change.role)
    return controller.session.to_read()


@router.put("/session/name", response_model=SessionRead)
async def change_name(change: NameChange, controller: BookingController = Depends(get_controller)):
    controller.set_user_name(change.name)
    return controller.session.to_read()


# --- Calendar ---

# Registered before /calendar/{year}/{month}, which would otherwise match it
@router.get("/calendar/days/{day}", response_model=DayView)
async def get_day(day: date, controller: BookingController = Depends(get_controller)):
    await _ensure_selected_month(controller)
    return controller.open_date(day)


@router.get("/calendar/{year}/{month}", response_model=MonthView)
async def get_month(year: int, month: int, controller: BookingController = Depends(get_controller)):
    await controller.load_month(year, month)
    return controller.month_view()


# --- Reservations ---

@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    booking_data: ReservationCreate, controller: BookingController = Depends(get_controller)
):
    return await controller.reserve(booking_data.date, booking_data.hour, booking_data.user)


@router.get("/reservations/mine", response_model=List[ReservationRead])
async def my_reservations(controller: BookingController = Depends(get_controller)):
    return controller.my_reservations()


@router.delete("/reservations/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_reservation(reservation_id: int, controller: BookingController = Depends(get_controller)):
    await controller.cancel(reservation_id)


# --- Admin ---

@router.post("/admin/reservations/{reservation_id}/edit", response_model=ReservationRead)
async def begin_edit(reservation_id: int, controller: BookingController = Depends(get_admin_controller)):
    return controller.begin_edit(reservation_id)


@router.patch("/admin/reservations/{reservation_id}")
async def rename_reservation(
    reservation_id: int,
    rename: ReservationRename,
    controller: BookingController = Depends(get_admin_controller),
):
    await controller.admin_rename(reservation_id, rename.user)
    return {"message": controller.session.notice, "id": reservation_id}


@router.delete("/admin/reservations/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_reservation(reservation_id: int, controller: BookingController = Depends(get_admin_controller)):
    await controller.admin_delete(reservation_id)


async def booking_error_handler(request: Request, exc: BookingError):
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if isinstance(exc, ValidationError) and exc.message == "slot taken":
        status_code = status.HTTP_409_CONFLICT
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def create_app(
    settings: Optional[Settings] = None,
    backend: Optional[ReservationBackend] = None,
    today: Callable[[], date] = date.today,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)
    backend = backend or select_backend(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting with %s", type(backend).__name__)
        await backend.init()
        yield
        await backend.dispose()

    app = FastAPI(title="Practice Room Booking", lifespan=lifespan)
    app.state.settings = settings
    app.state.backend = backend
    app.state.today = today
    app.state.sessions = SessionRegistry(
        lambda: BookingController(
            backend,
            today=today,
            admin_label=settings.admin_label,
            default_user_name=settings.default_user_name,
        ),
        settings.max_sessions,
    )

    app.include_router(router)
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


app = create_app()
