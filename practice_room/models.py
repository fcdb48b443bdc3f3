import datetime as dt
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

FIRST_HOUR = 9
LAST_HOUR = 22


class ReservationBase(SQLModel):
    date: dt.date = Field(index=True)
    hour: int  # 9, 10, ... 22
    user: str


class Reservation(ReservationBase, table=True):
    __tablename__ = "reservations"
    __table_args__ = (
        # Database-level protection against double booking
        UniqueConstraint("date", "hour", name="unique_reservation_slot"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)


class ReservationRead(ReservationBase):
    id: int


# Pydantic Schemas for Request/Response
class ReservationCreate(BaseModel):
    date: dt.date
    hour: int
    # Falls back to the session's active user
    user: Optional[str] = None


class ReservationRename(BaseModel):
    user: str


class SlotStatus(BaseModel):
    time_label: str
    slot_hour: int
    status: str
    user: Optional[str] = None
    reservation_id: Optional[int] = None


class DayView(BaseModel):
    date: dt.date
    slots: List[SlotStatus]


class DayCell(BaseModel):
    date: dt.date
    day: int
    in_current_month: bool
    is_past: bool = False
    count: int = 0
    selectable: bool = False


class MonthView(BaseModel):
    year: int
    month: int
    cells: List[DayCell]


class SessionRead(BaseModel):
    role: str
    active_user: str
    name_editable: bool
    year: int
    month: int
    selected_date: Optional[dt.date] = None
    editing_reservation_id: Optional[int] = None
    notice: Optional[str] = None


class RoleChange(BaseModel):
    role: str


class NameChange(BaseModel):
    name: str
