from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import Time

from errors import NotFoundError, ValidationError
from tags import ByDate, ByWeekday, ScheduleTag, tag_columns, tag_from_columns, tag_from_payload
from timegrid import parse_time


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
CAPACITY_DATABASE_URL = os.environ.get(
    "CAPACITY_DATABASE_URL",
    f"sqlite:///{(DATA_DIR / 'capacity.db').as_posix()}",
)
DEFAULT_SLOT_LENGTH_MINUTES = 60
DEFAULT_LABOR_STRENGTH = 1
DEFAULT_CAPACITY_FACTOR = 10.0
PHARMACY_CODE_MAX_LENGTH = 3


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for pharmacy configuration and capacity tables living in capacity.db."""

    pass


class Pharmacy(Base):
    __tablename__ = "pharmacies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    zone: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    code: Mapped[str] = mapped_column(String(PHARMACY_CODE_MAX_LENGTH), nullable=False, unique=True)
    slot_length_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_SLOT_LENGTH_MINUTES)
    operating_start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    operating_end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    default_labor_strength: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_LABOR_STRENGTH)
    capacity_factor: Mapped[float] = mapped_column(Float, nullable=False, default=DEFAULT_CAPACITY_FACTOR)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    shifts: Mapped[List["PharmacyShift"]] = relationship(back_populates="pharmacy", cascade="all, delete-orphan")
    overrides: Mapped[List["PharmacyOverride"]] = relationship(
        back_populates="pharmacy", cascade="all, delete-orphan"
    )
    slots: Mapped[List["CapacitySlot"]] = relationship(back_populates="pharmacy", cascade="all, delete-orphan")
    workforce: Mapped[List["WorkforceRecord"]] = relationship(
        back_populates="pharmacy", cascade="all, delete-orphan"
    )


class PharmacyShift(Base):
    __tablename__ = "pharmacy_shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0 = Monday
    specific_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    default_labor_strength: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_LABOR_STRENGTH)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    pharmacy: Mapped[Pharmacy] = relationship(back_populates="shifts")

    __table_args__ = (
        CheckConstraint(
            "(day_of_week IS NOT NULL AND specific_date IS NULL) OR "
            "(day_of_week IS NULL AND specific_date IS NOT NULL)",
            name="ck_shift_day_or_date",
        ),
        CheckConstraint("day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_shift_weekday"),
    )

    @property
    def tag(self) -> ScheduleTag:
        return tag_from_columns(self.day_of_week, self.specific_date)


class PharmacyOverride(Base):
    __tablename__ = "pharmacy_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0 = Monday
    specific_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    operating_start_time: Mapped[datetime.time | None] = mapped_column(Time, nullable=True)
    operating_end_time: Mapped[datetime.time | None] = mapped_column(Time, nullable=True)
    default_labor_strength: Mapped[int | None] = mapped_column(Integer, nullable=True)
    capacity_factor: Mapped[float | None] = mapped_column(Float, nullable=True)
    slot_length_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    pharmacy: Mapped[Pharmacy] = relationship(back_populates="overrides")

    __table_args__ = (
        CheckConstraint(
            "(day_of_week IS NOT NULL AND specific_date IS NULL) OR "
            "(day_of_week IS NULL AND specific_date IS NOT NULL)",
            name="ck_override_day_or_date",
        ),
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)", name="ck_override_weekday"
        ),
    )

    @property
    def tag(self) -> ScheduleTag:
        return tag_from_columns(self.day_of_week, self.specific_date)


class CapacitySlot(Base):
    __tablename__ = "capacity_slots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id", ondelete="CASCADE"), nullable=False)
    slot_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    slot_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    configured_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consumed_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    fulfilled_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    labor_strength: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_LABOR_STRENGTH)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    pharmacy: Mapped[Pharmacy] = relationship(back_populates="slots")

    __table_args__ = (
        UniqueConstraint("pharmacy_id", "slot_date", "slot_time", name="uq_capacity_slot_key"),
    )

    @property
    def headroom(self) -> int:
        return self.configured_capacity - self.consumed_capacity

    @property
    def unfulfilled(self) -> int:
        return self.consumed_capacity - self.fulfilled_capacity


class WorkforceRecord(Base):
    __tablename__ = "workforce_tracking"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id", ondelete="CASCADE"), nullable=False)
    shift_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    shift_start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    shift_end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    signed_in_strength: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    pharmacy: Mapped[Pharmacy] = relationship(back_populates="workforce")

    __table_args__ = (
        UniqueConstraint("pharmacy_id", "shift_date", "shift_start_time", name="uq_workforce_shift"),
    )


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Pharmacy")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite") and ":memory:" in url:
        return create_engine(
            url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=False, future=True, connect_args={"check_same_thread": False})
    return create_engine(url, echo=False, future=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


capacity_engine = make_engine(CAPACITY_DATABASE_URL)
SessionLocal = make_session_factory(capacity_engine)


def init_database(engine: Optional[Engine] = None) -> None:
    Base.metadata.create_all(engine or capacity_engine)


class CapacityStore:
    """Slot, shift and override queries bound to one session (and its transaction)."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Pharmacies -----------------------------------------------------------

    def get_pharmacy(self, pharmacy_id: int) -> Pharmacy:
        pharmacy = self.session.get(Pharmacy, pharmacy_id)
        if pharmacy is None:
            raise NotFoundError(f"Pharmacy {pharmacy_id} not found.")
        return pharmacy

    def list_pharmacy_ids(self) -> List[int]:
        return list(self.session.scalars(select(Pharmacy.id).order_by(Pharmacy.id)))

    # Shifts and overrides -------------------------------------------------

    def shifts_for_date(self, pharmacy_id: int, day: datetime.date) -> List[PharmacyShift]:
        stmt = (
            select(PharmacyShift)
            .where(PharmacyShift.pharmacy_id == pharmacy_id, PharmacyShift.specific_date == day)
            .order_by(PharmacyShift.start_time, PharmacyShift.id)
        )
        return list(self.session.scalars(stmt))

    def shifts_for_weekday(self, pharmacy_id: int, weekday: int) -> List[PharmacyShift]:
        stmt = (
            select(PharmacyShift)
            .where(PharmacyShift.pharmacy_id == pharmacy_id, PharmacyShift.day_of_week == weekday)
            .order_by(PharmacyShift.start_time, PharmacyShift.id)
        )
        return list(self.session.scalars(stmt))

    def override_for(self, pharmacy_id: int, tag: ScheduleTag) -> Optional[PharmacyOverride]:
        stmt = select(PharmacyOverride).where(PharmacyOverride.pharmacy_id == pharmacy_id)
        if isinstance(tag, ByDate):
            stmt = stmt.where(PharmacyOverride.specific_date == tag.date)
        else:
            stmt = stmt.where(PharmacyOverride.day_of_week == tag.day)
        return self.session.scalars(stmt.order_by(PharmacyOverride.id)).first()

    def override_for_date(self, pharmacy_id: int, day: datetime.date) -> Optional[PharmacyOverride]:
        return self.override_for(pharmacy_id, ByDate(day))

    def override_for_weekday(self, pharmacy_id: int, weekday: int) -> Optional[PharmacyOverride]:
        return self.override_for(pharmacy_id, ByWeekday(weekday))

    # Slots ----------------------------------------------------------------

    def get_slot(self, pharmacy_id: int, day: datetime.date, slot_time: datetime.time) -> Optional[CapacitySlot]:
        stmt = select(CapacitySlot).where(
            CapacitySlot.pharmacy_id == pharmacy_id,
            CapacitySlot.slot_date == day,
            CapacitySlot.slot_time == slot_time,
        )
        return self.session.scalars(stmt).first()

    def upsert_slot(
        self,
        pharmacy_id: int,
        day: datetime.date,
        slot_time: datetime.time,
        configured_capacity: int,
        labor_strength: int,
    ) -> CapacitySlot:
        """Insert a slot, or refresh only its plan fields when it already exists."""
        existing = self.get_slot(pharmacy_id, day, slot_time)
        if existing:
            existing.configured_capacity = configured_capacity
            existing.labor_strength = labor_strength
            self.session.flush()
            return existing
        slot = CapacitySlot(
            pharmacy_id=pharmacy_id,
            slot_date=day,
            slot_time=slot_time,
            configured_capacity=configured_capacity,
            consumed_capacity=0,
            fulfilled_capacity=0,
            is_available=True,
            labor_strength=labor_strength,
        )
        self.session.add(slot)
        self.session.flush()
        return slot

    def update_slot_plan(
        self,
        pharmacy_id: int,
        day: datetime.date,
        slot_time: datetime.time,
        configured_capacity: int,
        labor_strength: int,
    ) -> int:
        """Overwrite plan fields of an existing slot; returns the number of rows touched."""
        result = self.session.execute(
            update(CapacitySlot)
            .where(
                CapacitySlot.pharmacy_id == pharmacy_id,
                CapacitySlot.slot_date == day,
                CapacitySlot.slot_time == slot_time,
            )
            .values(configured_capacity=configured_capacity, labor_strength=labor_strength, updated_at=_utcnow())
        )
        return int(result.rowcount or 0)

    def slots_for_date(self, pharmacy_id: int, day: datetime.date) -> List[CapacitySlot]:
        stmt = (
            select(CapacitySlot)
            .where(CapacitySlot.pharmacy_id == pharmacy_id, CapacitySlot.slot_date == day)
            .order_by(CapacitySlot.slot_time)
        )
        return list(self.session.scalars(stmt))

    def first_open_slot(
        self,
        pharmacy_id: int,
        day: datetime.date,
        amount: int,
        *,
        after: Optional[datetime.time] = None,
    ) -> Optional[CapacitySlot]:
        """Earliest available slot with at least ``amount`` headroom, optionally after a time."""
        stmt = select(CapacitySlot).where(
            CapacitySlot.pharmacy_id == pharmacy_id,
            CapacitySlot.slot_date == day,
            CapacitySlot.is_available.is_(True),
            (CapacitySlot.configured_capacity - CapacitySlot.consumed_capacity) >= amount,
        )
        if after is not None:
            stmt = stmt.where(CapacitySlot.slot_time > after)
        return self.session.scalars(stmt.order_by(CapacitySlot.slot_time).limit(1)).first()

    def later_open_slots(
        self,
        pharmacy_id: int,
        day: datetime.date,
        after: datetime.time,
    ) -> List[CapacitySlot]:
        """Available slots after ``after`` that still have positive headroom, earliest first."""
        stmt = (
            select(CapacitySlot)
            .where(
                CapacitySlot.pharmacy_id == pharmacy_id,
                CapacitySlot.slot_date == day,
                CapacitySlot.slot_time > after,
                CapacitySlot.is_available.is_(True),
                (CapacitySlot.configured_capacity - CapacitySlot.consumed_capacity) > 0,
            )
            .order_by(CapacitySlot.slot_time)
        )
        return list(self.session.scalars(stmt))

    def latest_overdue_slot(
        self,
        pharmacy_id: int,
        day: datetime.date,
        at_or_before: datetime.time,
    ) -> Optional[CapacitySlot]:
        stmt = (
            select(CapacitySlot)
            .where(
                CapacitySlot.pharmacy_id == pharmacy_id,
                CapacitySlot.slot_date == day,
                CapacitySlot.slot_time <= at_or_before,
                (CapacitySlot.consumed_capacity - CapacitySlot.fulfilled_capacity) > 0,
            )
            .order_by(CapacitySlot.slot_time.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def last_slot_of_day(self, pharmacy_id: int, day: datetime.date) -> Optional[CapacitySlot]:
        stmt = (
            select(CapacitySlot)
            .where(CapacitySlot.pharmacy_id == pharmacy_id, CapacitySlot.slot_date == day)
            .order_by(CapacitySlot.slot_time.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def add_consumed(self, slot_id: int, amount: int) -> None:
        self.session.execute(
            update(CapacitySlot)
            .where(CapacitySlot.id == slot_id)
            .values(consumed_capacity=CapacitySlot.consumed_capacity + amount, updated_at=_utcnow())
        )

    def add_fulfilled(self, slot_id: int, amount: int) -> None:
        self.session.execute(
            update(CapacitySlot)
            .where(CapacitySlot.id == slot_id)
            .values(fulfilled_capacity=CapacitySlot.fulfilled_capacity + amount, updated_at=_utcnow())
        )

    def set_availability(self, slot_id: int, available: bool, *, reset_counters: bool = False) -> None:
        values: Dict[str, Any] = {"is_available": bool(available), "updated_at": _utcnow()}
        if reset_counters:
            values["consumed_capacity"] = 0
            values["fulfilled_capacity"] = 0
        self.session.execute(update(CapacitySlot).where(CapacitySlot.id == slot_id).values(**values))

    # Workforce ------------------------------------------------------------

    def workforce_for_date(self, pharmacy_id: int, day: datetime.date) -> List[WorkforceRecord]:
        stmt = (
            select(WorkforceRecord)
            .where(WorkforceRecord.pharmacy_id == pharmacy_id, WorkforceRecord.shift_date == day)
            .order_by(WorkforceRecord.shift_start_time)
        )
        return list(self.session.scalars(stmt))

    def upsert_workforce(
        self,
        pharmacy_id: int,
        day: datetime.date,
        start_time: datetime.time,
        end_time: datetime.time,
        signed_in_strength: int,
    ) -> WorkforceRecord:
        stmt = select(WorkforceRecord).where(
            WorkforceRecord.pharmacy_id == pharmacy_id,
            WorkforceRecord.shift_date == day,
            WorkforceRecord.shift_start_time == start_time,
        )
        record = self.session.scalars(stmt).first()
        if record is None:
            record = WorkforceRecord(pharmacy_id=pharmacy_id, shift_date=day, shift_start_time=start_time)
            self.session.add(record)
        record.shift_end_time = end_time
        record.signed_in_strength = signed_in_strength
        self.session.flush()
        return record


# Administration helpers -----------------------------------------------------


def _positive_int(value: Any, field: str, *, allow_zero: bool = False) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a whole number.") from exc
    if number < 0 or (number == 0 and not allow_zero):
        raise ValidationError(f"{field} must be {'zero or more' if allow_zero else 'positive'}.")
    return number


def _non_negative_float(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number.") from exc
    if number < 0:
        raise ValidationError(f"{field} must be zero or more.")
    return number


def create_pharmacy(
    session,
    *,
    name: str,
    code: str,
    operating_start_time: str | datetime.time,
    operating_end_time: str | datetime.time,
    zone: str = "",
    slot_length_minutes: int = DEFAULT_SLOT_LENGTH_MINUTES,
    default_labor_strength: int = DEFAULT_LABOR_STRENGTH,
    capacity_factor: float | None = None,
    shifts: Optional[Iterable[Dict[str, Any]]] = None,
) -> Pharmacy:
    name = (name or "").strip()
    code = (code or "").strip()
    if not name:
        raise ValidationError("Pharmacy name is required.")
    if not code or len(code) > PHARMACY_CODE_MAX_LENGTH:
        raise ValidationError(f"Pharmacy code must be 1-{PHARMACY_CODE_MAX_LENGTH} characters.")
    if session.scalars(select(Pharmacy).where(Pharmacy.code == code)).first():
        raise ValidationError(f"Pharmacy code '{code}' is already in use.")
    pharmacy = Pharmacy(
        name=name,
        zone=(zone or "").strip(),
        code=code,
        slot_length_minutes=_positive_int(slot_length_minutes, "slot_length_minutes"),
        operating_start_time=parse_time(operating_start_time),
        operating_end_time=parse_time(operating_end_time),
        default_labor_strength=_positive_int(default_labor_strength, "default_labor_strength", allow_zero=True),
        capacity_factor=_non_negative_float(
            DEFAULT_CAPACITY_FACTOR if capacity_factor is None else capacity_factor, "capacity_factor"
        ),
    )
    session.add(pharmacy)
    session.flush()
    for entry in shifts or []:
        session.add(
            _build_shift(
                pharmacy.id,
                tag_from_payload(entry.get("day_of_week"), entry.get("specific_date")),
                entry.get("start_time"),
                entry.get("end_time"),
                entry.get("default_labor_strength", pharmacy.default_labor_strength),
            )
        )
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ValidationError(f"Pharmacy could not be saved: {exc.orig}") from exc
    session.refresh(pharmacy)
    return pharmacy


def get_pharmacy(session, pharmacy_id: int) -> Pharmacy:
    return CapacityStore(session).get_pharmacy(pharmacy_id)


def list_pharmacies(session) -> List[Pharmacy]:
    return list(session.scalars(select(Pharmacy).order_by(Pharmacy.name.asc(), Pharmacy.id.asc())))


def delete_pharmacy(session, pharmacy_id: int) -> None:
    pharmacy = get_pharmacy(session, pharmacy_id)
    session.delete(pharmacy)
    session.commit()


def _build_shift(
    pharmacy_id: int,
    tag: ScheduleTag,
    start_time: str | datetime.time,
    end_time: str | datetime.time,
    labor_strength: Any,
) -> PharmacyShift:
    day_of_week, specific_date = tag_columns(tag)
    return PharmacyShift(
        pharmacy_id=pharmacy_id,
        day_of_week=day_of_week,
        specific_date=specific_date,
        start_time=parse_time(start_time),
        end_time=parse_time(end_time),
        default_labor_strength=_positive_int(labor_strength, "default_labor_strength", allow_zero=True),
    )


def save_shift(
    session,
    pharmacy_id: int,
    tag: ScheduleTag,
    *,
    start_time: str | datetime.time,
    end_time: str | datetime.time,
    default_labor_strength: int = DEFAULT_LABOR_STRENGTH,
) -> PharmacyShift:
    get_pharmacy(session, pharmacy_id)
    shift = _build_shift(pharmacy_id, tag, start_time, end_time, default_labor_strength)
    session.add(shift)
    session.commit()
    session.refresh(shift)
    return shift


def list_shifts(
    session,
    pharmacy_id: int,
    *,
    show_all: bool = False,
    today: Optional[datetime.date] = None,
) -> List[PharmacyShift]:
    """Weekday shifts plus current and future dated shifts unless ``show_all`` is set."""
    stmt = select(PharmacyShift).where(PharmacyShift.pharmacy_id == pharmacy_id)
    if not show_all:
        today = today or datetime.date.today()
        stmt = stmt.where(
            (PharmacyShift.day_of_week.is_not(None)) | (PharmacyShift.specific_date >= today)
        )
    stmt = stmt.order_by(
        PharmacyShift.specific_date.is_(None),
        PharmacyShift.specific_date,
        PharmacyShift.day_of_week,
        PharmacyShift.start_time,
    )
    return list(session.scalars(stmt))


def delete_shift(session, pharmacy_id: int, shift_id: int) -> None:
    shift = session.get(PharmacyShift, shift_id)
    if not shift or shift.pharmacy_id != pharmacy_id:
        raise NotFoundError("Shift not found.")
    session.delete(shift)
    session.commit()


OVERRIDE_FIELDS = (
    "operating_start_time",
    "operating_end_time",
    "default_labor_strength",
    "capacity_factor",
    "slot_length_minutes",
)


def save_override(session, pharmacy_id: int, tag: ScheduleTag, **fields: Any) -> PharmacyOverride:
    """Create the override for ``tag`` or merge the provided fields into the existing one."""
    get_pharmacy(session, pharmacy_id)
    unknown = set(fields) - set(OVERRIDE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown override fields: {', '.join(sorted(unknown))}.")
    override = CapacityStore(session).override_for(pharmacy_id, tag)
    if override is None:
        day_of_week, specific_date = tag_columns(tag)
        override = PharmacyOverride(pharmacy_id=pharmacy_id, day_of_week=day_of_week, specific_date=specific_date)
        session.add(override)
    for field, value in fields.items():
        if value is None or value == "":
            continue
        if field in ("operating_start_time", "operating_end_time"):
            value = parse_time(value)
        elif field == "slot_length_minutes":
            value = _positive_int(value, field)
        elif field == "default_labor_strength":
            value = _positive_int(value, field, allow_zero=True)
        elif field == "capacity_factor":
            value = _non_negative_float(value, field)
        setattr(override, field, value)
    session.commit()
    session.refresh(override)
    return override


def list_overrides(
    session,
    pharmacy_id: int,
    *,
    show_all: bool = False,
    today: Optional[datetime.date] = None,
) -> List[PharmacyOverride]:
    stmt = select(PharmacyOverride).where(PharmacyOverride.pharmacy_id == pharmacy_id)
    if not show_all:
        today = today or datetime.date.today()
        stmt = stmt.where(
            (PharmacyOverride.specific_date.is_(None)) | (PharmacyOverride.specific_date >= today)
        )
    stmt = stmt.order_by(
        PharmacyOverride.specific_date.is_(None),
        PharmacyOverride.specific_date,
        PharmacyOverride.day_of_week,
    )
    return list(session.scalars(stmt))


def delete_override(session, pharmacy_id: int, override_id: int) -> None:
    override = session.get(PharmacyOverride, override_id)
    if not override or override.pharmacy_id != pharmacy_id:
        raise NotFoundError("Override not found.")
    session.delete(override)
    session.commit()


def _time_label(value: Optional[datetime.time]) -> Optional[str]:
    return value.strftime("%H:%M") if value else None


def pharmacy_to_dict(pharmacy: Pharmacy) -> Dict[str, Any]:
    return {
        "id": pharmacy.id,
        "name": pharmacy.name,
        "zone": pharmacy.zone,
        "code": pharmacy.code,
        "slot_length_minutes": pharmacy.slot_length_minutes,
        "operating_start_time": _time_label(pharmacy.operating_start_time),
        "operating_end_time": _time_label(pharmacy.operating_end_time),
        "default_labor_strength": pharmacy.default_labor_strength,
        "capacity_factor": pharmacy.capacity_factor,
    }


def shift_to_dict(shift: PharmacyShift) -> Dict[str, Any]:
    return {
        "id": shift.id,
        "pharmacy_id": shift.pharmacy_id,
        "day_of_week": shift.day_of_week,
        "specific_date": shift.specific_date.isoformat() if shift.specific_date else None,
        "tag": shift.tag.label,
        "start_time": _time_label(shift.start_time),
        "end_time": _time_label(shift.end_time),
        "default_labor_strength": shift.default_labor_strength,
    }


def override_to_dict(override: PharmacyOverride) -> Dict[str, Any]:
    return {
        "id": override.id,
        "pharmacy_id": override.pharmacy_id,
        "day_of_week": override.day_of_week,
        "specific_date": override.specific_date.isoformat() if override.specific_date else None,
        "tag": override.tag.label,
        "operating_start_time": _time_label(override.operating_start_time),
        "operating_end_time": _time_label(override.operating_end_time),
        "default_labor_strength": override.default_labor_strength,
        "capacity_factor": override.capacity_factor,
        "slot_length_minutes": override.slot_length_minutes,
    }


def workforce_to_dict(record: WorkforceRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "pharmacy_id": record.pharmacy_id,
        "shift_date": record.shift_date.isoformat(),
        "shift_start_time": _time_label(record.shift_start_time),
        "shift_end_time": _time_label(record.shift_end_time),
        "signed_in_strength": record.signed_in_strength,
    }


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Pharmacy",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
