"""FastAPI wrapper around the capacity service and the admin helpers.

Routes carry no business logic: they parse the request, call the service or a
database helper, write an audit entry for mutations and encode the result.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure absolute imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import (  # noqa: E402
    SessionLocal,
    capacity_engine,
    create_pharmacy,
    delete_override,
    delete_pharmacy,
    delete_shift,
    get_pharmacy,
    init_database,
    list_overrides,
    list_pharmacies,
    list_shifts,
    override_to_dict,
    pharmacy_to_dict,
    record_audit_log,
    save_override,
    save_shift,
    shift_to_dict,
    workforce_to_dict,
)
from capacity.api import CapacityService  # noqa: E402
from capacity.redistribution import RedistributionResult  # noqa: E402
from errors import CapacityInsufficientError, NotFoundError, ValidationError  # noqa: E402
from scheduler import REDISTRIBUTION_INTERVAL_SECONDS, RedistributionScheduler  # noqa: E402
from tags import tag_from_payload  # noqa: E402


def create_app(
    *,
    engine: Engine = capacity_engine,
    session_factory: sessionmaker = SessionLocal,
    clock: Callable[[], datetime.datetime] = datetime.datetime.now,
    run_scheduler: bool = True,
    interval_seconds: float = REDISTRIBUTION_INTERVAL_SECONDS,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_database(engine)
        service = CapacityService(session_factory, clock)
        scheduler = RedistributionScheduler(service, interval_seconds=interval_seconds)
        app.state.session_factory = session_factory
        app.state.service = service
        app.state.scheduler = scheduler
        if run_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()

    app = FastAPI(title="Pharmacy Capacity API", version="0.1", lifespan=lifespan)
    _register_error_handlers(app)
    app.include_router(router)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ValidationError)
    async def _invalid(_: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(CapacityInsufficientError)
    async def _insufficient(_: Request, exc: CapacityInsufficientError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": str(exc),
                "unfulfilledAmount": exc.unfulfilled_amount,
                "availableCapacity": exc.available_capacity,
            },
        )


router = APIRouter()


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_service(request: Request) -> CapacityService:
    return request.app.state.service


def get_scheduler(request: Request) -> RedistributionScheduler:
    return request.app.state.scheduler


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return str((payload or {}).get("actor") or "api").strip() or "api"


def _audit(
    db: Session,
    actor: str,
    action: str,
    target_id: Optional[int],
    payload: Optional[Dict[str, Any]] = None,
    target_type: str = "Pharmacy",
) -> None:
    record_audit_log(db, user_id=actor, action=action, target_type=target_type, target_id=target_id, payload=payload)


def _parse_date(value: Optional[str], field: str = "date") -> datetime.date:
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field} must be YYYY-MM-DD")


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# Pharmacies -------------------------------------------------------------------


@router.get("/api/v1/pharmacies")
def pharmacies_index(db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=[pharmacy_to_dict(pharmacy) for pharmacy in list_pharmacies(db)])


@router.post("/api/v1/pharmacies")
def pharmacies_create(payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    pharmacy = create_pharmacy(
        db,
        name=payload.get("name") or "",
        code=payload.get("code") or "",
        zone=payload.get("zone") or "",
        operating_start_time=payload.get("operating_start_time"),
        operating_end_time=payload.get("operating_end_time"),
        slot_length_minutes=payload.get("slot_length_minutes") or database.DEFAULT_SLOT_LENGTH_MINUTES,
        default_labor_strength=payload.get("default_labor_strength", database.DEFAULT_LABOR_STRENGTH),
        capacity_factor=payload.get("capacity_factor"),
        shifts=payload.get("shifts") or [],
    )
    _audit(db, _actor(payload), "PHARMACY_CREATE", pharmacy.id, {"code": pharmacy.code})
    return JSONResponse(status_code=201, content=pharmacy_to_dict(pharmacy))


@router.get("/api/v1/pharmacies/{pharmacy_id}")
def pharmacies_show(pharmacy_id: int, db=Depends(get_db)) -> JSONResponse:
    return JSONResponse(content=pharmacy_to_dict(get_pharmacy(db, pharmacy_id)))


@router.delete("/api/v1/pharmacies/{pharmacy_id}")
def pharmacies_delete(
    pharmacy_id: int,
    db=Depends(get_db),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    delete_pharmacy(db, pharmacy_id)
    service.forget_pharmacy(pharmacy_id)
    _audit(db, "api", "PHARMACY_DELETE", pharmacy_id)
    return JSONResponse(content={"success": True, "message": "Pharmacy deleted successfully"})


# Shifts and overrides -----------------------------------------------------------


@router.get("/api/v1/pharmacies/{pharmacy_id}/shifts")
def shifts_index(
    pharmacy_id: int,
    show_all: bool = Query(False, alias="all"),
    db=Depends(get_db),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    get_pharmacy(db, pharmacy_id)
    shifts = list_shifts(db, pharmacy_id, show_all=show_all, today=service.now().date())
    return JSONResponse(content=[shift_to_dict(shift) for shift in shifts])


@router.post("/api/v1/pharmacies/{pharmacy_id}/shifts")
def shifts_create(pharmacy_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    tag = tag_from_payload(payload.get("day_of_week"), payload.get("specific_date"))
    shift = save_shift(
        db,
        pharmacy_id,
        tag,
        start_time=payload.get("start_time"),
        end_time=payload.get("end_time"),
        default_labor_strength=payload.get("default_labor_strength", database.DEFAULT_LABOR_STRENGTH),
    )
    _audit(db, _actor(payload), "SHIFT_SAVE", pharmacy_id, {"shift_id": shift.id, "tag": tag.label})
    return JSONResponse(content={"success": True, "message": "Shift saved successfully", "shift": shift_to_dict(shift)})


@router.delete("/api/v1/pharmacies/{pharmacy_id}/shifts")
def shifts_delete(pharmacy_id: int, shift_id: Optional[int] = Query(None, alias="shiftId"), db=Depends(get_db)) -> JSONResponse:
    if shift_id is None:
        raise HTTPException(status_code=400, detail="shiftId is required")
    delete_shift(db, pharmacy_id, shift_id)
    _audit(db, "api", "SHIFT_DELETE", pharmacy_id, {"shift_id": shift_id})
    return JSONResponse(content={"success": True, "message": "Shift deleted successfully"})


@router.get("/api/v1/pharmacies/{pharmacy_id}/overrides")
def overrides_index(
    pharmacy_id: int,
    show_all: bool = Query(False, alias="all"),
    db=Depends(get_db),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    get_pharmacy(db, pharmacy_id)
    overrides = list_overrides(db, pharmacy_id, show_all=show_all, today=service.now().date())
    return JSONResponse(content=[override_to_dict(override) for override in overrides])


@router.post("/api/v1/pharmacies/{pharmacy_id}/overrides")
def overrides_save(pharmacy_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    tag = tag_from_payload(payload.get("day_of_week"), payload.get("specific_date"))
    fields = {name: payload.get(name) for name in database.OVERRIDE_FIELDS if name in payload}
    override = save_override(db, pharmacy_id, tag, **fields)
    _audit(db, _actor(payload), "OVERRIDE_SAVE", pharmacy_id, {"override_id": override.id, "tag": tag.label})
    return JSONResponse(
        content={"success": True, "message": "Override saved successfully", "override": override_to_dict(override)}
    )


@router.delete("/api/v1/pharmacies/{pharmacy_id}/overrides")
def overrides_delete(
    pharmacy_id: int,
    override_id: Optional[int] = Query(None, alias="overrideId"),
    db=Depends(get_db),
) -> JSONResponse:
    if override_id is None:
        raise HTTPException(status_code=400, detail="overrideId is required")
    delete_override(db, pharmacy_id, override_id)
    _audit(db, "api", "OVERRIDE_DELETE", pharmacy_id, {"override_id": override_id})
    return JSONResponse(content={"success": True, "message": "Override deleted successfully"})


# Workforce ------------------------------------------------------------------------


@router.get("/api/v1/pharmacies/{pharmacy_id}/workforce")
def workforce_index(
    pharmacy_id: int,
    date: Optional[str] = Query(None),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    day = _parse_date(date) if date else None
    records = service.list_workforce(pharmacy_id, day)
    return JSONResponse(content=[workforce_to_dict(record) for record in records])


@router.post("/api/v1/pharmacies/{pharmacy_id}/workforce")
def workforce_record(
    pharmacy_id: int,
    payload: Dict[str, Any],
    db=Depends(get_db),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    update = service.record_workforce(
        pharmacy_id,
        payload.get("shift_date"),
        payload.get("shift_start_time"),
        payload.get("shift_end_time"),
        payload.get("signed_in_strength"),
    )
    _audit(
        db,
        _actor(payload),
        "WORKFORCE_RECORD",
        pharmacy_id,
        {"record_id": update.record.id, "signed_in_strength": update.record.signed_in_strength},
    )
    return JSONResponse(
        content={
            "success": True,
            "record": workforce_to_dict(update.record),
            "configuredCapacity": update.configured_capacity,
            "slotsUpdated": update.slots_updated,
        }
    )


# Capacity ----------------------------------------------------------------------------


@router.get("/api/v1/pharmacies/{pharmacy_id}/capacity")
def capacity_view(
    pharmacy_id: int,
    days: int = Query(14, ge=1, le=60),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    view = service.get_capacity_view(pharmacy_id, days)
    return JSONResponse(content=[day.to_dict() for day in view])


@router.post("/api/v1/pharmacies/{pharmacy_id}/capacity")
def capacity_action(
    pharmacy_id: int,
    payload: Dict[str, Any],
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    action = payload.get("action")
    if action == "consume":
        result = service.consume(pharmacy_id, payload.get("amount"), payload.get("slotDate"))
    elif action == "fulfill":
        if not payload.get("slotDate") or not payload.get("slotTime"):
            raise HTTPException(status_code=400, detail="slotDate and slotTime required for fulfill action")
        result = service.fulfill(pharmacy_id, payload.get("amount"), payload.get("slotDate"), payload.get("slotTime"))
    elif action == "redistribute":
        outcome = service.redistribute(pharmacy_id)
        return JSONResponse(
            content={"success": True, "message": "Capacity redistribution completed", "result": outcome.to_dict()}
        )
    else:
        raise HTTPException(status_code=400, detail="Invalid action")
    return JSONResponse(content=jsonable_encoder(result.to_dict()))


@router.patch("/api/v1/pharmacies/{pharmacy_id}/slots/{slot_date}/{slot_time}")
def slot_availability(
    pharmacy_id: int,
    slot_date: str,
    slot_time: str,
    payload: Dict[str, Any],
    db=Depends(get_db),
    service: CapacityService = Depends(get_service),
) -> JSONResponse:
    if "is_available" not in payload:
        raise HTTPException(status_code=400, detail="is_available is required")
    available = payload.get("is_available")
    result = service.set_slot_availability(pharmacy_id, _parse_date(slot_date, "slot date"), slot_time, available)
    _audit(
        db,
        _actor(payload),
        "SLOT_ENABLE" if available else "SLOT_DISABLE",
        pharmacy_id,
        {"date": slot_date, "time": slot_time, "reassigned": result.reassigned},
        target_type="CapacitySlot",
    )
    return JSONResponse(
        content={
            "success": True,
            "message": f"Slot {'enabled' if available else 'disabled'} successfully",
            "result": result.to_dict(),
        }
    )


@router.post("/api/v1/scheduler/trigger")
def scheduler_trigger(
    payload: Optional[Dict[str, Any]] = None,
    scheduler: RedistributionScheduler = Depends(get_scheduler),
) -> JSONResponse:
    pharmacy_id = (payload or {}).get("pharmacyId")
    if pharmacy_id is not None:
        try:
            pharmacy_id = int(pharmacy_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError("pharmacyId must be a whole number.") from exc
    outcome = scheduler.trigger(pharmacy_id)
    if isinstance(outcome, RedistributionResult):
        return JSONResponse(content={"success": True, "result": outcome.to_dict()})
    return JSONResponse(content={"success": True, "sweep": outcome.to_dict()})


app = create_app()
