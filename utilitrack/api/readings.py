# utilitrack/api/readings.py

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.engine import Engine

from utilitrack.db.engine import get_engine
from utilitrack.db.schema import meter_readings, meters
from utilitrack.errors import NotFoundError, ValidationError
from utilitrack.models.common import (
    ItemResponse,
    ListResponse,
    MessageResponse,
    ReadingType,
    item_response,
    list_response,
)
from utilitrack.models.readings import ReadingCreate, ReadingOut, ReadingUpdate
from utilitrack.services.readings import (
    delete_reading,
    get_reading,
    last_reading,
    reading_view,
    record_reading,
    update_reading,
)

router = APIRouter(prefix="/meter-readings", tags=["meter-readings"])

NEWEST_FIRST = (meter_readings.c.reading_date.desc(), meter_readings.c.id.desc())


def _require_meter(conn, meter_id: int) -> None:
    exists = conn.execute(select(meters.c.id).where(meters.c.id == meter_id)).scalar_one_or_none()
    if exists is None:
        raise NotFoundError("Meter not found")


@router.get("", response_model=ListResponse[ReadingOut])
def list_readings(
    meter_id: Optional[int] = Query(default=None),
    reading_type: Optional[ReadingType] = Query(default=None),
    processed: Optional[bool] = Query(default=None, description="Filter on billed / unbilled"),
    engine: Engine = Depends(get_engine),
):
    stmt = reading_view().order_by(*NEWEST_FIRST)
    if meter_id is not None:
        stmt = stmt.where(meter_readings.c.meter_id == meter_id)
    if reading_type is not None:
        stmt = stmt.where(meter_readings.c.reading_type == reading_type)
    if processed is not None:
        stmt = stmt.where(meter_readings.c.is_processed.is_(processed))

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/meter/{meter_id}", response_model=ListResponse[ReadingOut])
def list_meter_readings(meter_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        _require_meter(conn, meter_id)
        rows = conn.execute(
            reading_view().where(meter_readings.c.meter_id == meter_id).order_by(*NEWEST_FIRST)
        ).mappings().all()

    return list_response(rows)


@router.get("/meter/{meter_id}/history", response_model=ListResponse[ReadingOut])
def meter_reading_history(
    meter_id: int,
    limit: int = Query(12, ge=1, le=120),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        _require_meter(conn, meter_id)
        rows = conn.execute(
            reading_view()
            .where(meter_readings.c.meter_id == meter_id)
            .order_by(*NEWEST_FIRST)
            .limit(limit)
        ).mappings().all()

    return list_response(rows)


@router.get("/meter/{meter_id}/last", response_model=ItemResponse[ReadingOut])
def meter_last_reading(meter_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        _require_meter(conn, meter_id)
        row = last_reading(conn, meter_id)

    if row is None:
        raise NotFoundError("No readings recorded for this meter")
    return item_response(row)


@router.get("/{reading_id}", response_model=ItemResponse[ReadingOut])
def get_meter_reading(reading_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(get_reading(conn, reading_id))


@router.post("", response_model=ItemResponse[ReadingOut], status_code=201)
def create_meter_reading(body: ReadingCreate, engine: Engine = Depends(get_engine)):
    reading = record_reading(
        engine,
        meter_id=body.meter_id,
        current_reading=body.current_reading,
        reading_date=body.reading_date,
        reading_type=body.reading_type,
        recorded_by=body.recorded_by,
        notes=body.notes,
    )
    return item_response(reading)


@router.put("/{reading_id}", response_model=ItemResponse[ReadingOut])
def update_meter_reading(reading_id: int, body: ReadingUpdate, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return item_response(update_reading(engine, reading_id, changes))


@router.delete("/{reading_id}", response_model=MessageResponse)
def delete_meter_reading(reading_id: int, engine: Engine = Depends(get_engine)):
    delete_reading(engine, reading_id)
    return {"success": True, "message": "Meter reading deleted successfully"}
