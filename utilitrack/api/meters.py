# utilitrack/api/meters.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine, lock_row, run_in_transaction
from utilitrack.db.schema import bills, customers, meter_readings, meters, service_connections, utility_types
from utilitrack.errors import ConflictError, NotFoundError, ValidationError
from utilitrack.models.common import (
    ItemResponse,
    ListResponse,
    MessageResponse,
    MeterStatus,
    UtilityType,
    item_response,
    list_response,
)
from utilitrack.models.meters import (
    LastReadingOut,
    MaintenanceRecord,
    MeterCreate,
    MeterOut,
    MeterStatusUpdate,
    MeterSummaryOut,
    MeterUpdate,
)
from utilitrack.services.bills import customer_name
from utilitrack.services.readings import last_reading

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/meters", tags=["meters"])


def meter_view():
    return (
        select(
            meters,
            customer_name(),
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
            service_connections.c.connection_number,
        )
        .select_from(
            meters.join(customers, meters.c.customer_id == customers.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
            .outerjoin(service_connections, meters.c.connection_id == service_connections.c.id)
        )
    )


def _get_meter(conn, meter_id: int):
    row = conn.execute(meter_view().where(meters.c.id == meter_id)).mappings().first()
    if row is None:
        raise NotFoundError("Meter not found")
    return row


def _meter_number_taken(conn, meter_number: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(meters.c.id).where(meters.c.meter_number == meter_number)
    if exclude_id is not None:
        stmt = stmt.where(meters.c.id != exclude_id)
    return conn.execute(stmt).first() is not None


def _check_connection(conn, connection_id: int, customer_id: int, utility_type_id: int) -> None:
    """
    A meter can only hang off a live connection of the same customer and utility.
    """
    connection = conn.execute(
        select(service_connections).where(service_connections.c.id == connection_id)
    ).mappings().first()
    if connection is None:
        raise NotFoundError("Service connection not found")
    if connection["customer_id"] != customer_id or connection["utility_type_id"] != utility_type_id:
        raise ValidationError(
            f"Connection {connection['connection_number']} belongs to another customer or utility"
        )
    if connection["connection_status"] == "Disconnected":
        raise ValidationError(f"Connection {connection['connection_number']} is disconnected")


@router.get("", response_model=ListResponse[MeterOut])
def list_meters(
    utility_type: Optional[UtilityType] = Query(default=None),
    status: Optional[MeterStatus] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    stmt = meter_view().order_by(meters.c.meter_number)
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)
    if status is not None:
        stmt = stmt.where(meters.c.status == status)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/stats/summary", response_model=ItemResponse[MeterSummaryOut])
def meter_summary(engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        by_status = dict(
            conn.execute(select(meters.c.status, func.count()).group_by(meters.c.status)).all()
        )
        by_utility = dict(
            conn.execute(
                select(utility_types.c.name, func.count(meters.c.id))
                .select_from(utility_types.outerjoin(meters))
                .group_by(utility_types.c.name)
            ).all()
        )
        never_maintained = conn.execute(
            select(func.count()).where(meters.c.last_maintenance_date.is_(None))
        ).scalar_one()

    return item_response({
        "total_meters": sum(by_status.values()),
        "never_maintained": never_maintained,
        "by_status": by_status,
        "by_utility": by_utility,
    })


@router.get("/customer/{customer_id}", response_model=ListResponse[MeterOut])
def list_customer_meters(customer_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(
            select(customers.c.id).where(customers.c.id == customer_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Customer not found")

        rows = conn.execute(
            meter_view().where(meters.c.customer_id == customer_id).order_by(meters.c.meter_number)
        ).mappings().all()

    return list_response(rows)


@router.get("/connection/{connection_id}", response_model=ListResponse[MeterOut])
def list_connection_meters(connection_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(
            select(service_connections.c.id).where(service_connections.c.id == connection_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Service connection not found")

        rows = conn.execute(
            meter_view().where(meters.c.connection_id == connection_id).order_by(meters.c.meter_number)
        ).mappings().all()

    return list_response(rows)


@router.get("/{meter_id}", response_model=ItemResponse[MeterOut])
def get_meter(meter_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(_get_meter(conn, meter_id))


@router.get("/{meter_id}/last-reading", response_model=ItemResponse[LastReadingOut])
def get_last_reading(meter_id: int, engine: Engine = Depends(get_engine)):
    """
    The meter's newest reading, plus the value the next reading will be
    measured from.
    """
    with engine.connect() as conn:
        meter = _get_meter(conn, meter_id)
        last = last_reading(conn, meter_id)

    return item_response({
        "meter_id": meter["id"],
        "meter_number": meter["meter_number"],
        "next_previous_reading": last["current_reading"] if last else meter["initial_reading"],
        "last_reading": dict(last) if last else None,
    })


@router.post("", response_model=ItemResponse[MeterOut], status_code=201)
def create_meter(body: MeterCreate, engine: Engine = Depends(get_engine)):
    def work(conn):
        customer = conn.execute(
            select(customers.c.id, customers.c.status).where(customers.c.id == body.customer_id)
        ).mappings().first()
        if customer is None:
            raise NotFoundError("Customer not found")
        if customer["status"] != "Active":
            raise ValidationError(f"Cannot add a meter for a customer who is {customer['status']}")

        if _meter_number_taken(conn, body.meter_number):
            raise ConflictError(f"Meter number {body.meter_number} already exists")

        utility_type_id = conn.execute(
            select(utility_types.c.id).where(utility_types.c.name == body.utility_type)
        ).scalar_one()

        if body.connection_id is not None:
            _check_connection(conn, body.connection_id, body.customer_id, utility_type_id)

        result = conn.execute(
            meters.insert().values(
                customer_id=body.customer_id,
                utility_type_id=utility_type_id,
                connection_id=body.connection_id,
                meter_number=body.meter_number,
                installation_date=body.installation_date or today(),
                status=body.status,
                initial_reading=body.initial_reading,
                notes=body.notes,
            )
        )
        return result.inserted_primary_key[0]

    meter_id = run_in_transaction(engine, work, "creating a meter")
    logger.info("Installed %s meter %s for customer %s", body.utility_type, body.meter_number, body.customer_id)

    with engine.connect() as conn:
        return item_response(_get_meter(conn, meter_id))


@router.put("/{meter_id}", response_model=ItemResponse[MeterOut])
def update_meter(meter_id: int, body: MeterUpdate, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    def work(conn):
        if not lock_row(conn, meters, meter_id):
            raise NotFoundError("Meter not found")

        if "meter_number" in changes and _meter_number_taken(conn, changes["meter_number"], meter_id):
            raise ConflictError(f"Meter number {changes['meter_number']} already exists")

        if "initial_reading" in changes:
            has_readings = conn.execute(
                select(meter_readings.c.id).where(meter_readings.c.meter_id == meter_id).limit(1)
            ).first()
            if has_readings is not None:
                raise ValidationError("The initial reading cannot change once readings are recorded")

        conn.execute(meters.update().where(meters.c.id == meter_id).values(**changes))

    run_in_transaction(engine, work, f"updating meter {meter_id}")

    with engine.connect() as conn:
        return item_response(_get_meter(conn, meter_id))


@router.patch("/{meter_id}/status", response_model=ItemResponse[MeterOut])
def update_meter_status(meter_id: int, body: MeterStatusUpdate, engine: Engine = Depends(get_engine)):
    def work(conn):
        _get_meter(conn, meter_id)
        conn.execute(meters.update().where(meters.c.id == meter_id).values(status=body.status))

    run_in_transaction(engine, work, f"updating meter {meter_id} status")
    logger.info("Meter %s status set to %s", meter_id, body.status)

    with engine.connect() as conn:
        return item_response(_get_meter(conn, meter_id))


@router.patch("/{meter_id}/maintenance", response_model=ItemResponse[MeterOut])
def record_maintenance(
    meter_id: int,
    body: Optional[MaintenanceRecord] = None,
    engine: Engine = Depends(get_engine),
):
    """
    Stamp the meter's last maintenance date (today unless given). Notes, when
    sent, replace the meter's notes.
    """
    body = body or MaintenanceRecord()
    values = {"last_maintenance_date": body.maintenance_date or today()}
    if body.notes is not None:
        values["notes"] = body.notes

    def work(conn):
        meter = _get_meter(conn, meter_id)
        if meter["installation_date"] > values["last_maintenance_date"]:
            raise ValidationError("Maintenance date cannot be before the installation date")
        conn.execute(meters.update().where(meters.c.id == meter_id).values(**values))

    run_in_transaction(engine, work, f"recording maintenance on meter {meter_id}")
    logger.info("Maintenance recorded on meter %s (%s)", meter_id, values["last_maintenance_date"])

    with engine.connect() as conn:
        return item_response(_get_meter(conn, meter_id))


@router.delete("/{meter_id}", response_model=MessageResponse)
def delete_meter(meter_id: int, engine: Engine = Depends(get_engine)):
    """
    Delete a meter that was registered by mistake. A meter with readings or
    bills keeps its history; set its status to Removed instead.
    """
    def work(conn):
        if not lock_row(conn, meters, meter_id):
            raise NotFoundError("Meter not found")

        for table, what in ((meter_readings, "readings"), (bills, "bills")):
            used = conn.execute(select(table.c.id).where(table.c.meter_id == meter_id).limit(1)).first()
            if used is not None:
                raise ConflictError(f"Cannot delete a meter with {what}; set its status to Removed instead")

        conn.execute(meters.delete().where(meters.c.id == meter_id))

    run_in_transaction(engine, work, f"deleting meter {meter_id}")
    logger.info("Deleted meter %s", meter_id)

    return {"success": True, "message": "Meter deleted successfully"}
