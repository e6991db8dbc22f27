# utilitrack/api/connections.py
"""
Service connections: a customer's supply of one utility at a property.

Meters are installed on a connection. A connection is never deleted;
DELETE disconnects it and keeps its history.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine, lock_row, run_in_transaction
from utilitrack.db.numbering import connection_number
from utilitrack.db.schema import customers, meters, service_connections, utility_types
from utilitrack.errors import ConflictError, NotFoundError, ValidationError
from utilitrack.models.common import (
    ConnectionStatus,
    ItemResponse,
    ListResponse,
    UtilityType,
    item_response,
    list_response,
)
from utilitrack.models.connections import ConnectionCreate, ConnectionOut, ConnectionUpdate
from utilitrack.services.bills import customer_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


def connection_view():
    meter_count = (
        select(func.count(meters.c.id))
        .where(meters.c.connection_id == service_connections.c.id)
        .scalar_subquery()
    )
    return (
        select(
            service_connections,
            customer_name(),
            customers.c.customer_type,
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
            meter_count.label("meter_count"),
        )
        .select_from(
            service_connections.join(customers, service_connections.c.customer_id == customers.c.id)
            .join(utility_types, service_connections.c.utility_type_id == utility_types.c.id)
        )
    )


def _get_connection(conn, connection_id: int):
    row = conn.execute(
        connection_view().where(service_connections.c.id == connection_id)
    ).mappings().first()
    if row is None:
        raise NotFoundError("Service connection not found")
    return row


def _disconnect_values(current, changes: dict) -> dict:
    """
    Fill in the disconnection date a status change implies: moving to
    Disconnected stamps today, moving back out of it clears the date.
    """
    values = dict(changes)
    status = values.get("connection_status", current["connection_status"])
    if status == "Disconnected":
        if values.get("disconnection_date", current["disconnection_date"]) is None:
            values["disconnection_date"] = today()
    elif current["connection_status"] == "Disconnected" and "disconnection_date" not in values:
        values["disconnection_date"] = None

    connected = values.get("connection_date", current["connection_date"])
    disconnected = values.get("disconnection_date", current["disconnection_date"])
    if disconnected is not None and disconnected < connected:
        raise ValidationError("Disconnection date cannot be before the connection date")
    return values


def _write(engine: Engine, connection_id: int, changes: dict, what: str):
    def work(conn):
        if not lock_row(conn, service_connections, connection_id):
            raise NotFoundError("Service connection not found")
        current = _get_connection(conn, connection_id)
        values = _disconnect_values(current, changes)
        conn.execute(
            service_connections.update()
            .where(service_connections.c.id == connection_id)
            .values(**values, updated_at=func.current_timestamp())
        )
        return values

    values = run_in_transaction(engine, work, f"writing connection {connection_id}")
    logger.info("Connection %s %s: %s", connection_id, what, ", ".join(sorted(values)))

    with engine.connect() as conn:
        return item_response(_get_connection(conn, connection_id))


@router.get("", response_model=ListResponse[ConnectionOut])
def list_connections(
    search: Optional[str] = Query(default=None),
    utility_type: Optional[UtilityType] = Query(default=None),
    status: Optional[ConnectionStatus] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    stmt = connection_view().order_by(
        service_connections.c.connection_date.desc(), service_connections.c.id.desc()
    )
    if search and search.strip():
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(service_connections.c.connection_number).like(pattern),
                func.lower(service_connections.c.property_address).like(pattern),
                func.lower(customers.c.first_name + " " + customers.c.last_name).like(pattern),
            )
        )
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)
    if status is not None:
        stmt = stmt.where(service_connections.c.connection_status == status)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/customer/{customer_id}", response_model=ListResponse[ConnectionOut])
def list_customer_connections(customer_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(
            select(customers.c.id).where(customers.c.id == customer_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Customer not found")

        rows = conn.execute(
            connection_view()
            .where(service_connections.c.customer_id == customer_id)
            .order_by(service_connections.c.connection_number)
        ).mappings().all()

    return list_response(rows)


@router.get("/{connection_id}", response_model=ItemResponse[ConnectionOut])
def get_connection(connection_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(_get_connection(conn, connection_id))


@router.post("", response_model=ItemResponse[ConnectionOut], status_code=201)
def create_connection(body: ConnectionCreate, engine: Engine = Depends(get_engine)):
    connection_date = body.connection_date or today()
    if body.connection_status == "Disconnected":
        raise ValidationError("A new connection cannot start out Disconnected")

    def work(conn):
        customer = conn.execute(
            select(customers.c.id, customers.c.status).where(customers.c.id == body.customer_id)
        ).mappings().first()
        if customer is None:
            raise NotFoundError("Customer not found")
        if customer["status"] != "Active":
            raise ValidationError(f"Cannot connect a customer who is {customer['status']}")

        utility_type_id = conn.execute(
            select(utility_types.c.id).where(utility_types.c.name == body.utility_type)
        ).scalar_one()

        result = conn.execute(
            service_connections.insert().values(
                connection_number=connection_number(
                    conn, service_connections.c.connection_number, connection_date
                ),
                customer_id=body.customer_id,
                utility_type_id=utility_type_id,
                connection_date=connection_date,
                connection_status=body.connection_status,
                property_address=body.property_address,
                notes=body.notes,
            )
        )
        return result.inserted_primary_key[0]

    connection_id = run_in_transaction(engine, work, "creating a service connection")

    with engine.connect() as conn:
        connection = _get_connection(conn, connection_id)

    logger.info(
        "Opened %s connection %s for customer %s",
        body.utility_type,
        connection["connection_number"],
        body.customer_id,
    )
    return item_response(connection)


@router.put("/{connection_id}", response_model=ItemResponse[ConnectionOut])
def update_connection(connection_id: int, body: ConnectionUpdate, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return _write(engine, connection_id, changes, "updated")


@router.delete("/{connection_id}", response_model=ItemResponse[ConnectionOut])
def disconnect(connection_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        current = _get_connection(conn, connection_id)
    if current["connection_status"] == "Disconnected":
        raise ConflictError(f"Connection {current['connection_number']} is already disconnected")

    return _write(engine, connection_id, {"connection_status": "Disconnected"}, "disconnected")
