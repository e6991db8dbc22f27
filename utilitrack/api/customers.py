# utilitrack/api/customers.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine, run_in_transaction
from utilitrack.db.schema import bills, complaints, customers, meters, payments, service_connections
from utilitrack.errors import ConflictError, NotFoundError, ValidationError
from utilitrack.models.common import (
    CustomerStatus,
    CustomerType,
    ItemResponse,
    ListResponse,
    MessageResponse,
    item_response,
    list_response,
)
from utilitrack.models.customers import (
    CustomerCountOut,
    CustomerCreate,
    CustomerOut,
    CustomerUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/customers", tags=["customers"])


def _get_customer(conn, customer_id: int):
    row = conn.execute(select(customers).where(customers.c.id == customer_id)).mappings().first()
    if row is None:
        raise NotFoundError("Customer not found")
    return row


@router.get("", response_model=ListResponse[CustomerOut])
def list_customers(
    search: Optional[str] = Query(
        default=None,
        description="Case-insensitive match on name, email, phone or city",
    ),
    type: Optional[CustomerType] = Query(default=None),
    status: Optional[CustomerStatus] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    stmt = select(customers).order_by(customers.c.last_name, customers.c.first_name, customers.c.id)

    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(customers.c.first_name + " " + customers.c.last_name).like(pattern),
                func.lower(customers.c.email).like(pattern),
                func.lower(customers.c.phone).like(pattern),
                func.lower(customers.c.city).like(pattern),
            )
        )
    if type is not None:
        stmt = stmt.where(customers.c.customer_type == type)
    if status is not None:
        stmt = stmt.where(customers.c.status == status)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/stats/count", response_model=ItemResponse[CustomerCountOut])
def customer_count(engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        by_status = dict(
            conn.execute(
                select(customers.c.status, func.count()).group_by(customers.c.status)
            ).all()
        )
        by_type = dict(
            conn.execute(
                select(customers.c.customer_type, func.count()).group_by(customers.c.customer_type)
            ).all()
        )

    return item_response({
        "total": sum(by_status.values()),
        "active": by_status.get("Active", 0),
        "inactive": by_status.get("Inactive", 0),
        "suspended": by_status.get("Suspended", 0),
        "by_type": by_type,
    })


@router.get("/{customer_id}", response_model=ItemResponse[CustomerOut])
def get_customer(customer_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        row = _get_customer(conn, customer_id)
    return item_response(row)


@router.post("", response_model=ItemResponse[CustomerOut], status_code=201)
def create_customer(body: CustomerCreate, engine: Engine = Depends(get_engine)):
    values = body.model_dump()
    if values["registration_date"] is None:
        values["registration_date"] = today()

    def work(conn):
        result = conn.execute(customers.insert().values(**values))
        return result.inserted_primary_key[0]

    customer_id = run_in_transaction(engine, work, "creating a customer")
    logger.info("Created customer %s (%s %s)", customer_id, body.first_name, body.last_name)

    with engine.connect() as conn:
        return item_response(_get_customer(conn, customer_id))


@router.put("/{customer_id}", response_model=ItemResponse[CustomerOut])
def update_customer(customer_id: int, body: CustomerUpdate, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")

    def work(conn):
        _get_customer(conn, customer_id)
        conn.execute(
            customers.update()
            .where(customers.c.id == customer_id)
            .values(**changes, updated_at=func.current_timestamp())
        )

    run_in_transaction(engine, work, f"updating customer {customer_id}")

    with engine.connect() as conn:
        return item_response(_get_customer(conn, customer_id))


@router.delete("/{customer_id}", response_model=MessageResponse)
def delete_customer(customer_id: int, engine: Engine = Depends(get_engine)):
    """
    Delete a customer that nothing references yet. Customers with meters,
    connections, bills, payments or complaints should be set Inactive instead.
    """
    def work(conn):
        _get_customer(conn, customer_id)
        for table, label in (
            (meters, "meters"),
            (service_connections, "service connections"),
            (bills, "bills"),
            (payments, "payments"),
            (complaints, "complaints"),
        ):
            count = conn.execute(
                select(func.count()).select_from(table).where(table.c.customer_id == customer_id)
            ).scalar_one()
            if count:
                raise ConflictError(
                    f"Customer has {count} {label}; set the customer Inactive instead of deleting"
                )
        conn.execute(customers.delete().where(customers.c.id == customer_id))

    run_in_transaction(engine, work, f"deleting customer {customer_id}")
    logger.info("Deleted customer %s", customer_id)

    return {"success": True, "message": "Customer deleted successfully"}
