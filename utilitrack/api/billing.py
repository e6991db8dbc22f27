# utilitrack/api/billing.py

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from utilitrack.db.engine import get_engine
from utilitrack.db.schema import bills, customers, meter_readings, meters, utility_types
from utilitrack.errors import NotFoundError
from utilitrack.models.bills import (
    BillOut,
    BillPreviewOut,
    BillStatsOut,
    CancelBillRequest,
    GenerateBillRequest,
)
from utilitrack.models.common import (
    OPEN_BILL_STATUSES,
    BillStatus,
    ItemResponse,
    ListResponse,
    UtilityType,
    item_response,
    list_response,
)
from utilitrack.models.readings import ReadingOut
from utilitrack.services.bills import bill_view, cancel_bill, generate_bill, get_bill, preview_bill
from utilitrack.services.readings import reading_view

router = APIRouter(prefix="/billing", tags=["billing"])

NEWEST_FIRST = (bills.c.bill_date.desc(), bills.c.id.desc())


@router.get("", response_model=ListResponse[BillOut])
def list_bills(
    search: Optional[str] = Query(
        default=None,
        description="Case-insensitive match on bill number, customer name or meter number",
    ),
    status: Optional[BillStatus] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    stmt = bill_view().order_by(*NEWEST_FIRST)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(bills.c.bill_number).like(pattern),
                func.lower(customers.c.first_name + " " + customers.c.last_name).like(pattern),
                func.lower(meters.c.meter_number).like(pattern),
            )
        )
    if status is not None:
        stmt = stmt.where(bills.c.bill_status == status)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/stats/summary", response_model=ItemResponse[BillStatsOut])
def billing_stats(engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        totals = conn.execute(
            select(
                func.count().label("total_bills"),
                func.coalesce(func.sum(bills.c.total_amount), 0).label("total_billed"),
                func.coalesce(func.sum(bills.c.amount_paid), 0).label("total_collected"),
            ).where(bills.c.bill_status != "Cancelled")
        ).mappings().one()

        outstanding = conn.execute(
            select(func.coalesce(func.sum(bills.c.outstanding_balance), 0))
            .where(bills.c.bill_status.in_(OPEN_BILL_STATUSES))
        ).scalar_one()

        by_status = dict(
            conn.execute(select(bills.c.bill_status, func.count()).group_by(bills.c.bill_status)).all()
        )

    return item_response({
        **totals,
        "total_outstanding": outstanding,
        "by_status": by_status,
    })


@router.get("/unprocessed-readings", response_model=ListResponse[ReadingOut])
def unprocessed_readings(
    utility_type: Optional[UtilityType] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    """
    Readings waiting to be billed, oldest first.
    """
    stmt = (
        reading_view()
        .where(meter_readings.c.is_processed.is_(False))
        .order_by(meter_readings.c.reading_date, meter_readings.c.id)
    )
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/preview/{reading_id}", response_model=ItemResponse[BillPreviewOut])
def preview(reading_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(preview_bill(conn, reading_id))


@router.post("/generate", response_model=ItemResponse[BillOut], status_code=201)
def generate(body: GenerateBillRequest, engine: Engine = Depends(get_engine)):
    bill = generate_bill(
        engine,
        body.reading_id,
        due_date=body.due_date,
        bill_date=body.bill_date,
        notes=body.notes,
    )
    return item_response(bill)


@router.get("/customer/{customer_id}", response_model=ListResponse[BillOut])
def list_customer_bills(customer_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(
            select(customers.c.id).where(customers.c.id == customer_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Customer not found")

        rows = conn.execute(
            bill_view().where(bills.c.customer_id == customer_id).order_by(*NEWEST_FIRST)
        ).mappings().all()

    return list_response(rows)


@router.get("/{bill_id}", response_model=ItemResponse[BillOut])
def get_one_bill(bill_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(get_bill(conn, bill_id))


@router.put("/{bill_id}/cancel", response_model=ItemResponse[BillOut])
def cancel(bill_id: int, body: Optional[CancelBillRequest] = None, engine: Engine = Depends(get_engine)):
    reason = body.reason if body is not None else None
    return item_response(cancel_bill(engine, bill_id, reason))
