# utilitrack/api/payments.py

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, func, or_, select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine
from utilitrack.db.schema import bills, customers, payments
from utilitrack.errors import NotFoundError
from utilitrack.models.common import (
    ItemResponse,
    ListResponse,
    PaymentMethod,
    PaymentStatus,
    item_response,
    list_response,
)
from utilitrack.models.payments import (
    PaymentCreate,
    PaymentOut,
    PaymentStatsOut,
    RefundRequest,
    VerifyRequest,
)
from utilitrack.services.payments import (
    apply_payment,
    get_payment,
    payment_view,
    refund_payment,
    verify_payment,
)

router = APIRouter(prefix="/payments", tags=["payments"])

NEWEST_FIRST = (payments.c.payment_date.desc(), payments.c.id.desc())


@router.get("", response_model=ListResponse[PaymentOut])
def list_payments(
    search: Optional[str] = Query(
        default=None,
        description="Case-insensitive match on payment number, bill number, reference or customer name",
    ),
    method: Optional[PaymentMethod] = Query(default=None),
    status: Optional[PaymentStatus] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    stmt = payment_view().order_by(*NEWEST_FIRST)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(payments.c.payment_number).like(pattern),
                func.lower(bills.c.bill_number).like(pattern),
                func.lower(payments.c.transaction_reference).like(pattern),
                func.lower(customers.c.first_name + " " + customers.c.last_name).like(pattern),
            )
        )
    if method is not None:
        stmt = stmt.where(payments.c.payment_method == method)
    if status is not None:
        stmt = stmt.where(payments.c.payment_status == status)

    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()

    return list_response(rows)


@router.get("/stats", response_model=ItemResponse[PaymentStatsOut])
def payment_stats(engine: Engine = Depends(get_engine)):
    completed = payments.c.payment_status == "Completed"
    refunded = payments.c.payment_status == "Refunded"

    with engine.connect() as conn:
        stats = conn.execute(
            select(
                func.count().label("total_payments"),
                func.coalesce(func.sum(case((completed, 1), else_=0)), 0).label("completed_payments"),
                func.coalesce(func.sum(case((refunded, 1), else_=0)), 0).label("refunded_payments"),
                func.coalesce(
                    func.sum(case((completed, payments.c.payment_amount), else_=0)), 0
                ).label("total_collected"),
                func.coalesce(
                    func.sum(case((refunded, payments.c.payment_amount), else_=0)), 0
                ).label("total_refunded"),
                func.coalesce(
                    func.sum(case((completed & payments.c.is_verified.is_(False), 1), else_=0)), 0
                ).label("unverified_payments"),
            )
        ).mappings().one()

        collected_today = conn.execute(
            select(func.coalesce(func.sum(payments.c.payment_amount), 0))
            .where(completed, payments.c.payment_date == today())
        ).scalar_one()

        by_method = dict(
            conn.execute(
                select(payments.c.payment_method, func.coalesce(func.sum(payments.c.payment_amount), 0))
                .where(completed)
                .group_by(payments.c.payment_method)
            ).all()
        )

    return item_response({
        **stats,
        "collected_today": collected_today,
        "by_method": by_method,
    })


@router.get("/bill/{bill_id}", response_model=ListResponse[PaymentOut])
def list_bill_payments(bill_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(select(bills.c.id).where(bills.c.id == bill_id)).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Bill not found")

        rows = conn.execute(
            payment_view().where(payments.c.bill_id == bill_id).order_by(*NEWEST_FIRST)
        ).mappings().all()

    return list_response(rows)


@router.get("/customer/{customer_id}", response_model=ListResponse[PaymentOut])
def list_customer_payments(customer_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        exists = conn.execute(
            select(customers.c.id).where(customers.c.id == customer_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Customer not found")

        rows = conn.execute(
            payment_view().where(payments.c.customer_id == customer_id).order_by(*NEWEST_FIRST)
        ).mappings().all()

    return list_response(rows)


@router.get("/{payment_id}", response_model=ItemResponse[PaymentOut])
def get_one_payment(payment_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(get_payment(conn, payment_id))


@router.post("", response_model=ItemResponse[PaymentOut], status_code=201)
def record_payment(body: PaymentCreate, engine: Engine = Depends(get_engine)):
    payment = apply_payment(
        engine,
        body.bill_id,
        body.payment_amount,
        body.payment_method,
        reference=body.transaction_reference,
        payment_date=body.payment_date,
        received_by=body.received_by,
        notes=body.notes,
    )
    return item_response(payment)


@router.put("/{payment_id}/verify", response_model=ItemResponse[PaymentOut])
def verify(payment_id: int, body: Optional[VerifyRequest] = None, engine: Engine = Depends(get_engine)):
    verified_by = body.verified_by if body is not None else None
    return item_response(verify_payment(engine, payment_id, verified_by))


@router.put("/{payment_id}/refund", response_model=ItemResponse[PaymentOut])
def refund(payment_id: int, body: RefundRequest, engine: Engine = Depends(get_engine)):
    return item_response(refund_payment(engine, payment_id, body.reason))
