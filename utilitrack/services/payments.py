# utilitrack/services/payments.py

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from utilitrack.config import today
from utilitrack.db.engine import run_in_transaction
from utilitrack.db.numbering import payment_number
from utilitrack.db.schema import bills, customers, payments
from utilitrack.errors import ConflictError, NotFoundError, ValidationError
from utilitrack.models.common import PaymentMethod
from utilitrack.services.charges import quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def status_after_payment(total_amount: Decimal, new_outstanding: Decimal, current_status: str) -> str:
    """
    new_outstanding <= 0                 -> Paid
    0 < new_outstanding < total_amount   -> Partially Paid
    otherwise                            -> unchanged
    """
    if new_outstanding <= ZERO:
        return "Paid"
    if new_outstanding < total_amount:
        return "Partially Paid"
    return current_status


def status_after_refund(total_amount: Decimal, new_outstanding: Decimal, due_date: date, as_of: date) -> str:
    if new_outstanding <= ZERO:
        return "Paid"
    if due_date < as_of:
        return "Overdue"
    if new_outstanding < total_amount:
        return "Partially Paid"
    return "Unpaid"


def payment_view():
    return (
        select(
            payments,
            (customers.c.first_name + " " + customers.c.last_name).label("customer_name"),
            bills.c.bill_number,
            bills.c.total_amount.label("bill_amount"),
            bills.c.outstanding_balance,
            bills.c.bill_status,
        )
        .select_from(
            payments.join(customers, payments.c.customer_id == customers.c.id)
            .join(bills, payments.c.bill_id == bills.c.id)
        )
    )


def get_payment(conn: Connection, payment_id: int):
    row = conn.execute(payment_view().where(payments.c.id == payment_id)).mappings().first()
    if row is None:
        raise NotFoundError("Payment not found")
    return row


def _update_bill_balance(conn: Connection, bill, new_outstanding, new_paid, new_status) -> None:
    # Guarded on the balance that was read; a concurrent writer makes this a no-op.
    result = conn.execute(
        bills.update()
        .where(
            bills.c.id == bill["id"],
            bills.c.outstanding_balance == bill["outstanding_balance"],
            bills.c.bill_status == bill["bill_status"],
        )
        .values(
            outstanding_balance=new_outstanding,
            amount_paid=new_paid,
            bill_status=new_status,
            updated_at=func.current_timestamp(),
        )
    )
    if result.rowcount != 1:
        raise ConflictError("The bill was updated by another payment. Please try again.")


def apply_payment(
    engine: Engine,
    bill_id: int,
    amount,
    method: PaymentMethod,
    reference: Optional[str] = None,
    payment_date: Optional[date] = None,
    received_by: Optional[str] = None,
    notes: Optional[str] = None,
):
    """
    Record a payment against a bill and reduce its outstanding balance.

    Amounts above the outstanding balance are rejected rather than stored
    as a credit.
    """
    amount = quantize_money(amount)
    reference = (reference or "").strip() or None

    if amount <= ZERO:
        raise ValidationError("Payment amount must be greater than zero")
    if method != "Cash" and reference is None:
        raise ValidationError(f"A transaction reference is required for {method} payments")
    if payment_date is None:
        payment_date = today()

    def work(conn: Connection) -> int:
        bill = conn.execute(
            select(
                bills.c.id,
                bills.c.customer_id,
                bills.c.total_amount,
                bills.c.amount_paid,
                bills.c.outstanding_balance,
                bills.c.bill_status,
            ).where(bills.c.id == bill_id)
        ).mappings().first()

        if bill is None:
            raise NotFoundError("Bill not found")
        if bill["bill_status"] == "Cancelled":
            raise ConflictError("Cannot record a payment against a cancelled bill")
        if amount > bill["outstanding_balance"]:
            raise ValidationError(
                f"Payment amount {amount} exceeds outstanding balance {bill['outstanding_balance']}"
            )

        new_outstanding = bill["outstanding_balance"] - amount
        new_status = status_after_payment(bill["total_amount"], new_outstanding, bill["bill_status"])
        _update_bill_balance(conn, bill, new_outstanding, bill["amount_paid"] + amount, new_status)

        result = conn.execute(
            payments.insert().values(
                payment_number=payment_number(conn, payments.c.payment_number, payment_date),
                bill_id=bill_id,
                customer_id=bill["customer_id"],
                payment_date=payment_date,
                payment_amount=amount,
                payment_method=method,
                transaction_reference=reference,
                payment_status="Completed",
                received_by=received_by,
                notes=notes,
            )
        )
        return result.inserted_primary_key[0]

    payment_id = run_in_transaction(engine, work, f"applying payment to bill {bill_id}")

    with engine.connect() as conn:
        payment = get_payment(conn, payment_id)

    logger.info(
        "Applied payment %s of %s to bill %s; outstanding now %s (%s)",
        payment["payment_number"],
        amount,
        payment["bill_number"],
        payment["outstanding_balance"],
        payment["bill_status"],
    )
    return payment


def refund_payment(engine: Engine, payment_id: int, reason: str, as_of: Optional[date] = None):
    """
    Reverse a completed payment and put its amount back on the bill.
    """
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A refund reason is required")
    if as_of is None:
        as_of = today()

    def work(conn: Connection) -> None:
        payment = conn.execute(
            select(payments.c.bill_id, payments.c.payment_amount, payments.c.payment_status)
            .where(payments.c.id == payment_id)
        ).mappings().first()
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment["payment_status"] != "Completed":
            raise ConflictError(f"Only completed payments can be refunded (status: {payment['payment_status']})")

        bill = conn.execute(
            select(
                bills.c.id,
                bills.c.total_amount,
                bills.c.amount_paid,
                bills.c.outstanding_balance,
                bills.c.bill_status,
                bills.c.due_date,
            ).where(bills.c.id == payment["bill_id"])
        ).mappings().first()

        amount = payment["payment_amount"]
        new_outstanding = bill["outstanding_balance"] + amount
        new_paid = bill["amount_paid"] - amount
        new_status = status_after_refund(bill["total_amount"], new_outstanding, bill["due_date"], as_of)
        _update_bill_balance(conn, bill, new_outstanding, new_paid, new_status)

        result = conn.execute(
            payments.update()
            .where(payments.c.id == payment_id, payments.c.payment_status == "Completed")
            .values(
                payment_status="Refunded",
                refund_reason=reason,
                refunded_at=func.current_timestamp(),
            )
        )
        if result.rowcount != 1:
            raise ConflictError()

    run_in_transaction(engine, work, f"refunding payment {payment_id}")

    with engine.connect() as conn:
        payment = get_payment(conn, payment_id)

    logger.info(
        "Refunded payment %s (%s); bill %s outstanding now %s",
        payment["payment_number"],
        payment["payment_amount"],
        payment["bill_number"],
        payment["outstanding_balance"],
    )
    return payment


def verify_payment(engine: Engine, payment_id: int, verified_by: Optional[str] = None):
    def work(conn: Connection) -> None:
        payment = conn.execute(
            select(payments.c.payment_status, payments.c.is_verified)
            .where(payments.c.id == payment_id)
        ).mappings().first()
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment["payment_status"] != "Completed":
            raise ConflictError("Refunded payments cannot be verified")
        if payment["is_verified"]:
            raise ConflictError("Payment is already verified")

        conn.execute(
            payments.update()
            .where(payments.c.id == payment_id)
            .values(
                is_verified=True,
                verified_by=verified_by,
                verified_at=func.current_timestamp(),
            )
        )

    run_in_transaction(engine, work, f"verifying payment {payment_id}")
    logger.info("Verified payment %s", payment_id)

    with engine.connect() as conn:
        return get_payment(conn, payment_id)
