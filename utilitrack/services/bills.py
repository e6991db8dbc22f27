# utilitrack/services/bills.py
"""
Bill generation: meter reading -> consumption -> tariff -> charges -> bill.

Each public write function owns its transaction. A reading is billed at most
once: the reading is claimed with a conditional update at the start of the
transaction, and bills.reading_id is unique, so a second attempt on the same
reading either waits and then sees the reading already processed, or fails
on the constraint.
"""

import logging
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from utilitrack.config import settings, today
from utilitrack.db.engine import is_lock_conflict
from utilitrack.db.numbering import bill_number
from utilitrack.db.schema import bills, customers, meter_readings, meters, tariffs, utility_types
from utilitrack.errors import (
    AlreadyBilledError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from utilitrack.services.charges import compute_charges
from utilitrack.services.tariffs import resolve_tariff

logger = logging.getLogger(__name__)


def customer_name():
    return (customers.c.first_name + " " + customers.c.last_name).label("customer_name")


def bill_view():
    """
    Bills joined with the customer, meter, utility and tariff they belong to.
    """
    return (
        select(
            bills,
            customer_name(),
            customers.c.customer_type,
            meters.c.meter_number,
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
            tariffs.c.tariff_name,
        )
        .select_from(
            bills.join(customers, bills.c.customer_id == customers.c.id)
            .join(meters, bills.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
            .join(tariffs, bills.c.tariff_id == tariffs.c.id)
        )
    )


def get_bill(conn: Connection, bill_id: int):
    row = conn.execute(bill_view().where(bills.c.id == bill_id)).mappings().first()
    if row is None:
        raise NotFoundError("Bill not found")
    return row


def _load_reading(conn: Connection, reading_id: int):
    stmt = (
        select(
            meter_readings.c.id,
            meter_readings.c.meter_id,
            meter_readings.c.reading_date,
            meter_readings.c.previous_reading,
            meter_readings.c.current_reading,
            meter_readings.c.reading_type,
            meter_readings.c.is_processed,
            meters.c.meter_number,
            meters.c.customer_id,
            meters.c.installation_date,
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
            customers.c.customer_type,
            customer_name(),
        )
        .select_from(
            meter_readings.join(meters, meter_readings.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
            .join(customers, meters.c.customer_id == customers.c.id)
        )
        .where(meter_readings.c.id == reading_id)
    )
    row = conn.execute(stmt).mappings().first()
    if row is None:
        raise NotFoundError(f"Meter reading {reading_id} not found")
    return row


def _period_start(conn: Connection, reading) -> date:
    """
    The billing period starts at the meter's previous reading, or at
    installation for the first reading.
    """
    stmt = select(func.max(meter_readings.c.reading_date)).where(
        meter_readings.c.meter_id == reading["meter_id"],
        meter_readings.c.id != reading["id"],
        meter_readings.c.reading_date <= reading["reading_date"],
    )
    previous_date = conn.execute(stmt).scalar_one_or_none()
    return previous_date or reading["installation_date"]


def _price(conn: Connection, reading):
    # Priced with the tariff in effect on the reading date.
    tariff = resolve_tariff(
        conn,
        reading["utility_type"],
        reading["customer_type"],
        as_of=reading["reading_date"],
    )
    charges = compute_charges(
        reading["previous_reading"],
        reading["current_reading"],
        tariff.rate_per_unit,
        tariff.fixed_charge,
    )
    return tariff, charges


def preview_bill(conn: Connection, reading_id: int) -> dict:
    """
    Price a reading without writing anything.
    """
    reading = _load_reading(conn, reading_id)
    if reading["is_processed"]:
        raise AlreadyBilledError(f"Meter reading {reading_id} has already been billed")

    tariff, charges = _price(conn, reading)

    return {
        "reading_id": reading["id"],
        "meter_id": reading["meter_id"],
        "meter_number": reading["meter_number"],
        "customer_id": reading["customer_id"],
        "customer_name": reading["customer_name"],
        "customer_type": reading["customer_type"],
        "utility_type": reading["utility_type"],
        "unit_of_measurement": reading["unit_of_measurement"],
        "reading_date": reading["reading_date"],
        "previous_reading": reading["previous_reading"],
        "current_reading": reading["current_reading"],
        "tariff_id": tariff.tariff_id,
        "tariff_name": tariff.tariff_name,
        "consumption": charges.consumption,
        "rate_per_unit": charges.rate_per_unit,
        "consumption_charge": charges.consumption_charge,
        "fixed_charge": charges.fixed_charge,
        "total_amount": charges.total_amount,
    }


def _claim_reading(conn: Connection, reading_id: int) -> None:
    result = conn.execute(
        meter_readings.update()
        .where(
            meter_readings.c.id == reading_id,
            meter_readings.c.is_processed.is_(False),
        )
        .values(is_processed=True)
    )
    if result.rowcount == 1:
        return

    exists = conn.execute(
        select(meter_readings.c.id).where(meter_readings.c.id == reading_id)
    ).scalar_one_or_none()
    if exists is None:
        raise NotFoundError(f"Meter reading {reading_id} not found")
    raise AlreadyBilledError(f"Meter reading {reading_id} has already been billed")


def _insert_bill(conn: Connection, reading_id: int, bill_date: date, due_date: date, notes) -> int:
    # Claim first: the conditional update takes the write lock before any reads.
    _claim_reading(conn, reading_id)

    reading = _load_reading(conn, reading_id)
    tariff, charges = _price(conn, reading)

    result = conn.execute(
        bills.insert().values(
            bill_number=bill_number(conn, bills.c.bill_number, bill_date),
            reading_id=reading_id,
            customer_id=reading["customer_id"],
            meter_id=reading["meter_id"],
            tariff_id=tariff.tariff_id,
            bill_date=bill_date,
            due_date=due_date,
            billing_period_start=_period_start(conn, reading),
            billing_period_end=reading["reading_date"],
            consumption=charges.consumption,
            rate_per_unit=charges.rate_per_unit,
            fixed_charge=charges.fixed_charge,
            consumption_charge=charges.consumption_charge,
            total_amount=charges.total_amount,
            amount_paid=0,
            outstanding_balance=charges.total_amount,
            bill_status="Unpaid",
            notes=notes,
        )
    )
    return result.inserted_primary_key[0]


def generate_bill(
    engine: Engine,
    reading_id: int,
    due_date: Optional[date] = None,
    bill_date: Optional[date] = None,
    notes: Optional[str] = None,
):
    """
    Turn an unprocessed meter reading into exactly one Unpaid bill.

    Raises NotFoundError, AlreadyBilledError, TariffNotFoundError,
    InvalidReadingError, ValidationError or ConflictError. On any error the
    reading stays unprocessed and no bill is written.
    """
    if bill_date is None:
        bill_date = today()
    if due_date is None:
        due_date = bill_date + timedelta(days=settings.BILL_DUE_DAYS)
    if due_date < bill_date:
        raise ValidationError("Due date cannot be before the bill date")

    try:
        with engine.begin() as conn:
            bill_id = _insert_bill(conn, reading_id, bill_date, due_date, notes)
    except IntegrityError as exc:
        if "reading_id" in str(exc.orig):
            raise AlreadyBilledError(
                f"Meter reading {reading_id} has already been billed"
            ) from exc
        raise ConflictError("Bill number already allocated. Please try again.") from exc
    except DBAPIError as exc:
        if is_lock_conflict(exc):
            logger.warning("Lock conflict while billing reading %s", reading_id)
            raise ConflictError() from exc
        raise

    with engine.connect() as conn:
        bill = get_bill(conn, bill_id)

    logger.info(
        "Generated bill %s for reading %s: total %s",
        bill["bill_number"],
        reading_id,
        bill["total_amount"],
    )
    return bill


def cancel_bill(engine: Engine, bill_id: int, reason: Optional[str] = None):
    """
    Cancel a bill nothing has been paid on. The source reading stays
    processed, so it can never be billed again.
    """
    with engine.begin() as conn:
        bill = conn.execute(
            select(bills.c.bill_status, bills.c.amount_paid, bills.c.notes)
            .where(bills.c.id == bill_id)
        ).mappings().first()

        if bill is None:
            raise NotFoundError("Bill not found")
        if bill["bill_status"] == "Cancelled":
            raise ConflictError("Bill is already cancelled")
        if bill["amount_paid"] > 0:
            raise ConflictError("Cannot cancel a bill with payments applied; refund them first")

        notes = bill["notes"]
        if reason:
            notes = f"{notes}\nCancelled: {reason}" if notes else f"Cancelled: {reason}"

        result = conn.execute(
            bills.update()
            .where(
                bills.c.id == bill_id,
                bills.c.bill_status == bill["bill_status"],
                bills.c.amount_paid == 0,
            )
            .values(bill_status="Cancelled", notes=notes, updated_at=func.current_timestamp())
        )
        if result.rowcount != 1:
            raise ConflictError()

    logger.info("Cancelled bill %s", bill_id)
    with engine.connect() as conn:
        return get_bill(conn, bill_id)


def mark_overdue_bills(conn: Connection, as_of: Optional[date] = None) -> int:
    """
    Flag Unpaid / Partially Paid bills whose due date has passed.
    """
    if as_of is None:
        as_of = today()

    result = conn.execute(
        bills.update()
        .where(
            bills.c.due_date < as_of,
            bills.c.bill_status.in_(("Unpaid", "Partially Paid")),
        )
        .values(bill_status="Overdue", updated_at=func.current_timestamp())
    )
    logger.info("Marked %s bills overdue as of %s", result.rowcount, as_of)
    return result.rowcount
