# utilitrack/services/readings.py
"""
Meter reading capture.

Readings of a meter form a chain: each reading's previous_reading is the
current_reading before it (or the meter's initial_reading for the first
one). Only the newest reading can have its value changed or be deleted, and
a billed reading is frozen.
"""

import logging
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from utilitrack.config import today
from utilitrack.db.engine import lock_row, run_in_transaction
from utilitrack.db.schema import customers, meter_readings, meters, utility_types
from utilitrack.errors import AlreadyBilledError, NotFoundError, ValidationError
from utilitrack.services.bills import customer_name
from utilitrack.services.charges import compute_consumption, to_decimal

logger = logging.getLogger(__name__)


def reading_view():
    return (
        select(
            meter_readings,
            meters.c.meter_number,
            meters.c.customer_id,
            customer_name(),
            customers.c.customer_type,
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
        )
        .select_from(
            meter_readings.join(meters, meter_readings.c.meter_id == meters.c.id)
            .join(customers, meters.c.customer_id == customers.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
    )


def get_reading(conn: Connection, reading_id: int):
    row = conn.execute(reading_view().where(meter_readings.c.id == reading_id)).mappings().first()
    if row is None:
        raise NotFoundError("Meter reading not found")
    return row


def last_reading(conn: Connection, meter_id: int):
    """Newest reading of a meter, or None."""
    stmt = (
        reading_view()
        .where(meter_readings.c.meter_id == meter_id)
        .order_by(meter_readings.c.sequence_number.desc())
        .limit(1)
    )
    return conn.execute(stmt).mappings().first()


def _load_meter(conn: Connection, meter_id: int):
    row = conn.execute(
        select(meters.c.id, meters.c.meter_number, meters.c.status, meters.c.initial_reading)
        .where(meters.c.id == meter_id)
    ).mappings().first()
    if row is None:
        raise NotFoundError("Meter not found")
    return row


def _lock_reading(conn: Connection, reading_id: int):
    """
    Lock the meter a reading belongs to, then load the reading.
    """
    meter_id = conn.execute(
        select(meter_readings.c.meter_id).where(meter_readings.c.id == reading_id)
    ).scalar_one_or_none()
    if meter_id is None:
        raise NotFoundError("Meter reading not found")
    lock_row(conn, meters, meter_id)
    return get_reading(conn, reading_id)


def _reading_before(conn: Connection, reading):
    stmt = (
        select(meter_readings.c.reading_date, meter_readings.c.current_reading)
        .where(
            meter_readings.c.meter_id == reading["meter_id"],
            meter_readings.c.sequence_number < reading["sequence_number"],
        )
        .order_by(meter_readings.c.sequence_number.desc())
        .limit(1)
    )
    return conn.execute(stmt).mappings().first()


def record_reading(
    engine: Engine,
    meter_id: int,
    current_reading,
    reading_date: Optional[date] = None,
    reading_type: str = "Actual",
    recorded_by: Optional[str] = None,
    notes: Optional[str] = None,
):
    """
    Append a reading to a meter's chain and return it.

    Raises NotFoundError for an unknown meter, ValidationError for a removed
    meter or a date before the last reading, and InvalidReadingError when
    the value is below the previous reading.
    """
    if reading_date is None:
        reading_date = today()

    def work(conn: Connection) -> int:
        if not lock_row(conn, meters, meter_id):
            raise NotFoundError("Meter not found")
        meter = _load_meter(conn, meter_id)
        if meter["status"] == "Removed":
            raise ValidationError(f"Meter {meter['meter_number']} has been removed")

        last = last_reading(conn, meter_id)
        if last is None:
            previous = meter["initial_reading"]
            sequence_number = 1
        else:
            sequence_number = last["sequence_number"] + 1
            if reading_date < last["reading_date"]:
                raise ValidationError(
                    f"Reading date {reading_date} is before the last reading on {last['reading_date']}"
                )
            previous = last["current_reading"]

        consumption = compute_consumption(previous, current_reading)

        result = conn.execute(
            meter_readings.insert().values(
                meter_id=meter_id,
                sequence_number=sequence_number,
                reading_date=reading_date,
                previous_reading=previous,
                current_reading=to_decimal(current_reading),
                consumption=consumption,
                reading_type=reading_type,
                is_processed=False,
                recorded_by=recorded_by,
                notes=notes,
            )
        )
        return result.inserted_primary_key[0]

    reading_id = run_in_transaction(engine, work, f"recording a reading for meter {meter_id}")

    with engine.connect() as conn:
        reading = get_reading(conn, reading_id)

    logger.info(
        "Recorded reading %s for meter %s: %s -> %s",
        reading_id,
        reading["meter_number"],
        reading["previous_reading"],
        reading["current_reading"],
    )
    return reading


def update_reading(engine: Engine, reading_id: int, changes: dict):
    def work(conn: Connection) -> None:
        reading = _lock_reading(conn, reading_id)
        if reading["is_processed"]:
            raise AlreadyBilledError("A billed meter reading cannot be changed")

        values = dict(changes)
        if "current_reading" in values or "reading_date" in values:
            latest = last_reading(conn, reading["meter_id"])
            if latest["id"] != reading_id:
                raise ValidationError("Only the latest reading of a meter can have its value or date changed")

            before = _reading_before(conn, reading)
            new_date = values.get("reading_date", reading["reading_date"])
            if before is not None and new_date < before["reading_date"]:
                raise ValidationError(
                    f"Reading date {new_date} is before the previous reading on {before['reading_date']}"
                )

            new_current = values.get("current_reading", reading["current_reading"])
            values["current_reading"] = to_decimal(new_current)
            values["consumption"] = compute_consumption(reading["previous_reading"], new_current)

        if not values:
            return

        result = conn.execute(
            meter_readings.update()
            .where(
                meter_readings.c.id == reading_id,
                meter_readings.c.is_processed.is_(False),
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise AlreadyBilledError("A billed meter reading cannot be changed")

    run_in_transaction(engine, work, f"updating reading {reading_id}")
    logger.info("Updated reading %s: %s", reading_id, ", ".join(sorted(changes)))

    with engine.connect() as conn:
        return get_reading(conn, reading_id)


def delete_reading(engine: Engine, reading_id: int) -> None:
    def work(conn: Connection) -> None:
        reading = _lock_reading(conn, reading_id)
        if reading["is_processed"]:
            raise AlreadyBilledError("Cannot delete a meter reading that has been billed")

        latest = last_reading(conn, reading["meter_id"])
        if latest["id"] != reading_id:
            raise ValidationError("Only the latest reading of a meter can be deleted")

        result = conn.execute(
            meter_readings.delete().where(
                meter_readings.c.id == reading_id,
                meter_readings.c.is_processed.is_(False),
            )
        )
        if result.rowcount != 1:
            raise AlreadyBilledError("Cannot delete a meter reading that has been billed")

    run_in_transaction(engine, work, f"deleting reading {reading_id}")
    logger.info("Deleted reading %s", reading_id)
