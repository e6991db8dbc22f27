# utilitrack/db/schema.py

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Boolean,
    Numeric, Date, DateTime, ForeignKey, CheckConstraint, Text,
    Index, UniqueConstraint, func, select,
)
from sqlalchemy.engine import Engine

from utilitrack.models.common import UTILITY_UNITS

metadata = MetaData()

MONEY = Numeric(12, 2)
RATE = Numeric(12, 4)
VOLUME = Numeric(12, 2)

customers = Table(
    "customers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("customer_type", String(20), nullable=False),
    Column("email", String(255)),
    Column("phone", String(30)),
    Column("address", Text),
    Column("city", String(100)),
    Column("status", String(20), nullable=False, server_default="Active"),
    Column("registration_date", Date, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

utility_types = Table(
    "utility_types",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("unit_of_measurement", String(20), nullable=False),
)

service_connections = Table(
    "service_connections",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("connection_number", String(30), nullable=False, unique=True),
    Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False, index=True),
    Column("utility_type_id", Integer, ForeignKey("utility_types.id"), nullable=False),
    Column("connection_date", Date, nullable=False),
    Column("disconnection_date", Date),
    Column("connection_status", String(20), nullable=False, server_default="Pending"),
    Column("property_address", Text),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)

meters = Table(
    "meters",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False, index=True),
    Column("utility_type_id", Integer, ForeignKey("utility_types.id"), nullable=False),
    Column("connection_id", Integer, ForeignKey("service_connections.id"), nullable=True, index=True),
    Column("meter_number", String(50), nullable=False, unique=True),
    Column("installation_date", Date, nullable=False),
    Column("status", String(20), nullable=False, server_default="Active"),
    Column("initial_reading", VOLUME, nullable=False, server_default="0"),
    Column("last_maintenance_date", Date),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint("initial_reading >= 0", name="ck_meters_initial_reading_nonneg"),
)

meter_readings = Table(
    "meter_readings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("meter_id", Integer, ForeignKey("meters.id"), nullable=False),
    # Position in the meter's chain, starting at 1.
    Column("sequence_number", Integer, nullable=False),
    Column("reading_date", Date, nullable=False),
    Column("previous_reading", VOLUME, nullable=False),
    Column("current_reading", VOLUME, nullable=False),
    Column("consumption", VOLUME, nullable=False),
    Column("reading_type", String(30), nullable=False, server_default="Actual"),
    Column("is_processed", Boolean, nullable=False, server_default="0"),
    Column("recorded_by", String(100)),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint(
        "current_reading >= previous_reading",
        name="ck_meter_readings_monotonic",
    ),
    # Two readings can never extend the chain from the same predecessor.
    UniqueConstraint("meter_id", "sequence_number", name="uq_meter_readings_sequence"),
    Index("ix_meter_readings_meter_date", "meter_id", "reading_date"),
)

tariffs = Table(
    "tariffs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("tariff_name", String(100), nullable=False),
    Column("utility_type_id", Integer, ForeignKey("utility_types.id"), nullable=False),
    # NULL applies to every customer type
    Column("customer_type", String(20), nullable=True),
    Column("rate_per_unit", RATE, nullable=False),
    Column("fixed_charge", MONEY, nullable=False),
    Column("effective_from", Date, nullable=False),
    Column("effective_to", Date, nullable=True),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint("rate_per_unit >= 0", name="ck_tariffs_rate_nonneg"),
    CheckConstraint("fixed_charge >= 0", name="ck_tariffs_fixed_nonneg"),
)

bills = Table(
    "bills",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("bill_number", String(30), nullable=False, unique=True),
    # One bill per reading, enforced by the store.
    Column("reading_id", Integer, ForeignKey("meter_readings.id"), nullable=False, unique=True),
    Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False, index=True),
    Column("meter_id", Integer, ForeignKey("meters.id"), nullable=False),
    Column("tariff_id", Integer, ForeignKey("tariffs.id"), nullable=False),
    Column("bill_date", Date, nullable=False),
    Column("due_date", Date, nullable=False),
    Column("billing_period_start", Date, nullable=False),
    Column("billing_period_end", Date, nullable=False),
    Column("consumption", VOLUME, nullable=False),
    Column("rate_per_unit", RATE, nullable=False),
    Column("fixed_charge", MONEY, nullable=False),
    Column("consumption_charge", MONEY, nullable=False),
    Column("total_amount", MONEY, nullable=False),
    Column("amount_paid", MONEY, nullable=False, server_default="0"),
    Column("outstanding_balance", MONEY, nullable=False),
    Column("bill_status", String(20), nullable=False, server_default="Unpaid"),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint("total_amount >= 0", name="ck_bills_total_nonneg"),
    CheckConstraint("amount_paid >= 0", name="ck_bills_paid_nonneg"),
)

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("payment_number", String(30), nullable=False, unique=True),
    Column("bill_id", Integer, ForeignKey("bills.id"), nullable=False, index=True),
    Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False, index=True),
    Column("payment_date", Date, nullable=False),
    Column("payment_amount", MONEY, nullable=False),
    Column("payment_method", String(20), nullable=False),
    Column("transaction_reference", String(100)),
    Column("payment_status", String(20), nullable=False, server_default="Completed"),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("verified_by", String(100)),
    Column("verified_at", DateTime),
    Column("received_by", String(100)),
    Column("notes", Text),
    Column("refund_reason", Text),
    Column("refunded_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    CheckConstraint("payment_amount > 0", name="ck_payments_amount_pos"),
)

complaints = Table(
    "complaints",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("complaint_number", String(30), nullable=False, unique=True),
    Column("customer_id", Integer, ForeignKey("customers.id"), nullable=False, index=True),
    Column("complaint_date", Date, nullable=False),
    Column("complaint_type", String(50), nullable=False),
    Column("priority", String(20), nullable=False, server_default="Medium"),
    Column("description", Text, nullable=False),
    Column("complaint_status", String(20), nullable=False, server_default="Open"),
    Column("assigned_to", String(100)),
    Column("resolution_date", Date),
    Column("resolution_notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.current_timestamp()),
    Column("updated_at", DateTime, nullable=False, server_default=func.current_timestamp()),
)


def create_schema(engine: Engine) -> None:
    """
    Create missing tables and make sure every utility type exists.
    """
    metadata.create_all(engine)

    with engine.begin() as conn:
        existing = set(conn.execute(select(utility_types.c.name)).scalars())
        missing = [
            {"name": name, "unit_of_measurement": unit}
            for name, unit in UTILITY_UNITS.items()
            if name not in existing
        ]
        if missing:
            conn.execute(utility_types.insert(), missing)
