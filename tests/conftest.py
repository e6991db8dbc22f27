"""Shared fixtures: a throwaway SQLite database per test and record factories."""

import itertools
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from utilitrack.db.engine import build_engine, run_in_transaction
from utilitrack.db.numbering import connection_number
from utilitrack.db.schema import create_schema, customers, meters, service_connections, utility_types
from utilitrack.main import create_app
from utilitrack.services.bills import generate_bill
from utilitrack.services.readings import record_reading
from utilitrack.services.tariffs import create_tariff

READING_DATE = date(2026, 10, 1)
BILL_DATE = date(2026, 10, 5)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'utilitrack-test.sqlite'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine=engine))


@pytest.fixture
def make_customer(engine):
    def _make(**overrides):
        values = {
            "first_name": "Amina",
            "last_name": "Otieno",
            "customer_type": "Residential",
            "email": "amina@example.com",
            "phone": "0712345678",
            "address": "12 Moi Avenue",
            "city": "Nairobi",
            "status": "Active",
            "registration_date": date(2026, 1, 1),
        }
        values.update(overrides)
        with engine.begin() as conn:
            return conn.execute(customers.insert().values(**values)).inserted_primary_key[0]

    return _make


@pytest.fixture
def make_connection(engine, make_customer):
    def _make(customer_id=None, utility_type="Electricity", status="Active", connection_date=date(2026, 1, 1)):
        if customer_id is None:
            customer_id = make_customer()
        with engine.begin() as conn:
            utility_type_id = conn.execute(
                select(utility_types.c.id).where(utility_types.c.name == utility_type)
            ).scalar_one()
            connection_id = conn.execute(
                service_connections.insert().values(
                    connection_number=connection_number(
                        conn, service_connections.c.connection_number, connection_date
                    ),
                    customer_id=customer_id,
                    utility_type_id=utility_type_id,
                    connection_date=connection_date,
                    connection_status=status,
                )
            ).inserted_primary_key[0]
            return dict(
                conn.execute(
                    select(service_connections).where(service_connections.c.id == connection_id)
                ).mappings().one()
            )

    return _make


@pytest.fixture
def make_meter(engine, make_customer):
    numbers = itertools.count(1)

    def _make(
        customer_id=None,
        utility_type="Electricity",
        initial_reading="0",
        status="Active",
        installation_date=date(2026, 1, 1),
    ):
        if customer_id is None:
            customer_id = make_customer()
        with engine.begin() as conn:
            utility_type_id = conn.execute(
                select(utility_types.c.id).where(utility_types.c.name == utility_type)
            ).scalar_one()
            result = conn.execute(
                meters.insert().values(
                    customer_id=customer_id,
                    utility_type_id=utility_type_id,
                    meter_number=f"MTR-{next(numbers):05d}",
                    installation_date=installation_date,
                    status=status,
                    initial_reading=Decimal(initial_reading),
                )
            )
            return result.inserted_primary_key[0]

    return _make


@pytest.fixture
def make_tariff(engine):
    def _make(
        utility_type="Electricity",
        customer_type="Residential",
        rate_per_unit="25.00",
        fixed_charge="500.00",
        effective_from=date(2026, 1, 1),
        effective_to=None,
        tariff_name=None,
    ):
        return run_in_transaction(
            engine,
            lambda conn: create_tariff(
                conn,
                tariff_name=tariff_name or f"{customer_type or 'Standard'} {utility_type} {effective_from:%Y-%m}",
                utility_type=utility_type,
                customer_type=customer_type,
                rate_per_unit=Decimal(rate_per_unit),
                fixed_charge=Decimal(fixed_charge),
                effective_from=effective_from,
                effective_to=effective_to,
            ),
            "creating a test tariff",
        )

    return _make


@pytest.fixture
def make_reading(engine):
    def _make(meter_id, current_reading, reading_date=READING_DATE, reading_type="Actual"):
        reading = record_reading(
            engine,
            meter_id,
            Decimal(str(current_reading)),
            reading_date=reading_date,
            reading_type=reading_type,
        )
        return reading["id"]

    return _make


@pytest.fixture
def billable_reading(make_meter, make_tariff, make_reading):
    """
    Residential electricity: previous 100, current 350, rate 25.00, fixed 500.00.
    """
    make_tariff()
    meter_id = make_meter(initial_reading="100")
    return make_reading(meter_id, 350)


@pytest.fixture
def bill(engine, billable_reading):
    return generate_bill(engine, billable_reading, bill_date=BILL_DATE)
