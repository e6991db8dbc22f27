"""Tests for tariff resolution and the tariff endpoints."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from utilitrack.db.schema import tariffs
from utilitrack.errors import ConflictError, TariffNotFoundError, ValidationError
from utilitrack.services.tariffs import resolve_tariff


class TestResolveTariff:
    def test_customer_specific_tariff_wins_over_generic(self, engine, make_tariff) -> None:
        make_tariff(customer_type=None, rate_per_unit="30.00", fixed_charge="100.00")
        specific_id = make_tariff(customer_type="Residential", rate_per_unit="25.00")

        with engine.connect() as conn:
            quote = resolve_tariff(conn, "Electricity", "Residential", date(2026, 6, 1))

        assert quote.tariff_id == specific_id
        assert quote.rate_per_unit == Decimal("25.00")

    def test_generic_tariff_applies_to_other_customer_types(self, engine, make_tariff) -> None:
        generic_id = make_tariff(customer_type=None, rate_per_unit="30.00")
        make_tariff(customer_type="Residential")

        with engine.connect() as conn:
            quote = resolve_tariff(conn, "Electricity", "Commercial", date(2026, 6, 1))

        assert quote.tariff_id == generic_id

    def test_period_containing_the_date_is_used(self, engine, make_tariff) -> None:
        old_id = make_tariff(rate_per_unit="20.00", effective_to=date(2026, 6, 30))
        new_id = make_tariff(rate_per_unit="25.00", effective_from=date(2026, 7, 1))

        with engine.connect() as conn:
            assert resolve_tariff(conn, "Electricity", "Residential", date(2026, 6, 30)).tariff_id == old_id
            assert resolve_tariff(conn, "Electricity", "Residential", date(2026, 7, 1)).tariff_id == new_id

    def test_no_tariff_in_effect(self, engine, make_tariff) -> None:
        make_tariff(effective_from=date(2026, 1, 1))

        with engine.connect() as conn:
            with pytest.raises(TariffNotFoundError):
                resolve_tariff(conn, "Electricity", "Residential", date(2025, 12, 31))
            with pytest.raises(TariffNotFoundError):
                resolve_tariff(conn, "Water", "Residential", date(2026, 6, 1))

    def test_unknown_utility_type(self, engine) -> None:
        with engine.connect() as conn:
            with pytest.raises(ValidationError):
                resolve_tariff(conn, "Steam", "Residential", date(2026, 6, 1))


class TestCreateTariff:
    def test_overlapping_period_is_rejected(self, make_tariff) -> None:
        make_tariff(effective_from=date(2026, 1, 1), effective_to=date(2026, 12, 31))

        with pytest.raises(ConflictError):
            make_tariff(effective_from=date(2026, 6, 1))

    def test_adjacent_periods_and_other_customer_types_are_allowed(self, make_tariff) -> None:
        make_tariff(effective_from=date(2026, 1, 1), effective_to=date(2026, 6, 30))
        make_tariff(effective_from=date(2026, 7, 1))
        make_tariff(customer_type="Commercial", effective_from=date(2026, 1, 1))
        make_tariff(customer_type=None, effective_from=date(2026, 1, 1))

    def test_end_before_start_is_rejected(self, make_tariff) -> None:
        with pytest.raises(ValidationError):
            make_tariff(effective_from=date(2026, 6, 1), effective_to=date(2026, 5, 31))

    def test_concurrent_overlapping_tariffs_create_one(self, engine, make_tariff) -> None:
        barrier = Barrier(6)

        def attempt(n):
            barrier.wait()
            try:
                make_tariff(
                    utility_type="Water",
                    customer_type=None,
                    effective_from=date(2026, 1, 1),
                    tariff_name=f"Water 2026 #{n}",
                )
                return "created"
            except ConflictError:
                return "rejected"

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, range(6)))

        assert outcomes.count("created") == 1
        assert outcomes.count("rejected") == 5
        with engine.connect() as conn:
            assert conn.execute(select(func.count()).select_from(tariffs)).scalar_one() == 1


class TestTariffEndpoints:
    def test_create_and_list(self, client) -> None:
        response = client.post(
            "/api/tariffs",
            json={
                "tariff_name": "Residential Water 2026",
                "utility_type": "Water",
                "customer_type": "Residential",
                "rate_per_unit": "120.00",
                "fixed_charge": "300.00",
                "effective_from": "2026-01-01",
            },
        )
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["utility_type"] == "Water"
        assert created["unit_of_measurement"] == "m3"

        listed = client.get("/api/tariffs", params={"utility_type": "Water"}).json()
        assert listed["success"] is True
        assert listed["count"] == 1
        assert listed["data"][0]["id"] == created["id"]

    def test_overlap_returns_409(self, client, make_tariff) -> None:
        make_tariff(utility_type="Gas", customer_type=None)

        response = client.post(
            "/api/tariffs",
            json={
                "tariff_name": "Gas again",
                "utility_type": "Gas",
                "rate_per_unit": "90.00",
                "effective_from": "2026-03-01",
            },
        )
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_negative_rate_is_rejected(self, client) -> None:
        response = client.post(
            "/api/tariffs",
            json={
                "tariff_name": "Bad",
                "utility_type": "Gas",
                "rate_per_unit": "-1",
                "effective_from": "2026-03-01",
            },
        )
        assert response.status_code == 400

    def test_current_tariff(self, client, make_tariff) -> None:
        tariff_id = make_tariff()

        response = client.get(
            "/api/tariffs/current",
            params={"utility_type": "Electricity", "customer_type": "Residential", "as_of": "2026-10-01"},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["tariff_id"] == tariff_id
        assert Decimal(data["rate_per_unit"]) == Decimal("25.00")
        assert Decimal(data["fixed_charge"]) == Decimal("500.00")

    def test_current_tariff_missing_is_422(self, client) -> None:
        response = client.get(
            "/api/tariffs/current",
            params={"utility_type": "Sewage", "as_of": "2026-10-01"},
        )
        assert response.status_code == 422
        assert response.json()["success"] is False
