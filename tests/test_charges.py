"""Tests for consumption and charge arithmetic."""

from decimal import Decimal

import pytest

from utilitrack.errors import InvalidReadingError
from utilitrack.services.charges import compute_charges, compute_consumption, quantize_money


class TestComputeConsumption:
    def test_difference_of_readings(self) -> None:
        assert compute_consumption(Decimal("100"), Decimal("350")) == Decimal("250")

    def test_unchanged_meter_is_zero(self) -> None:
        assert compute_consumption(Decimal("412.50"), Decimal("412.50")) == Decimal("0")

    def test_meter_going_backwards_is_rejected(self) -> None:
        with pytest.raises(InvalidReadingError):
            compute_consumption(Decimal("350"), Decimal("349.99"))

    def test_negative_reading_is_rejected(self) -> None:
        with pytest.raises(InvalidReadingError):
            compute_consumption(Decimal("-1"), Decimal("10"))

    def test_floats_do_not_leak_binary_noise(self) -> None:
        assert compute_consumption(0.1, 0.3) == Decimal("0.2")


class TestComputeCharges:
    def test_worked_example(self) -> None:
        charges = compute_charges(Decimal("100"), Decimal("350"), Decimal("25.00"), Decimal("500.00"))

        assert charges.consumption == Decimal("250")
        assert charges.consumption_charge == Decimal("6250.00")
        assert charges.fixed_charge == Decimal("500.00")
        assert charges.total_amount == Decimal("6750.00")

    def test_zero_consumption_still_pays_fixed_charge(self) -> None:
        charges = compute_charges(Decimal("80"), Decimal("80"), Decimal("25.00"), Decimal("500.00"))

        assert charges.consumption_charge == Decimal("0.00")
        assert charges.total_amount == Decimal("500.00")

    def test_consumption_charge_rounds_half_up_to_cents(self) -> None:
        # 3 * 0.1235 = 0.3705 -> 0.37 ; 1 * 0.005 = 0.005 -> 0.01
        assert compute_charges(0, 3, Decimal("0.1235"), 0).consumption_charge == Decimal("0.37")
        assert compute_charges(0, 1, Decimal("0.005"), 0).consumption_charge == Decimal("0.01")

    def test_total_is_sum_of_rounded_parts(self) -> None:
        charges = compute_charges(Decimal("0"), Decimal("12.35"), Decimal("13.3333"), Decimal("99.995"))

        assert charges.consumption_charge == quantize_money(Decimal("12.35") * Decimal("13.3333"))
        assert charges.fixed_charge == Decimal("100.00")
        assert charges.total_amount == charges.consumption_charge + charges.fixed_charge

    def test_repeatable(self) -> None:
        first = compute_charges("100", "350.75", "17.8125", "250")
        second = compute_charges("100", "350.75", "17.8125", "250")
        assert first == second

    def test_invalid_reading_propagates(self) -> None:
        with pytest.raises(InvalidReadingError):
            compute_charges(Decimal("350"), Decimal("100"), Decimal("25"), Decimal("500"))
