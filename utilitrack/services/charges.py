# utilitrack/services/charges.py
"""Consumption and charge arithmetic for a single meter reading."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from utilitrack.errors import InvalidReadingError

CENTS = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """
    Convert ints, strings, floats and Decimals to Decimal without
    inheriting binary floating point noise.
    """
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ChargeBreakdown:
    consumption: Decimal
    rate_per_unit: Decimal
    consumption_charge: Decimal
    fixed_charge: Decimal
    total_amount: Decimal


def compute_consumption(previous_reading, current_reading) -> Decimal:
    """
    Consumption between two readings of the same meter, in the meter's unit.

    Raises InvalidReadingError when the meter went backwards; the value is
    never clamped to zero.
    """
    previous = to_decimal(previous_reading)
    current = to_decimal(current_reading)

    if previous < 0 or current < 0:
        raise InvalidReadingError("Meter readings cannot be negative")

    if current < previous:
        raise InvalidReadingError(
            f"Current reading {current} is lower than previous reading {previous}"
        )

    return current - previous


def compute_charges(previous_reading, current_reading, rate_per_unit, fixed_charge) -> ChargeBreakdown:
    """
    consumption_charge = consumption * rate_per_unit
    total_amount       = consumption_charge + fixed_charge

    Each amount is rounded to cents exactly once, so repeating the
    computation always gives the same result.
    """
    consumption = compute_consumption(previous_reading, current_reading)
    rate = to_decimal(rate_per_unit)
    fixed = quantize_money(fixed_charge)

    consumption_charge = quantize_money(consumption * rate)
    total_amount = consumption_charge + fixed

    return ChargeBreakdown(
        consumption=consumption,
        rate_per_unit=rate,
        consumption_charge=consumption_charge,
        fixed_charge=fixed,
        total_amount=total_amount,
    )
