# utilitrack/services/tariffs.py

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, case, or_, select
from sqlalchemy.engine import Connection

from utilitrack.config import today
from utilitrack.db.engine import lock_row
from utilitrack.db.schema import tariffs, utility_types
from utilitrack.errors import ConflictError, TariffNotFoundError, ValidationError
from utilitrack.models.common import CUSTOMER_TYPES, UTILITY_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TariffQuote:
    tariff_id: int
    tariff_name: str
    rate_per_unit: Decimal
    fixed_charge: Decimal


def _validate_utility_type(utility_type: str) -> None:
    if utility_type not in UTILITY_TYPES:
        raise ValidationError(
            f"Unknown utility type {utility_type!r}; expected one of {', '.join(UTILITY_TYPES)}"
        )


def _utility_type_id(conn: Connection, utility_type: str) -> int:
    _validate_utility_type(utility_type)
    stmt = select(utility_types.c.id).where(utility_types.c.name == utility_type)
    utility_type_id = conn.execute(stmt).scalar_one_or_none()
    if utility_type_id is None:
        raise ValidationError(f"Utility type {utility_type!r} is not configured")
    return utility_type_id


def _in_effect(as_of: date):
    return and_(
        tariffs.c.effective_from <= as_of,
        or_(tariffs.c.effective_to.is_(None), tariffs.c.effective_to >= as_of),
    )


def resolve_tariff(
    conn: Connection,
    utility_type: str,
    customer_type: Optional[str] = None,
    as_of: Optional[date] = None,
) -> TariffQuote:
    """
    Return the tariff in effect on `as_of` for a utility and customer type.

    A tariff written for the customer type wins over a generic one (NULL
    customer_type); among equals the most recent effective_from wins.
    Raises TariffNotFoundError rather than falling back to zero rates.
    """
    _validate_utility_type(utility_type)
    if as_of is None:
        as_of = today()

    type_match = tariffs.c.customer_type.is_(None)
    if customer_type is not None:
        type_match = or_(type_match, tariffs.c.customer_type == customer_type)

    stmt = (
        select(
            tariffs.c.id,
            tariffs.c.tariff_name,
            tariffs.c.rate_per_unit,
            tariffs.c.fixed_charge,
        )
        .select_from(tariffs.join(utility_types))
        .where(
            utility_types.c.name == utility_type,
            type_match,
            _in_effect(as_of),
        )
        .order_by(
            case((tariffs.c.customer_type.is_(None), 1), else_=0),
            tariffs.c.effective_from.desc(),
        )
        .limit(1)
    )

    row = conn.execute(stmt).mappings().first()

    if row is None:
        who = f" / {customer_type}" if customer_type else ""
        raise TariffNotFoundError(
            f"No tariff in effect for {utility_type}{who} on {as_of.isoformat()}"
        )

    return TariffQuote(
        tariff_id=row["id"],
        tariff_name=row["tariff_name"],
        rate_per_unit=row["rate_per_unit"],
        fixed_charge=row["fixed_charge"],
    )


def list_tariffs(conn: Connection, utility_type: Optional[str] = None):
    stmt = (
        select(
            tariffs,
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
        )
        .select_from(tariffs.join(utility_types))
        .order_by(utility_types.c.name, tariffs.c.effective_from.desc())
    )
    if utility_type is not None:
        _validate_utility_type(utility_type)
        stmt = stmt.where(utility_types.c.name == utility_type)

    return conn.execute(stmt).mappings().all()


def create_tariff(
    conn: Connection,
    *,
    tariff_name: str,
    utility_type: str,
    rate_per_unit,
    fixed_charge,
    effective_from: date,
    effective_to: Optional[date] = None,
    customer_type: Optional[str] = None,
) -> int:
    """
    Insert a tariff, refusing periods that overlap another tariff for the
    same utility and customer type, so at most one is current at any time.
    """
    utility_type_id = _utility_type_id(conn, utility_type)
    # Writers of one utility's tariffs queue here until the insert commits.
    lock_row(conn, utility_types, utility_type_id)

    if customer_type is not None and customer_type not in CUSTOMER_TYPES:
        raise ValidationError(f"Unknown customer type {customer_type!r}")
    if effective_to is not None and effective_to < effective_from:
        raise ValidationError("effective_to must not be before effective_from")
    if Decimal(str(rate_per_unit)) < 0 or Decimal(str(fixed_charge)) < 0:
        raise ValidationError("Tariff rates cannot be negative")

    if customer_type is None:
        same_type = tariffs.c.customer_type.is_(None)
    else:
        same_type = tariffs.c.customer_type == customer_type

    # Two periods overlap when each starts before the other ends.
    overlap = [
        tariffs.c.utility_type_id == utility_type_id,
        same_type,
        or_(tariffs.c.effective_to.is_(None), tariffs.c.effective_to >= effective_from),
    ]
    if effective_to is not None:
        overlap.append(tariffs.c.effective_from <= effective_to)

    clash = conn.execute(
        select(tariffs.c.tariff_name).where(and_(*overlap)).limit(1)
    ).scalar_one_or_none()
    if clash is not None:
        raise ConflictError(
            f"Tariff period overlaps existing tariff {clash!r} for {utility_type}"
        )

    result = conn.execute(
        tariffs.insert().values(
            tariff_name=tariff_name,
            utility_type_id=utility_type_id,
            customer_type=customer_type,
            rate_per_unit=rate_per_unit,
            fixed_charge=fixed_charge,
            effective_from=effective_from,
            effective_to=effective_to,
        )
    )
    tariff_id = result.inserted_primary_key[0]
    logger.info("Created tariff %s (%s) for %s", tariff_id, tariff_name, utility_type)
    return tariff_id
