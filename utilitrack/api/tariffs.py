# utilitrack/api/tariffs.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine, run_in_transaction
from utilitrack.db.schema import tariffs, utility_types
from utilitrack.models.common import (
    CustomerType,
    ItemResponse,
    ListResponse,
    UtilityType,
    item_response,
    list_response,
)
from utilitrack.models.tariffs import TariffCreate, TariffOut, TariffQuoteOut
from utilitrack.services.tariffs import create_tariff, list_tariffs, resolve_tariff

router = APIRouter(prefix="/tariffs", tags=["tariffs"])


@router.get("", response_model=ListResponse[TariffOut])
def get_tariffs(
    utility_type: Optional[UtilityType] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        rows = list_tariffs(conn, utility_type)
    return list_response(rows)


@router.get("/current", response_model=ItemResponse[TariffQuoteOut])
def current_tariff(
    utility_type: UtilityType = Query(...),
    customer_type: Optional[CustomerType] = Query(default=None),
    as_of: Optional[date] = Query(
        default=None,
        description="ISO date (YYYY-MM-DD); defaults to today in the configured timezone",
    ),
    engine: Engine = Depends(get_engine),
):
    """
    The tariff that would price a reading of this utility and customer type
    taken on `as_of`.
    """
    if as_of is None:
        as_of = today()

    with engine.connect() as conn:
        quote = resolve_tariff(conn, utility_type, customer_type, as_of)

    return item_response({
        "tariff_id": quote.tariff_id,
        "tariff_name": quote.tariff_name,
        "utility_type": utility_type,
        "customer_type": customer_type,
        "as_of": as_of,
        "rate_per_unit": quote.rate_per_unit,
        "fixed_charge": quote.fixed_charge,
    })


@router.post("", response_model=ItemResponse[TariffOut], status_code=201)
def add_tariff(body: TariffCreate, engine: Engine = Depends(get_engine)):
    tariff_id = run_in_transaction(
        engine,
        lambda conn: create_tariff(conn, **body.model_dump()),
        f"creating tariff {body.tariff_name!r}",
    )

    with engine.connect() as conn:
        row = conn.execute(
            select(
                tariffs,
                utility_types.c.name.label("utility_type"),
                utility_types.c.unit_of_measurement,
            )
            .select_from(tariffs.join(utility_types))
            .where(tariffs.c.id == tariff_id)
        ).mappings().one()

    return item_response(row)
