# utilitrack/models/tariffs.py

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from utilitrack.models.common import CustomerType, UtilityType


class TariffCreate(BaseModel):
    tariff_name: str = Field(..., min_length=1, max_length=100)
    utility_type: UtilityType
    customer_type: Optional[CustomerType] = None
    rate_per_unit: Decimal = Field(..., ge=0)
    fixed_charge: Decimal = Field(default=Decimal("0"), ge=0)
    effective_from: date
    effective_to: Optional[date] = None


class TariffOut(BaseModel):
    id: int
    tariff_name: str
    utility_type: str
    unit_of_measurement: str
    customer_type: Optional[str] = None
    rate_per_unit: Decimal
    fixed_charge: Decimal
    effective_from: date
    effective_to: Optional[date] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TariffQuoteOut(BaseModel):
    tariff_id: int
    tariff_name: str
    utility_type: str
    customer_type: Optional[str] = None
    as_of: date
    rate_per_unit: Decimal
    fixed_charge: Decimal
