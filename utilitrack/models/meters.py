# utilitrack/models/meters.py

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, Field

from utilitrack.models.common import MeterStatus, PartialUpdate, UtilityType
from utilitrack.models.readings import ReadingOut


class MeterCreate(BaseModel):
    customer_id: int
    utility_type: UtilityType
    connection_id: Optional[int] = None
    meter_number: str = Field(..., min_length=1, max_length=50)
    installation_date: Optional[date] = None
    status: MeterStatus = "Active"
    initial_reading: Decimal = Field(default=Decimal("0"), ge=0)
    notes: Optional[str] = None


class MeterUpdate(PartialUpdate):
    nullable_fields = ("notes",)

    meter_number: Optional[str] = Field(default=None, min_length=1, max_length=50)
    installation_date: Optional[date] = None
    initial_reading: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class MeterStatusUpdate(BaseModel):
    status: MeterStatus


class MaintenanceRecord(BaseModel):
    maintenance_date: Optional[date] = None
    notes: Optional[str] = None


class MeterOut(BaseModel):
    id: int
    customer_id: int
    customer_name: str
    utility_type: str
    unit_of_measurement: str
    connection_id: Optional[int] = None
    connection_number: Optional[str] = None
    meter_number: str
    installation_date: date
    status: str
    initial_reading: Decimal
    last_maintenance_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MeterSummaryOut(BaseModel):
    total_meters: int
    never_maintained: int
    by_status: Dict[str, int]
    by_utility: Dict[str, int]


class LastReadingOut(BaseModel):
    meter_id: int
    meter_number: str
    # The value the next reading will be measured from.
    next_previous_reading: Decimal
    last_reading: Optional[ReadingOut] = None
