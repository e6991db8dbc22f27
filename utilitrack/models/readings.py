# utilitrack/models/readings.py

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from utilitrack.models.common import PartialUpdate, ReadingType


class ReadingCreate(BaseModel):
    meter_id: int
    current_reading: Decimal = Field(..., ge=0)
    reading_date: Optional[date] = None
    reading_type: ReadingType = "Actual"
    recorded_by: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class ReadingUpdate(PartialUpdate):
    nullable_fields = ("recorded_by", "notes")

    current_reading: Optional[Decimal] = Field(default=None, ge=0)
    reading_date: Optional[date] = None
    reading_type: Optional[ReadingType] = None
    recorded_by: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class ReadingOut(BaseModel):
    id: int
    meter_id: int
    meter_number: str
    customer_id: int
    customer_name: str
    customer_type: str
    utility_type: str
    unit_of_measurement: str
    sequence_number: int
    reading_date: date
    previous_reading: Decimal
    current_reading: Decimal
    consumption: Decimal
    reading_type: str
    is_processed: bool
    recorded_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
