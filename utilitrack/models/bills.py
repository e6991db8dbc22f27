# utilitrack/models/bills.py

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, Field


class GenerateBillRequest(BaseModel):
    reading_id: int
    due_date: Optional[date] = None
    bill_date: Optional[date] = None
    notes: Optional[str] = None


class CancelBillRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BillOut(BaseModel):
    id: int
    bill_number: str
    reading_id: int
    customer_id: int
    customer_name: str
    customer_type: str
    meter_id: int
    meter_number: str
    utility_type: str
    unit_of_measurement: str
    tariff_id: int
    tariff_name: str
    bill_date: date
    due_date: date
    billing_period_start: date
    billing_period_end: date
    consumption: Decimal
    rate_per_unit: Decimal
    fixed_charge: Decimal
    consumption_charge: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    outstanding_balance: Decimal
    bill_status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BillPreviewOut(BaseModel):
    reading_id: int
    meter_id: int
    meter_number: str
    customer_id: int
    customer_name: str
    customer_type: str
    utility_type: str
    unit_of_measurement: str
    reading_date: date
    previous_reading: Decimal
    current_reading: Decimal
    tariff_id: int
    tariff_name: str
    consumption: Decimal
    rate_per_unit: Decimal
    consumption_charge: Decimal
    fixed_charge: Decimal
    total_amount: Decimal


class BillStatsOut(BaseModel):
    total_bills: int
    total_billed: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    by_status: Dict[str, int]
