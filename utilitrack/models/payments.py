# utilitrack/models/payments.py

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional

from pydantic import BaseModel, Field

from utilitrack.models.common import PaymentMethod


class PaymentCreate(BaseModel):
    bill_id: int
    payment_amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    transaction_reference: Optional[str] = Field(default=None, max_length=100)
    payment_date: Optional[date] = None
    received_by: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class VerifyRequest(BaseModel):
    verified_by: Optional[str] = Field(default=None, max_length=100)


class PaymentOut(BaseModel):
    id: int
    payment_number: str
    bill_id: int
    bill_number: str
    bill_amount: Decimal
    outstanding_balance: Decimal
    bill_status: str
    customer_id: int
    customer_name: str
    payment_date: date
    payment_amount: Decimal
    payment_method: str
    transaction_reference: Optional[str] = None
    payment_status: str
    is_verified: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    received_by: Optional[str] = None
    notes: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentStatsOut(BaseModel):
    total_payments: int
    completed_payments: int
    refunded_payments: int
    total_collected: Decimal
    total_refunded: Decimal
    collected_today: Decimal
    unverified_payments: int
    by_method: Dict[str, Decimal]
