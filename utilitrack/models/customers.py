# utilitrack/models/customers.py

from datetime import date, datetime
from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field

from utilitrack.models.common import CustomerStatus, CustomerType, PartialUpdate


class CustomerCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    customer_type: CustomerType
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=100)
    status: CustomerStatus = "Active"
    registration_date: Optional[date] = None


class CustomerUpdate(PartialUpdate):
    nullable_fields = ("email", "phone", "address", "city")

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    customer_type: Optional[CustomerType] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=30)
    address: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=100)
    status: Optional[CustomerStatus] = None


class CustomerOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    customer_type: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    status: str
    registration_date: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerCountOut(BaseModel):
    total: int
    active: int
    inactive: int
    suspended: int
    by_type: Dict[str, int]
