# utilitrack/models/connections.py

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel

from utilitrack.models.common import ConnectionStatus, PartialUpdate, UtilityType


class ConnectionCreate(BaseModel):
    customer_id: int
    utility_type: UtilityType
    connection_date: Optional[date] = None
    connection_status: ConnectionStatus = "Pending"
    property_address: Optional[str] = None
    notes: Optional[str] = None


class ConnectionUpdate(PartialUpdate):
    nullable_fields = ("disconnection_date", "property_address", "notes")

    connection_date: Optional[date] = None
    disconnection_date: Optional[date] = None
    connection_status: Optional[ConnectionStatus] = None
    property_address: Optional[str] = None
    notes: Optional[str] = None


class ConnectionOut(BaseModel):
    id: int
    connection_number: str
    customer_id: int
    customer_name: str
    customer_type: str
    utility_type: str
    unit_of_measurement: str
    connection_date: date
    disconnection_date: Optional[date] = None
    connection_status: str
    property_address: Optional[str] = None
    notes: Optional[str] = None
    meter_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
