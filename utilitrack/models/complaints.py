# utilitrack/models/complaints.py

from datetime import date, datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from utilitrack.models.common import ComplaintPriority, ComplaintStatus, PartialUpdate


class ComplaintCreate(BaseModel):
    customer_id: int
    complaint_type: str = Field(..., min_length=1, max_length=50)
    priority: ComplaintPriority = "Medium"
    description: str = Field(..., min_length=1)
    complaint_date: Optional[date] = None
    assigned_to: Optional[str] = Field(default=None, max_length=100)


class ComplaintUpdate(PartialUpdate):
    nullable_fields = ("assigned_to",)

    complaint_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    priority: Optional[ComplaintPriority] = None
    description: Optional[str] = Field(default=None, min_length=1)
    assigned_to: Optional[str] = Field(default=None, max_length=100)


class AssignRequest(BaseModel):
    assigned_to: str = Field(..., min_length=1, max_length=100)


class StatusRequest(BaseModel):
    complaint_status: ComplaintStatus
    resolution_notes: Optional[str] = None


class ResolveRequest(BaseModel):
    resolution_notes: str = Field(..., min_length=1)
    resolution_date: Optional[date] = None


class ComplaintOut(BaseModel):
    id: int
    complaint_number: str
    customer_id: int
    customer_name: str
    complaint_date: date
    complaint_type: str
    priority: str
    description: str
    complaint_status: str
    assigned_to: Optional[str] = None
    resolution_date: Optional[date] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ComplaintStatsOut(BaseModel):
    total_complaints: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    by_type: Dict[str, int]
