# utilitrack/models/common.py

from collections.abc import Mapping
from typing import ClassVar, Generic, List, Literal, Optional, Tuple, TypeVar, get_args

from pydantic import BaseModel, ValidationInfo, field_validator

T = TypeVar("T")
S = TypeVar("S")

UtilityType = Literal["Electricity", "Water", "Gas", "Sewage", "Street Lighting"]
CustomerType = Literal["Residential", "Commercial", "Industrial", "Government"]
CustomerStatus = Literal["Active", "Inactive", "Suspended"]
MeterStatus = Literal["Active", "Inactive", "Faulty", "Removed"]
ReadingType = Literal["Actual", "Estimated", "Customer-Submitted"]
BillStatus = Literal["Unpaid", "Paid", "Partially Paid", "Overdue", "Cancelled"]
PaymentMethod = Literal["Cash", "Card", "Bank Transfer", "Online", "Cheque"]
PaymentStatus = Literal["Completed", "Refunded"]
ComplaintStatus = Literal["Open", "In Progress", "Resolved", "Closed", "Rejected"]
ComplaintPriority = Literal["Low", "Medium", "High", "Urgent"]
ConnectionStatus = Literal["Active", "Disconnected", "Suspended", "Pending"]

UTILITY_TYPES = get_args(UtilityType)
CUSTOMER_TYPES = get_args(CustomerType)
BILL_STATUSES = get_args(BillStatus)

# Units each utility is metered in; consumption is never converted between them.
UTILITY_UNITS = {
    "Electricity": "kWh",
    "Water": "m3",
    "Gas": "m3",
    "Sewage": "m3",
    "Street Lighting": "kWh",
}

OPEN_BILL_STATUSES = ("Unpaid", "Partially Paid", "Overdue")


class ItemResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


class ListResponse(BaseModel, Generic[T]):
    success: bool = True
    count: int
    data: List[T]


class ReportResponse(BaseModel, Generic[T, S]):
    success: bool = True
    summary: S
    count: int
    data: List[T]


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class PartialUpdate(BaseModel):
    """
    Body of a PUT that changes only the fields it sends.

    Sending null clears a field only when it is listed in `nullable_fields`;
    any other explicit null is rejected with a 400 naming the field.
    """

    nullable_fields: ClassVar[Tuple[str, ...]] = ()

    @field_validator("*")
    @classmethod
    def reject_null(cls, value, info: ValidationInfo):
        if value is None and info.field_name not in cls.nullable_fields:
            raise ValueError("may not be null")
        return value


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    details: Optional[List[str]] = None


def _plain(item):
    # Result rows are mappings; response models validate plain dicts.
    return dict(item) if isinstance(item, Mapping) else item


def list_response(items) -> dict:
    items = [_plain(item) for item in items]
    return {"success": True, "count": len(items), "data": items}


def item_response(item) -> dict:
    return {"success": True, "data": _plain(item)}


def report_response(summary, items) -> dict:
    items = [_plain(item) for item in items]
    return {"success": True, "summary": summary, "count": len(items), "data": items}
