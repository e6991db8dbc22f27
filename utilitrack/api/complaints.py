# utilitrack/api/complaints.py

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from utilitrack.config import today
from utilitrack.db.engine import get_engine, run_in_transaction
from utilitrack.db.numbering import complaint_number
from utilitrack.db.schema import complaints, customers
from utilitrack.errors import NotFoundError, ValidationError
from utilitrack.models.common import (
    ComplaintPriority,
    ComplaintStatus,
    ItemResponse,
    ListResponse,
    MessageResponse,
    item_response,
    list_response,
)
from utilitrack.models.complaints import (
    AssignRequest,
    ComplaintCreate,
    ComplaintOut,
    ComplaintStatsOut,
    ComplaintUpdate,
    ResolveRequest,
    StatusRequest,
)
from utilitrack.services.bills import customer_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])

NEWEST_FIRST = (complaints.c.complaint_date.desc(), complaints.c.id.desc())
CLOSED_STATUSES = ("Resolved", "Closed")


def complaint_view():
    return (
        select(complaints, customer_name())
        .select_from(complaints.join(customers, complaints.c.customer_id == customers.c.id))
    )


def _get_complaint(conn, complaint_id: int):
    row = conn.execute(complaint_view().where(complaints.c.id == complaint_id)).mappings().first()
    if row is None:
        raise NotFoundError("Complaint not found")
    return row


def _list(engine: Engine, *conditions):
    with engine.connect() as conn:
        rows = conn.execute(
            complaint_view().where(*conditions).order_by(*NEWEST_FIRST)
        ).mappings().all()
    return list_response(rows)


def _update(engine: Engine, complaint_id: int, values: dict, what: str):
    def work(conn):
        _get_complaint(conn, complaint_id)
        conn.execute(
            complaints.update()
            .where(complaints.c.id == complaint_id)
            .values(**values, updated_at=func.current_timestamp())
        )

    run_in_transaction(engine, work, f"{what} complaint {complaint_id}")

    with engine.connect() as conn:
        return item_response(_get_complaint(conn, complaint_id))


@router.get("", response_model=ListResponse[ComplaintOut])
def list_complaints(engine: Engine = Depends(get_engine)):
    return _list(engine)


@router.get("/stats/summary", response_model=ItemResponse[ComplaintStatsOut])
def complaint_stats(engine: Engine = Depends(get_engine)):
    def grouped(column):
        return dict(conn.execute(select(column, func.count()).group_by(column)).all())

    with engine.connect() as conn:
        by_status = grouped(complaints.c.complaint_status)
        by_priority = grouped(complaints.c.priority)
        by_type = grouped(complaints.c.complaint_type)

    return item_response({
        "total_complaints": sum(by_status.values()),
        "by_status": by_status,
        "by_priority": by_priority,
        "by_type": by_type,
    })


@router.get("/search", response_model=ListResponse[ComplaintOut])
def search_complaints(q: str = Query(..., min_length=1), engine: Engine = Depends(get_engine)):
    pattern = f"%{q.strip().lower()}%"
    return _list(
        engine,
        or_(
            func.lower(complaints.c.complaint_number).like(pattern),
            func.lower(complaints.c.complaint_type).like(pattern),
            func.lower(complaints.c.description).like(pattern),
            func.lower(customers.c.first_name + " " + customers.c.last_name).like(pattern),
        ),
    )


@router.get("/filter/status/{status}", response_model=ListResponse[ComplaintOut])
def filter_by_status(status: ComplaintStatus, engine: Engine = Depends(get_engine)):
    return _list(engine, complaints.c.complaint_status == status)


@router.get("/filter/priority/{priority}", response_model=ListResponse[ComplaintOut])
def filter_by_priority(priority: ComplaintPriority, engine: Engine = Depends(get_engine)):
    return _list(engine, complaints.c.priority == priority)


@router.get("/filter/type/{complaint_type}", response_model=ListResponse[ComplaintOut])
def filter_by_type(complaint_type: str, engine: Engine = Depends(get_engine)):
    return _list(engine, func.lower(complaints.c.complaint_type) == complaint_type.lower())


@router.get("/customer/{customer_id}", response_model=ListResponse[ComplaintOut])
def list_customer_complaints(customer_id: int, engine: Engine = Depends(get_engine)):
    return _list(engine, complaints.c.customer_id == customer_id)


@router.get("/{complaint_id}", response_model=ItemResponse[ComplaintOut])
def get_complaint(complaint_id: int, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(_get_complaint(conn, complaint_id))


@router.post("", response_model=ItemResponse[ComplaintOut], status_code=201)
def create_complaint(body: ComplaintCreate, engine: Engine = Depends(get_engine)):
    complaint_date = body.complaint_date or today()

    def work(conn):
        exists = conn.execute(
            select(customers.c.id).where(customers.c.id == body.customer_id)
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Customer not found")

        result = conn.execute(
            complaints.insert().values(
                complaint_number=complaint_number(conn, complaints.c.complaint_number, complaint_date),
                customer_id=body.customer_id,
                complaint_date=complaint_date,
                complaint_type=body.complaint_type,
                priority=body.priority,
                description=body.description,
                complaint_status="Open",
                assigned_to=body.assigned_to,
            )
        )
        return result.inserted_primary_key[0]

    complaint_id = run_in_transaction(engine, work, "logging a complaint")

    with engine.connect() as conn:
        complaint = _get_complaint(conn, complaint_id)

    logger.info(
        "Logged complaint %s (%s, %s) for customer %s",
        complaint["complaint_number"],
        body.complaint_type,
        body.priority,
        body.customer_id,
    )
    return item_response(complaint)


@router.put("/{complaint_id}", response_model=ItemResponse[ComplaintOut])
def update_complaint(complaint_id: int, body: ComplaintUpdate, engine: Engine = Depends(get_engine)):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    return _update(engine, complaint_id, changes, "updating")


@router.put("/{complaint_id}/assign", response_model=ItemResponse[ComplaintOut])
def assign_complaint(complaint_id: int, body: AssignRequest, engine: Engine = Depends(get_engine)):
    """
    Assign a complaint; an Open complaint moves to In Progress.
    """
    with engine.connect() as conn:
        current = _get_complaint(conn, complaint_id)

    values = {"assigned_to": body.assigned_to}
    if current["complaint_status"] == "Open":
        values["complaint_status"] = "In Progress"
    return _update(engine, complaint_id, values, "assigning")


@router.put("/{complaint_id}/status", response_model=ItemResponse[ComplaintOut])
def update_complaint_status(complaint_id: int, body: StatusRequest, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        current = _get_complaint(conn, complaint_id)

    values = {"complaint_status": body.complaint_status}
    if body.complaint_status in CLOSED_STATUSES and current["resolution_date"] is None:
        values["resolution_date"] = today()
    if body.resolution_notes is not None:
        values["resolution_notes"] = body.resolution_notes
    return _update(engine, complaint_id, values, "updating status of")


@router.put("/{complaint_id}/resolve", response_model=ItemResponse[ComplaintOut])
def resolve_complaint(complaint_id: int, body: ResolveRequest, engine: Engine = Depends(get_engine)):
    values = {
        "complaint_status": "Resolved",
        "resolution_date": body.resolution_date or today(),
        "resolution_notes": body.resolution_notes,
    }
    return _update(engine, complaint_id, values, "resolving")


@router.delete("/{complaint_id}", response_model=MessageResponse)
def delete_complaint(complaint_id: int, engine: Engine = Depends(get_engine)):
    def work(conn):
        _get_complaint(conn, complaint_id)
        conn.execute(complaints.delete().where(complaints.c.id == complaint_id))

    run_in_transaction(engine, work, f"deleting complaint {complaint_id}")
    logger.info("Deleted complaint %s", complaint_id)
    return {"success": True, "message": "Complaint deleted successfully"}
