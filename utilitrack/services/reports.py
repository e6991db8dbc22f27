# utilitrack/services/reports.py
"""
Read-only aggregations behind the dashboard and report pages.

Every function takes an open connection plus explicit parameters (including
the reference date) and only reads. Results reflect the store at call time;
nothing is cached.
"""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import and_, case, extract, func, select
from sqlalchemy.engine import Connection

from utilitrack.db.schema import (
    bills, complaints, customers, meter_readings, meters, payments, utility_types,
)
from utilitrack.errors import ValidationError
from utilitrack.models.common import OPEN_BILL_STATUSES, UTILITY_TYPES
from utilitrack.services.bills import bill_view, customer_name
from utilitrack.services.payments import payment_view

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def percentage(part, whole) -> Decimal:
    part = Decimal(str(part or 0))
    whole = Decimal(str(whole or 0))
    if whole == 0:
        return ZERO
    return (part * HUNDRED / whole).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def average(total, count) -> Decimal:
    if not count:
        return ZERO
    return (Decimal(str(total or 0)) / count).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def month_bounds(as_of: date):
    first_day = as_of.replace(day=1)
    next_month = date(first_day.year + (first_day.month == 12), (first_day.month % 12) + 1, 1)
    return first_day, next_month


def months_back(as_of: date, months: int) -> date:
    """First day of the month `months` months before as_of's month."""
    year, month = as_of.year, as_of.month - months
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


def _money_sum(column):
    return func.coalesce(func.sum(column), 0)


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _validate_utility(utility_type: Optional[str]) -> None:
    if utility_type is not None and utility_type not in UTILITY_TYPES:
        raise ValidationError(f"Unknown utility type {utility_type!r}")


# ---- Dashboard ----

def dashboard_summary(conn: Connection, as_of: date) -> dict:
    first_day, next_month = month_bounds(as_of)

    def scalar(stmt):
        return conn.execute(stmt).scalar_one()

    in_month = and_(bills.c.bill_date >= first_day, bills.c.bill_date < next_month)
    paid_in_month = and_(
        payments.c.payment_date >= first_day,
        payments.c.payment_date < next_month,
        payments.c.payment_status == "Completed",
    )

    return {
        "as_of": as_of,
        "total_customers": scalar(select(func.count()).select_from(customers)),
        "active_customers": scalar(
            select(func.count()).select_from(customers).where(customers.c.status == "Active")
        ),
        "total_meters": scalar(select(func.count()).select_from(meters)),
        "active_meters": scalar(
            select(func.count()).select_from(meters).where(meters.c.status == "Active")
        ),
        "faulty_meters": scalar(
            select(func.count()).select_from(meters).where(meters.c.status == "Faulty")
        ),
        "bills_this_month": scalar(select(func.count()).select_from(bills).where(in_month)),
        "billed_this_month": scalar(select(_money_sum(bills.c.total_amount)).where(in_month)),
        "payments_this_month": scalar(select(func.count()).select_from(payments).where(paid_in_month)),
        "collected_this_month": scalar(select(_money_sum(payments.c.payment_amount)).where(paid_in_month)),
        "unpaid_bills": scalar(
            select(func.count()).select_from(bills).where(bills.c.bill_status.in_(OPEN_BILL_STATUSES))
        ),
        "total_outstanding": scalar(
            select(_money_sum(bills.c.outstanding_balance)).where(
                bills.c.bill_status.in_(OPEN_BILL_STATUSES)
            )
        ),
        "unprocessed_readings": scalar(
            select(func.count()).select_from(meter_readings).where(meter_readings.c.is_processed.is_(False))
        ),
        "open_complaints": scalar(
            select(func.count()).select_from(complaints).where(complaints.c.complaint_status == "Open")
        ),
        "in_progress_complaints": scalar(
            select(func.count()).select_from(complaints).where(
                complaints.c.complaint_status == "In Progress"
            )
        ),
    }


def today_revenue(conn: Connection, as_of: date) -> dict:
    yesterday = as_of - timedelta(days=1)

    def collected(day: date):
        stmt = select(func.count(), _money_sum(payments.c.payment_amount)).where(
            payments.c.payment_date == day,
            payments.c.payment_status == "Completed",
        )
        count, total = conn.execute(stmt).one()
        return count, Decimal(str(total or 0)).quantize(Decimal("0.01"))

    today_count, today_total = collected(as_of)
    _, yesterday_total = collected(yesterday)

    if yesterday_total > 0:
        change = percentage(today_total - yesterday_total, yesterday_total)
    elif today_total > 0:
        change = Decimal("100.00")
    else:
        change = ZERO

    trend = "up" if today_total > yesterday_total else "down" if today_total < yesterday_total else "flat"

    return {
        "as_of": as_of,
        "today_revenue": today_total,
        "yesterday_revenue": yesterday_total,
        "payment_count": today_count,
        "change_percent": change,
        "trend": trend,
    }


def revenue_trends(conn: Connection, months: int, as_of: date) -> list:
    if months < 1 or months > 24:
        raise ValidationError("Months parameter must be between 1 and 24")

    start = months_back(as_of, months - 1)
    _, end = month_bounds(as_of)

    year = extract("year", bills.c.bill_date)
    month = extract("month", bills.c.bill_date)

    stmt = (
        select(
            year.label("year"),
            month.label("month"),
            utility_types.c.name.label("utility_type"),
            func.count(bills.c.id).label("bill_count"),
            _money_sum(bills.c.total_amount).label("total_billed"),
            _money_sum(bills.c.amount_paid).label("total_collected"),
        )
        .select_from(
            bills.join(meters, bills.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .where(
            bills.c.bill_date >= start,
            bills.c.bill_date < end,
            bills.c.bill_status != "Cancelled",
        )
        .group_by(year, month, utility_types.c.name)
        .order_by(year, month, utility_types.c.name)
    )

    return [
        {
            "period": f"{int(row['year']):04d}-{int(row['month']):02d}",
            "year": row["year"],
            "month": row["month"],
            "utility_type": row["utility_type"],
            "bill_count": row["bill_count"],
            "total_billed": row["total_billed"],
            "total_collected": row["total_collected"],
        }
        for row in conn.execute(stmt).mappings().all()
    ]


def utility_distribution(conn: Connection) -> list:
    stmt = (
        select(
            utility_types.c.name.label("utility_type"),
            func.count(meters.c.id).label("connection_count"),
        )
        .select_from(
            utility_types.outerjoin(
                meters,
                and_(meters.c.utility_type_id == utility_types.c.id, meters.c.status == "Active"),
            )
        )
        .group_by(utility_types.c.name)
        .order_by(func.count(meters.c.id).desc(), utility_types.c.name)
    )
    rows = conn.execute(stmt).mappings().all()
    total = sum(row["connection_count"] for row in rows)

    return [
        {
            "utility_type": row["utility_type"],
            "connection_count": row["connection_count"],
            "percentage": percentage(row["connection_count"], total),
        }
        for row in rows
    ]


def recent_activity(conn: Connection, limit: int = 10) -> list:
    if limit < 1 or limit > 50:
        raise ValidationError("Limit parameter must be between 1 and 50")

    activities = []

    reading_rows = conn.execute(
        select(
            meter_readings.c.id,
            meter_readings.c.consumption,
            meter_readings.c.created_at,
            meters.c.meter_number,
            customer_name(),
        )
        .select_from(
            meter_readings.join(meters, meter_readings.c.meter_id == meters.c.id)
            .join(customers, meters.c.customer_id == customers.c.id)
        )
        .order_by(meter_readings.c.created_at.desc(), meter_readings.c.id.desc())
        .limit(limit)
    ).mappings().all()
    for row in reading_rows:
        activities.append({
            "activity_type": "Meter Reading",
            "reference": row["meter_number"],
            "description": f"Reading recorded for meter {row['meter_number']} ({row['consumption']} units)",
            "customer_name": row["customer_name"],
            "amount": None,
            "activity_date": row["created_at"],
        })

    bill_rows = conn.execute(
        bill_view().order_by(bills.c.created_at.desc(), bills.c.id.desc()).limit(limit)
    ).mappings().all()
    for row in bill_rows:
        activities.append({
            "activity_type": "Bill Generated",
            "reference": row["bill_number"],
            "description": f"{row['utility_type']} bill {row['bill_number']} generated",
            "customer_name": row["customer_name"],
            "amount": row["total_amount"],
            "activity_date": row["created_at"],
        })

    payment_rows = conn.execute(
        payment_view().order_by(payments.c.created_at.desc(), payments.c.id.desc()).limit(limit)
    ).mappings().all()
    for row in payment_rows:
        activities.append({
            "activity_type": "Payment Received",
            "reference": row["payment_number"],
            "description": f"{row['payment_method']} payment for bill {row['bill_number']}",
            "customer_name": row["customer_name"],
            "amount": row["payment_amount"],
            "activity_date": row["created_at"],
        })

    complaint_rows = conn.execute(
        select(
            complaints.c.complaint_number,
            complaints.c.complaint_type,
            complaints.c.created_at,
            customer_name(),
        )
        .select_from(complaints.join(customers, complaints.c.customer_id == customers.c.id))
        .order_by(complaints.c.created_at.desc(), complaints.c.id.desc())
        .limit(limit)
    ).mappings().all()
    for row in complaint_rows:
        activities.append({
            "activity_type": "Complaint Logged",
            "reference": row["complaint_number"],
            "description": f"{row['complaint_type']} complaint {row['complaint_number']}",
            "customer_name": row["customer_name"],
            "amount": None,
            "activity_date": row["created_at"],
        })

    activities.sort(key=lambda a: a["activity_date"], reverse=True)
    return activities[:limit]


# ---- Reports ----

def unpaid_bills(
    conn: Connection,
    as_of: date,
    utility_type: Optional[str] = None,
    days_overdue_min: Optional[int] = None,
):
    _validate_utility(utility_type)

    stmt = bill_view().where(
        bills.c.bill_status.in_(OPEN_BILL_STATUSES),
        bills.c.outstanding_balance > 0,
    )
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)

    items = []
    for row in conn.execute(stmt).mappings().all():
        days_overdue = max((as_of - row["due_date"]).days, 0)
        if days_overdue_min is not None and days_overdue < days_overdue_min:
            continue
        item = dict(row)
        item["days_overdue"] = days_overdue
        item["is_overdue"] = row["due_date"] < as_of
        items.append(item)

    items.sort(key=lambda b: (b["days_overdue"], b["outstanding_balance"]), reverse=True)

    summary = {
        "total_bills": len(items),
        "total_outstanding": sum((b["outstanding_balance"] for b in items), ZERO),
        "overdue_count": sum(1 for b in items if b["is_overdue"]),
    }
    return summary, items


def defaulters(conn: Connection, as_of: date, days_overdue: int = 30):
    """
    Customers holding at least one open bill that is `days_overdue` or more
    days past its due date.
    """
    if days_overdue < 0:
        raise ValidationError("days_overdue cannot be negative")

    cutoff = as_of - timedelta(days=days_overdue)

    stmt = (
        select(
            customers.c.id.label("customer_id"),
            customer_name(),
            customers.c.customer_type,
            customers.c.phone,
            customers.c.email,
            func.count(bills.c.id).label("overdue_bills_count"),
            _money_sum(bills.c.outstanding_balance).label("total_outstanding"),
            func.min(bills.c.due_date).label("oldest_due_date"),
        )
        .select_from(bills.join(customers, bills.c.customer_id == customers.c.id))
        .where(
            bills.c.bill_status.in_(OPEN_BILL_STATUSES),
            bills.c.outstanding_balance > 0,
            bills.c.due_date <= cutoff,
        )
        .group_by(
            customers.c.id,
            customers.c.first_name,
            customers.c.last_name,
            customers.c.customer_type,
            customers.c.phone,
            customers.c.email,
        )
    )

    items = []
    for row in conn.execute(stmt).mappings().all():
        item = dict(row)
        item["max_days_overdue"] = (as_of - row["oldest_due_date"]).days
        items.append(item)

    items.sort(key=lambda d: (d["total_outstanding"], d["max_days_overdue"]), reverse=True)

    summary = {
        "days_overdue": days_overdue,
        "total_defaulters": len(items),
        "total_outstanding": sum((d["total_outstanding"] for d in items), ZERO),
        "total_overdue_bills": sum(d["overdue_bills_count"] for d in items),
    }
    return summary, items


def payment_history(
    conn: Connection,
    customer_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    payment_method: Optional[str] = None,
):
    stmt = payment_view().order_by(payments.c.payment_date.desc(), payments.c.id.desc())
    if customer_id is not None:
        stmt = stmt.where(payments.c.customer_id == customer_id)
    if start_date is not None:
        stmt = stmt.where(payments.c.payment_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(payments.c.payment_date <= end_date)
    if payment_method is not None:
        stmt = stmt.where(payments.c.payment_method == payment_method)

    items = [dict(row) for row in conn.execute(stmt).mappings().all()]

    summary = {
        "total_payments": len(items),
        "total_amount": sum(
            (p["payment_amount"] for p in items if p["payment_status"] == "Completed"), ZERO
        ),
        "payment_methods": sorted({p["payment_method"] for p in items}),
    }
    return summary, items


def monthly_revenue(
    conn: Connection,
    year: Optional[int] = None,
    month: Optional[int] = None,
    utility_type: Optional[str] = None,
):
    _validate_utility(utility_type)
    if month is not None and not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")

    bill_year = extract("year", bills.c.bill_date)
    bill_month = extract("month", bills.c.bill_date)

    stmt = (
        select(
            bill_year.label("year"),
            bill_month.label("month"),
            utility_types.c.name.label("utility_type"),
            func.count(bills.c.id).label("bill_count"),
            _money_sum(bills.c.total_amount).label("total_billed"),
            _money_sum(bills.c.amount_paid).label("total_collected"),
            _money_sum(bills.c.outstanding_balance).label("total_outstanding"),
        )
        .select_from(
            bills.join(meters, bills.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .where(bills.c.bill_status != "Cancelled")
        .group_by(bill_year, bill_month, utility_types.c.name)
        .order_by(bill_year.desc(), bill_month.desc(), utility_types.c.name)
    )
    if year is not None:
        stmt = stmt.where(bill_year == year)
    if month is not None:
        stmt = stmt.where(bill_month == month)
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)

    items = []
    for row in conn.execute(stmt).mappings().all():
        item = dict(row)
        item["collection_rate"] = percentage(row["total_collected"], row["total_billed"])
        items.append(item)

    total_billed = sum((r["total_billed"] for r in items), ZERO)
    total_collected = sum((r["total_collected"] for r in items), ZERO)
    summary = {
        "total_records": len(items),
        "total_billed": total_billed,
        "total_collected": total_collected,
        "total_outstanding": sum((r["total_outstanding"] for r in items), ZERO),
        "overall_collection_rate": percentage(total_collected, total_billed),
    }
    return summary, items


def active_connections(
    conn: Connection,
    utility_type: Optional[str] = None,
    customer_type: Optional[str] = None,
    city: Optional[str] = None,
):
    _validate_utility(utility_type)

    stmt = (
        select(
            meters.c.id.label("meter_id"),
            meters.c.meter_number,
            meters.c.installation_date,
            utility_types.c.name.label("utility_type"),
            customers.c.id.label("customer_id"),
            customer_name(),
            customers.c.customer_type,
            customers.c.city,
        )
        .select_from(
            meters.join(customers, meters.c.customer_id == customers.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .where(meters.c.status == "Active", customers.c.status == "Active")
        .order_by(meters.c.installation_date.desc(), meters.c.id.desc())
    )
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)
    if customer_type is not None:
        stmt = stmt.where(customers.c.customer_type == customer_type)
    if city is not None:
        stmt = stmt.where(func.lower(customers.c.city) == func.lower(city))

    items = [dict(row) for row in conn.execute(stmt).mappings().all()]

    summary = {
        "total_connections": len(items),
        "utilities": sorted({c["utility_type"] for c in items}),
        "customer_types": sorted({c["customer_type"] for c in items}),
        "cities": sorted({c["city"] for c in items if c["city"]}),
    }
    return summary, items


def consumption_trends(
    conn: Connection,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    utility_type: Optional[str] = None,
    customer_type: Optional[str] = None,
):
    _validate_utility(utility_type)

    reading_year = extract("year", meter_readings.c.reading_date)
    reading_month = extract("month", meter_readings.c.reading_date)

    stmt = (
        select(
            reading_year.label("year"),
            reading_month.label("month"),
            utility_types.c.name.label("utility_type"),
            utility_types.c.unit_of_measurement,
            customers.c.customer_type,
            func.count(meter_readings.c.id).label("total_readings"),
            _money_sum(meter_readings.c.consumption).label("total_consumption"),
            func.min(meter_readings.c.consumption).label("min_consumption"),
            func.max(meter_readings.c.consumption).label("max_consumption"),
        )
        .select_from(
            meter_readings.join(meters, meter_readings.c.meter_id == meters.c.id)
            .join(customers, meters.c.customer_id == customers.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .where(meter_readings.c.reading_type == "Actual")
        .group_by(
            reading_year,
            reading_month,
            utility_types.c.name,
            utility_types.c.unit_of_measurement,
            customers.c.customer_type,
        )
        .order_by(reading_year.desc(), reading_month.desc(), utility_types.c.name, customers.c.customer_type)
    )
    if start_date is not None:
        stmt = stmt.where(meter_readings.c.reading_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(meter_readings.c.reading_date <= end_date)
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)
    if customer_type is not None:
        stmt = stmt.where(customers.c.customer_type == customer_type)

    items = []
    for row in conn.execute(stmt).mappings().all():
        item = dict(row)
        item["avg_consumption"] = average(row["total_consumption"], row["total_readings"])
        items.append(item)

    total_consumption = sum((t["total_consumption"] for t in items), ZERO)
    total_readings = sum(t["total_readings"] for t in items)
    summary = {
        "total_periods": len(items),
        "total_consumption": total_consumption,
        "total_readings": total_readings,
        "overall_avg_consumption": average(total_consumption, total_readings),
    }
    return summary, items


def collection_efficiency(
    conn: Connection,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    utility_type: Optional[str] = None,
):
    """
    Collected / billed per billing month.
    """
    _validate_utility(utility_type)

    bill_year = extract("year", bills.c.bill_date)
    bill_month = extract("month", bills.c.bill_date)

    stmt = (
        select(
            bill_year.label("year"),
            bill_month.label("month"),
            func.count(bills.c.id).label("total_bills"),
            _money_sum(bills.c.total_amount).label("total_billed"),
            _money_sum(bills.c.amount_paid).label("total_collected"),
            _money_sum(bills.c.outstanding_balance).label("total_outstanding"),
            _count_where(bills.c.bill_status == "Paid").label("bills_paid"),
            _count_where(bills.c.bill_status == "Overdue").label("bills_overdue"),
            _count_where(bills.c.bill_status.in_(("Unpaid", "Partially Paid"))).label("bills_pending"),
        )
        .select_from(
            bills.join(meters, bills.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .where(bills.c.bill_status != "Cancelled")
        .group_by(bill_year, bill_month)
        .order_by(bill_year.desc(), bill_month.desc())
    )
    if start_date is not None:
        stmt = stmt.where(bills.c.bill_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(bills.c.bill_date <= end_date)
    if utility_type is not None:
        stmt = stmt.where(utility_types.c.name == utility_type)

    items = []
    for row in conn.execute(stmt).mappings().all():
        item = dict(row)
        item["period"] = f"{int(row['year']):04d}-{int(row['month']):02d}"
        item["collection_rate"] = percentage(row["total_collected"], row["total_billed"])
        items.append(item)

    overall_billed = sum((e["total_billed"] for e in items), ZERO)
    overall_collected = sum((e["total_collected"] for e in items), ZERO)
    summary = {
        "total_periods": len(items),
        "overall_billed": overall_billed,
        "overall_collected": overall_collected,
        "overall_outstanding": sum((e["total_outstanding"] for e in items), ZERO),
        "overall_rate": percentage(overall_collected, overall_billed),
    }
    return summary, items


def reading_stats(conn: Connection):
    stmt = (
        select(
            utility_types.c.name.label("utility_type"),
            func.count(meter_readings.c.id).label("total_readings"),
            _count_where(meter_readings.c.reading_type == "Actual").label("actual_readings"),
            _count_where(meter_readings.c.reading_type == "Estimated").label("estimated_readings"),
            _count_where(meter_readings.c.reading_type == "Customer-Submitted").label("customer_submitted_readings"),
            _money_sum(meter_readings.c.consumption).label("total_consumption"),
            _count_where(meter_readings.c.is_processed.is_(False)).label("unprocessed_readings"),
        )
        .select_from(
            meter_readings.join(meters, meter_readings.c.meter_id == meters.c.id)
            .join(utility_types, meters.c.utility_type_id == utility_types.c.id)
        )
        .group_by(utility_types.c.name)
        .order_by(func.count(meter_readings.c.id).desc(), utility_types.c.name)
    )

    items = []
    for row in conn.execute(stmt).mappings().all():
        item = dict(row)
        item["avg_consumption"] = average(row["total_consumption"], row["total_readings"])
        items.append(item)

    summary = {
        "total_utilities": len(items),
        "overall_readings": sum(s["total_readings"] for s in items),
        "overall_consumption": sum((s["total_consumption"] for s in items), ZERO),
        "overall_unprocessed": sum(s["unprocessed_readings"] for s in items),
    }
    return summary, items
