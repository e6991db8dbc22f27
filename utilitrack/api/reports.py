# utilitrack/api/reports.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Engine

from utilitrack.config import settings, today
from utilitrack.db.engine import get_engine
from utilitrack.models.common import (
    CustomerType,
    ItemResponse,
    ListResponse,
    PaymentMethod,
    ReportResponse,
    UtilityType,
    item_response,
    list_response,
    report_response,
)
from utilitrack.models.reports import (
    ActiveConnectionRow,
    ActiveConnectionsSummary,
    ActivityRow,
    CollectionEfficiencyRow,
    CollectionEfficiencySummary,
    ConsumptionTrendRow,
    ConsumptionTrendsSummary,
    DashboardSummaryOut,
    DefaulterRow,
    DefaultersSummary,
    MonthlyRevenueRow,
    MonthlyRevenueSummary,
    PaymentHistoryRow,
    PaymentHistorySummary,
    ReadingStatsRow,
    ReadingStatsSummary,
    RevenueTrendRow,
    TodayRevenueOut,
    UnpaidBillRow,
    UnpaidBillsSummary,
    UtilityShareRow,
)
from utilitrack.services import reports

router = APIRouter(prefix="/reports", tags=["reports"])

AS_OF = Query(
    default=None,
    description="ISO date (YYYY-MM-DD); defaults to today in the configured timezone",
)


# ---- Dashboard ----

@router.get("/dashboard-summary", response_model=ItemResponse[DashboardSummaryOut])
def dashboard_summary(as_of: Optional[date] = AS_OF, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(reports.dashboard_summary(conn, as_of or today()))


@router.get("/today-revenue", response_model=ItemResponse[TodayRevenueOut])
def today_revenue(as_of: Optional[date] = AS_OF, engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return item_response(reports.today_revenue(conn, as_of or today()))


@router.get("/revenue-trends", response_model=ListResponse[RevenueTrendRow])
def revenue_trends(
    months: int = Query(6, description="Number of months back, 1-24"),
    as_of: Optional[date] = AS_OF,
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        return list_response(reports.revenue_trends(conn, months, as_of or today()))


@router.get("/utility-distribution", response_model=ListResponse[UtilityShareRow])
def utility_distribution(engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        return list_response(reports.utility_distribution(conn))


@router.get("/recent-activity", response_model=ListResponse[ActivityRow])
def recent_activity(
    limit: int = Query(10, description="Number of activities, 1-50"),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        return list_response(reports.recent_activity(conn, limit))


# ---- Reports ----

@router.get("/unpaid-bills", response_model=ReportResponse[UnpaidBillRow, UnpaidBillsSummary])
def unpaid_bills(
    utility_type: Optional[UtilityType] = Query(default=None),
    days_overdue_min: Optional[int] = Query(default=None, ge=0),
    as_of: Optional[date] = AS_OF,
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.unpaid_bills(conn, as_of or today(), utility_type, days_overdue_min)
    return report_response(summary, items)


@router.get("/monthly-revenue", response_model=ReportResponse[MonthlyRevenueRow, MonthlyRevenueSummary])
def monthly_revenue(
    year: Optional[int] = Query(default=None, ge=2000, le=2100),
    month: Optional[int] = Query(default=None),
    utility_type: Optional[UtilityType] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.monthly_revenue(conn, year, month, utility_type)
    return report_response(summary, items)


@router.get(
    "/active-connections",
    response_model=ReportResponse[ActiveConnectionRow, ActiveConnectionsSummary],
)
def active_connections(
    utility_type: Optional[UtilityType] = Query(default=None),
    customer_type: Optional[CustomerType] = Query(default=None),
    city: Optional[str] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.active_connections(conn, utility_type, customer_type, city)
    return report_response(summary, items)


@router.get("/defaulters", response_model=ReportResponse[DefaulterRow, DefaultersSummary])
def defaulters(
    days_overdue: Optional[int] = Query(default=None, description="Minimum days past due"),
    as_of: Optional[date] = AS_OF,
    engine: Engine = Depends(get_engine),
):
    if days_overdue is None:
        days_overdue = settings.DEFAULTER_DAYS_OVERDUE

    with engine.connect() as conn:
        summary, items = reports.defaulters(conn, as_of or today(), days_overdue)
    return report_response(summary, items)


@router.get("/payment-history", response_model=ReportResponse[PaymentHistoryRow, PaymentHistorySummary])
def payment_history(
    customer_id: Optional[int] = Query(default=None),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    payment_method: Optional[PaymentMethod] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.payment_history(conn, customer_id, start_date, end_date, payment_method)
    return report_response(summary, items)


@router.get(
    "/consumption-trends",
    response_model=ReportResponse[ConsumptionTrendRow, ConsumptionTrendsSummary],
)
def consumption_trends(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    utility_type: Optional[UtilityType] = Query(default=None),
    customer_type: Optional[CustomerType] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.consumption_trends(conn, start_date, end_date, utility_type, customer_type)
    return report_response(summary, items)


@router.get(
    "/collection-efficiency",
    response_model=ReportResponse[CollectionEfficiencyRow, CollectionEfficiencySummary],
)
def collection_efficiency(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    utility_type: Optional[UtilityType] = Query(default=None),
    engine: Engine = Depends(get_engine),
):
    with engine.connect() as conn:
        summary, items = reports.collection_efficiency(conn, start_date, end_date, utility_type)
    return report_response(summary, items)


@router.get("/reading-stats", response_model=ReportResponse[ReadingStatsRow, ReadingStatsSummary])
def reading_stats(engine: Engine = Depends(get_engine)):
    with engine.connect() as conn:
        summary, items = reports.reading_stats(conn)
    return report_response(summary, items)
