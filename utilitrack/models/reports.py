# utilitrack/models/reports.py

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from utilitrack.models.bills import BillOut
from utilitrack.models.payments import PaymentOut


class DashboardSummaryOut(BaseModel):
    as_of: date
    total_customers: int
    active_customers: int
    total_meters: int
    active_meters: int
    faulty_meters: int
    bills_this_month: int
    billed_this_month: Decimal
    payments_this_month: int
    collected_this_month: Decimal
    unpaid_bills: int
    total_outstanding: Decimal
    unprocessed_readings: int
    open_complaints: int
    in_progress_complaints: int


class TodayRevenueOut(BaseModel):
    as_of: date
    today_revenue: Decimal
    yesterday_revenue: Decimal
    payment_count: int
    change_percent: Decimal
    trend: str


class RevenueTrendRow(BaseModel):
    period: str
    year: int
    month: int
    utility_type: str
    bill_count: int
    total_billed: Decimal
    total_collected: Decimal


class UtilityShareRow(BaseModel):
    utility_type: str
    connection_count: int
    percentage: Decimal


class ActivityRow(BaseModel):
    activity_type: str
    reference: str
    description: str
    customer_name: str
    amount: Optional[Decimal] = None
    activity_date: Optional[datetime] = None


class UnpaidBillRow(BillOut):
    days_overdue: int
    is_overdue: bool


class UnpaidBillsSummary(BaseModel):
    total_bills: int
    total_outstanding: Decimal
    overdue_count: int


class MonthlyRevenueRow(BaseModel):
    year: int
    month: int
    utility_type: str
    bill_count: int
    total_billed: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    collection_rate: Decimal


class MonthlyRevenueSummary(BaseModel):
    total_records: int
    total_billed: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    overall_collection_rate: Decimal


class ActiveConnectionRow(BaseModel):
    meter_id: int
    meter_number: str
    installation_date: date
    utility_type: str
    customer_id: int
    customer_name: str
    customer_type: str
    city: Optional[str] = None


class ActiveConnectionsSummary(BaseModel):
    total_connections: int
    utilities: List[str]
    customer_types: List[str]
    cities: List[str]


class DefaulterRow(BaseModel):
    customer_id: int
    customer_name: str
    customer_type: str
    phone: Optional[str] = None
    email: Optional[str] = None
    overdue_bills_count: int
    total_outstanding: Decimal
    oldest_due_date: date
    max_days_overdue: int


class DefaultersSummary(BaseModel):
    days_overdue: int
    total_defaulters: int
    total_outstanding: Decimal
    total_overdue_bills: int


class PaymentHistorySummary(BaseModel):
    total_payments: int
    total_amount: Decimal
    payment_methods: List[str]


class ConsumptionTrendRow(BaseModel):
    year: int
    month: int
    utility_type: str
    unit_of_measurement: str
    customer_type: str
    total_readings: int
    total_consumption: Decimal
    avg_consumption: Decimal
    min_consumption: Decimal
    max_consumption: Decimal


class ConsumptionTrendsSummary(BaseModel):
    total_periods: int
    total_consumption: Decimal
    total_readings: int
    overall_avg_consumption: Decimal


class CollectionEfficiencyRow(BaseModel):
    period: str
    year: int
    month: int
    total_bills: int
    total_billed: Decimal
    total_collected: Decimal
    total_outstanding: Decimal
    collection_rate: Decimal
    bills_paid: int
    bills_overdue: int
    bills_pending: int


class CollectionEfficiencySummary(BaseModel):
    total_periods: int
    overall_billed: Decimal
    overall_collected: Decimal
    overall_outstanding: Decimal
    overall_rate: Decimal


class ReadingStatsRow(BaseModel):
    utility_type: str
    total_readings: int
    actual_readings: int
    estimated_readings: int
    customer_submitted_readings: int
    total_consumption: Decimal
    avg_consumption: Decimal
    unprocessed_readings: int


class ReadingStatsSummary(BaseModel):
    total_utilities: int
    overall_readings: int
    overall_consumption: Decimal
    overall_unprocessed: int


# Payment history rows are full payment records.
PaymentHistoryRow = PaymentOut
