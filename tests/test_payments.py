"""Tests for applying, refunding and verifying payments."""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from utilitrack.db.schema import payments
from utilitrack.errors import ConflictError, NotFoundError, ValidationError
from utilitrack.services.bills import cancel_bill, get_bill
from utilitrack.services.payments import (
    apply_payment,
    refund_payment,
    status_after_payment,
    verify_payment,
)

PAID_ON = date(2026, 10, 10)


def current_bill(engine, bill_id):
    with engine.connect() as conn:
        return get_bill(conn, bill_id)


def payment_count(engine) -> int:
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(payments)).scalar_one()


class TestStatusAfterPayment:
    @pytest.mark.parametrize(
        "outstanding, expected",
        [
            (Decimal("0.00"), "Paid"),
            (Decimal("-0.01"), "Paid"),
            (Decimal("0.01"), "Partially Paid"),
            (Decimal("6749.99"), "Partially Paid"),
            (Decimal("6750.00"), "Overdue"),
        ],
    )
    def test_boundaries(self, outstanding, expected) -> None:
        assert status_after_payment(Decimal("6750.00"), outstanding, "Overdue") == expected


class TestApplyPayment:
    def test_full_payment_marks_bill_paid(self, engine, bill) -> None:
        payment = apply_payment(engine, bill["id"], Decimal("6750.00"), "Cash", payment_date=PAID_ON)

        assert payment["payment_status"] == "Completed"
        assert payment["outstanding_balance"] == Decimal("0")
        assert payment["bill_status"] == "Paid"
        assert re.fullmatch(r"PAY-202610-\d{5}", payment["payment_number"])

    def test_partial_then_remaining(self, engine, bill) -> None:
        apply_payment(engine, bill["id"], Decimal("2000.00"), "Cash", payment_date=PAID_ON)

        after_first = current_bill(engine, bill["id"])
        assert after_first["bill_status"] == "Partially Paid"
        assert after_first["outstanding_balance"] == Decimal("4750.00")
        assert after_first["amount_paid"] == Decimal("2000.00")

        apply_payment(engine, bill["id"], "4750.00", "Card", reference="CARD-991", payment_date=PAID_ON)

        settled = current_bill(engine, bill["id"])
        assert settled["bill_status"] == "Paid"
        assert settled["outstanding_balance"] == Decimal("0")
        assert settled["amount_paid"] == settled["total_amount"]

    def test_payment_numbers_increase(self, engine, bill) -> None:
        first = apply_payment(engine, bill["id"], Decimal("10.00"), "Cash", payment_date=PAID_ON)
        second = apply_payment(engine, bill["id"], Decimal("10.00"), "Cash", payment_date=PAID_ON)

        assert first["payment_number"] == "PAY-202610-00001"
        assert second["payment_number"] == "PAY-202610-00002"

    def test_overpayment_is_rejected(self, engine, bill) -> None:
        with pytest.raises(ValidationError):
            apply_payment(engine, bill["id"], Decimal("6750.01"), "Cash", payment_date=PAID_ON)

        unchanged = current_bill(engine, bill["id"])
        assert unchanged["outstanding_balance"] == Decimal("6750.00")
        assert unchanged["bill_status"] == "Unpaid"
        assert payment_count(engine) == 0

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    def test_non_positive_amount(self, engine, bill, amount) -> None:
        with pytest.raises(ValidationError):
            apply_payment(engine, bill["id"], amount, "Cash")

    def test_reference_required_except_cash(self, engine, bill) -> None:
        with pytest.raises(ValidationError):
            apply_payment(engine, bill["id"], Decimal("100.00"), "Bank Transfer")
        with pytest.raises(ValidationError):
            apply_payment(engine, bill["id"], Decimal("100.00"), "Online", reference="   ")

    def test_missing_bill(self, engine) -> None:
        with pytest.raises(NotFoundError):
            apply_payment(engine, 9999, Decimal("1.00"), "Cash")

    def test_cancelled_bill(self, engine, bill) -> None:
        cancel_bill(engine, bill["id"])
        with pytest.raises(ConflictError):
            apply_payment(engine, bill["id"], Decimal("1.00"), "Cash")

    def test_outstanding_never_increases_through_payments(self, engine, bill) -> None:
        balances = [current_bill(engine, bill["id"])["outstanding_balance"]]
        for amount in ("1000.00", "0.01", "2500.00", "3249.99"):
            apply_payment(engine, bill["id"], Decimal(amount), "Cash", payment_date=PAID_ON)
            balances.append(current_bill(engine, bill["id"])["outstanding_balance"])

        assert balances == sorted(balances, reverse=True)
        assert balances[-1] == Decimal("0")

    def test_concurrent_payments_never_overdraw(self, engine, bill) -> None:
        def attempt(_):
            try:
                apply_payment(engine, bill["id"], Decimal("4000.00"), "Cash", payment_date=PAID_ON)
                return "paid"
            except (ConflictError, ValidationError):
                return "rejected"

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(attempt, range(4)))

        assert outcomes.count("paid") == 1
        assert payment_count(engine) == 1
        settled = current_bill(engine, bill["id"])
        assert settled["outstanding_balance"] == Decimal("2750.00")
        assert settled["amount_paid"] == Decimal("4000.00")


class TestRefundAndVerify:
    def test_refund_restores_balance(self, engine, bill) -> None:
        payment = apply_payment(engine, bill["id"], Decimal("6750.00"), "Cash", payment_date=PAID_ON)

        refunded = refund_payment(engine, payment["id"], "Paid twice at counter", as_of=date(2026, 10, 12))

        assert refunded["payment_status"] == "Refunded"
        assert refunded["refund_reason"] == "Paid twice at counter"
        assert refunded["outstanding_balance"] == Decimal("6750.00")
        assert refunded["bill_status"] == "Unpaid"

    def test_partial_refund_after_due_date_is_overdue(self, engine, bill) -> None:
        apply_payment(engine, bill["id"], Decimal("2000.00"), "Cash", payment_date=PAID_ON)
        second = apply_payment(engine, bill["id"], Decimal("4750.00"), "Cash", payment_date=PAID_ON)

        refunded = refund_payment(engine, second["id"], "Cheque bounced", as_of=date(2026, 11, 1))

        assert refunded["outstanding_balance"] == Decimal("4750.00")
        assert refunded["bill_status"] == "Overdue"
        assert current_bill(engine, bill["id"])["amount_paid"] == Decimal("2000.00")

    def test_refund_rules(self, engine, bill) -> None:
        payment = apply_payment(engine, bill["id"], Decimal("500.00"), "Cash", payment_date=PAID_ON)

        with pytest.raises(ValidationError):
            refund_payment(engine, payment["id"], "  ")

        refund_payment(engine, payment["id"], "Customer request", as_of=PAID_ON)
        with pytest.raises(ConflictError):
            refund_payment(engine, payment["id"], "Again", as_of=PAID_ON)
        with pytest.raises(NotFoundError):
            refund_payment(engine, 9999, "Missing")

    def test_verify(self, engine, bill) -> None:
        payment = apply_payment(engine, bill["id"], Decimal("500.00"), "Cash", payment_date=PAID_ON)

        verified = verify_payment(engine, payment["id"], "Supervisor")
        assert verified["is_verified"] is True
        assert verified["verified_by"] == "Supervisor"

        with pytest.raises(ConflictError):
            verify_payment(engine, payment["id"])

    def test_refunded_payment_cannot_be_verified(self, engine, bill) -> None:
        payment = apply_payment(engine, bill["id"], Decimal("500.00"), "Cash", payment_date=PAID_ON)
        refund_payment(engine, payment["id"], "Reversed", as_of=PAID_ON)

        with pytest.raises(ConflictError):
            verify_payment(engine, payment["id"])


class TestPaymentEndpoints:
    def test_full_payment(self, client, bill) -> None:
        response = client.post(
            "/api/payments",
            json={
                "bill_id": bill["id"],
                "payment_amount": "6750.00",
                "payment_method": "Cash",
                "payment_date": "2026-10-10",
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["bill_status"] == "Paid"
        assert Decimal(data["outstanding_balance"]) == Decimal("0")
        assert data["bill_number"] == bill["bill_number"]

    def test_partial_payment(self, client, bill) -> None:
        response = client.post(
            "/api/payments",
            json={
                "bill_id": bill["id"],
                "payment_amount": "2000.00",
                "payment_method": "Online",
                "transaction_reference": "MPESA-QX81",
                "payment_date": "2026-10-10",
            },
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["bill_status"] == "Partially Paid"
        assert Decimal(data["outstanding_balance"]) == Decimal("4750.00")

    def test_rejections(self, client, bill) -> None:
        overpay = client.post(
            "/api/payments",
            json={"bill_id": bill["id"], "payment_amount": "7000.00", "payment_method": "Cash"},
        )
        assert overpay.status_code == 400
        assert overpay.json()["success"] is False

        zero = client.post(
            "/api/payments",
            json={"bill_id": bill["id"], "payment_amount": "0", "payment_method": "Cash"},
        )
        assert zero.status_code == 400

        no_reference = client.post(
            "/api/payments",
            json={"bill_id": bill["id"], "payment_amount": "10.00", "payment_method": "Card"},
        )
        assert no_reference.status_code == 400

        bad_method = client.post(
            "/api/payments",
            json={"bill_id": bill["id"], "payment_amount": "10.00", "payment_method": "Barter"},
        )
        assert bad_method.status_code == 400

        missing_bill = client.post(
            "/api/payments",
            json={"bill_id": 9999, "payment_amount": "10.00", "payment_method": "Cash"},
        )
        assert missing_bill.status_code == 404

    def test_list_stats_verify_and_refund(self, client, bill) -> None:
        created = client.post(
            "/api/payments",
            json={
                "bill_id": bill["id"],
                "payment_amount": "1000.00",
                "payment_method": "Card",
                "transaction_reference": "CARD-1",
                "payment_date": "2026-10-10",
            },
        ).json()["data"]

        assert client.get("/api/payments", params={"method": "Card"}).json()["count"] == 1
        assert client.get("/api/payments", params={"search": "card-1"}).json()["count"] == 1
        assert client.get(f"/api/payments/bill/{bill['id']}").json()["count"] == 1
        assert client.get(f"/api/payments/customer/{bill['customer_id']}").json()["count"] == 1
        assert client.get("/api/payments/bill/9999").status_code == 404

        verified = client.put(f"/api/payments/{created['id']}/verify", json={"verified_by": "Cashier 2"})
        assert verified.status_code == 200
        assert verified.json()["data"]["is_verified"] is True

        refunded = client.put(f"/api/payments/{created['id']}/refund", json={"reason": "Card chargeback"})
        assert refunded.status_code == 200
        assert refunded.json()["data"]["payment_status"] == "Refunded"
        assert Decimal(refunded.json()["data"]["outstanding_balance"]) == Decimal("6750.00")

        stats = client.get("/api/payments/stats").json()["data"]
        assert stats["total_payments"] == 1
        assert stats["refunded_payments"] == 1
        assert Decimal(stats["total_collected"]) == Decimal("0")
        assert Decimal(stats["total_refunded"]) == Decimal("1000.00")

        missing_reason = client.put(f"/api/payments/{created['id']}/refund", json={})
        assert missing_reason.status_code == 400
