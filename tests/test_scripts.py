"""Tests for the command line scripts."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from scripts import load_tariffs, mark_overdue
from utilitrack.services.bills import get_bill

SAMPLE_TARIFFS = Path(__file__).resolve().parent.parent / "data" / "tariffs.csv"

HEADER = "TariffName,UtilityType,CustomerType,RatePerUnit,FixedCharge,EffectiveFrom,EffectiveTo\n"


@pytest.fixture
def tariff_csv(tmp_path):
    path = tmp_path / "tariffs.csv"
    path.write_text(
        HEADER
        + "Residential Electricity 2026,Electricity,Residential,25.00,500.00,2026-01-01,\n"
        + "Old Water,water,residential,\"1,200.00\",300,01/01/2025,12/31/2025\n"
        + "Street Lights,Street Lighting,,18.00,,2026-01-01 00:00:00,\n"
        + ",Gas,,95.00,400.00,2026-01-01,\n"
        + "Steam 2026,Steam,,10.00,0,2026-01-01,\n"
        + "Cheap Gas,Gas,,-1,0,2026-01-01,\n"
        + "Gas Undated,Gas,,95.00,400.00,,\n"
    )
    return path


class TestParseTariffCsv:
    def test_rows_and_errors(self, tariff_csv) -> None:
        rows, stats = load_tariffs.parse_tariff_csv(str(tariff_csv))

        assert stats["n_rows"] == 7
        assert stats["n_tariffs"] == 3
        assert stats["n_errors"] == 4
        assert [ex["row_number"] for ex in stats["error_examples"]] == [4, 5, 6, 7]

        water = rows[1]
        assert water["utility_type"] == "Water"
        assert water["customer_type"] == "Residential"
        assert water["rate_per_unit"] == Decimal("1200.00")
        assert water["effective_from"] == date(2025, 1, 1)
        assert water["effective_to"] == date(2025, 12, 31)

        lights = rows[2]
        assert lights["customer_type"] is None
        assert lights["fixed_charge"] == Decimal("0")
        assert lights["effective_from"] == date(2026, 1, 1)

    def test_parse_helpers(self) -> None:
        assert load_tariffs.parse_rate(" 1,500.50 ") == Decimal("1500.50")
        assert load_tariffs.parse_date("") is None
        assert load_tariffs.parse_choice("GOVERNMENT", ["Government"], "CustomerType") == "Government"

        with pytest.raises(ValueError):
            load_tariffs.parse_rate("abc")
        with pytest.raises(ValueError):
            load_tariffs.parse_date("31.12.2026")
        with pytest.raises(ValueError):
            load_tariffs.parse_choice("", ["Gas"], "UtilityType")


class TestLoadIntoDb:
    def test_overlapping_rows_are_rejected(self, engine) -> None:
        rows, _ = load_tariffs.parse_tariff_csv(str(SAMPLE_TARIFFS))
        overlapping = dict(rows[0], tariff_name="Residential Electricity 2026 (duplicate)")

        n_loaded, rejected = load_tariffs.load_into_db(engine, rows + [overlapping])

        assert n_loaded == len(rows)
        assert [name for name, _ in rejected] == ["Residential Electricity 2026 (duplicate)"]


class TestMarkOverdue:
    def test_marks_bills_past_due(self, engine, bill, monkeypatch) -> None:
        monkeypatch.setattr(mark_overdue, "build_engine", lambda: engine)

        assert mark_overdue.main(["--as-of", "2026-10-19"]) == 0
        assert mark_overdue.main(["--as-of", "2026-10-20"]) == 1
        assert mark_overdue.main(["--as-of", "2026-10-21"]) == 0

        with engine.connect() as conn:
            assert get_bill(conn, bill["id"])["bill_status"] == "Overdue"
