# scripts/load_tariffs.py

import argparse
import csv
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from utilitrack.db.engine import build_engine, run_in_transaction
from utilitrack.db.schema import create_schema
from utilitrack.errors import UtiliTrackError
from utilitrack.models.common import CUSTOMER_TYPES, UTILITY_TYPES
from utilitrack.services.tariffs import create_tariff

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

FILE_PATH = "data/tariffs.csv"

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y")


# ---- Helpers ----

def parse_rate(value: str) -> Decimal:
    value = (value or "").strip().replace(",", "")
    if value == "":
        return Decimal("0")
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"not a number: {value!r}")
    if amount < 0:
        raise ValueError(f"negative amount: {value!r}")
    return amount


def parse_date(value: str):
    value = (value or "").strip()
    if not value:
        return None
    value = value.split()[0]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognised date: {value!r}")


def parse_choice(value: str, choices, field: str, required: bool = True):
    value = (value or "").strip()
    if not value:
        if required:
            raise ValueError(f"{field} is required")
        return None
    for choice in choices:
        if choice.lower() == value.lower():
            return choice
    raise ValueError(f"unknown {field} {value!r}")


def parse_tariff_csv(file_path: str = FILE_PATH):
    """
    Read tariff rows from a CSV with the columns TariffName, UtilityType,
    CustomerType, RatePerUnit, FixedCharge, EffectiveFrom, EffectiveTo.

    Returns (tariffs, stats); rows that fail to parse are counted and the
    first few kept in stats["error_examples"].
    """
    tariff_rows = []

    n_rows = 0
    n_errors = 0
    error_examples = []

    with open(file_path, newline="") as f:
        reader = csv.DictReader(f)

        for row in reader:
            n_rows += 1

            try:
                name = (row["TariffName"] or "").strip()
                if not name:
                    raise ValueError("TariffName is required")

                effective_from = parse_date(row["EffectiveFrom"])
                if effective_from is None:
                    raise ValueError("EffectiveFrom is required")

                tariff_rows.append(
                    {
                        "tariff_name": name,
                        "utility_type": parse_choice(row["UtilityType"], UTILITY_TYPES, "UtilityType"),
                        "customer_type": parse_choice(
                            row.get("CustomerType"), CUSTOMER_TYPES, "CustomerType", required=False
                        ),
                        "rate_per_unit": parse_rate(row["RatePerUnit"]),
                        "fixed_charge": parse_rate(row.get("FixedCharge")),
                        "effective_from": effective_from,
                        "effective_to": parse_date(row.get("EffectiveTo")),
                    }
                )

            except (KeyError, ValueError) as e:
                n_errors += 1
                if len(error_examples) < 5:
                    error_examples.append(
                        {
                            "row_number": n_rows,
                            "row": dict(row),
                            "error": repr(e),
                        }
                    )

    stats = {
        "n_rows": n_rows,
        "n_tariffs": len(tariff_rows),
        "n_errors": n_errors,
        "error_examples": error_examples,
    }
    return tariff_rows, stats


def load_into_db(engine, tariff_rows):
    """
    Insert each tariff in its own transaction so one rejected row (for
    example an overlapping period) does not undo the others.
    """
    n_loaded = 0
    rejected = []

    for tariff in tariff_rows:
        try:
            run_in_transaction(
                engine,
                lambda conn: create_tariff(conn, **tariff),
                f"loading tariff {tariff['tariff_name']!r}",
            )
            n_loaded += 1
        except UtiliTrackError as e:
            rejected.append((tariff["tariff_name"], e.message))

    return n_loaded, rejected


def main(argv=None):
    parser = argparse.ArgumentParser(description="Load tariffs from a CSV file")
    parser.add_argument("file", nargs="?", default=FILE_PATH)
    args = parser.parse_args(argv)

    engine = build_engine()
    create_schema(engine)

    tariff_rows, stats = parse_tariff_csv(args.file)
    n_loaded, rejected = load_into_db(engine, tariff_rows)

    logger.info("Total CSV rows read:   %s", stats["n_rows"])
    logger.info("Tariffs parsed:        %s", stats["n_tariffs"])
    logger.info("Tariffs loaded:        %s", n_loaded)
    logger.info("Tariffs rejected:      %s", len(rejected))
    logger.info("Rows with errors:      %s", stats["n_errors"])

    for name, reason in rejected:
        logger.warning("Rejected tariff %r: %s", name, reason)

    if stats["error_examples"]:
        logger.warning("Example errors:")
        for ex in stats["error_examples"]:
            logger.warning("Row %s: %s", ex["row_number"], ex["error"])


if __name__ == "__main__":
    main()
