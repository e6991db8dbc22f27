# utilitrack/db/numbering.py

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.schema import Column


def next_document_number(conn: Connection, column: Column, prefix: str, width: int) -> str:
    """
    Allocate the next `<prefix>-<seq>` number for a period prefix such as
    "BILL-202610".

    Sequences are zero-padded, so the highest number sorts last. Must run in
    the transaction that inserts the row; the column's unique constraint
    rejects a number handed out twice.
    """
    stmt = (
        select(column)
        .where(column.like(f"{prefix}-%"))
        .order_by(column.desc())
        .limit(1)
    )
    last = conn.execute(stmt).scalar_one_or_none()

    sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{prefix}-{sequence:0{width}d}"


def bill_number(conn: Connection, column: Column, bill_date) -> str:
    return next_document_number(conn, column, f"BILL-{bill_date:%Y%m}", 5)


def payment_number(conn: Connection, column: Column, payment_date) -> str:
    return next_document_number(conn, column, f"PAY-{payment_date:%Y%m}", 5)


def complaint_number(conn: Connection, column: Column, complaint_date) -> str:
    return next_document_number(conn, column, f"COMP-{complaint_date:%Y}", 4)


def connection_number(conn: Connection, column: Column, connection_date) -> str:
    return next_document_number(conn, column, f"CONN-{connection_date:%Y}", 5)
