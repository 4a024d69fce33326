"""
Movement reports

Two exports, both plain files the UI offers for download:
1. A period report: one CSV row per movement, then the period totals
2. A slip for a single movement, as plain text

Amounts in the CSV are bare signed decimals so spreadsheets can sum them;
the slip uses display formatting.
"""

import csv
import re
import unicodedata
from datetime import datetime
from io import StringIO
from typing import Optional

from daviplata.formatting import format_currency
from daviplata.models.movement import Movement, MovementKind, MovementReport, utc_now

REPORT_COLUMNS = [
    "date",
    "kind",
    "reason",
    "amount",
    "verification",
    "recorded_by",
    "receipt_url",
    "id",
]

KIND_NAMES = {
    MovementKind.INCOME: "Income",
    MovementKind.EXPENSE: "Expense",
}


def report_rows(report: MovementReport) -> list[dict[str, str]]:
    """One row per movement; income positive, expenses negative."""
    return [
        {
            "date": movement.occurred_at.strftime("%Y-%m-%d %H:%M"),
            "kind": KIND_NAMES[movement.kind],
            "reason": movement.reason,
            "amount": str(movement.signed_amount),
            "verification": "verified" if movement.is_verified else "pending",
            "recorded_by": movement.owner_name or movement.owner_email or "",
            "receipt_url": movement.receipt_url or "",
            "id": str(movement.id),
        }
        for movement in report.movements
    ]


def report_to_csv(report: MovementReport) -> bytes:
    """
    Render a report as CSV.

    The totals follow the movements after a blank row. Encoded as
    UTF-8 with a BOM so spreadsheet apps keep the accents.
    """
    buffer = StringIO()
    writer = csv.DictWriter(buffer, fieldnames=REPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(report_rows(report))

    stats = report.statistics
    writer.writerow({})
    writer.writerow({"reason": "Total income", "amount": str(stats.income_total)})
    writer.writerow({"reason": "Total expenses", "amount": str(-stats.expense_total)})
    writer.writerow({"reason": "Balance", "amount": str(stats.balance)})

    return buffer.getvalue().encode("utf-8-sig")


def report_filename(report: MovementReport) -> str:
    return f"DaviPlata_Reporte_{report.generated_at:%d-%m-%Y}.csv"


def movement_slip(movement: Movement, now: Optional[datetime] = None) -> str:
    """Plain-text slip for one movement."""
    now = now or utc_now()
    sign = "+" if movement.kind == MovementKind.INCOME else "-"
    lines = [
        "DAVIPLATA",
        f"{KIND_NAMES[movement.kind]} slip",
        "",
        f"Amount:       {sign}{format_currency(movement.amount)}",
        f"Date:         {movement.occurred_at:%d/%m/%Y %H:%M}",
        f"Reason:       {movement.reason}",
        f"Recorded by:  {movement.owner_name or movement.owner_email or '-'}",
        f"Status:       {'Verified' if movement.is_verified else 'Pending'}",
    ]
    if movement.receipt_url:
        lines.append(f"Receipt:      {movement.receipt_url}")
    lines += [
        f"ID:           {movement.id}",
        "",
        f"Generated {now:%d/%m/%Y %H:%M}",
    ]
    return "\n".join(lines) + "\n"


def slip_filename(movement: Movement) -> str:
    """`<reason>_<dd-mm-yyyy>.txt`, ASCII only."""
    stripped = "".join(
        c for c in unicodedata.normalize("NFD", movement.reason)
        if not unicodedata.combining(c)
    )
    name = re.sub(r"[^a-zA-Z0-9\s]", "", stripped)
    name = re.sub(r"\s+", "_", name.strip())[:30].strip("_")
    return f"{name or 'Comprobante'}_{movement.occurred_at:%d-%m-%Y}.txt"
