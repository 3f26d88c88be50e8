import csv
import io
from datetime import datetime
from typing import Any, Dict, List

import pandas as pd
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from money import to_money

WORK_COLUMNS = [
    "work_id",
    "farmer_name",
    "farmer_phone",
    "work_type",
    "minutes",
    "rate_per_60",
    "total_amount",
    "amount_paid",
    "balance",
    "created_at",
]


def _fmt_date(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def work_rows(works: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten joined work records (see ``ledger.list_work``) into export rows."""
    rows = []
    for w in works:
        farmer = w.get("farmer") or {}
        rows.append({
            "work_id": str(w.get("_id")),
            "farmer_name": farmer.get("name"),
            "farmer_phone": farmer.get("phone"),
            "work_type": w.get("work_type"),
            "minutes": w.get("minutes"),
            "rate_per_60": w.get("rate_per_60"),
            "total_amount": w.get("total_amount"),
            "amount_paid": w.get("amount_paid"),
            "balance": w.get("balance"),
            "created_at": _fmt_date(w.get("created_at")),
        })
    return rows


def work_csv(rows: List[Dict[str, Any]]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=WORK_COLUMNS)
    writer.writeheader()
    for r in rows:
        writer.writerow(r)
    return output.getvalue()


def work_xlsx(rows: List[Dict[str, Any]]) -> bytes:
    df = pd.DataFrame(rows, columns=WORK_COLUMNS)
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name="Work")
    return buf.getvalue()


def farmer_statement_pdf(farmer: Dict[str, Any], works: List[Dict[str, Any]], balance: Dict[str, Any]) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    width, height = letter
    y = height - 50

    def line(text: str, step: int = 18):
        nonlocal y
        c.drawString(50, y, text)
        y -= step
        if y < 50:
            c.showPage()
            c.setFont("Helvetica", 11)
            y = height - 50

    c.setFont("Helvetica-Bold", 14)
    line(f"Statement: {farmer.get('name')} ({farmer.get('phone')})", 30)
    c.setFont("Helvetica", 11)
    line(f"Total work: {to_money(balance['total_work'])}")
    line(f"Total paid: {to_money(balance['total_paid'])}")
    line(f"Outstanding: {to_money(balance['outstanding'])}", 30)

    line("Work")
    for w in works:
        line(
            f"{_fmt_date(w.get('created_at'))} | {w.get('work_type')} | {w.get('minutes')} min"
            f" @ {w.get('rate_per_60')} = {to_money(w.get('total_amount'))} | paid {to_money(w.get('amount_paid'))}"
        )
    y -= 12
    line("Payments")
    for p in farmer.get("payments") or []:
        attributed = f" | work {p['work_id']}" if p.get("work_id") else ""
        line(f"{_fmt_date(p.get('date'))} | {to_money(p.get('amount'))}{attributed}")

    c.save()
    return buf.getvalue()
