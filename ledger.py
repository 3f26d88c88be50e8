"""
Work-payment ledger.

Work records live in the ``work`` collection; payments are embedded in the
farmer document. A payment attributed to a work also bumps that work's
``amount_paid``. MongoDB gives no transaction across the two documents, so
the work-side increment and the farmer-side append are two atomic writes in
that order; the increment only matches while the work can absorb the amount,
and a payment is pulled only while it is still present. ``reconcile_farmer``
rebuilds every work's ``amount_paid`` from the farmer's payment history when
the two drift apart.

Balances are never stored; ``farmer_balance`` and ``work_balance`` recompute
them from the source collections on every call.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bson import ObjectId

from accounts import get_farmer
from database import (
    COL_FARMERS,
    COL_WORK,
    create_document,
    delete_documents,
    get_documents,
    get_one,
    to_object_id,
    update_document,
)
from errors import invalid_input, not_found
from money import MAX_AMOUNT, ZERO, sum_money, to_money, to_number

logger = logging.getLogger("ledger")

MINUTES_PER_RATE_UNIT = Decimal(60)
HALF_CENT = 0.005


# ---------- Work accounting ----------

def parse_duration(value: Any) -> int:
    """Convert a duration string to minutes.

    ``"45"`` is 45 minutes. ``"H.M"`` is hours and minutes, with the minutes
    part right-padded to two digits: ``"2.30"`` and ``"2.3"`` are both 150,
    ``"2.05"`` is 125.
    """
    s = str(value).strip() if value is not None else ""
    if not s:
        raise invalid_input("Missing duration")
    if "." in s:
        hours, _, mins = s.partition(".")
        hours = hours or "0"
        if not hours.isdigit() or (mins and not mins.isdigit()) or len(mins) > 2:
            raise invalid_input(f"Invalid duration: {value}")
        minutes = int(hours) * 60 + int(mins.ljust(2, "0"))
    else:
        if not s.isdigit():
            raise invalid_input(f"Invalid duration: {value}")
        minutes = int(s)
    if minutes <= 0:
        raise invalid_input("Duration must be greater than zero")
    return minutes


def compute_total(minutes: int, rate_per_60: Any) -> Decimal:
    """minutes / 60 * rate, rounded half-up to cents."""
    try:
        total = to_money(Decimal(minutes) / MINUTES_PER_RATE_UNIT * Decimal(str(rate_per_60)))
    except (ValueError, ArithmeticError):
        raise invalid_input("Work amount out of range")
    if total > MAX_AMOUNT:
        raise invalid_input(f"Work amount must not exceed {MAX_AMOUNT}")
    return total


def _validate_minutes(minutes: Any) -> int:
    if minutes is None:
        raise invalid_input("Missing field: minutes")
    if isinstance(minutes, float) and minutes.is_integer():
        minutes = int(minutes)
    elif isinstance(minutes, str) and minutes.strip().isdigit():
        minutes = int(minutes)
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise invalid_input("minutes must be a whole number")
    if minutes <= 0:
        raise invalid_input("minutes must be greater than zero")
    return minutes


def _validate_rate(rate_per_60: Any) -> Decimal:
    if rate_per_60 is None or isinstance(rate_per_60, bool):
        raise invalid_input("Missing field: ratePer60")
    try:
        rate = Decimal(str(rate_per_60))
    except ArithmeticError:
        raise invalid_input("ratePer60 must be a number")
    if not rate.is_finite() or rate <= 0:
        raise invalid_input("ratePer60 must be greater than zero")
    if rate > MAX_AMOUNT:
        raise invalid_input(f"ratePer60 must not exceed {MAX_AMOUNT}")
    return rate


def _resolve_minutes(minutes: Any, time_str: Optional[str]) -> int:
    if not minutes and time_str:
        return parse_duration(time_str)
    return _validate_minutes(minutes)


def _work_oid(work_id: Any) -> ObjectId:
    oid = to_object_id(work_id)
    if oid is None:
        raise not_found("Work not found")
    return oid


def get_work(work_id: Any) -> Dict[str, Any]:
    work = get_one(COL_WORK, {"_id": _work_oid(work_id)})
    if not work:
        raise not_found("Work not found")
    return work


def work_balance(work: Dict[str, Any]) -> Decimal:
    return to_money(work.get("total_amount")) - to_money(work.get("amount_paid"))


def create_work(
    farmer_id: Any,
    work_type: str,
    minutes: Any,
    rate_per_60: Any,
    notes: Optional[str] = None,
    time_str: Optional[str] = None,
) -> Dict[str, Any]:
    if not work_type or not str(work_type).strip():
        raise invalid_input("Missing field: workType")
    minutes = _resolve_minutes(minutes, time_str)
    rate = _validate_rate(rate_per_60)
    farmer = get_farmer(farmer_id)

    total = compute_total(minutes, rate)
    work = create_document(COL_WORK, {
        "farmer_id": farmer["_id"],
        "work_type": str(work_type).strip(),
        "minutes": minutes,
        "rate_per_60": to_number(rate),
        "total_amount": to_number(total),
        "notes": notes,
        "amount_paid": to_number(ZERO),
    })
    logger.info("Work %s created for farmer %s: %d min @ %s = %s", work["_id"], farmer["_id"], minutes, rate, total)
    return work


def update_work(work_id: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``fields`` onto the work and recompute its total. ``amount_paid`` is left alone."""
    work = get_work(work_id)

    work_type = fields.get("work_type")
    if work_type is None:
        work_type = work["work_type"]
    elif not str(work_type).strip():
        raise invalid_input("workType cannot be empty")

    if fields.get("minutes") is not None or fields.get("time_str"):
        minutes = _resolve_minutes(fields.get("minutes"), fields.get("time_str"))
    else:
        minutes = work["minutes"]

    rate_in = fields.get("rate_per_60")
    rate = _validate_rate(rate_in if rate_in is not None else work["rate_per_60"])
    notes = fields["notes"] if "notes" in fields and fields["notes"] is not None else work.get("notes")

    total = compute_total(minutes, rate)
    changes = {
        "work_type": str(work_type).strip(),
        "minutes": minutes,
        "rate_per_60": to_number(rate),
        "total_amount": to_number(total),
        "notes": notes,
    }
    if not update_document(COL_WORK, {"_id": work["_id"]}, {"$set": changes}):
        raise not_found("Work not found")
    if total < to_money(work.get("amount_paid")):
        logger.warning("Work %s total %s is now below amount paid %s", work["_id"], total, work.get("amount_paid"))
    logger.info("Work %s updated: %d min @ %s = %s", work["_id"], minutes, rate, total)
    return get_work(work["_id"])


def delete_work(work_id: Any) -> None:
    """Remove the work record. Payments that referenced it keep the dangling id."""
    if not delete_documents(COL_WORK, {"_id": _work_oid(work_id)}):
        raise not_found("Work not found")
    logger.info("Work %s deleted", work_id)


def list_work(farmer_id: Any = None) -> List[Dict[str, Any]]:
    """Works newest first, each joined with its farmer's name and phone."""
    filter_q: Dict[str, Any] = {}
    if farmer_id:
        oid = to_object_id(farmer_id)
        if oid is None:
            return []
        filter_q["farmer_id"] = oid
    works = get_documents(COL_WORK, filter_q, sort=[("created_at", -1), ("_id", -1)])

    farmer_ids = list({w["farmer_id"] for w in works})
    farmers = {
        f["_id"]: {"_id": f["_id"], "name": f.get("name"), "phone": f.get("phone")}
        for f in get_documents(COL_FARMERS, {"_id": {"$in": farmer_ids}}, projection={"name": 1, "phone": 1})
    } if farmer_ids else {}

    for w in works:
        w["farmer"] = farmers.get(w["farmer_id"])
        w["balance"] = to_number(work_balance(w))
    return works


# ---------- Payments ----------

def total_paid(farmer_id: Any) -> Decimal:
    farmer = get_farmer(farmer_id)
    return sum_money(p.get("amount") for p in farmer.get("payments") or [])


def add_payment(farmer_id: Any, amount: Any, work_id: Any = None) -> Dict[str, Any]:
    """Append a payment to the farmer and, if attributed, to the work's paid amount.

    Input is validated before the first write. The work-side increment is
    conditional on the work still having room for the amount, so concurrent
    payments cannot overpay it; only then is the payment appended to the farmer.
    """
    amount = _validate_amount(amount)
    farmer = get_farmer(farmer_id)
    work = None
    if work_id:
        work = get_work(work_id)
        if work["farmer_id"] != farmer["_id"]:
            raise not_found("Work not found for this farmer")
        if amount > work_balance(work):
            raise invalid_input(f"Payment exceeds outstanding work balance of {work_balance(work)}")

    payment = {
        "_id": ObjectId(),
        "amount": to_number(amount),
        "work_id": work["_id"] if work else None,
        "date": datetime.utcnow(),
    }

    if work is not None:
        _apply_to_work(work, amount)

    if not update_document(COL_FARMERS, {"_id": farmer["_id"]}, {"$push": {"payments": payment}}):
        if work is not None:
            update_document(COL_WORK, {"_id": work["_id"]}, {"$inc": {"amount_paid": -to_number(amount)}})
        raise not_found("Farmer not found")

    logger.info("Payment %s of %s added for farmer %s (work %s)", payment["_id"], amount, farmer["_id"], payment["work_id"])
    return payment


def _validate_amount(amount: Any) -> Decimal:
    try:
        amount = to_money(amount)
    except ValueError:
        raise invalid_input("amount must be a number")
    if amount <= 0:
        raise invalid_input("amount must be greater than zero")
    if amount > MAX_AMOUNT:
        raise invalid_input(f"amount must not exceed {MAX_AMOUNT}")
    return amount


def _apply_to_work(work: Dict[str, Any], amount: Decimal) -> None:
    """Increment ``amount_paid`` only if the stored total is unchanged and the amount still fits."""
    ceiling = to_money(work["total_amount"]) - amount
    matched = update_document(
        COL_WORK,
        {
            "_id": work["_id"],
            "total_amount": work["total_amount"],
            # Stored paid amounts are floats; allow half a cent of representation error.
            "amount_paid": {"$lte": to_number(ceiling) + HALF_CENT},
        },
        {"$inc": {"amount_paid": to_number(amount)}},
    )
    if matched:
        return
    current = get_work(work["_id"])
    raise invalid_input(f"Payment exceeds outstanding work balance of {work_balance(current)}")


def remove_payment(farmer_id: Any, payment_id: Any) -> Optional[Dict[str, Any]]:
    """Remove a payment by id and reverse its work-side increment.

    Unknown or already removed payment ids are a no-op and return None. The
    pull only matches while the entry is still present, so the work side is
    reversed at most once per payment.
    """
    farmer = get_farmer(farmer_id)
    pid = to_object_id(payment_id)
    payment = next((p for p in farmer.get("payments") or [] if p.get("_id") == pid), None) if pid else None
    if payment is None:
        return None

    pulled = update_document(
        COL_FARMERS, {"_id": farmer["_id"], "payments._id": pid}, {"$pull": {"payments": {"_id": pid}}}
    )
    if not pulled:
        logger.info("Payment %s already removed from farmer %s", pid, farmer["_id"])
        return None

    work_oid = payment.get("work_id")
    if work_oid is not None:
        reversed_ = update_document(COL_WORK, {"_id": work_oid}, {"$inc": {"amount_paid": -to_number(to_money(payment["amount"]))}})
        if not reversed_:
            logger.info("Payment %s referenced deleted work %s; nothing to reverse", pid, work_oid)

    logger.info("Payment %s of %s removed from farmer %s", pid, payment.get("amount"), farmer["_id"])
    return payment


def reconcile_farmer(farmer_id: Any) -> List[Dict[str, Any]]:
    """Recompute ``amount_paid`` of the farmer's works from their attributed payments.

    Returns the works whose stored value was corrected.
    """
    farmer = get_farmer(farmer_id)
    paid_by_work: Dict[ObjectId, Decimal] = {}
    for p in farmer.get("payments") or []:
        if p.get("work_id") is not None:
            paid_by_work[p["work_id"]] = paid_by_work.get(p["work_id"], ZERO) + to_money(p.get("amount"))

    corrected = []
    for work in get_documents(COL_WORK, {"farmer_id": farmer["_id"]}):
        expected = paid_by_work.get(work["_id"], ZERO)
        if to_money(work.get("amount_paid")) != expected:
            update_document(COL_WORK, {"_id": work["_id"]}, {"$set": {"amount_paid": to_number(expected)}})
            logger.warning("Work %s amount_paid corrected from %s to %s", work["_id"], work.get("amount_paid"), expected)
            work["amount_paid"] = to_number(expected)
            corrected.append(work)
    return corrected


# ---------- Balance projection ----------

def farmer_balance(farmer_id: Any) -> Dict[str, Decimal]:
    farmer = get_farmer(farmer_id)
    works = get_documents(COL_WORK, {"farmer_id": farmer["_id"]}, projection={"total_amount": 1})
    total_work = sum_money(w.get("total_amount") for w in works)
    paid = sum_money(p.get("amount") for p in farmer.get("payments") or [])
    return {"total_work": total_work, "total_paid": paid, "outstanding": total_work - paid}
