"""Administrator and farmer principals: creation, secret verification and removal."""
import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from database import (
    COL_ADMINS,
    COL_FARMERS,
    COL_WORK,
    count_documents,
    create_document,
    delete_documents,
    get_documents,
    get_one,
    to_object_id,
    update_document,
)
from errors import ErrorKind, ServiceError, conflict, invalid_input, not_found
from money import sum_money, to_number
from security import hash_password, verify_password

logger = logging.getLogger("accounts")

# Never returned to callers.
SECRET_KEYS = frozenset({"password_hash"})


def _secret_projection() -> Dict[str, int]:
    # The driver may add keys to a projection in place; build a fresh one per query.
    return {key: 0 for key in SECRET_KEYS}


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise invalid_input(f"Missing field: {field}")
    return str(value).strip()


def _farmer_oid(farmer_id: Any):
    oid = to_object_id(farmer_id)
    if oid is None:
        raise not_found("Farmer not found")
    return oid


def public_farmer(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in doc.items() if k not in SECRET_KEYS}
    out.setdefault("payments", [])
    out["total_paid"] = to_number(sum_money(p.get("amount") for p in out["payments"]))
    return out


# Administrators

def create_administrator(username: str, secret: str) -> Dict[str, Any]:
    username = _require(username, "username")
    secret = _require(secret, "password")
    if get_one(COL_ADMINS, {"username": username}):
        raise conflict("Administrator already exists")
    try:
        doc = create_document(COL_ADMINS, {"username": username, "password_hash": hash_password(secret)})
    except DuplicateKeyError:
        raise conflict("Administrator already exists")
    logger.info("Administrator %s created", username)
    return {k: v for k, v in doc.items() if k not in SECRET_KEYS}


def get_administrator(admin_id: Any) -> Dict[str, Any]:
    oid = to_object_id(admin_id)
    admin = get_one(COL_ADMINS, {"_id": oid}) if oid else None
    if not admin:
        raise not_found("Admin not found")
    return admin


def find_administrator(username: str) -> Optional[Dict[str, Any]]:
    return get_one(COL_ADMINS, {"username": username})


def authenticate_administrator(username: str, secret: str) -> Optional[Dict[str, Any]]:
    """Return the administrator when ``secret`` matches, None when it does not."""
    admin = find_administrator(username)
    if not admin:
        verify_password(secret, None)
        raise not_found("Admin not found")
    return admin if verify_password(secret, admin["password_hash"]) else None


def verify_administrator(username: str, secret: str) -> bool:
    return authenticate_administrator(username, secret) is not None


def verify_any_administrator(secret: str) -> bool:
    """True if ``secret`` is the password of some administrator account."""
    admins = get_documents(COL_ADMINS, projection={"password_hash": 1})
    if not admins:
        raise not_found("Admin not found")
    return any(verify_password(secret, a["password_hash"]) for a in admins)


def change_administrator_secret(admin_id: Any, new_secret: str) -> None:
    new_secret = _require(new_secret, "newPassword")
    oid = to_object_id(admin_id)
    matched = update_document(COL_ADMINS, {"_id": oid}, {"$set": {"password_hash": hash_password(new_secret)}}) if oid else 0
    if not matched:
        raise not_found("Admin not found")
    logger.info("Administrator %s password changed", admin_id)


def ensure_default_admin(username: str, password: str) -> bool:
    """Create the default administrator when none exists. Returns True if one was created."""
    if count_documents(COL_ADMINS) > 0:
        return False
    try:
        create_administrator(username, password)
    except ServiceError as e:
        if e.kind is not ErrorKind.CONFLICT:
            raise
        return False
    logger.info("Default admin created (username: %s)", username)
    return True


# Farmers

def create_farmer(name: str, phone: str, secret: str, profile_image: Optional[str] = None) -> Dict[str, Any]:
    name = _require(name, "name")
    phone = _require(phone, "phone")
    secret = _require(secret, "password")
    if get_one(COL_FARMERS, {"phone": phone}):
        raise conflict("Farmer already exists")
    try:
        doc = create_document(COL_FARMERS, {
            "name": name,
            "phone": phone,
            "password_hash": hash_password(secret),
            "profile_image": profile_image,
            "payments": [],
        })
    except DuplicateKeyError:
        raise conflict("Farmer already exists")
    logger.info("Farmer %s created", doc["_id"])
    return public_farmer(doc)


def get_farmer(farmer_id: Any, with_secret: bool = False) -> Dict[str, Any]:
    farmer = get_one(COL_FARMERS, {"_id": _farmer_oid(farmer_id)}, None if with_secret else _secret_projection())
    if not farmer:
        raise not_found("Farmer not found")
    return farmer


def find_farmer_by_phone(phone: str) -> Optional[Dict[str, Any]]:
    return get_one(COL_FARMERS, {"phone": phone})


def list_farmers() -> List[Dict[str, Any]]:
    rows = get_documents(COL_FARMERS, projection=_secret_projection(), sort=[("created_at", -1), ("_id", -1)])
    return [public_farmer(r) for r in rows]


def authenticate_farmer(phone: str, secret: str) -> Optional[Dict[str, Any]]:
    farmer = find_farmer_by_phone(phone)
    if not farmer:
        verify_password(secret, None)
        raise not_found("Farmer not found")
    return farmer if verify_password(secret, farmer["password_hash"]) else None


def verify_farmer(phone: str, secret: str) -> bool:
    return authenticate_farmer(phone, secret) is not None


def change_farmer_secret(farmer_id: Any, new_secret: str) -> None:
    new_secret = _require(new_secret, "newPassword")
    matched = update_document(
        COL_FARMERS, {"_id": _farmer_oid(farmer_id)}, {"$set": {"password_hash": hash_password(new_secret)}}
    )
    if not matched:
        raise not_found("Farmer not found")
    logger.info("Farmer %s password changed", farmer_id)


def delete_farmer(farmer_id: Any) -> int:
    """Delete the farmer and every work record of theirs. Returns the number of works removed."""
    oid = _farmer_oid(farmer_id)
    if not delete_documents(COL_FARMERS, {"_id": oid}):
        raise not_found("Farmer not found")
    removed = delete_documents(COL_WORK, {"farmer_id": oid})
    logger.info("Farmer %s deleted with %d work records", farmer_id, removed)
    return removed

