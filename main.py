import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import exports
import ledger
from database import ensure_indexes, serialize_doc
from errors import ErrorKind, ServiceError, unauthorized
from money import to_number
from schemas import (
    AdminLogin,
    ChangePassword,
    FarmerCreate,
    FarmerLogin,
    FarmerRegister,
    ForgotPassword,
    Identity,
    PaymentCreate,
    Role,
    WorkCreate,
    WorkUpdate,
)
from security import issue_token, require_admin, require_farmer, verify_password

logger = logging.getLogger("api")
logging.basicConfig(level=logging.INFO)

DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "admin")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    if accounts.ensure_default_admin(DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_PASSWORD):
        logger.info("Default admin created; change its password")
    yield


app = FastAPI(title="Farm Work & Payment Ledger API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Error envelope ----------

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ())[1:]) or "body"
        return _error(400, f"Invalid field {field}: {first.get('msg')}")
    return _error(400, "Invalid request")


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return _error(500, "Server error")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404:
        message = "Route not found"
    return _error(exc.status_code, message)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Server error")


def _ok(**payload: Any) -> Dict[str, Any]:
    return {"success": True, **serialize_doc(payload)}


def _balance_out(balance: Dict[str, Any]) -> Dict[str, float]:
    return {k: to_number(v) for k, v in balance.items()}


def _payment_out(payment: Dict[str, Any]) -> Dict[str, Any]:
    return {"_id": payment["_id"], "amount": payment["amount"], "work_id": payment.get("work_id"), "date": payment.get("date")}


def _check_login(
    authenticate: Callable[[str, str], Optional[Dict[str, Any]]], identity: str, password: str, message: str
) -> Dict[str, Any]:
    try:
        principal = authenticate(identity, password)
    except ServiceError as e:
        if e.kind is not ErrorKind.NOT_FOUND:
            raise
        principal = None
    if principal is None:
        raise unauthorized(message)
    return principal


@app.get("/")
async def health():
    return {"success": True, "service": "farm-ledger", "time": datetime.utcnow().isoformat()}


# ---------- Auth ----------

@app.post("/auth/admin/login")
async def admin_login(req: AdminLogin):
    admin = _check_login(accounts.authenticate_administrator, req.username, req.password, "Invalid username or password")
    return _ok(token=issue_token(str(admin["_id"]), Role.ADMIN))


@app.post("/auth/farmer/login")
async def farmer_login(req: FarmerLogin):
    farmer = _check_login(accounts.authenticate_farmer, req.phone, req.password, "Invalid credentials")
    return _ok(token=issue_token(str(farmer["_id"]), Role.FARMER), farmerId=farmer["_id"], name=farmer["name"])


@app.post("/auth/farmer/forgot-password")
async def farmer_forgot_password(req: ForgotPassword):
    if not accounts.verify_any_administrator(req.admin_password):
        raise unauthorized("Invalid admin password")
    farmer = accounts.find_farmer_by_phone(req.phone)
    if not farmer:
        raise ServiceError(ErrorKind.NOT_FOUND, "Farmer not found")
    accounts.change_farmer_secret(farmer["_id"], req.new_password)
    return _ok(message="Farmer password changed successfully")


# ---------- Farmer self-service ----------

@app.post("/farmer", status_code=201)
async def register_farmer(req: FarmerRegister):
    farmer = accounts.create_farmer(req.name, req.phone, req.password)
    return _ok(message="Farmer registered successfully", farmerId=farmer["_id"])


@app.get("/farmer/dashboard")
async def farmer_dashboard(identity: Identity = Depends(require_farmer)):
    farmer = accounts.get_farmer(identity.id)
    works = ledger.list_work(farmer["_id"])
    balance = ledger.farmer_balance(farmer["_id"])
    return _ok(farmer=accounts.public_farmer(farmer), works=works, balance=_balance_out(balance))


# ---------- Admin: account ----------

@app.post("/admin/change-password")
async def admin_change_password(req: ChangePassword, identity: Identity = Depends(require_admin)):
    admin = accounts.get_administrator(identity.id)
    if not verify_password(req.old_password, admin["password_hash"]):
        raise unauthorized("Old password incorrect")
    accounts.change_administrator_secret(admin["_id"], req.new_password)
    return _ok()


# ---------- Admin: farmers ----------

@app.post("/admin/farmers")
async def create_farmer(req: FarmerCreate, _: Identity = Depends(require_admin)):
    farmer = accounts.create_farmer(req.name, req.phone, req.password, req.profile_image)
    return _ok(farmer=farmer)


@app.get("/admin/farmers")
async def list_farmers(_: Identity = Depends(require_admin)):
    return _ok(farmers=accounts.list_farmers())


@app.get("/admin/farmers/{farmer_id}/balance")
async def get_farmer_balance(farmer_id: str, _: Identity = Depends(require_admin)):
    return _ok(balance=_balance_out(ledger.farmer_balance(farmer_id)))


@app.post("/admin/farmers/{farmer_id}/reconcile")
async def reconcile_farmer(farmer_id: str, _: Identity = Depends(require_admin)):
    corrected = ledger.reconcile_farmer(farmer_id)
    return _ok(corrected=corrected, balance=_balance_out(ledger.farmer_balance(farmer_id)))


@app.delete("/admin/farmers/{farmer_id}")
async def delete_farmer(farmer_id: str, _: Identity = Depends(require_admin)):
    removed = accounts.delete_farmer(farmer_id)
    return _ok(worksRemoved=removed)


@app.get("/admin/farmers/{farmer_id}/statement.pdf")
async def farmer_statement(farmer_id: str, _: Identity = Depends(require_admin)):
    farmer = accounts.get_farmer(farmer_id)
    works = ledger.list_work(farmer["_id"])
    pdf = exports.farmer_statement_pdf(farmer, works, ledger.farmer_balance(farmer["_id"]))
    return Response(content=pdf, media_type="application/pdf", headers={"Content-Disposition": f"attachment; filename=statement-{farmer_id}.pdf"})


# ---------- Admin: work ----------

@app.post("/admin/work")
async def create_work(req: WorkCreate, _: Identity = Depends(require_admin)):
    work = ledger.create_work(req.farmer_id, req.work_type, req.minutes, req.rate_per_60, req.notes, req.time_str)
    return _ok(work=work)


@app.put("/admin/work/{work_id}")
async def update_work(work_id: str, req: WorkUpdate, _: Identity = Depends(require_admin)):
    work = ledger.update_work(work_id, req.model_dump(exclude_unset=True))
    return _ok(work=work)


@app.delete("/admin/work/{work_id}")
async def delete_work(work_id: str, _: Identity = Depends(require_admin)):
    ledger.delete_work(work_id)
    return _ok()


@app.get("/admin/work")
async def list_work(farmer_id: Optional[str] = Query(None, alias="farmerId"), _: Identity = Depends(require_admin)):
    return _ok(works=ledger.list_work(farmer_id))


# ---------- Admin: payments ----------

@app.post("/admin/payment/{farmer_id}")
async def add_payment(farmer_id: str, req: PaymentCreate, _: Identity = Depends(require_admin)):
    payment = ledger.add_payment(farmer_id, req.amount, req.work_id)
    return _ok(payment=_payment_out(payment))


@app.delete("/admin/payment/{farmer_id}/{payment_id}")
async def remove_payment(farmer_id: str, payment_id: str, _: Identity = Depends(require_admin)):
    removed = ledger.remove_payment(farmer_id, payment_id)
    return _ok(removed=removed is not None)


# ---------- Admin: exports ----------

@app.get("/admin/export/work.csv")
async def export_work_csv(farmer_id: Optional[str] = Query(None, alias="farmerId"), _: Identity = Depends(require_admin)):
    body = exports.work_csv(exports.work_rows(ledger.list_work(farmer_id)))
    return Response(content=body, media_type="text/csv", headers={"Content-Disposition": "attachment; filename=work.csv"})


@app.get("/admin/export/work.xlsx")
async def export_work_xlsx(farmer_id: Optional[str] = Query(None, alias="farmerId"), _: Identity = Depends(require_admin)):
    body = exports.work_xlsx(exports.work_rows(ledger.list_work(farmer_id)))
    return Response(content=body, media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", headers={"Content-Disposition": "attachment; filename=work.xlsx"})
