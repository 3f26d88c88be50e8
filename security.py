import os
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import forbidden, unauthorized
from schemas import Identity, Role

logger = logging.getLogger("security")

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ADMIN_TOKEN_EXPIRE_HOURS = int(os.getenv("ADMIN_TOKEN_EXPIRE_HOURS", "12"))
FARMER_TOKEN_EXPIRE_DAYS = int(os.getenv("FARMER_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

# Admin sessions are shorter-lived than farmer sessions.
TOKEN_TTL = {
    Role.ADMIN: timedelta(hours=ADMIN_TOKEN_EXPIRE_HOURS),
    Role.FARMER: timedelta(days=FARMER_TOKEN_EXPIRE_DAYS),
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check ``password`` against a stored hash.

    With no hash (unknown identity) a dummy verification still runs so the
    caller spends the same effort either way.
    """
    if not password_hash:
        pwd_context.dummy_verify()
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        logger.warning("Stored password hash could not be parsed")
        return False


def issue_token(principal_id: str, role: Role, ttl: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (ttl or TOKEN_TTL[role])
    to_encode: Dict[str, Any] = {"sub": str(principal_id), "role": role.value, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Identity:
    if not token:
        raise unauthorized("No token provided")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise unauthorized("Invalid or expired token")
    sub = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise unauthorized("Invalid token role")
    if not sub:
        raise unauthorized("Invalid token subject")
    return Identity(id=sub, role=role)


def authenticate(token: str, required_role: Role) -> Identity:
    identity = decode_token(token)
    if identity.role is not required_role:
        raise forbidden(f"{required_role.value.capitalize()} access only")
    return identity


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise unauthorized("No token provided")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise unauthorized("Invalid Authorization header")
    return parts[1]


def require_role(role: Role):
    def _inner(authorization: Optional[str] = Header(default=None)) -> Identity:
        return authenticate(bearer_token(authorization), role)

    return _inner


require_admin = require_role(Role.ADMIN)
require_farmer = require_role(Role.FARMER)
