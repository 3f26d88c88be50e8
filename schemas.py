"""
Request and identity schemas for the Farm Ledger API.

Stored documents live in MongoDB collections named by the lowercase model:
- administrator
- farmer (payments embedded, oldest first)
- work

Request bodies use the camelCase keys of the public API; Python code reads
the snake_case attribute names.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    ADMIN = "admin"
    FARMER = "farmer"


class Identity(BaseModel):
    id: str
    role: Role


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Auth

class AdminLogin(_Request):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class FarmerLogin(_Request):
    phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ForgotPassword(_Request):
    phone: str = Field(..., min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=1)
    admin_password: str = Field(..., alias="adminPassword", min_length=1)


class ChangePassword(_Request):
    old_password: str = Field(..., alias="oldPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=1)


# Farmers

class FarmerRegister(_Request):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1, description="Unique login phone number")
    password: str = Field(..., min_length=1)


class FarmerCreate(FarmerRegister):
    profile_image: Optional[str] = Field(None, alias="profileImage", description="Reference to an uploaded image")


# Work

class WorkCreate(_Request):
    farmer_id: str = Field(..., alias="farmerId")
    work_type: str = Field(..., alias="workType")
    minutes: Optional[int] = None
    time_str: Optional[str] = Field(None, alias="timeStr", description='Raw minutes or "hours.minutes", e.g. "2.30"')
    rate_per_60: float = Field(..., alias="ratePer60", gt=0, description="Rate per 60 minutes of work")
    notes: Optional[str] = None


class WorkUpdate(_Request):
    work_type: Optional[str] = Field(None, alias="workType")
    minutes: Optional[int] = None
    time_str: Optional[str] = Field(None, alias="timeStr")
    rate_per_60: Optional[float] = Field(None, alias="ratePer60", gt=0)
    notes: Optional[str] = None


# Payments

class PaymentCreate(_Request):
    amount: float = Field(..., gt=0)
    work_id: Optional[str] = Field(None, alias="workId")
