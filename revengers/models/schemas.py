"""
Pydantic models for API request/response validation.

Request models inherit SanitizedModel, which cleans the raw payload (control
characters, HTML, dangerous keys) before any field validation runs.
"""

import re
from datetime import datetime
from typing import Any, ClassVar, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from revengers.services.validation_service import sanitize_object
from revengers.utils.datetime_utils import utcnow

NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")
WHATSAPP_RE = re.compile(r"^\+?[\d\s\-()]{10,15}$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9]+$")


def _check_name(value: str, label: str = "Name") -> str:
    if not value:
        raise ValueError(f"{label} cannot be empty")
    if len(value) > 100:
        raise ValueError(f"{label} must be less than 100 characters")
    if not NAME_RE.match(value):
        raise ValueError(f"{label} can only contain letters, spaces, hyphens, and apostrophes")
    return value


def _check_jersey_number(value: int) -> int:
    if not 1 <= value <= 99:
        raise ValueError("Jersey number must be between 1 and 99")
    return value


def _check_stars(value: int) -> int:
    if not 1 <= value <= 5:
        raise ValueError("Stars rating must be between 1 and 5")
    return value


def _check_trophy_name(value: str) -> str:
    if not value:
        raise ValueError("Trophy name cannot be empty")
    if len(value) > 200:
        raise ValueError("Trophy name must be less than 200 characters")
    return value


def max_trophy_year() -> int:
    return utcnow().year + 1


def _check_year(value: int) -> int:
    upper = max_trophy_year()
    if value < 1900 or value > upper:
        raise ValueError(f"Year must be between 1900 and {upper}")
    return value


class SanitizedModel(BaseModel):
    """Base for request payloads: sanitizes the raw mapping before validation."""

    model_config = ConfigDict(populate_by_name=True)

    # Fields whose values must reach validation untouched
    raw_fields: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw = {key: data[key] for key in cls.raw_fields if key in data}
        cleaned = sanitize_object(data)
        cleaned.update(raw)
        return cleaned


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------


class PlayerCreate(SanitizedModel):
    name: str
    jersey_number: int = Field(alias="jerseyNumber")
    stars: int

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("jersey_number")
    @classmethod
    def validate_jersey_number(cls, v: int) -> int:
        return _check_jersey_number(v)

    @field_validator("stars")
    @classmethod
    def validate_stars(cls, v: int) -> int:
        return _check_stars(v)


class PlayerUpdate(SanitizedModel):
    """Partial update; at least one field must be present."""

    name: Optional[str] = None
    jersey_number: Optional[int] = Field(default=None, alias="jerseyNumber")
    stars: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_name(v)

    @field_validator("jersey_number")
    @classmethod
    def validate_jersey_number(cls, v: Optional[int]) -> Optional[int]:
        return v if v is None else _check_jersey_number(v)

    @field_validator("stars")
    @classmethod
    def validate_stars(cls, v: Optional[int]) -> Optional[int]:
        return v if v is None else _check_stars(v)

    @model_validator(mode="after")
    def require_any_field(self):
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field must be provided")
        return self


class PlayerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    jersey_number: int = Field(alias="jerseyNumber")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    stars: int
    joined_date: Optional[datetime] = Field(default=None, alias="joinedDate")


# ---------------------------------------------------------------------------
# Managers
# ---------------------------------------------------------------------------


class ManagerCreate(SanitizedModel):
    name: str
    role: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        return _check_name(v, "Role")


class ManagerUpdate(SanitizedModel):
    name: Optional[str] = None
    role: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_name(v)

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_name(v, "Role")

    @model_validator(mode="after")
    def require_any_field(self):
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field must be provided")
        return self


class ManagerResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    role: str
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    joined_date: Optional[datetime] = Field(default=None, alias="joinedDate")


# ---------------------------------------------------------------------------
# Trophies
# ---------------------------------------------------------------------------


class TrophyCreate(SanitizedModel):
    name: str
    year: int

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_trophy_name(v)

    @field_validator("year")
    @classmethod
    def validate_year(cls, v: int) -> int:
        return _check_year(v)


class TrophyUpdate(SanitizedModel):
    name: Optional[str] = None
    year: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_trophy_name(v)

    @field_validator("year")
    @classmethod
    def validate_year(cls, v: Optional[int]) -> Optional[int]:
        return v if v is None else _check_year(v)

    @model_validator(mode="after")
    def require_any_field(self):
        if not self.model_dump(exclude_none=True):
            raise ValueError("At least one field must be provided")
        return self


class TrophyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    year: int
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


# ---------------------------------------------------------------------------
# Contact
# ---------------------------------------------------------------------------


class ContactCreate(SanitizedModel):
    name: str
    email: EmailStr
    whatsapp: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_name(v)

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        if len(v) > 254:
            raise ValueError("Email must be less than 254 characters")
        return v.lower()

    @field_validator("whatsapp")
    @classmethod
    def normalize_whatsapp(cls, v: str) -> str:
        """Reduce to an optional leading + followed by 10-15 digits."""
        if not WHATSAPP_RE.match(v):
            raise ValueError("Please enter a valid WhatsApp number (10-15 digits)")
        digits = re.sub(r"\D", "", v)
        if not 10 <= len(digits) <= 15:
            raise ValueError("Please enter a valid WhatsApp number (10-15 digits)")
        return ("+" if v.startswith("+") else "") + digits


class ContactResponse(BaseModel):
    name: str
    email: str
    whatsapp: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AdminLoginRequest(SanitizedModel):
    raw_fields: ClassVar[FrozenSet[str]] = frozenset({"password"})

    username: str
    password: str = Field(min_length=1, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        if not 3 <= len(v) <= 30 or not USERNAME_RE.match(v):
            raise ValueError("Username must be 3-30 characters and contain only letters and numbers")
        return v


class AdminInfo(BaseModel):
    id: int
    username: str


class LoginResponse(BaseModel):
    message: str
    admin: AdminInfo


class MessageResponse(BaseModel):
    message: str


class CreatedResponse(BaseModel):
    id: int
    message: str


class ImageUpdatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    image_url: str = Field(alias="imageUrl")


class AuthStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    logged_in: bool = Field(alias="loggedIn")
    admin_id: Optional[int] = Field(default=None, alias="adminId")
    login_time: Optional[str] = Field(default=None, alias="loginTime")
