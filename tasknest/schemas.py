import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def parse_day(value: str) -> dt.date:
    """Accept ``YYYY-MM-DD`` or a full ISO timestamp and keep only the day."""
    return dt.date.fromisoformat(value.strip()[:10])


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")
    profile_photo: Optional[str] = Field(default=None, alias="profilePhoto")
    agree_to_terms: bool = Field(default=False, alias="agreeToTerms")


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    token: str


class MessageResponse(BaseModel):
    message: str


class ProfileResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    name: str
    email: str
    phone: Optional[str] = None
    profile_photo: Optional[str] = Field(default=None, serialization_alias="profilePhoto")
    masked_password: str = Field(serialization_alias="maskedPassword")
    created_at: str = Field(serialization_alias="createdAt")


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    phone: Optional[str] = None
    profile_photo: Optional[str] = Field(default=None, alias="profilePhoto")
    password: Optional[str] = None


class PhotoUploadResponse(BaseModel):
    size: int
    compressed: bool
    original_size: Optional[int] = Field(default=None, serialization_alias="originalSize")
    budget_met: bool = Field(serialization_alias="budgetMet")
    size_label: str = Field(serialization_alias="sizeLabel")
    profile_photo: str = Field(serialization_alias="profilePhoto")


class TodoWrite(BaseModel):
    title: Optional[str] = None
    due_date: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def _normalize_due_date(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return parse_day(value).isoformat()


class Todo(BaseModel):
    id: int
    title: str
    completed: bool
    due_date: Optional[str] = None
    created_at: str


class Counts(BaseModel):
    total: int
    completed: int
    pending: int


class TodoStats(BaseModel):
    total: Counts
    today: Counts
    week: Counts
    month: Counts
    overdue: int
    upcoming: int
