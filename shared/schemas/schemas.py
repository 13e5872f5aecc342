"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Literal, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from config.settings import settings

_AMPM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?\s*([AP]M)$", re.IGNORECASE)
_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def normalize_time(value: Any) -> Any:
    """Accept "h:mm AM/PM", "HH:mm" and "HH:mm:ss"; anything else is left to pydantic."""
    if not isinstance(value, str):
        return value
    trimmed = value.strip()
    match = _AMPM_RE.match(trimmed)
    if match:
        hour = int(match.group(1))
        period = match.group(4).upper()
        if period == "PM" and hour < 12:
            hour += 12
        if period == "AM" and hour == 12:
            hour = 0
        return f"{hour:02d}:{match.group(2)}:{match.group(3) or '00'}"
    match = _HHMM_RE.match(trimmed)
    if match:
        return f"{int(match.group(1)):02d}:{match.group(2)}:{match.group(3) or '00'}"
    return trimmed


def normalize_date(value: Any) -> Any:
    """Drop the time part of ISO datetimes ("2025-03-01T00:00:00Z" → "2025-03-01")."""
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class PaginatedResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    page_size: int


# ── Auth ──────────────────────────────────────────────────────

class SignUpRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    confirm_password: str
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 ]{8,20}$")
    role: Literal["client", "provider"] = "client"
    preferred_language: Literal["ar", "fr", "en"] = "fr"

    @model_validator(mode="after")
    def passwords_match(self) -> "SignUpRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class SignInRequest(BaseSchema):
    email: EmailStr
    password: str


class RefreshRequest(BaseSchema):
    refresh_token: str


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds


class AuthResponse(BaseSchema):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: "UserResponse"


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    profile_photo_url: Optional[str]
    role: str
    preferred_language: str
    created_at: datetime


class UserUpdateRequest(BaseSchema):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9 ]{8,20}$")
    preferred_language: Optional[Literal["ar", "fr", "en"]] = None


# ── Catalog ───────────────────────────────────────────────────

class JobCategoryCreate(BaseSchema):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    service_type: Optional[Literal["onsite", "online"]] = None


class JobCategoryResponse(JobCategoryCreate):
    id: uuid.UUID


class ProviderProfileUpdate(BaseSchema):
    business_name: Optional[str] = Field(None, max_length=255)
    business_description: Optional[str] = Field(None, max_length=5000)
    location: Optional[str] = Field(None, max_length=255)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    experience_years: Optional[int] = Field(None, ge=0, le=70)
    job_category_id: Optional[uuid.UUID] = None


class ProviderProfileResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    business_name: Optional[str]
    business_description: Optional[str]
    location: Optional[str]
    hourly_rate: Optional[Decimal]
    experience_years: Optional[int]
    job_category_id: Optional[uuid.UUID]
    profile_photo_url: Optional[str]
    is_approved: bool
    rating: Decimal
    total_reviews: int


class ServiceCreateRequest(BaseSchema):
    business_name: str = Field(..., min_length=2, max_length=255)
    service_title: str = Field(..., min_length=2, max_length=255)
    description: str = Field("", max_length=5000)
    location: Optional[str] = Field(None, max_length=255)
    job_category_id: Optional[uuid.UUID] = None
    service_type: Literal["onsite", "online"] = "onsite"
    price_type: Literal["hourly", "fixed", "package"] = "hourly"
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    fixed_price: Optional[Decimal] = Field(None, ge=0)
    experience_years: Optional[int] = Field(None, ge=0, le=70)
    availability_notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def price_matches_type(self) -> "ServiceCreateRequest":
        if self.price_type == "hourly" and self.hourly_rate is None:
            raise ValueError("hourly_rate is required for hourly services")
        if self.price_type in ("fixed", "package") and self.fixed_price is None:
            raise ValueError("fixed_price is required for fixed or package services")
        return self


class ServiceUpdateRequest(BaseSchema):
    business_name: Optional[str] = Field(None, min_length=2, max_length=255)
    service_title: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    location: Optional[str] = Field(None, max_length=255)
    hourly_rate: Optional[Decimal] = Field(None, ge=0)
    fixed_price: Optional[Decimal] = Field(None, ge=0)
    availability_notes: Optional[str] = Field(None, max_length=2000)
    is_active: Optional[bool] = None


class ServiceImageResponse(BaseSchema):
    id: uuid.UUID
    service_id: uuid.UUID
    image_url: str
    is_primary: bool
    display_order: int
    alt_text: Optional[str]


class ServiceResponse(BaseSchema):
    id: uuid.UUID
    provider_id: uuid.UUID
    job_category_id: Optional[uuid.UUID]
    business_name: str
    service_title: str
    description: str
    location: Optional[str]
    service_type: str
    price_type: str
    hourly_rate: Optional[Decimal]
    fixed_price: Optional[Decimal]
    experience_years: Optional[int]
    availability_notes: Optional[str]
    is_active: bool
    created_at: datetime
    images: List[ServiceImageResponse] = []


class ProfilePictureResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    image_url: str
    is_active: bool
    file_size: Optional[int]
    mime_type: Optional[str]
    created_at: datetime


# ── Booking ───────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    provider_id: uuid.UUID
    service_id: Optional[uuid.UUID] = None
    booking_date: date
    booking_time: time
    duration_hours: Optional[Decimal] = Field(None, gt=0, le=24)
    total_price: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("booking_date", mode="before")
    @classmethod
    def parse_booking_date(cls, v: Any) -> Any:
        return normalize_date(v)

    @field_validator("booking_time", mode="before")
    @classmethod
    def parse_booking_time(cls, v: Any) -> Any:
        return normalize_time(v)

    @model_validator(mode="after")
    def slot_in_future(self) -> "BookingCreateRequest":
        tz = ZoneInfo(settings.APP_TIMEZONE)
        slot = datetime.combine(self.booking_date, self.booking_time, tzinfo=tz)
        if slot <= datetime.now(tz):
            raise ValueError("Booking date and time must be in the future")
        return self


class BookingResponse(BaseSchema):
    id: uuid.UUID
    client_id: uuid.UUID
    provider_id: uuid.UUID
    service_id: Optional[uuid.UUID]
    booking_date: date
    booking_time: time
    duration_hours: Optional[Decimal]
    total_price: Optional[Decimal]
    notes: Optional[str]
    status: str
    decline_reason: Optional[str]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    chat_unlocked: bool = False


class BookingDeclineRequest(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingCancelRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=500)


class AdminBookingStatusRequest(BaseSchema):
    status: Literal["pending", "confirmed", "declined", "completed", "cancelled"]
    reason: str = Field(..., min_length=3, max_length=500)


class AdminReasonRequest(BaseSchema):
    reason: str = Field(..., min_length=3, max_length=500)


class BookingAuditLogResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    from_status: Optional[str]
    to_status: str
    changed_by_id: Optional[uuid.UUID]
    reason: Optional[str]
    created_at: datetime


# ── Chat ──────────────────────────────────────────────────────

class ChatMessageCreate(BaseSchema):
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message cannot be empty")
        return v


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    booking_id: uuid.UUID
    sender_id: uuid.UUID
    recipient_id: uuid.UUID
    content: str
    is_read: bool
    created_at: datetime


class ConversationResponse(BaseSchema):
    booking_id: uuid.UUID
    client_id: uuid.UUID
    provider_id: uuid.UUID
    other_user_id: uuid.UUID
    other_user_name: Optional[str] = None
    booking_status: str
    booking_date: date
    booking_time: time
    last_message_at: datetime
    unread_count: int = 0


# ── Notification ──────────────────────────────────────────────

class NotificationResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    type: str
    title: str
    message: str
    related_id: Optional[uuid.UUID]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    detail: str
    code: Optional[str] = None


AuthResponse.model_rebuild()
