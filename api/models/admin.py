"""Pydantic models for the admin availability and business settings endpoints."""

from datetime import time
from uuid import UUID

from pydantic import EmailStr, Field

from api.models.common import CamelModel


class AvailabilityWindowIn(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time


class AvailabilityWindowUpdate(CamelModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    is_active: bool | None = None


class AvailabilityWindowOut(CamelModel):
    id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool


class BusinessInfoModel(CamelModel):
    name: str = Field(max_length=255)
    email: EmailStr
    phone: str = Field(max_length=20)
    address: str = Field(max_length=255)
    city: str = Field(max_length=100)
    state: str = Field(max_length=50)
    zip: str = Field(max_length=20)
    description: str | None = None
    website: str | None = Field(default=None, max_length=255)


class BusinessInfoUpdate(CamelModel):
    name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=50)
    zip: str | None = Field(default=None, max_length=20)
    description: str | None = None
    website: str | None = Field(default=None, max_length=255)
