"""
Pydantic schemas for appointment requests
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from bookflow.models.appointment import AppointmentStatus

_HHMM = r"^([01]?\d|2[0-3]):[0-5]\d$"


class AppointmentCreate(BaseModel):
    """Manual booking from the dashboard"""
    service_id: int
    professional_id: int
    client_name: str = Field(..., min_length=1, max_length=255)
    client_phone: str = Field(..., min_length=8, max_length=20)
    client_email: Optional[str] = Field(None, max_length=255)
    appointment_date: date
    appointment_time: str = Field(..., pattern=_HHMM, description="HH:MM")
    notes: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "service_id": 1,
                "professional_id": 1,
                "client_name": "Maria",
                "client_phone": "11999998888",
                "appointment_date": "2025-01-10",
                "appointment_time": "14:00"
            }
        }


class AppointmentUpdate(BaseModel):
    """
    Fields that can be edited. Only send what you want to change;
    status changes go through the status endpoint.
    """
    service_id: Optional[int] = None
    professional_id: Optional[int] = None
    client_name: Optional[str] = Field(None, min_length=1, max_length=255)
    client_phone: Optional[str] = Field(None, min_length=8, max_length=20)
    client_email: Optional[str] = Field(None, max_length=255)
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = Field(None, pattern=_HHMM)
    notes: Optional[str] = None

    @field_validator("appointment_time")
    @classmethod
    def pad_time(cls, v):
        if v is None:
            return v
        hours, minutes = v.split(":")
        return f"{int(hours):02d}:{minutes}"


class AppointmentStatusChange(BaseModel):
    status: AppointmentStatus


class PaymentLinkResponse(BaseModel):
    reference: str
    checkout_url: str
    amount: Decimal
    expires_at: datetime
    reused: bool = False
