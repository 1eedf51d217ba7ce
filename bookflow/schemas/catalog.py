"""
Pydantic schemas for services and professionals
"""
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field

_HHMM = r"^([01]\d|2[0-3]):[0-5]\d$"


class ServiceCreate(BaseModel):
    """Request model for creating a service"""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    duration: int = Field(..., gt=0, description="Duration in minutes")
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    color: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")


class ProfessionalCreate(BaseModel):
    """Request model for creating a professional"""
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    specialties: List[str] = Field(default_factory=list)
    work_days: List[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5], description="0=Sunday .. 6=Saturday")
    work_start_time: str = Field("09:00", pattern=_HHMM)
    work_end_time: str = Field("18:00", pattern=_HHMM)
