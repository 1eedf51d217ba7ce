# ============================================================================
# FILE: bookflow/api/v1/appointments.py
# Company authenticated endpoints - thin HTTP layer
# ============================================================================
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Path, Response, status
from sqlalchemy.orm import Session

from bookflow.api.dependencies import get_current_company, require_permission
from bookflow.api.errors import to_http_exception
from bookflow.config.database import get_db
from bookflow.config.tenant import resolve_tenant_config
from bookflow.core.exceptions import BookflowError
from bookflow.models.appointment import AppointmentStatus
from bookflow.models.company import Company
from bookflow.schemas.appointments import (
    AppointmentCreate, AppointmentUpdate, AppointmentStatusChange, PaymentLinkResponse,
)
from bookflow.services.appointment.appointment_service import AppointmentService
from bookflow.services.payment.payment_link_service import PaymentLinkService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/appointments",
    tags=["appointments"],
    dependencies=[Depends(require_permission("appointments"))]
)


@router.get("")
async def list_appointments(
        start_date: Optional[date] = Query(None, description="Filter appointments on or after this date"),
        end_date: Optional[date] = Query(None, description="Filter appointments on or before this date"),
        status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
        professional_id: Optional[int] = Query(None),
        client_phone: Optional[str] = Query(None, description="Filter by client phone number"),
        skip: int = Query(0, ge=0, description="Number of records to skip"),
        limit: int = Query(50, ge=1, le=100, description="Number of records to return"),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    """
    List the company's appointments, ordered by date and time.
    """
    return AppointmentService.list_appointments(
        db=db,
        company_id=company.id,
        start_date=start_date,
        end_date=end_date,
        status=status_filter,
        professional_id=professional_id,
        client_phone=client_phone,
        skip=skip,
        limit=limit
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
        payload: AppointmentCreate,
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    """
    Book an appointment manually. Price and duration come from the service.
    409 when the professional is already booked at that time.
    """
    try:
        appointment = AppointmentService.create_appointment(
            db,
            company_id=company.id,
            booking_source="manual",
            **payload.model_dump()
        )
    except BookflowError as e:
        raise to_http_exception(e)
    return appointment.to_dict()


@router.get("/{appointment_id}")
async def get_appointment(
        appointment_id: int = Path(..., description="The appointment ID"),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    try:
        return AppointmentService.get_appointment(db, company.id, appointment_id).to_dict()
    except BookflowError as e:
        raise to_http_exception(e)


@router.patch("/{appointment_id}")
async def update_appointment(
        payload: AppointmentUpdate,
        appointment_id: int = Path(...),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    try:
        appointment = AppointmentService.update_appointment(
            db, company.id, appointment_id, payload.model_dump(exclude_unset=True)
        )
    except BookflowError as e:
        raise to_http_exception(e)
    return appointment.to_dict()


@router.post("/{appointment_id}/status")
async def change_status(
        payload: AppointmentStatusChange,
        appointment_id: int = Path(...),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    """Move the appointment along the status lifecycle; 409 on an illegal transition."""
    try:
        appointment = AppointmentService.change_status(db, company.id, appointment_id, payload.status)
    except BookflowError as e:
        raise to_http_exception(e)
    return appointment.to_dict()


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
        appointment_id: int = Path(...),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    try:
        AppointmentService.delete_appointment(db, company.id, appointment_id)
    except BookflowError as e:
        raise to_http_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{appointment_id}/payment-link", response_model=PaymentLinkResponse)
def create_payment_link(
        appointment_id: int = Path(...),
        company: Company = Depends(get_current_company),
        db: Session = Depends(get_db)
):
    """
    Checkout link for a scheduled appointment (reference = appointment id).
    A still-valid link is returned again instead of creating a new one.
    """
    link_service = PaymentLinkService(resolve_tenant_config(company))
    try:
        link = link_service.issue_for_appointment(db, appointment_id)
    except BookflowError as e:
        logger.error(f"Payment link for appointment {appointment_id} failed: {e}")
        raise to_http_exception(e)

    return PaymentLinkResponse(
        reference=link.reference,
        checkout_url=link.checkout_url,
        amount=link.amount,
        expires_at=link.expires_at,
        reused=link.reused,
    )
