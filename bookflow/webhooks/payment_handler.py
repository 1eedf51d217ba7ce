# bookflow/webhooks/payment_handler.py
"""Mercado Pago webhook handler - queuing only"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from bookflow.config.database import get_db
from bookflow.config.tenant import resolve_tenant_config
from bookflow.schemas.webhook_events import MercadoPagoNotification
from bookflow.services.company.company_service import CompanyService
from bookflow.tasks.payment_tasks import process_payment_notification
from bookflow.utils.webhook_signature import verify_mercadopago_signature

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/mercadopago")
async def handle_mercadopago_notification(
        request: Request,
        company_id: Optional[int] = Query(None, description="Company the notification belongs to"),
        db: Session = Depends(get_db)
):
    """
    Handle a Mercado Pago notification - queue processing immediately.

    Only the payment id is taken from the request; status and reference are
    fetched from Mercado Pago by the worker. With a webhook secret configured,
    the x-signature header must match.
    """
    if company_id is None:
        raise HTTPException(status_code=400, detail="company_id query parameter is required")

    raw = await request.body()
    try:
        body = json.loads(raw) if raw.strip() else {}
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Notification body must be an object")

    try:
        notification = MercadoPagoNotification(**body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid notification: {e.errors()[0].get('msg')}")

    company = CompanyService.get_company(db, company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="Company not found")

    params = request.query_params
    notification_type = notification.notification_type or params.get("type") or params.get("topic")
    if notification_type != "payment":
        logger.info(f"Ignoring Mercado Pago notification of type {notification_type} for company {company_id}")
        return {"status": "ignored"}

    payment_id = (notification.data.id if notification.data else None) or params.get("data.id") or params.get("id")
    if not payment_id:
        raise HTTPException(status_code=400, detail="Payment id missing")

    secret = resolve_tenant_config(company).mercadopago_webhook_secret
    if secret and not verify_mercadopago_signature(
            secret,
            request.headers.get("x-signature"),
            request.headers.get("x-request-id"),
            params.get("data.id") or payment_id,
    ):
        logger.warning(f"Rejected unsigned or forged notification for payment {payment_id} (company {company_id})")
        raise HTTPException(status_code=401, detail="Invalid notification signature")

    correlation_id = getattr(request.state, "correlation_id", "unknown")

    try:
        process_payment_notification.delay(
            company_id=company_id,
            payment_id=str(payment_id),
            correlation_id=correlation_id
        )
    except Exception as e:
        logger.error(f"Error queuing payment notification {payment_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    logger.info(f"Queued payment notification {payment_id} for company {company_id}")
    return {"status": "received"}
