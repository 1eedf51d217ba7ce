"""Inbound provider callbacks; every handler only validates and enqueues"""
from fastapi import APIRouter

from bookflow.webhooks import payment_handler, whatsapp_handler

webhook_router = APIRouter()
webhook_router.include_router(payment_handler.router)
webhook_router.include_router(whatsapp_handler.router)


@webhook_router.get("/")
async def list_webhooks():
    return {
        "mercadopago": "POST /webhooks/mercadopago?company_id=<id>",
        "whatsapp": "POST /webhooks/whatsapp/<instance_name>",
    }
