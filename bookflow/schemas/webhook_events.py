# bookflow/schemas/webhook_events.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, Any


class MercadoPagoNotificationData(BaseModel):
    id: str = Field(..., description="Payment id")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, int):
            return str(v)
        return v


class MercadoPagoNotification(BaseModel):
    """Mercado Pago webhook body; only ``data.id`` is trusted"""
    model_config = ConfigDict(extra="allow")

    type: Optional[str] = Field(None, description="Notification topic, e.g. payment")
    topic: Optional[str] = Field(None, description="Legacy IPN topic")
    action: Optional[str] = Field(None, description="e.g. payment.created, payment.updated")
    data: Optional[MercadoPagoNotificationData] = None
    live_mode: Optional[bool] = None

    @property
    def notification_type(self) -> Optional[str]:
        if self.type:
            return self.type
        if self.topic:
            return self.topic
        if self.action and "." in self.action:
            return self.action.split(".", 1)[0]
        return None


class EvolutionMessageKey(BaseModel):
    remoteJid: str = Field(..., description="Sender JID, e.g. 5511999998888@s.whatsapp.net")
    fromMe: bool = Field(False, description="Sent by the instance itself")
    id: str = Field(..., description="Gateway message id")


class EvolutionMessageData(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: EvolutionMessageKey
    pushName: Optional[str] = None
    message: Optional[Dict[str, Any]] = None
    messageType: Optional[str] = None
    messageTimestamp: Optional[int] = None

    @property
    def text(self) -> Optional[str]:
        """Plain text of conversation / extended text messages"""
        if not self.message:
            return None
        if self.message.get("conversation"):
            return self.message["conversation"]
        extended = self.message.get("extendedTextMessage") or {}
        return extended.get("text")


class EvolutionWebhookEvent(BaseModel):
    """Evolution API webhook envelope"""
    model_config = ConfigDict(extra="allow")

    event: str = Field(..., description="Event name, e.g. messages.upsert")
    instance: Optional[str] = None
    data: Optional[EvolutionMessageData] = None

    @property
    def is_message_upsert(self) -> bool:
        return self.event.lower().replace("_", ".") == "messages.upsert"
