# bookflow/config/tenant.py
"""
Per-tenant configuration resolved once per request or task.

Deployment-wide values come from Settings; company and WhatsApp instance rows
override them. Services receive a TenantConfig instead of reading globals.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from bookflow.config.settings import Settings, get_settings


class TenantConfig(BaseModel):
    """Configuration a single company's flows run with"""
    company_id: int
    company_name: str

    public_base_url: str = ""

    # WhatsApp gateway
    evolution_api_url: str = ""
    evolution_api_key: str = ""
    whatsapp_timeout_seconds: float = 15.0

    # Assistant
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 4000
    openai_history_limit: int = 30
    ai_agent_prompt: Optional[str] = None

    # Payments
    mercadopago_enabled: bool = False
    mercadopago_access_token: str = ""
    mercadopago_webhook_secret: str = ""
    excluded_payment_types: List[str] = Field(default_factory=lambda: ["ticket", "atm"])
    payment_link_ttl_minutes: int = 60
    payment_retry_attempts: int = 3
    payment_retry_backoff_seconds: float = 1.0

    timezone: str = "America/Sao_Paulo"

    @property
    def payments_available(self) -> bool:
        return self.mercadopago_enabled and bool(self.mercadopago_access_token)

    @property
    def notification_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/webhooks/mercadopago?company_id={self.company_id}"


def resolve_tenant_config(company, instance=None, settings: Optional[Settings] = None) -> TenantConfig:
    """Build the TenantConfig for a company (and optionally the instance it talks through)"""
    settings = settings or get_settings()

    return TenantConfig(
        company_id=company.id,
        company_name=company.fantasy_name,
        public_base_url=settings.PUBLIC_BASE_URL,
        evolution_api_url=(instance.api_url if instance is not None and instance.api_url else settings.EVOLUTION_API_URL),
        evolution_api_key=(instance.api_key if instance is not None and instance.api_key else settings.EVOLUTION_API_KEY),
        whatsapp_timeout_seconds=settings.WHATSAPP_TIMEOUT_SECONDS,
        openai_api_key=settings.OPENAI_API_KEY,
        openai_model=settings.OPENAI_MODEL,
        openai_temperature=settings.OPENAI_TEMPERATURE,
        openai_max_tokens=settings.OPENAI_MAX_TOKENS,
        openai_history_limit=settings.OPENAI_HISTORY_LIMIT,
        ai_agent_prompt=company.ai_agent_prompt,
        mercadopago_enabled=bool(company.mercadopago_enabled),
        mercadopago_access_token=company.mercadopago_access_token or settings.MERCADOPAGO_ACCESS_TOKEN,
        mercadopago_webhook_secret=settings.MERCADOPAGO_WEBHOOK_SECRET,
        excluded_payment_types=list(settings.MERCADOPAGO_EXCLUDED_PAYMENT_TYPES),
        payment_link_ttl_minutes=settings.PAYMENT_LINK_TTL_MINUTES,
        payment_retry_attempts=settings.PAYMENT_RETRY_ATTEMPTS,
        payment_retry_backoff_seconds=settings.PAYMENT_RETRY_BACKOFF_SECONDS,
        timezone=company.timezone or settings.DEFAULT_TIMEZONE,
    )
