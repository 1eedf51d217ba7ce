# bookflow/services/payment/mercadopago_client.py
"""Thin wrapper over the Mercado Pago SDK with bounded retries"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import mercadopago
import requests
from mercadopago.config import RequestOptions

from bookflow.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)

# Provider statuses worth retrying; 4xx other than rate limiting never is
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


class MercadoPagoClient:
    """Creates checkout preferences and reads payments with a tenant's access token"""

    def __init__(
            self,
            access_token: str,
            retry_attempts: int = 3,
            backoff_seconds: float = 1.0,
            sdk: Optional[Any] = None,
            sleep: Callable[[float], None] = time.sleep,
    ):
        if not access_token and sdk is None:
            raise PaymentProviderError("Mercado Pago access token not configured")
        self.sdk = sdk or mercadopago.SDK(access_token)
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _call(self, operation: str, func: Callable[[], Dict]) -> Dict:
        last_error = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                result = func()
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_error = PaymentProviderError(f"Mercado Pago unreachable during {operation}: {e}")
                logger.warning(f"Mercado Pago {operation} attempt {attempt} failed: {e}")
            else:
                status = result.get("status")
                if status is not None and 200 <= status < 300:
                    return result.get("response") or {}

                body = result.get("response") or {}
                message = body.get("message") if isinstance(body, dict) else str(body)
                last_error = PaymentProviderError(
                    f"Mercado Pago {operation} returned HTTP {status}: {message}",
                    status_code=status
                )
                if status not in RETRYABLE_STATUS_CODES:
                    raise last_error
                logger.warning(f"Mercado Pago {operation} attempt {attempt} got HTTP {status}")

            if attempt < self.retry_attempts:
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        logger.error(f"Mercado Pago {operation} failed after {self.retry_attempts} attempts")
        raise last_error

    def create_preference(self, preference_data: Dict, idempotency_key: Optional[str] = None) -> Dict:
        """Create a checkout preference. Returns the provider body with ``id`` and ``init_point``."""
        request_options = None
        if idempotency_key:
            request_options = RequestOptions(custom_headers={"x-idempotency-key": idempotency_key})
        return self._call(
            "preference create",
            lambda: self.sdk.preference().create(preference_data, request_options)
        )

    def get_payment(self, payment_id: str) -> Dict:
        """Authoritative payment state: status, status_detail, external_reference, amount"""
        return self._call("payment get", lambda: self.sdk.payment().get(payment_id))
