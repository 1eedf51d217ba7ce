"""Mercado Pago notification signature (``x-signature`` header) checks"""
import hashlib
import hmac
from typing import Dict, Optional


def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    """``ts=1704908010,v1=618c...`` -> {"ts": "1704908010", "v1": "618c..."}"""
    parts = {}
    for item in (header or "").split(","):
        key, sep, value = item.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def signature_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    """
    The string Mercado Pago signs.

    Missing values are left out of the template; alphanumeric ids are signed lowercased.
    """
    manifest = ""
    if data_id:
        data_id = str(data_id)
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    return manifest + f"ts:{ts};"


def sign_notification(secret: str, data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    manifest = signature_manifest(data_id, request_id, ts)
    return hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_mercadopago_signature(
        secret: str, header: Optional[str], request_id: Optional[str], data_id: Optional[str]
) -> bool:
    parts = parse_signature_header(header)
    ts, received = parts.get("ts"), parts.get("v1")
    if not ts or not received:
        return False
    return hmac.compare_digest(sign_notification(secret, data_id, request_id, ts), received)
