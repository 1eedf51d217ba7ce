"""Phone number helpers for the WhatsApp gateway"""
import re

WHATSAPP_JID_SUFFIXES = ("@s.whatsapp.net", "@c.us")


def normalize_phone(phone: str) -> str:
    """Digits only, with the Brazilian country code when it is missing"""
    if not phone:
        return ""
    for suffix in WHATSAPP_JID_SUFFIXES:
        if phone.endswith(suffix):
            phone = phone[: -len(suffix)]
    digits = re.sub(r"\D", "", phone)
    if not digits.startswith("55") and len(digits) in (10, 11):
        digits = "55" + digits
    return digits


def is_group_jid(remote_jid: str) -> bool:
    return remote_jid.endswith("@g.us")
