"""Make activity details and outbox payloads JSON-safe and free of obvious PII."""
from __future__ import annotations

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Callable, Mapping


def _tail(keep: int) -> Callable[[str], str]:
    def mask(text: str) -> str:
        compact = text.replace(" ", "")
        return f"***{compact[-keep:]}" if len(compact) > keep else f"***{compact}"

    return mask


def _email(text: str) -> str:
    return f"***@{text.split('@', 1)[1]}" if "@" in text else "***"


def _wallet(text: str) -> str:
    return f"{text[:6]}***{text[-4:]}" if len(text) > 10 else "***"


def _document_url(text: str) -> str:
    base = text.split("?", 1)[0]
    return f"{base.rsplit('/', 1)[0]}/***" if "/" in base else "***/***"


MASKERS: dict[str, Callable[[str], str]] = {
    "account_number": _tail(4),
    "bank_account": _tail(4),
    "phone": _tail(4),
    "email": _email,
    "wallet_address": _wallet,
    "document_url": _document_url,
}
SENSITIVE_KEYS = frozenset(MASKERS)


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a JSON-safe copy of ``data`` with sensitive fields masked.

    Decimals become strings so money keeps its exact digits; dates become
    ISO strings.
    """

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if key in MASKERS and value is not None:
                value = MASKERS[key](str(value))
            sanitized[str(key)] = sanitize_payload_for_audit(value)
        return sanitized

    if isinstance(data, (list, tuple)):
        return [sanitize_payload_for_audit(item) for item in data]

    if isinstance(data, Decimal):
        return str(data)

    if isinstance(data, (datetime, date)):
        return data.isoformat()

    return data


__all__ = ["SENSITIVE_KEYS", "sanitize_payload_for_audit"]
