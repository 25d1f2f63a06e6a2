"""Deed of Assignment / receivable note collaborator.

The ledger itself lives in an external deed service; this module only shapes
the calls. The lifecycle engine reaches it through the side-effect outbox, so a
failing deed service never blocks certification.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping, Protocol

import httpx

from app.config import Settings, get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_DEED_CALLS_TOTAL = 0
_DEED_ERRORS_TOTAL = 0

SIGNER_ROLES = {"assignor", "procuring_entity", "servicing_agent"}


class DeedServiceError(RuntimeError):
    """The deed service refused or failed a request."""


class DeedServiceClient(Protocol):
    """Protocol for deed service backends."""

    def create_deed(
        self,
        bill_id: int,
        supplier_id: int,
        mda_id: int,
        principal: Decimal,
        discount_rate: Decimal,
        purchase_price: Decimal,
        metadata: Mapping[str, Any],
    ) -> str:
        ...

    def sign_deed(self, deed_id: str, wallet_address: str, signer_role: str) -> Dict[str, Any]:
        ...

    def mint_note(self, note_id: str, wallet_address: str) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        ...


@dataclass
class DisabledDeedClient:
    """Off-chain stand-in used when no deed service is configured.

    Returns a deterministic local reference so certified bills still carry a
    ``deed_id`` that can be reconciled once the service is switched on.
    """

    name: str = "disabled"

    def create_deed(
        self,
        bill_id: int,
        supplier_id: int,
        mda_id: int,
        principal: Decimal,
        discount_rate: Decimal,
        purchase_price: Decimal,
        metadata: Mapping[str, Any],
    ) -> str:
        digest = hashlib.sha256(f"{bill_id}:{supplier_id}:{mda_id}:{principal}:{purchase_price}".encode()).hexdigest()
        return f"offchain-{bill_id}-{digest[:12]}"

    def sign_deed(self, deed_id: str, wallet_address: str, signer_role: str) -> Dict[str, Any]:
        raise DeedServiceError("Deed service is disabled; signing unavailable.")

    def mint_note(self, note_id: str, wallet_address: str) -> Dict[str, Any]:
        raise DeedServiceError("Deed service is disabled; minting unavailable.")

    def close(self) -> None:
        return None


class HttpDeedClient:
    """JSON-over-HTTP client for the external deed service."""

    name = "http"

    def __init__(self, base_url: str, *, api_key: str | None = None, timeout: float = 10.0, transport: httpx.BaseTransport | None = None) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.Client(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpDeedClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _call(self, action: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            response = self._client.post("", json={"action": action, **params})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            _record_deed_error()
            raise DeedServiceError(f"{action} failed: {exc}") from exc

        if not data.get("success"):
            _record_deed_error()
            raise DeedServiceError(data.get("error") or f"{action} failed")
        _record_deed_success()
        return data

    def create_deed(
        self,
        bill_id: int,
        supplier_id: int,
        mda_id: int,
        principal: Decimal,
        discount_rate: Decimal,
        purchase_price: Decimal,
        metadata: Mapping[str, Any],
    ) -> str:
        data = self._call(
            "create_deed",
            {
                "billId": bill_id,
                "assignorId": supplier_id,
                "procuringEntityId": mda_id,
                "principalAmount": str(principal),
                "discountRate": str(discount_rate),
                "purchasePrice": str(purchase_price),
                "documentContent": dict(metadata),
            },
        )
        deed = data.get("deed") or {}
        deed_id = deed.get("id")
        if not deed_id:
            raise DeedServiceError("create_deed returned no deed id")
        return str(deed_id)

    def sign_deed(self, deed_id: str, wallet_address: str, signer_role: str) -> Dict[str, Any]:
        if signer_role not in SIGNER_ROLES:
            raise ValueError(f"Unknown signer role: {signer_role}")
        return self._call("sign_deed", {"deedId": deed_id, "walletAddress": wallet_address, "signerRole": signer_role})

    def mint_note(self, note_id: str, wallet_address: str) -> Dict[str, Any]:
        return self._call("mint_receivable_note", {"noteId": note_id, "walletAddress": wallet_address})


def _record_deed_success() -> None:
    global _DEED_CALLS_TOTAL
    _DEED_CALLS_TOTAL += 1


def _record_deed_error() -> None:
    global _DEED_CALLS_TOTAL, _DEED_ERRORS_TOTAL
    _DEED_CALLS_TOTAL += 1
    _DEED_ERRORS_TOTAL += 1


def get_deed_stats() -> Dict[str, int]:
    return {"calls": _DEED_CALLS_TOTAL, "errors": _DEED_ERRORS_TOTAL}


def get_deed_client(settings: Settings | None = None) -> DeedServiceClient:
    """Build the deed backend from settings; the caller closes it."""

    settings = settings or get_settings()
    if settings.BLOCKCHAIN_ENABLED and settings.BLOCKCHAIN_DEED_URL:
        return HttpDeedClient(
            settings.BLOCKCHAIN_DEED_URL,
            api_key=settings.BLOCKCHAIN_API_KEY,
            timeout=settings.BLOCKCHAIN_TIMEOUT_SECONDS,
        )
    if settings.BLOCKCHAIN_ENABLED:
        logger.warning("BLOCKCHAIN_ENABLED without BLOCKCHAIN_DEED_URL; using off-chain deed references.")
    return DisabledDeedClient()


def deed_terms(amount: Decimal, offer_amount: Decimal | None) -> tuple[Decimal, Decimal]:
    """Return ``(discount_rate_percent, purchase_price)`` for a certified bill."""

    if offer_amount is None:
        return Decimal("0"), amount
    rate = ((amount - offer_amount) / amount * Decimal(100)).quantize(Decimal("0.0001"))
    return rate, offer_amount


__all__ = [
    "DeedServiceError",
    "DeedServiceClient",
    "DisabledDeedClient",
    "HttpDeedClient",
    "get_deed_client",
    "get_deed_stats",
    "deed_terms",
]
