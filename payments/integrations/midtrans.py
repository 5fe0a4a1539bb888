import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings
from requests import RequestException
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://api.midtrans.com"
SANDBOX_BASE_URL = "https://api.sandbox.midtrans.com"
COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class MidtransError(Exception): pass

class MidtransNotFound(MidtransError):
    """The gateway has no transaction for the given order number."""

class MidtransTransportError(MidtransError):
    """Network failure, bad credentials or any other non-2xx gateway answer."""

class MidtransParseError(MidtransError):
    """The gateway answered 2xx but the body is not a transaction status."""


@dataclass(frozen=True)
class TransactionSnapshot:
    transaction_status: str
    fraud_status: Optional[str] = None
    payment_type: str = ""
    transaction_time: Optional[str] = None
    settlement_time: Optional[str] = None
    gross_amount: Optional[str] = None
    transaction_id: Optional[str] = None
    status_code: Optional[str] = None
    order_id: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict) -> "TransactionSnapshot":
        """Build a snapshot from a status response or a notification body."""
        if not isinstance(data, dict):
            raise MidtransParseError("Transaction payload must be a JSON object")
        status = data.get("transaction_status")
        if not status:
            raise MidtransParseError("Transaction payload has no transaction_status")

        def _opt(key):
            value = data.get(key)
            return None if value in (None, "") else str(value)

        return cls(
            transaction_status=str(status),
            fraud_status=_opt("fraud_status"),
            payment_type=str(data.get("payment_type") or ""),
            transaction_time=_opt("transaction_time"),
            settlement_time=_opt("settlement_time"),
            gross_amount=_opt("gross_amount"),
            transaction_id=_opt("transaction_id"),
            status_code=_opt("status_code"),
            order_id=_opt("order_id"),
        )

    def as_dict(self) -> dict:
        return {
            "transaction_id": self.transaction_id,
            "transaction_status": self.transaction_status,
            "transaction_time": self.transaction_time,
            "payment_type": self.payment_type,
            "fraud_status": self.fraud_status,
            "gross_amount": self.gross_amount,
        }


def _server_key() -> str:
    return getattr(settings, "MIDTRANS_SERVER_KEY", "") or ""

def _base_url() -> str:
    if getattr(settings, "MIDTRANS_IS_PRODUCTION", False):
        return PRODUCTION_BASE_URL
    return SANDBOX_BASE_URL

def _timeout() -> float:
    return float(getattr(settings, "MIDTRANS_TIMEOUT", 30))


def get_transaction_status(order_number: str) -> TransactionSnapshot:
    """Query the Core API for the transaction keyed by our order number.

    Exactly one request is made; callers decide what to do with the typed
    error. Midtrans reports unknown transactions either with HTTP 404 or with
    HTTP 200 and ``"status_code": "404"`` in the body, both map to
    :class:`MidtransNotFound`.
    """
    server_key = _server_key()
    if not server_key:
        raise MidtransTransportError("Missing MIDTRANS_SERVER_KEY")

    url = f"{_base_url()}/v2/{order_number}/status"
    try:
        resp = requests.get(url, headers=COMMON_HEADERS, auth=HTTPBasicAuth(server_key, ""), timeout=_timeout())
    except RequestException as e:
        logger.warning("Midtrans status request failed for %s: %s", order_number, e)
        raise MidtransTransportError(f"Gateway request failed: {e}") from e

    if resp.status_code == 404:
        raise MidtransNotFound(f"Transaction {order_number} not found")
    if not 200 <= resp.status_code < 300:
        raise MidtransTransportError(f"Gateway error HTTP {resp.status_code}: {resp.text[:500]}")

    try:
        data = resp.json()
    except ValueError as e:
        raise MidtransParseError(f"Gateway returned invalid JSON: {resp.text[:500]}") from e
    if not isinstance(data, dict):
        raise MidtransParseError("Gateway returned a non-object JSON body")

    try:
        body_code = int(data.get("status_code") or 200)
    except (TypeError, ValueError):
        raise MidtransParseError(f"Gateway returned a non-numeric status_code: {data.get('status_code')!r}")
    if body_code == 404:
        raise MidtransNotFound(data.get("status_message") or f"Transaction {order_number} not found")
    # 407 is an expired transaction, which still carries a usable status
    if body_code >= 400 and body_code != 407:
        raise MidtransTransportError(f"Gateway status_code {body_code}: {json.dumps(data)[:500]}")

    return TransactionSnapshot.from_payload(data)


def compute_signature_key(order_id: str, status_code: str, gross_amount: str, server_key: str = None) -> str:
    key = _server_key() if server_key is None else server_key
    raw = f"{order_id}{status_code}{gross_amount}{key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_signature_key(notification: dict) -> bool:
    """Check ``signature_key`` of a notification against our server key.

    ``sha512(order_id + status_code + gross_amount + server_key)``
    """
    if not _server_key():
        logger.error("MIDTRANS_SERVER_KEY missing in settings; cannot verify notification")
        return False
    fields = [notification.get(k) for k in ("order_id", "status_code", "gross_amount", "signature_key")]
    if any(v in (None, "") for v in fields):
        return False
    order_id, status_code, gross_amount, received = (str(v) for v in fields)
    expected = compute_signature_key(order_id, status_code, gross_amount)
    return hmac.compare_digest(expected, received.strip())
