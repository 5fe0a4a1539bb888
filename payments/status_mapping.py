"""Translate a gateway transaction status into the local order lifecycle.

Pure functions only; nothing here touches the network or the database.
"""
from typing import NamedTuple, Optional

PAID_TRANSACTION_STATUSES = frozenset({"capture", "settlement"})
FAILED_TRANSACTION_STATUSES = frozenset({"deny", "expire", "cancel"})
TRUSTED_FRAUD_STATUSES = frozenset({"accept", None})

TERMINAL_PAYMENT_STATUSES = frozenset({"PAID", "FAILED", "REFUNDED"})


class MappedStatus(NamedTuple):
    order_status: str
    payment_status: str
    # False when the input fell through to the conservative default
    recognized: bool = True


def _norm(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip().lower()
    return value or None


def map_transaction_status(transaction_status: Optional[str], fraud_status: Optional[str],
                           current_order_status: str) -> MappedStatus:
    status = _norm(transaction_status)
    fraud = _norm(fraud_status)

    if status in PAID_TRANSACTION_STATUSES and fraud in TRUSTED_FRAUD_STATUSES:
        return MappedStatus("COMPLETED", "PAID")
    if status == "pending":
        return MappedStatus(current_order_status, "PENDING")
    if status in FAILED_TRANSACTION_STATUSES:
        return MappedStatus("CANCELLED", "FAILED")
    # challenged/denied captures and unknown statuses stay pending
    return MappedStatus(current_order_status, "PENDING", recognized=False)


def is_terminal(payment_status: str) -> bool:
    return payment_status in TERMINAL_PAYMENT_STATUSES


def allows_transition(current_payment_status: str, new_payment_status: str) -> bool:
    """Whether reconciliation may move ``current_payment_status`` to ``new_payment_status``.

    PAID and REFUNDED are final. FAILED only gives way to PAID, since a
    customer can retry a denied or expired attempt under the same order id.
    """
    if not is_terminal(current_payment_status):
        return True
    return current_payment_status == "FAILED" and new_payment_status == "PAID"
