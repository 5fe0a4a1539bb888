# payments/services.py
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta, timezone as dt_timezone
from typing import List, Optional

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from orders.models import Order
from .auth import AuthContext
from .errors import BadRequest, InvalidSignature, OrderNotFound, PersistenceFailure, Unauthorized, UpstreamFailure
from .integrations import midtrans
from .integrations.midtrans import MidtransError, MidtransNotFound, TransactionSnapshot
from .status_mapping import MappedStatus, allows_transition, map_transaction_status

logger = logging.getLogger(__name__)

GATEWAY_UNKNOWN_MESSAGE = "Transaction not found in Midtrans"
PAYMENT_METHOD_MAX_LENGTH = Order._meta.get_field("payment_method").max_length


@dataclass
class ReconcileResult:
    order: Order
    written: bool = False
    mapped: Optional[MappedStatus] = None
    snapshot: Optional[TransactionSnapshot] = None
    stale: bool = False
    message: str = ""

    @property
    def gateway_unknown(self) -> bool:
        return self.snapshot is None


def _parse_gateway_time(value: Optional[str]):
    if not value:
        return None
    try:
        dt = parse_datetime(value)
    except ValueError:
        return None
    if dt and dt.tzinfo is None:
        dt = dt.replace(tzinfo=dt_timezone.utc)
    return dt


def find_order(order_id: str = None, order_number: str = None) -> Order:
    order_id = (order_id or "").strip()
    order_number = (order_number or "").strip()
    if not order_id and not order_number:
        raise BadRequest("Order ID or Order Number is required")
    if order_id and order_number:
        raise BadRequest("Provide either orderId or orderNumber, not both")

    if order_id:
        try:
            lookup = {"pk": uuid.UUID(order_id)}
        except ValueError:
            raise BadRequest("orderId is not a valid order identifier")
    else:
        lookup = {"order_number": order_number}

    try:
        return Order.objects.get(**lookup)
    except Order.DoesNotExist:
        raise OrderNotFound("Order not found")


def apply_snapshot(order: Order, snapshot: TransactionSnapshot, source: str = "poll") -> ReconcileResult:
    """Fold a gateway snapshot into the stored order.

    The row is locked for the duration, and the write is a compare-and-swap on
    the ``(status, payment_status)`` pair read under that lock. Nothing is
    written when the mapped pair equals the stored one, or when the move
    would leave a final payment status (a FAILED order may still become PAID).
    """
    try:
        with transaction.atomic():
            current = Order.objects.select_for_update().get(pk=order.pk)
            mapped = map_transaction_status(snapshot.transaction_status, snapshot.fraud_status, current.status)
            if not mapped.recognized:
                logger.warning(
                    "Unrecognised Midtrans state for %s: transaction_status=%s fraud_status=%s; treating as PENDING",
                    current.order_number, snapshot.transaction_status, snapshot.fraud_status,
                )

            if not allows_transition(current.payment_status, mapped.payment_status):
                stale = mapped.payment_status != current.payment_status
                if stale:
                    logger.warning(
                        "Ignoring %s for %s: %s/%s would replace terminal %s/%s",
                        source, current.order_number, mapped.order_status, mapped.payment_status,
                        current.status, current.payment_status,
                    )
                return ReconcileResult(current, written=False, mapped=mapped, snapshot=snapshot, stale=stale)

            if (mapped.order_status, mapped.payment_status) == (current.status, current.payment_status):
                logger.info("No status change for %s (%s/%s)", current.order_number, current.status, current.payment_status)
                return ReconcileResult(current, written=False, mapped=mapped, snapshot=snapshot)

            paid_at = None
            if mapped.payment_status == "PAID":
                paid_at = _parse_gateway_time(snapshot.transaction_time)
                if paid_at is None:
                    logger.warning("No usable transaction_time for paid order %s: %r", current.order_number, snapshot.transaction_time)
                    paid_at = timezone.now()

            fields = {
                "status": mapped.order_status,
                "payment_status": mapped.payment_status,
                "payment_method": (snapshot.payment_type or current.payment_method)[:PAYMENT_METHOD_MAX_LENGTH],
                "paid_at": paid_at,
                "updated_at": timezone.now(),
            }
            rows = Order.objects.filter(
                pk=current.pk, status=current.status, payment_status=current.payment_status,
            ).update(**fields)
            if not rows:
                current.refresh_from_db()
                logger.warning(
                    "Concurrent update on %s, keeping stored %s/%s",
                    current.order_number, current.status, current.payment_status,
                )
                return ReconcileResult(current, written=False, mapped=mapped, snapshot=snapshot, stale=True)

            previous = (current.status, current.payment_status)
            for name, value in fields.items():
                setattr(current, name, value)
    except DatabaseError as e:
        logger.exception("Failed to persist reconciliation for order=%s", order.order_number)
        raise PersistenceFailure("Failed to update order", details=str(e)) from e

    logger.info(
        "Order %s updated via %s: %s/%s -> %s/%s",
        current.order_number, source, previous[0], previous[1], current.status, current.payment_status,
    )
    return ReconcileResult(current, written=True, mapped=mapped, snapshot=snapshot)


def reconcile_order(order: Order) -> ReconcileResult:
    """Poll the gateway once for ``order`` and apply what it reports."""
    try:
        snapshot = midtrans.get_transaction_status(order.order_number)
    except MidtransNotFound:
        logger.info("Transaction not found in Midtrans: %s", order.order_number)
        return ReconcileResult(order, message=GATEWAY_UNKNOWN_MESSAGE)
    except MidtransError as e:
        logger.error("Midtrans status check failed for %s: %s", order.order_number, e)
        raise UpstreamFailure("Failed to check payment status", details=str(e)) from e
    return apply_snapshot(order, snapshot, source="poll")


def check_payment_status(auth: Optional[AuthContext], order_id: str = None, order_number: str = None) -> ReconcileResult:
    if auth is None:
        raise Unauthorized("Unauthorized")
    order = find_order(order_id=order_id, order_number=order_number)
    return reconcile_order(order)


def process_notification(payload: dict) -> ReconcileResult:
    """Handle a Midtrans HTTP notification. No outbound gateway call is made."""
    if not isinstance(payload, dict):
        raise BadRequest("Invalid notification data")
    order_number = str(payload.get("order_id") or "").strip()
    if not order_number or not payload.get("transaction_status"):
        raise BadRequest("Invalid notification data", details="order_id and transaction_status are required")

    if not midtrans.verify_signature_key(payload):
        logger.error("Invalid signature key for order: %s", order_number)
        raise InvalidSignature("Invalid signature")

    snapshot = TransactionSnapshot.from_payload(payload)
    try:
        order = Order.objects.get(order_number=order_number)
    except Order.DoesNotExist:
        logger.error("Notification for unknown order: %s", order_number)
        raise OrderNotFound("Order not found")
    return apply_snapshot(order, snapshot, source="notification")


def batch_payment_status(auth: Optional[AuthContext], order_ids) -> List[Order]:
    """Local payment state for several orders at once; the gateway is not queried."""
    if auth is None:
        raise Unauthorized("Unauthorized")
    if not isinstance(order_ids, list) or not order_ids:
        raise BadRequest("orderIds array is required")
    limit = getattr(settings, "PAYMENTS_BATCH_STATUS_LIMIT", 50)
    if len(order_ids) > limit:
        raise BadRequest(f"Maximum {limit} orders can be checked at once")

    pks = []
    for raw in order_ids:
        try:
            pks.append(uuid.UUID(str(raw)))
        except ValueError:
            raise BadRequest("orderIds must contain valid order identifiers", details=str(raw)[:64])
    return list(Order.objects.filter(pk__in=pks).order_by("created_at"))


def stale_pending_orders(older_than_minutes: int, limit: int):
    cutoff = timezone.now() - timedelta(minutes=older_than_minutes)
    return (
        Order.objects.filter(payment_status="PENDING", updated_at__lt=cutoff)
        .order_by("updated_at")[:limit]
    )
