import json
import logging
import time

from django.http import JsonResponse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .auth import get_auth_context
from .errors import BadRequest, ReconciliationError
from .services import batch_payment_status, check_payment_status, process_notification

logger = logging.getLogger(__name__)


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError): return None


def _error_response(exc: ReconciliationError, **extra):
    body = exc.as_dict()
    body.update(extra)
    return JsonResponse(body, status=exc.status_code)


def _unexpected_error(message: str, exc: Exception, **extra):
    body = {"success": False, "error": message, "code": "INTERNAL_ERROR", "details": str(exc) or exc.__class__.__name__}
    body.update(extra)
    return JsonResponse(body, status=500)


@csrf_exempt
@require_http_methods(["GET", "POST"])
def payment_status_view(request):
    """GET: reconcile one order against Midtrans. POST: local status of many orders."""
    auth = get_auth_context(request)
    if request.method == "POST":
        return _batch_status(request, auth)

    try:
        result = check_payment_status(
            auth,
            order_id=request.GET.get("orderId"),
            order_number=request.GET.get("orderNumber"),
        )
    except ReconciliationError as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Payment status check crashed")
        return _unexpected_error("Failed to check payment status", e)

    body = {
        "success": True,
        "order": result.order.as_status_dict(),
        "midtrans": result.snapshot.as_dict() if result.snapshot else None,
    }
    if result.message:
        body["message"] = result.message
    return JsonResponse(body)


def _batch_status(request, auth):
    body = _json_body(request)
    try:
        if not isinstance(body, dict):
            raise BadRequest("Invalid JSON body")
        orders = batch_payment_status(auth, body.get("orderIds"))
    except ReconciliationError as e:
        return _error_response(e)
    except Exception as e:
        logger.exception("Batch payment status check crashed")
        return _unexpected_error("Failed to check payment status", e)

    results = [o.as_status_dict() for o in orders]
    return JsonResponse({"success": True, "orders": results, "total": len(results)})


@csrf_exempt
@require_http_methods(["GET", "POST"])
def midtrans_notification_view(request):
    if request.method == "GET":
        return JsonResponse({
            "success": True,
            "status": "active",
            "message": "Midtrans webhook notification endpoint is active",
            "timestamp": timezone.now().isoformat(),
        })

    started = time.monotonic()

    def _elapsed_ms():
        return int((time.monotonic() - started) * 1000)

    payload = _json_body(request)
    if isinstance(payload, dict):
        logger.info(
            "Received Midtrans notification: order_id=%s transaction_status=%s payment_type=%s fraud_status=%s",
            payload.get("order_id"), payload.get("transaction_status"),
            payload.get("payment_type"), payload.get("fraud_status"),
        )

    try:
        result = process_notification(payload)
    except ReconciliationError as e:
        return _error_response(e, processing_time_ms=_elapsed_ms())
    except Exception as e:
        logger.exception("Webhook processing crashed")
        # A 5xx makes Midtrans retry the notification
        return _unexpected_error("Failed to process notification", e, processing_time_ms=_elapsed_ms())

    return JsonResponse({
        "success": True,
        "message": "Notification processed successfully",
        "order": result.order.as_status_dict(),
        "processing_time_ms": _elapsed_ms(),
    })
