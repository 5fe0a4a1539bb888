from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError
from django.test import TestCase, override_settings

from orders.models import Order
from . import services
from .auth import AuthContext
from .errors import BadRequest, OrderNotFound, PersistenceFailure, Unauthorized, UpstreamFailure
from .integrations.midtrans import MidtransNotFound, MidtransTransportError, TransactionSnapshot

STATUS_URL = "/api/payments/status"
AUTH = AuthContext(user_id=1, username="cashier")


def snapshot(status, fraud=None, **extra):
    data = {
        "transaction_status": status,
        "fraud_status": fraud,
        "payment_type": "qris",
        "transaction_time": "2024-01-01 10:00:00",
        "gross_amount": "50000.00",
        "transaction_id": "trx-1",
    }
    data.update(extra)
    return TransactionSnapshot.from_payload(data)


class ApplySnapshotTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(order_number="O1", total_amount=Decimal("50000.00"))

    def test_settlement_marks_order_paid_at_transaction_time(self):
        result = services.apply_snapshot(self.order, snapshot("settlement", "accept"))

        self.assertTrue(result.written)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "COMPLETED")
        self.assertEqual(self.order.payment_status, "PAID")
        self.assertEqual(self.order.payment_method, "qris")
        self.assertEqual(self.order.paid_at, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))

    def test_expire_cancels_order_without_paid_at(self):
        result = services.apply_snapshot(self.order, snapshot("expire"))

        self.assertTrue(result.written)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("CANCELLED", "FAILED"))
        self.assertIsNone(self.order.paid_at)

    def test_same_snapshot_twice_writes_once(self):
        first = services.apply_snapshot(self.order, snapshot("settlement", "accept"))
        self.order.refresh_from_db()
        state_after_first = (self.order.status, self.order.payment_status, self.order.paid_at, self.order.updated_at)

        second = services.apply_snapshot(self.order, snapshot("settlement", "accept"))
        self.order.refresh_from_db()

        self.assertTrue(first.written)
        self.assertFalse(second.written)
        self.assertEqual(
            (self.order.status, self.order.payment_status, self.order.paid_at, self.order.updated_at),
            state_after_first,
        )

    def test_unchanged_state_is_not_written(self):
        before = self.order.updated_at
        with patch("payments.services.Order.objects.filter") as filter_:
            result = services.apply_snapshot(self.order, snapshot("pending"))

        filter_.assert_not_called()
        self.assertFalse(result.written)
        self.order.refresh_from_db()
        self.assertEqual(self.order.updated_at, before)
        self.assertEqual(self.order.payment_method, "")

    def test_stale_pending_does_not_overwrite_paid(self):
        services.apply_snapshot(self.order, snapshot("settlement", "accept"))
        with self.assertLogs("payments.services", level="WARNING"):
            result = services.apply_snapshot(self.order, snapshot("pending"))

        self.assertFalse(result.written)
        self.assertTrue(result.stale)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("COMPLETED", "PAID"))
        self.assertIsNotNone(self.order.paid_at)

    def test_settlement_after_deny_marks_order_paid(self):
        services.apply_snapshot(self.order, snapshot("deny"))
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("CANCELLED", "FAILED"))

        result = services.apply_snapshot(self.order, snapshot("settlement", "accept"))

        self.assertTrue(result.written)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("COMPLETED", "PAID"))
        self.assertEqual(self.order.paid_at, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))

    def test_failed_order_ignores_late_pending(self):
        services.apply_snapshot(self.order, snapshot("expire"))
        with self.assertLogs("payments.services", level="WARNING"):
            result = services.apply_snapshot(self.order, snapshot("pending"))

        self.assertFalse(result.written)
        self.assertTrue(result.stale)
        self.order.refresh_from_db()
        self.assertEqual((self.order.status, self.order.payment_status), ("CANCELLED", "FAILED"))

    def test_long_payment_type_is_truncated(self):
        result = services.apply_snapshot(self.order, snapshot("settlement", "accept", payment_type="x" * 100))

        self.assertTrue(result.written)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_method, "x" * 64)

    def test_challenged_capture_is_logged_and_left_pending(self):
        with self.assertLogs("payments.services", level="WARNING") as cm:
            result = services.apply_snapshot(self.order, snapshot("capture", "challenge"))

        self.assertFalse(result.written)
        self.assertFalse(result.mapped.recognized)
        self.assertIn("Unrecognised Midtrans state", cm.output[0])

    def test_pending_on_preparing_order_keeps_order_status(self):
        Order.objects.filter(pk=self.order.pk).update(status="PREPARING")
        result = services.apply_snapshot(self.order, snapshot("pending"))
        self.assertFalse(result.written)
        self.assertEqual(result.order.status, "PREPARING")

    def test_lost_compare_and_swap_does_not_write(self):
        class ZeroRows:
            def update(self, **fields):
                return 0

        with patch("payments.services.Order.objects.filter", return_value=ZeroRows()), \
                self.assertLogs("payments.services", level="WARNING"):
            result = services.apply_snapshot(self.order, snapshot("settlement"))

        self.assertFalse(result.written)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "PENDING")

    def test_missing_transaction_time_falls_back_to_now(self):
        with self.assertLogs("payments.services", level="WARNING"):
            services.apply_snapshot(self.order, snapshot("settlement", transaction_time=None))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "PAID")
        self.assertIsNotNone(self.order.paid_at)

    def test_database_error_becomes_persistence_failure(self):
        with patch("payments.services.Order.objects.filter", side_effect=DatabaseError("disk full")):
            with self.assertRaises(PersistenceFailure) as cm:
                services.apply_snapshot(self.order, snapshot("settlement"))
        self.assertEqual(cm.exception.details, "disk full")


class FindOrderTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(order_number="O1")

    def test_by_id_and_by_number(self):
        self.assertEqual(services.find_order(order_id=str(self.order.pk)), self.order)
        self.assertEqual(services.find_order(order_number="O1"), self.order)

    def test_neither_or_both_is_bad_request(self):
        with self.assertRaises(BadRequest):
            services.find_order()
        with self.assertRaises(BadRequest):
            services.find_order(order_id=str(self.order.pk), order_number="O1")

    def test_malformed_id_is_bad_request(self):
        with self.assertRaises(BadRequest):
            services.find_order(order_id="not-a-uuid")

    def test_unknown_order_is_not_found(self):
        with self.assertRaises(OrderNotFound):
            services.find_order(order_number="NOPE")


class CheckPaymentStatusTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(order_number="O1")

    def test_requires_auth_context(self):
        with patch("payments.services.midtrans.get_transaction_status") as get:
            with self.assertRaises(Unauthorized):
                services.check_payment_status(None, order_number="O1")
        get.assert_not_called()

    def test_gateway_not_found_returns_local_state(self):
        with patch("payments.services.midtrans.get_transaction_status", side_effect=MidtransNotFound("404")):
            result = services.check_payment_status(AUTH, order_number="O1")
        self.assertTrue(result.gateway_unknown)
        self.assertFalse(result.written)
        self.assertEqual(result.order, self.order)

    def test_gateway_failure_is_upstream_failure(self):
        with patch("payments.services.midtrans.get_transaction_status", side_effect=MidtransTransportError("timeout")):
            with self.assertRaises(UpstreamFailure) as cm:
                services.check_payment_status(AUTH, order_number="O1")
        self.assertEqual(cm.exception.details, "timeout")

    def test_queries_gateway_by_order_number(self):
        with patch("payments.services.midtrans.get_transaction_status", return_value=snapshot("pending")) as get:
            services.check_payment_status(AUTH, order_id=str(self.order.pk))
        get.assert_called_once_with("O1")


class BatchPaymentStatusTests(TestCase):
    def test_returns_known_orders_only(self):
        a = Order.objects.create(order_number="A")
        b = Order.objects.create(order_number="B", payment_status="PAID", status="COMPLETED")
        orders = services.batch_payment_status(AUTH, [str(a.pk), str(b.pk), "00000000-0000-0000-0000-000000000000"])
        self.assertEqual({o.order_number for o in orders}, {"A", "B"})

    def test_validation(self):
        with self.assertRaises(Unauthorized):
            services.batch_payment_status(None, ["x"])
        with self.assertRaises(BadRequest):
            services.batch_payment_status(AUTH, [])
        with self.assertRaises(BadRequest):
            services.batch_payment_status(AUTH, "not-a-list")
        with self.assertRaises(BadRequest):
            services.batch_payment_status(AUTH, ["not-a-uuid"])
        with override_settings(PAYMENTS_BATCH_STATUS_LIMIT=2):
            with self.assertRaises(BadRequest):
                services.batch_payment_status(AUTH, ["a", "b", "c"])


class PaymentStatusViewTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user("cashier", password="pw")
        self.order = Order.objects.create(order_number="O1", total_amount=Decimal("50000.00"))

    def test_unauthenticated_is_401(self):
        resp = self.client.get(STATUS_URL, {"orderNumber": "O1"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "UNAUTHORIZED")

    def test_missing_identifiers_is_400(self):
        self.client.force_login(self.user)
        resp = self.client.get(STATUS_URL)
        self.assertEqual(resp.status_code, 400)
        body = resp.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["code"], "BAD_REQUEST")
        self.assertTrue(body["error"])

    def test_both_identifiers_is_400(self):
        self.client.force_login(self.user)
        resp = self.client.get(STATUS_URL, {"orderNumber": "O1", "orderId": str(self.order.pk)})
        self.assertEqual(resp.status_code, 400)

    def test_unknown_order_is_404(self):
        self.client.force_login(self.user)
        resp = self.client.get(STATUS_URL, {"orderNumber": "DOES-NOT-EXIST"})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["code"], "ORDER_NOT_FOUND")

    def test_settlement_updates_order_and_echoes_gateway(self):
        self.client.force_login(self.user)
        with patch("payments.services.midtrans.get_transaction_status", return_value=snapshot("settlement", "accept")):
            resp = self.client.get(STATUS_URL, {"orderNumber": "O1"})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["order"], {
            "id": str(self.order.pk),
            "orderNumber": "O1",
            "status": "COMPLETED",
            "paymentStatus": "PAID",
        })
        self.assertEqual(body["midtrans"]["transaction_status"], "settlement")
        self.assertEqual(body["midtrans"]["transaction_id"], "trx-1")
        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_at, datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))

    def test_gateway_not_found_echoes_local_state(self):
        self.client.force_login(self.user)
        with patch("payments.services.midtrans.get_transaction_status", side_effect=MidtransNotFound("404")):
            resp = self.client.get(STATUS_URL, {"orderId": str(self.order.pk)})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertIsNone(body["midtrans"])
        self.assertEqual(body["order"]["status"], "PENDING")
        self.assertEqual(body["order"]["paymentStatus"], "PENDING")
        self.assertEqual(body["message"], "Transaction not found in Midtrans")

    def test_gateway_failure_is_500_with_details(self):
        self.client.force_login(self.user)
        with patch("payments.services.midtrans.get_transaction_status", side_effect=MidtransTransportError("HTTP 503")):
            resp = self.client.get(STATUS_URL, {"orderNumber": "O1"})
        self.assertEqual(resp.status_code, 500)
        body = resp.json()
        self.assertEqual(body["code"], "UPSTREAM_FAILURE")
        self.assertEqual(body["details"], "HTTP 503")

    def test_unexpected_error_is_500(self):
        self.client.force_login(self.user)
        with patch("payments.views.check_payment_status", side_effect=RuntimeError("kaboom")), \
                self.assertLogs("payments.views", level="ERROR"):
            resp = self.client.get(STATUS_URL, {"orderNumber": "O1"})
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["details"], "kaboom")

    def test_batch_post(self):
        self.client.force_login(self.user)
        resp = self.client.post(STATUS_URL, data={"orderIds": [str(self.order.pk)]}, content_type="application/json")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["total"], 1)
        self.assertEqual(body["orders"][0]["orderNumber"], "O1")

    def test_batch_post_unauthenticated(self):
        resp = self.client.post(STATUS_URL, data={"orderIds": [str(self.order.pk)]}, content_type="application/json")
        self.assertEqual(resp.status_code, 401)

    def test_batch_post_invalid_json(self):
        self.client.force_login(self.user)
        resp = self.client.post(STATUS_URL, data="{oops", content_type="application/json")
        self.assertEqual(resp.status_code, 400)


class ReconcilePendingOrdersCommandTests(TestCase):
    def setUp(self):
        old = datetime.now(timezone.utc) - timedelta(hours=1)
        self.paid_later = Order.objects.create(order_number="OLD-1")
        self.unknown = Order.objects.create(order_number="OLD-2")
        self.fresh = Order.objects.create(order_number="NEW-1")
        Order.objects.filter(order_number__startswith="OLD").update(updated_at=old)

    def _fake_status(self, order_number):
        if order_number == "OLD-1":
            return snapshot("settlement", "accept")
        raise MidtransNotFound(order_number)

    def test_polls_stale_pending_orders(self):
        out = StringIO()
        with patch("payments.services.midtrans.get_transaction_status", side_effect=self._fake_status) as get:
            call_command("reconcile_pending_orders", "--sleep", "0", "--older-than-minutes", "10", stdout=out)

        polled = sorted(c.args[0] for c in get.call_args_list)
        self.assertEqual(polled, ["OLD-1", "OLD-2"])
        self.paid_later.refresh_from_db()
        self.assertEqual(self.paid_later.payment_status, "PAID")
        self.assertIn("Checked 2, updated 1 orders.", out.getvalue())
        self.assertIn("OLD-2: not found in Midtrans", out.getvalue())

    def test_gateway_errors_do_not_stop_the_run(self):
        out = StringIO()
        with patch("payments.services.midtrans.get_transaction_status", side_effect=MidtransTransportError("down")):
            call_command("reconcile_pending_orders", "--sleep", "0", "--older-than-minutes", "10", stdout=out)
        self.assertIn("Checked 2, updated 0 orders.", out.getvalue())

    def test_nothing_to_do(self):
        Order.objects.all().delete()
        out = StringIO()
        call_command("reconcile_pending_orders", "--sleep", "0", stdout=out)
        self.assertIn("No pending orders to reconcile.", out.getvalue())
