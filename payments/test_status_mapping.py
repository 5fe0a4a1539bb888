from django.test import SimpleTestCase

from .status_mapping import allows_transition, is_terminal, map_transaction_status


class MapTransactionStatusTests(SimpleTestCase):
    def test_capture_and_settlement_with_trusted_fraud_status_are_paid(self):
        for status in ("capture", "settlement"):
            for fraud in ("accept", None, ""):
                with self.subTest(status=status, fraud=fraud):
                    mapped = map_transaction_status(status, fraud, "PENDING")
                    self.assertEqual((mapped.order_status, mapped.payment_status), ("COMPLETED", "PAID"))
                    self.assertTrue(mapped.recognized)

    def test_pending_keeps_order_status(self):
        mapped = map_transaction_status("pending", None, "PREPARING")
        self.assertEqual((mapped.order_status, mapped.payment_status), ("PREPARING", "PENDING"))
        self.assertTrue(mapped.recognized)

    def test_deny_expire_cancel_fail_the_order(self):
        for status in ("deny", "expire", "cancel"):
            with self.subTest(status=status):
                mapped = map_transaction_status(status, "accept", "PENDING")
                self.assertEqual((mapped.order_status, mapped.payment_status), ("CANCELLED", "FAILED"))

    def test_challenged_capture_stays_pending(self):
        mapped = map_transaction_status("capture", "challenge", "PENDING")
        self.assertEqual((mapped.order_status, mapped.payment_status), ("PENDING", "PENDING"))
        self.assertFalse(mapped.recognized)

    def test_denied_settlement_stays_pending(self):
        mapped = map_transaction_status("settlement", "deny", "READY")
        self.assertEqual((mapped.order_status, mapped.payment_status), ("READY", "PENDING"))
        self.assertFalse(mapped.recognized)

    def test_unknown_status_is_conservative(self):
        for status in ("refund", "authorize", "", None):
            with self.subTest(status=status):
                mapped = map_transaction_status(status, None, "PENDING")
                self.assertEqual((mapped.order_status, mapped.payment_status), ("PENDING", "PENDING"))
                self.assertFalse(mapped.recognized)

    def test_input_is_normalised(self):
        mapped = map_transaction_status(" Settlement ", "ACCEPT", "PENDING")
        self.assertEqual(mapped.payment_status, "PAID")

    def test_terminal_payment_statuses(self):
        self.assertTrue(is_terminal("PAID"))
        self.assertTrue(is_terminal("FAILED"))
        self.assertTrue(is_terminal("REFUNDED"))
        self.assertFalse(is_terminal("PENDING"))

    def test_allowed_transitions(self):
        self.assertTrue(allows_transition("PENDING", "PAID"))
        self.assertTrue(allows_transition("PENDING", "FAILED"))
        self.assertTrue(allows_transition("FAILED", "PAID"))
        self.assertFalse(allows_transition("FAILED", "PENDING"))
        self.assertFalse(allows_transition("PAID", "PENDING"))
        self.assertFalse(allows_transition("PAID", "FAILED"))
        self.assertFalse(allows_transition("REFUNDED", "PAID"))
