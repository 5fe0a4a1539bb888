import hashlib
from unittest.mock import patch

import requests
from django.test import SimpleTestCase, override_settings

from .integrations import midtrans
from .integrations.midtrans import (
    MidtransNotFound, MidtransParseError, MidtransTransportError, TransactionSnapshot,
)


class FakeResponse:
    def __init__(self, status_code=200, data=None, text=None):
        self.status_code = status_code
        self._data = data
        self.text = text if text is not None else str(data)

    def json(self):
        if self._data is None:
            raise ValueError("No JSON object could be decoded")
        return self._data


SETTLED = {
    "status_code": "200",
    "transaction_id": "b7e1",
    "order_id": "ORD-1-AAAAA",
    "transaction_status": "settlement",
    "fraud_status": "accept",
    "payment_type": "qris",
    "transaction_time": "2024-01-01 10:00:00",
    "gross_amount": "50000.00",
}


@override_settings(MIDTRANS_SERVER_KEY="SB-Mid-server-abc", MIDTRANS_IS_PRODUCTION=False)
class GetTransactionStatusTests(SimpleTestCase):
    def test_returns_snapshot_and_uses_basic_auth(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(data=SETTLED)) as get:
            snap = midtrans.get_transaction_status("ORD-1-AAAAA")

        self.assertEqual(snap.transaction_status, "settlement")
        self.assertEqual(snap.fraud_status, "accept")
        self.assertEqual(snap.payment_type, "qris")
        self.assertEqual(snap.transaction_time, "2024-01-01 10:00:00")
        url = get.call_args.args[0]
        self.assertEqual(url, "https://api.sandbox.midtrans.com/v2/ORD-1-AAAAA/status")
        auth = get.call_args.kwargs["auth"]
        self.assertEqual((auth.username, auth.password), ("SB-Mid-server-abc", ""))

    @override_settings(MIDTRANS_IS_PRODUCTION=True)
    def test_production_base_url(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(data=SETTLED)) as get:
            midtrans.get_transaction_status("ORD-1-AAAAA")
        self.assertTrue(get.call_args.args[0].startswith("https://api.midtrans.com/"))

    def test_http_404_is_not_found(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(404, {"status_code": "404"})):
            with self.assertRaises(MidtransNotFound):
                midtrans.get_transaction_status("ORD-X")

    def test_body_404_is_not_found(self):
        body = {"status_code": "404", "status_message": "Transaction doesn't exist."}
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(200, body)):
            with self.assertRaises(MidtransNotFound):
                midtrans.get_transaction_status("ORD-X")

    def test_body_401_is_transport_error(self):
        body = {"status_code": "401", "status_message": "Unknown Merchant server_key/id"}
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(200, body)):
            with self.assertRaises(MidtransTransportError):
                midtrans.get_transaction_status("ORD-X")

    def test_expired_407_still_returns_snapshot(self):
        body = {"status_code": "407", "transaction_status": "expire", "order_id": "ORD-X"}
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(200, body)):
            snap = midtrans.get_transaction_status("ORD-X")
        self.assertEqual(snap.transaction_status, "expire")

    def test_http_500_is_transport_error(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(500, text="boom")):
            with self.assertRaises(MidtransTransportError):
                midtrans.get_transaction_status("ORD-X")

    def test_network_failure_is_transport_error(self):
        with patch("payments.integrations.midtrans.requests.get", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(MidtransTransportError):
                midtrans.get_transaction_status("ORD-X")

    def test_invalid_json_is_parse_error(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(200, None, "<html>")):
            with self.assertRaises(MidtransParseError):
                midtrans.get_transaction_status("ORD-X")

    def test_missing_transaction_status_is_parse_error(self):
        with patch("payments.integrations.midtrans.requests.get", return_value=FakeResponse(200, {"status_code": "200"})):
            with self.assertRaises(MidtransParseError):
                midtrans.get_transaction_status("ORD-X")

    @override_settings(MIDTRANS_SERVER_KEY="")
    def test_missing_server_key_makes_no_request(self):
        with patch("payments.integrations.midtrans.requests.get") as get:
            with self.assertRaises(MidtransTransportError):
                midtrans.get_transaction_status("ORD-X")
        get.assert_not_called()


class TransactionSnapshotTests(SimpleTestCase):
    def test_blank_optional_fields_become_none(self):
        snap = TransactionSnapshot.from_payload({"transaction_status": "pending", "fraud_status": ""})
        self.assertIsNone(snap.fraud_status)
        self.assertEqual(snap.payment_type, "")

    def test_as_dict_exposes_observability_fields(self):
        snap = TransactionSnapshot.from_payload(SETTLED)
        self.assertEqual(snap.as_dict(), {
            "transaction_id": "b7e1",
            "transaction_status": "settlement",
            "transaction_time": "2024-01-01 10:00:00",
            "payment_type": "qris",
            "fraud_status": "accept",
            "gross_amount": "50000.00",
        })


@override_settings(MIDTRANS_SERVER_KEY="SB-Mid-server-abc")
class VerifySignatureKeyTests(SimpleTestCase):
    def _notification(self, **overrides):
        data = {"order_id": "ORD-1-AAAAA", "status_code": "200", "gross_amount": "50000.00"}
        raw = data["order_id"] + data["status_code"] + data["gross_amount"] + "SB-Mid-server-abc"
        data["signature_key"] = hashlib.sha512(raw.encode()).hexdigest()
        data.update(overrides)
        return data

    def test_valid_signature(self):
        self.assertTrue(midtrans.verify_signature_key(self._notification()))

    def test_tampered_amount_is_rejected(self):
        self.assertFalse(midtrans.verify_signature_key(self._notification(gross_amount="1.00")))

    def test_missing_signature_is_rejected(self):
        self.assertFalse(midtrans.verify_signature_key(self._notification(signature_key="")))

    @override_settings(MIDTRANS_SERVER_KEY="")
    def test_without_server_key_nothing_verifies(self):
        with self.assertLogs("payments.integrations.midtrans", level="ERROR"):
            self.assertFalse(midtrans.verify_signature_key(self._notification()))
