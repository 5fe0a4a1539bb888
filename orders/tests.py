from django.contrib.auth import get_user_model
from django.test import TestCase

from .models import Order
from .utils import generate_order_number


class OrderNumberTests(TestCase):
    def test_generated_numbers_are_distinct_and_well_formed(self):
        numbers = {generate_order_number() for _ in range(20)}
        self.assertEqual(len(numbers), 20)
        for number in numbers:
            self.assertRegex(number, r"^ORD-\d{13}-[A-Z0-9]{5}$")


class OrderModelTests(TestCase):
    def test_defaults(self):
        order = Order.objects.create(total_amount="10.00")
        self.assertEqual((order.status, order.payment_status), ("PENDING", "PENDING"))
        self.assertIsNone(order.paid_at)
        self.assertTrue(order.order_number.startswith("ORD-"))

    def test_as_status_dict(self):
        order = Order.objects.create(order_number="O1", status="COMPLETED", payment_status="PAID")
        self.assertEqual(order.as_status_dict(), {
            "id": str(order.pk),
            "orderNumber": "O1",
            "status": "COMPLETED",
            "paymentStatus": "PAID",
        })

    def test_save_with_update_fields_bumps_updated_at(self):
        order = Order.objects.create(order_number="O1")
        before = order.updated_at
        order.customer_name = "Budi"
        order.save(update_fields=["customer_name"])
        order.refresh_from_db()
        self.assertGreaterEqual(order.updated_at, before)
        self.assertEqual(order.customer_name, "Budi")


class OrderAdminTests(TestCase):
    def test_changelist_renders(self):
        admin_user = get_user_model().objects.create_superuser("admin", "admin@example.com", "pw")
        Order.objects.create(order_number="O1")
        self.client.force_login(admin_user)
        resp = self.client.get("/admin/orders/order/")
        self.assertEqual(resp.status_code, 200)
        self.assertContains(resp, "O1")
