import time

from django.conf import settings
from django.core.management.base import BaseCommand

from payments.errors import ReconciliationError
from payments.services import reconcile_order, stale_pending_orders


class Command(BaseCommand):
    help = "Poll Midtrans transaction status for pending orders and update local DB"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument(
            "--older-than-minutes", type=int,
            default=getattr(settings, "PAYMENTS_RECONCILE_OLDER_THAN_MINUTES", 1),
        )

    def handle(self, *args, **opts):
        orders = list(stale_pending_orders(opts["older_than_minutes"], opts["max"]))
        if not orders:
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        updated = 0
        for i, o in enumerate(orders):
            if i and opts["sleep"]:
                time.sleep(opts["sleep"])
            try:
                result = reconcile_order(o)
            except ReconciliationError as e:
                self.stdout.write(self.style.WARNING(f"{o.order_number}: {e.message} ({e.details})"))
                continue

            if result.gateway_unknown:
                self.stdout.write(f"{o.order_number}: not found in Midtrans")
            elif result.written:
                updated += 1
                self.stdout.write(self.style.SUCCESS(
                    f"Updated {o.order_number} -> {result.order.status}/{result.order.payment_status}"
                ))
            else:
                self.stdout.write(f"{o.order_number}: unchanged ({result.order.payment_status})")

        self.stdout.write(self.style.SUCCESS(f"Checked {len(orders)}, updated {updated} orders."))
