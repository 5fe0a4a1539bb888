import uuid

import django.utils.timezone
from django.db import migrations, models

import orders.utils


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(db_index=True, default=orders.utils.generate_order_number, max_length=50, unique=True)),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("PREPARING", "Preparing"), ("READY", "Ready"), ("COMPLETED", "Completed"), ("CANCELLED", "Cancelled"), ("REFUNDED", "Refunded")], db_index=True, default="PENDING", max_length=16)),
                ("payment_status", models.CharField(choices=[("PENDING", "Pending"), ("PAID", "Paid"), ("FAILED", "Failed"), ("REFUNDED", "Refunded")], db_index=True, default="PENDING", max_length=16)),
                ("payment_method", models.CharField(blank=True, default="", max_length=64)),
                ("total_amount", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
