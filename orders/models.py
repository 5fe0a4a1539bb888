import uuid

from django.db import models
from django.utils import timezone

from .utils import generate_order_number


class Order(models.Model):
    STATUS_CHOICES = [
        ("PENDING", "Pending"),
        ("PREPARING", "Preparing"),
        ("READY", "Ready"),
        ("COMPLETED", "Completed"),
        ("CANCELLED", "Cancelled"),
        ("REFUNDED", "Refunded"),
    ]
    PAYMENT_STATUS_CHOICES = [
        ("PENDING", "Pending"),
        ("PAID", "Paid"),
        ("FAILED", "Failed"),
        ("REFUNDED", "Refunded"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=50, unique=True, db_index=True, default=generate_order_number)

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="PENDING", db_index=True)
    payment_status = models.CharField(max_length=16, choices=PAYMENT_STATUS_CHOICES, default="PENDING", db_index=True)
    payment_method = models.CharField(max_length=64, blank=True, default="")  # gateway payment_type

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    customer_name = models.CharField(max_length=255, blank=True, default="")

    paid_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    # Reconciliation writes go through QuerySet.update(), so this is set explicitly there.
    updated_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-created_at"]

    def as_status_dict(self) -> dict:
        return {
            "id": str(self.id),
            "orderNumber": self.order_number,
            "status": self.status,
            "paymentStatus": self.payment_status,
        }

    def save(self, *args, **kwargs):
        self.updated_at = timezone.now()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "updated_at" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["updated_at"]
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.order_number} ({self.status}/{self.payment_status})"
