import uuid
from django.db import models
from django.contrib.auth import get_user_model
User = get_user_model()

from catalog.models import Product


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        UNPAID = "UNPAID", "Unpaid"
        PAID = "PAID", "Paid"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=20, unique=True)

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )

    # Amounts are integer minor currency units
    total = models.BigIntegerField()

    payment_reference = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_number

    @property
    def is_paid(self) -> bool:
        return self.payment_status == self.PaymentStatus.PAID


class OrderItem(models.Model):
    order = models.ForeignKey(Order, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey(Product, related_name="order_items", on_delete=models.PROTECT)

    # Snapshot fields
    product_name = models.CharField(max_length=255)
    price = models.BigIntegerField()
    quantity = models.PositiveIntegerField()
    total = models.BigIntegerField()

    def save(self, *args, **kwargs):
        if self.total is None:
            self.total = self.price * self.quantity
        if not self.product_name and self.product_id:
            self.product_name = self.product.name
        super().save(*args, **kwargs)


class OrderEvent(models.Model):
    class EventType(models.TextChoices):
        VENDOR_PAYOUTS_PROCESSED = "VENDOR_PAYOUTS_PROCESSED", "Vendor payouts processed"

    order = models.ForeignKey(Order, related_name="events", on_delete=models.CASCADE)
    event_type = models.CharField(max_length=50, choices=EventType.choices)
    description = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["order", "event_type"], name="order_event_type_idx"),
        ]

    def __str__(self):
        return f"{self.order_id} - {self.event_type}"
