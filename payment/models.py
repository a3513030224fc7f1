# payment/models.py

import uuid
from django.core.exceptions import ValidationError
from django.db import models
from django.conf import settings
from order.models import Order
from shop.models import Shop


class VendorPayout(models.Model):

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PROCESSING = "PROCESSING", "Processing"
        COMPLETED = "COMPLETED", "Completed"
        FAILED = "FAILED", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    vendor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="vendor_payouts",
    )
    shop = models.ForeignKey(
        Shop,
        on_delete=models.PROTECT,
        related_name="vendor_payouts",
    )
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="vendor_payouts",
    )

    # Minor currency units; amount + platform_fee == total_amount
    amount = models.BigIntegerField()
    platform_fee = models.BigIntegerField()
    total_amount = models.BigIntegerField()

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING
    )

    paystack_account_code = models.CharField(max_length=100, blank=True)

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["order", "shop"], name="uniq_vendor_payout_order_shop"),
        ]
        indexes = [
            models.Index(fields=["vendor", "created_at"], name="payout_vendor_created_idx"),
            models.Index(fields=["status"], name="payout_status_idx"),
        ]

    def __str__(self):
        return f"{self.order_id} - {self.shop_id} - {self.status}"

    def clean(self):
        super().clean()
        if self.amount + self.platform_fee != self.total_amount:
            raise ValidationError("amount + platform_fee must equal total_amount")
        if self.amount < 0 or self.platform_fee < 0:
            raise ValidationError("Payout amounts cannot be negative")


class WebhookLog(models.Model):

    provider = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100)

    reference = models.CharField(max_length=150)
    payload = models.JSONField()

    processed = models.BooleanField(default=False)
    processing_attempts = models.IntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["reference"], name="webhook_reference_idx"),
            models.Index(fields=["processed"], name="webhook_processed_idx"),
        ]
