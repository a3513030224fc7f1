from django.db import models
import uuid


class Shop(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)

    owner = models.ForeignKey(
        "account.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="shops",
    )

    # Paystack split-payment linkage, set once the vendor registers a subaccount
    paystack_account_code = models.CharField(max_length=100, blank=True, null=True, db_index=True)
    paystack_account_active = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name

    @property
    def is_payout_ready(self) -> bool:
        return bool(self.owner_id and self.paystack_account_code and self.paystack_account_active)
