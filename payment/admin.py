from django.contrib import admin, messages
from django.utils.translation import gettext_lazy as _

from .models import VendorPayout, WebhookLog
from .services.service import VendorPayoutService


@admin.register(VendorPayout)
class VendorPayoutAdmin(admin.ModelAdmin):
	list_display = ("id", "order", "shop", "vendor", "amount", "platform_fee", "total_amount", "status", "created_at")
	list_filter = ("status",)
	search_fields = ("order__order_number", "order__payment_reference", "shop__name", "vendor__email", "paystack_account_code")
	readonly_fields = ("amount", "platform_fee", "total_amount", "metadata", "created_at", "updated_at")
	actions = ("mark_completed", "mark_failed", "resettle_orders")

	def _move(self, request, queryset, target):
		moved = 0
		skipped = 0
		for payout in queryset:
			if not VendorPayoutService._can_transition(payout.status, target):
				skipped += 1
				continue
			payout.status = target
			payout.save(update_fields=["status", "updated_at"])
			moved += 1
		self.message_user(request, _("Payouts updated: %(ok)d, skipped: %(bad)d") % {"ok": moved, "bad": skipped}, messages.INFO)

	def mark_completed(self, request, queryset):
		self._move(request, queryset, VendorPayout.Status.COMPLETED)

	mark_completed.short_description = "Mark selected payouts as completed"

	def mark_failed(self, request, queryset):
		self._move(request, queryset, VendorPayout.Status.FAILED)

	mark_failed.short_description = "Mark selected payouts as failed"

	def resettle_orders(self, request, queryset):
		"""Re-run settlement for the orders behind the selected payouts, picking up groups that failed earlier."""
		service = VendorPayoutService()
		for order_id in set(queryset.values_list("order_id", flat=True)):
			result = service.settle(order_id)
			level = messages.SUCCESS if result.success and not result.failed else messages.WARNING
			self.message_user(request, _("Order %(id)s: %(msg)s") % {"id": order_id, "msg": result.message}, level)

	resettle_orders.short_description = "Re-run settlement for selected orders"


@admin.register(WebhookLog)
class WebhookLogAdmin(admin.ModelAdmin):
	list_display = ("id", "provider", "event_type", "reference", "processed", "created_at")
	list_filter = ("provider", "processed")
	search_fields = ("reference",)
