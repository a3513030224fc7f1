from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Optional

from django.db import DEFAULT_DB_ALIAS
from django.db.models import F, Q, Sum

from payment.models import VendorPayout

from .service import build_pagination, validate_pagination

PENDING_STATUSES = (VendorPayout.Status.PENDING, VendorPayout.Status.PROCESSING)


class PayoutReportService:
    """Vendor-facing read models over persisted payouts."""

    def __init__(self, using: str = DEFAULT_DB_ALIAS) -> None:
        self.using = using

    def get_earnings(
        self,
        vendor_id: Any,
        start_date: Optional[date | datetime] = None,
        end_date: Optional[date | datetime] = None,
    ) -> Dict[str, Any]:
        queryset = self._filter_range(
            VendorPayout.objects.using(self.using).filter(vendor_id=vendor_id),
            start_date,
            end_date,
        )

        totals = queryset.aggregate(
            total_earnings=Sum(F("amount") + F("platform_fee")),
            total_payouts=Sum("amount", filter=Q(status=VendorPayout.Status.COMPLETED)),
            pending_payouts=Sum("amount", filter=Q(status__in=PENDING_STATUSES)),
            platform_fees=Sum("platform_fee"),
        )
        payouts = list(
            queryset.order_by("-created_at").values(
                "id",
                "order_id",
                "shop_id",
                "amount",
                "platform_fee",
                "total_amount",
                "status",
                "created_at",
            )
        )
        return {
            "total_earnings": totals["total_earnings"] or 0,
            "total_payouts": totals["total_payouts"] or 0,
            "pending_payouts": totals["pending_payouts"] or 0,
            "platform_fees": totals["platform_fees"] or 0,
            "payouts": payouts,
        }

    def get_payout_history(self, vendor_id: Any, page: Any = 1, per_page: Any = 10) -> Dict[str, Any]:
        page, per_page = validate_pagination(page, per_page)
        queryset = (
            VendorPayout.objects.using(self.using)
            .filter(vendor_id=vendor_id)
            .select_related("order")
            .order_by("-created_at", "-id")
        )
        total = queryset.count()
        offset = (page - 1) * per_page

        payouts = [
            {
                "id": payout.id,
                "order_id": payout.order_id,
                "shop_id": payout.shop_id,
                "amount": payout.amount,
                "platform_fee": payout.platform_fee,
                "total_amount": payout.total_amount,
                "status": payout.status,
                "created_at": payout.created_at,
                "order": {
                    "payment_reference": payout.order.payment_reference,
                    "total": payout.order.total,
                },
            }
            for payout in queryset[offset:offset + per_page]
        ]
        return {"payouts": payouts, "pagination": build_pagination(page, per_page, total)}

    @staticmethod
    def _filter_range(queryset, start_date, end_date):
        # Dates are whole days, inclusive at both ends
        if start_date is not None:
            if isinstance(start_date, datetime):
                queryset = queryset.filter(created_at__gte=start_date)
            else:
                queryset = queryset.filter(created_at__date__gte=start_date)
        if end_date is not None:
            if isinstance(end_date, datetime):
                queryset = queryset.filter(created_at__lte=end_date)
            else:
                queryset = queryset.filter(created_at__date__lte=end_date)
        return queryset
