# payment/services/service.py
from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DEFAULT_DB_ALIAS, IntegrityError, transaction

from order.models import Order, OrderEvent
from payment.models import VendorPayout

logger = logging.getLogger(__name__)

DEFAULT_FEE_RATE = Decimal("0.05")
MAX_PER_PAGE = 100


class PayoutServiceError(Exception):
    """Base exception for vendor settlement errors."""

    code = "PAYOUT_ERROR"


class OrderNotFoundError(PayoutServiceError):
    code = "ORDER_NOT_FOUND"


class OrderNotPaidError(PayoutServiceError):
    code = "ORDER_NOT_PAID"


class StoreVendorMissingError(PayoutServiceError):
    code = "STORE_VENDOR_MISSING"


class GatewayAccountMissingError(PayoutServiceError):
    code = "GATEWAY_ACCOUNT_MISSING"


class StoreNotFoundError(PayoutServiceError):
    code = "STORE_NOT_FOUND"


class PayoutValidationError(PayoutServiceError):
    """Raised when input to an account or report operation is malformed."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class PaymentConfigurationError(PayoutServiceError):
    """Raised when required Paystack or payout settings are missing."""

    code = "CONFIGURATION_ERROR"


class PaymentGatewayError(PayoutServiceError):
    """Raised when a Paystack API call does not succeed."""

    code = "GATEWAY_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class PayoutLineItem:
    order_item_id: int
    product_id: str
    product_name: str
    quantity: int
    price: int
    total: int

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VendorGroup:
    vendor_id: Optional[str]
    shop_id: str
    shop_name: str
    account_code: Optional[str]
    account_active: bool
    items: List[PayoutLineItem] = field(default_factory=list)
    subtotal: int = 0

    def add(self, item: PayoutLineItem) -> None:
        self.items.append(item)
        self.subtotal += item.total


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: int
    platform_fee: int
    vendor_amount: int


@dataclass(frozen=True)
class PayoutMetadata:
    items: List[PayoutLineItem]
    order_reference: Optional[str]
    fee_rate: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.as_dict() for item in self.items],
            "order_reference": self.order_reference,
            "fee_rate": str(self.fee_rate),
        }


@dataclass(frozen=True)
class SplitShare:
    account_code: str
    amount: int
    share: int


@dataclass(frozen=True)
class PayoutResult:
    """Outcome of one vendor group inside a settle call."""

    vendor_id: Optional[str]
    shop_id: str
    amount: int
    status: str
    payout_id: Optional[str] = None
    platform_fee: int = 0
    total_amount: int = 0
    created: bool = False
    error_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != VendorPayout.Status.FAILED

    @classmethod
    def from_payout(cls, payout: VendorPayout, created: bool) -> "PayoutResult":
        return cls(
            vendor_id=str(payout.vendor_id),
            shop_id=str(payout.shop_id),
            amount=payout.amount,
            status=payout.status,
            payout_id=str(payout.id),
            platform_fee=payout.platform_fee,
            total_amount=payout.total_amount,
            created=created,
        )

    @classmethod
    def failure(cls, group: VendorGroup, exc: Exception) -> "PayoutResult":
        return cls(
            vendor_id=group.vendor_id,
            shop_id=group.shop_id,
            amount=0,
            status=VendorPayout.Status.FAILED,
            error_code=getattr(exc, "code", PayoutServiceError.code),
            error=str(exc) or exc.__class__.__name__,
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SettleResult:
    success: bool
    message: str
    payouts: List[PayoutResult] = field(default_factory=list)
    error_code: Optional[str] = None

    @property
    def failed(self) -> List[PayoutResult]:
        return [p for p in self.payouts if not p.ok]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "error_code": self.error_code,
            "payouts": [p.as_dict() for p in self.payouts],
        }


def validate_pagination(page: Any, per_page: Any) -> tuple:
    try:
        page = int(page)
        per_page = int(per_page)
    except (TypeError, ValueError) as exc:
        raise PayoutValidationError("page and per_page must be integers") from exc
    if page < 1:
        raise PayoutValidationError("page must be at least 1")
    if per_page < 1 or per_page > MAX_PER_PAGE:
        raise PayoutValidationError(f"per_page must be between 1 and {MAX_PER_PAGE}")
    return page, per_page


def build_pagination(page: int, per_page: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": math.ceil(total / per_page) if per_page else 0,
    }


class VendorPayoutService:
    """Splits a paid order into per-vendor payout obligations."""

    _ALLOWED_TRANSITIONS = {
        VendorPayout.Status.PENDING: {
            VendorPayout.Status.PROCESSING,
            VendorPayout.Status.COMPLETED,
            VendorPayout.Status.FAILED,
        },
        VendorPayout.Status.PROCESSING: {VendorPayout.Status.COMPLETED, VendorPayout.Status.FAILED},
        VendorPayout.Status.COMPLETED: set(),
        VendorPayout.Status.FAILED: set(),
    }

    def __init__(self, fee_rate: Decimal | str | float | None = None, using: str = DEFAULT_DB_ALIAS) -> None:
        self.fee_rate = self._resolve_fee_rate(fee_rate)
        self.using = using

    # -----------------------------
    # Decomposition
    # -----------------------------
    def decompose(self, order_id: Any) -> List[VendorGroup]:
        order = self._load_paid_order(order_id)
        return self._group_items(order)

    def calculate_split(self, order_id: Any) -> List[SplitShare]:
        """
        Percentage share of the order total per linked subaccount, for building
        a Paystack split at checkout. Shops without a subaccount are left out.
        """
        order = self._load_order(order_id)
        if order.total <= 0:
            raise PayoutValidationError("Order total must be greater than 0 to compute a split")

        amounts: Dict[str, int] = {}
        for group in self._group_items(order):
            if not group.account_code:
                continue
            amounts[group.account_code] = amounts.get(group.account_code, 0) + group.subtotal

        return [
            SplitShare(
                account_code=code,
                amount=amount,
                share=self._round_half_up(Decimal(amount) * Decimal(100) / Decimal(order.total)),
            )
            for code, amount in amounts.items()
        ]

    # -----------------------------
    # Settlement
    # -----------------------------
    def settle(self, order_id: Any) -> SettleResult:
        try:
            order = self._load_paid_order(order_id)
        except (OrderNotFoundError, OrderNotPaidError) as exc:
            logger.warning("Vendor payouts not processed for order=%s: %s", order_id, exc)
            return SettleResult(success=False, message=str(exc), error_code=exc.code)

        groups = self._group_items(order)
        results = [self._settle_group(order, group) for group in groups]

        attempted = [r for r in results if r.created or not r.ok]
        if results and not attempted:
            logger.info("Vendor payouts already processed for order=%s", order.id)
            return SettleResult(success=True, message="Payouts already processed", payouts=results)

        self._record_event(order, results)
        failed = sum(1 for r in results if not r.ok)
        logger.info(
            "Vendor payouts processed for order=%s: vendors=%d failed=%d",
            order.id,
            len(results),
            failed,
        )
        return SettleResult(
            success=True,
            message=f"Processed payouts for {len(results)} vendors",
            payouts=results,
        )

    def calculate_fee(self, subtotal: int) -> FeeBreakdown:
        if subtotal < 0:
            raise PayoutValidationError("subtotal cannot be negative")
        platform_fee = self._round_half_up(Decimal(subtotal) * self.fee_rate)
        return FeeBreakdown(
            subtotal=subtotal,
            platform_fee=platform_fee,
            vendor_amount=subtotal - platform_fee,
        )

    def _settle_group(self, order: Order, group: VendorGroup) -> PayoutResult:
        try:
            self._validate_group(group)
            existing = self._existing_payout(order, group)
            if existing:
                return PayoutResult.from_payout(existing, created=False)
            fees = self.calculate_fee(group.subtotal)
        except PayoutServiceError as exc:
            logger.warning("Skipping payout for order=%s shop=%s: %s", order.id, group.shop_id, exc)
            return PayoutResult.failure(group, exc)
        except Exception as exc:
            logger.exception("Failed to prepare payout for order=%s shop=%s", order.id, group.shop_id)
            return PayoutResult.failure(group, exc)

        metadata = PayoutMetadata(
            items=list(group.items),
            order_reference=order.payment_reference,
            fee_rate=self.fee_rate,
        )
        try:
            with transaction.atomic(using=self.using):
                payout = VendorPayout.objects.using(self.using).create(
                    vendor_id=group.vendor_id,
                    shop_id=group.shop_id,
                    order=order,
                    amount=fees.vendor_amount,
                    platform_fee=fees.platform_fee,
                    total_amount=fees.subtotal,
                    status=VendorPayout.Status.PENDING,
                    paystack_account_code=group.account_code or "",
                    metadata=metadata.as_dict(),
                )
                # Handed off to Paystack's split settlement; confirmation arrives via reconciliation.
                self._transition(payout, VendorPayout.Status.PROCESSING)
        except IntegrityError as exc:
            existing = self._existing_payout(order, group)
            if existing:
                logger.info("Payout for order=%s shop=%s created concurrently", order.id, group.shop_id)
                return PayoutResult.from_payout(existing, created=False)
            logger.exception("Failed to persist payout for order=%s shop=%s", order.id, group.shop_id)
            return PayoutResult.failure(group, exc)
        except Exception as exc:
            logger.exception("Failed to process payout for order=%s vendor=%s", order.id, group.vendor_id)
            return PayoutResult.failure(group, exc)

        return PayoutResult.from_payout(payout, created=True)

    def _existing_payout(self, order: Order, group: VendorGroup) -> Optional[VendorPayout]:
        return VendorPayout.objects.using(self.using).filter(order=order, shop_id=group.shop_id).first()

    def _transition(self, payout: VendorPayout, target: str) -> None:
        if not self._can_transition(payout.status, target):
            raise PayoutServiceError(f"Invalid payout transition {payout.status} -> {target}")
        payout.status = target
        payout.save(using=self.using, update_fields=["status", "updated_at"])

    @classmethod
    def _can_transition(cls, current: str, target: str) -> bool:
        return target in cls._ALLOWED_TRANSITIONS.get(current, set())

    @staticmethod
    def _validate_group(group: VendorGroup) -> None:
        if not group.vendor_id:
            raise StoreVendorMissingError(f"Shop {group.shop_id} has no associated vendor")
        if not group.account_code or not group.account_active:
            raise GatewayAccountMissingError(f"Shop {group.shop_id} has no active Paystack account configured")

    def _record_event(self, order: Order, results: List[PayoutResult]) -> OrderEvent:
        return OrderEvent.objects.using(self.using).create(
            order=order,
            event_type=OrderEvent.EventType.VENDOR_PAYOUTS_PROCESSED,
            description=f"Vendor payouts processed for {len(results)} vendors",
            metadata={
                "payouts": [r.as_dict() for r in results],
                "succeeded": sum(1 for r in results if r.ok),
                "failed": sum(1 for r in results if not r.ok),
            },
        )

    # -----------------------------
    # Loading / grouping
    # -----------------------------
    def _load_order(self, order_id: Any) -> Order:
        try:
            order = Order.objects.using(self.using).filter(id=order_id).first()
        except (DjangoValidationError, ValueError):
            order = None
        if not order:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return order

    def _load_paid_order(self, order_id: Any) -> Order:
        order = self._load_order(order_id)
        if not order.is_paid:
            raise OrderNotPaidError(f"Order {order.id} payment not completed")
        return order

    def _group_items(self, order: Order) -> List[VendorGroup]:
        groups: Dict[tuple, VendorGroup] = {}
        items = order.items.select_related("product__shop").order_by("id")
        for item in items:
            shop = item.product.shop
            vendor_id = str(shop.owner_id) if shop.owner_id else None
            key = (vendor_id, str(shop.id))
            group = groups.get(key)
            if group is None:
                group = VendorGroup(
                    vendor_id=vendor_id,
                    shop_id=str(shop.id),
                    shop_name=shop.name,
                    account_code=shop.paystack_account_code,
                    account_active=shop.paystack_account_active,
                )
                groups[key] = group
            group.add(
                PayoutLineItem(
                    order_item_id=item.id,
                    product_id=str(item.product_id),
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price=item.price,
                    total=item.total,
                )
            )
        return list(groups.values())

    # -----------------------------
    # Money helpers
    # -----------------------------
    @staticmethod
    def _round_half_up(value: Decimal) -> int:
        return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    @staticmethod
    def _resolve_fee_rate(fee_rate: Decimal | str | float | None) -> Decimal:
        raw = fee_rate if fee_rate is not None else getattr(settings, "VENDOR_PAYOUT_FEE_RATE", DEFAULT_FEE_RATE)
        try:
            rate = Decimal(str(raw))
        except (InvalidOperation, ValueError) as exc:
            raise PaymentConfigurationError(f"Invalid payout fee rate: {raw!r}") from exc
        if rate < 0 or rate >= 1:
            raise PaymentConfigurationError("Payout fee rate must be in the range [0, 1)")
        return rate
