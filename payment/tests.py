import hashlib
import hmac
import json
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import requests
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from account.models import User
from catalog.models import Product
from order.models import Order, OrderEvent, OrderItem
from payment.models import VendorPayout, WebhookLog
from payment.services.accounts import SubaccountDetails, VendorAccountService
from payment.services.paystack_sdk import PaystackAPIError, PaystackSDK
from payment.services.reports import PayoutReportService
from payment.services.service import (
    GatewayAccountMissingError,
    PaymentConfigurationError,
    PaymentGatewayError,
    PayoutValidationError,
    StoreNotFoundError,
    VendorPayoutService,
)
from shop.models import Shop


def _subaccount_payload(code="ACCT_new", active=True, **overrides):
    data = {
        "id": 55,
        "subaccount_code": code,
        "business_name": "Mama Put Kitchen",
        "settlement_bank": "058",
        "account_number": "0123456789",
        "percentage_charge": 5,
        "active": active,
        "createdAt": "2024-05-01T10:00:00.000Z",
        "updatedAt": "2024-05-01T10:00:00.000Z",
    }
    data.update(overrides)
    return {"status": True, "message": "Subaccount created", "data": data}


class TwoVendorOrderMixin:
    """An order of 10000 split 6000/4000 between two linked shops."""

    def build_two_vendor_order(self, payment_status=Order.PaymentStatus.PAID):
        self.vendor_a = User.objects.create_user(email="vendor-a@shop.com", password="Pass123!", role="VENDOR")
        self.vendor_b = User.objects.create_user(email="vendor-b@shop.com", password="Pass123!", role="VENDOR")
        self.customer = User.objects.create_user(email="customer@shop.com", password="Pass123!")

        self.shop_a = Shop.objects.create(
            name="Shop A",
            owner=self.vendor_a,
            paystack_account_code="ACCT_a",
            paystack_account_active=True,
        )
        self.shop_b = Shop.objects.create(
            name="Shop B",
            owner=self.vendor_b,
            paystack_account_code="ACCT_b",
            paystack_account_active=True,
        )
        self.product_a = Product.objects.create(name="Jollof Tray", shop=self.shop_a, price=3000)
        self.product_b = Product.objects.create(name="Zobo Pack", shop=self.shop_b, price=2000)

        self.order = Order.objects.create(
            order_number="ORD-SETTLE-001",
            user=self.customer,
            total=10000,
            payment_status=payment_status,
            payment_reference="PSK-REF-1",
        )
        OrderItem.objects.create(order=self.order, product=self.product_a, price=3000, quantity=2)
        OrderItem.objects.create(order=self.order, product=self.product_b, price=2000, quantity=2)


class VendorPayoutServiceTests(TwoVendorOrderMixin, TestCase):
    def setUp(self):
        self.build_two_vendor_order()
        self.service = VendorPayoutService()

    def test_decompose_groups_items_by_shop(self):
        groups = self.service.decompose(self.order.id)

        self.assertEqual(len(groups), 2)
        by_shop = {group.shop_id: group for group in groups}
        self.assertEqual(by_shop[str(self.shop_a.id)].subtotal, 6000)
        self.assertEqual(by_shop[str(self.shop_b.id)].subtotal, 4000)
        self.assertEqual(by_shop[str(self.shop_a.id)].vendor_id, str(self.vendor_a.id))
        self.assertEqual(len(by_shop[str(self.shop_a.id)].items), 1)

    def test_settle_creates_one_processing_payout_per_vendor(self):
        result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(len(result.payouts), 2)
        self.assertEqual(VendorPayout.objects.filter(order=self.order).count(), 2)

        payout_a = VendorPayout.objects.get(order=self.order, shop=self.shop_a)
        payout_b = VendorPayout.objects.get(order=self.order, shop=self.shop_b)
        self.assertEqual((payout_a.platform_fee, payout_a.amount, payout_a.total_amount), (300, 5700, 6000))
        self.assertEqual((payout_b.platform_fee, payout_b.amount, payout_b.total_amount), (200, 3800, 4000))
        for payout in (payout_a, payout_b):
            self.assertEqual(payout.status, VendorPayout.Status.PROCESSING)
            self.assertEqual(payout.amount + payout.platform_fee, payout.total_amount)
        self.assertEqual(payout_a.vendor, self.vendor_a)
        self.assertEqual(payout_a.paystack_account_code, "ACCT_a")
        self.assertEqual(payout_a.metadata["order_reference"], "PSK-REF-1")
        self.assertEqual(payout_a.metadata["items"][0]["quantity"], 2)

    def test_settle_appends_single_order_event(self):
        self.service.settle(self.order.id)

        events = OrderEvent.objects.filter(order=self.order)
        self.assertEqual(events.count(), 1)
        event = events.get()
        self.assertEqual(event.event_type, OrderEvent.EventType.VENDOR_PAYOUTS_PROCESSED)
        self.assertEqual(event.metadata["succeeded"], 2)
        self.assertEqual(event.metadata["failed"], 0)

    def test_second_settle_is_a_noop(self):
        first = self.service.settle(self.order.id)
        second = self.service.settle(self.order.id)

        self.assertTrue(second.success)
        self.assertEqual(second.message, "Payouts already processed")
        self.assertEqual(VendorPayout.objects.filter(order=self.order).count(), 2)
        self.assertEqual(OrderEvent.objects.filter(order=self.order).count(), 1)
        self.assertTrue(all(not payout.created for payout in second.payouts))
        self.assertEqual(
            sorted(p.payout_id for p in first.payouts),
            sorted(p.payout_id for p in second.payouts),
        )

    def test_missing_gateway_account_fails_only_that_vendor(self):
        self.shop_b.paystack_account_code = None
        self.shop_b.save(update_fields=["paystack_account_code"])

        result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(len(result.payouts), 2)
        self.assertEqual(len(result.failed), 1)
        self.assertEqual(result.failed[0].error_code, GatewayAccountMissingError.code)
        self.assertEqual(result.failed[0].shop_id, str(self.shop_b.id))
        succeeded = [p for p in result.payouts if p.ok]
        self.assertEqual([p.status for p in succeeded], [VendorPayout.Status.PROCESSING])
        self.assertEqual(succeeded[0].shop_id, str(self.shop_a.id))
        self.assertEqual(list(VendorPayout.objects.values_list("shop_id", flat=True)), [self.shop_a.id])

    def test_group_error_does_not_abort_sibling_groups(self):
        vendor_c = User.objects.create_user(email="vendor-c@shop.com", password="Pass123!", role="VENDOR")
        shop_c = Shop.objects.create(
            name="Shop C",
            owner=vendor_c,
            paystack_account_code="ACCT_c",
            paystack_account_active=True,
        )
        product_c = Product.objects.create(name="Refund Voucher", shop=shop_c, price=-100)
        OrderItem.objects.create(order=self.order, product=product_c, price=-100, quantity=1)
        # Move shop B's item last so the bad group sits in the middle
        item_b = self.order.items.get(product=self.product_b)
        item_b.delete()
        OrderItem.objects.create(order=self.order, product=self.product_b, price=2000, quantity=2)

        result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(len(result.payouts), 3)
        self.assertEqual([p.shop_id for p in result.failed], [str(shop_c.id)])
        self.assertEqual(result.failed[0].error_code, PayoutValidationError.code)
        self.assertEqual(result.payouts[1].shop_id, str(shop_c.id))
        self.assertEqual(
            sorted(VendorPayout.objects.values_list("shop_id", flat=True)),
            sorted([self.shop_a.id, self.shop_b.id]),
        )
        self.assertEqual(OrderEvent.objects.filter(order=self.order).count(), 1)

    def test_unexpected_lookup_error_is_recorded_as_failure(self):
        with patch.object(VendorPayoutService, "_existing_payout", side_effect=[RuntimeError("db gone"), None]):
            result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(len(result.payouts), 2)
        self.assertEqual(result.failed[0].shop_id, str(self.shop_a.id))
        self.assertEqual(result.failed[0].error, "db gone")
        self.assertEqual(VendorPayout.objects.count(), 1)
        self.assertEqual(OrderEvent.objects.filter(order=self.order).count(), 1)

    def test_inactive_gateway_account_is_treated_as_missing(self):
        self.shop_a.paystack_account_active = False
        self.shop_a.save(update_fields=["paystack_account_active"])

        result = self.service.settle(self.order.id)

        self.assertEqual([p.error_code for p in result.failed], ["GATEWAY_ACCOUNT_MISSING"])
        self.assertEqual(VendorPayout.objects.count(), 1)

    def test_shop_without_owner_reports_vendor_missing(self):
        self.shop_b.owner = None
        self.shop_b.save(update_fields=["owner"])

        result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(len(result.failed), 1)
        self.assertEqual(result.failed[0].error_code, "STORE_VENDOR_MISSING")
        self.assertIsNone(result.failed[0].vendor_id)
        self.assertEqual(VendorPayout.objects.count(), 1)

    def test_failed_group_is_settled_on_a_later_call(self):
        self.shop_b.paystack_account_active = False
        self.shop_b.save(update_fields=["paystack_account_active"])
        self.service.settle(self.order.id)
        self.assertEqual(VendorPayout.objects.count(), 1)

        self.shop_b.paystack_account_active = True
        self.shop_b.save(update_fields=["paystack_account_active"])
        result = self.service.settle(self.order.id)

        self.assertEqual(VendorPayout.objects.count(), 2)
        self.assertEqual(sorted(p.created for p in result.payouts), [False, True])
        self.assertEqual(OrderEvent.objects.filter(order=self.order).count(), 2)

    def test_unknown_order_is_reported_without_side_effects(self):
        for order_id in (uuid.uuid4(), "not-a-uuid"):
            result = self.service.settle(order_id)
            self.assertFalse(result.success)
            self.assertEqual(result.error_code, "ORDER_NOT_FOUND")
        self.assertEqual(VendorPayout.objects.count(), 0)
        self.assertEqual(OrderEvent.objects.count(), 0)

    def test_unpaid_order_is_not_settled(self):
        self.order.payment_status = Order.PaymentStatus.UNPAID
        self.order.save(update_fields=["payment_status", "updated_at"])

        result = self.service.settle(self.order.id)

        self.assertFalse(result.success)
        self.assertEqual(result.error_code, "ORDER_NOT_PAID")
        self.assertEqual(VendorPayout.objects.count(), 0)
        self.assertEqual(OrderEvent.objects.count(), 0)

    def test_concurrent_insert_resolves_to_existing_row(self):
        existing = VendorPayout.objects.create(
            vendor=self.vendor_a,
            shop=self.shop_a,
            order=self.order,
            amount=5700,
            platform_fee=300,
            total_amount=6000,
            status=VendorPayout.Status.PROCESSING,
        )

        # First lookup misses, as if another worker inserted between check and create
        with patch.object(VendorPayoutService, "_existing_payout", side_effect=[None, existing, None]):
            result = self.service.settle(self.order.id)

        self.assertTrue(result.success)
        self.assertEqual(result.failed, [])
        self.assertEqual(result.payouts[0].payout_id, str(existing.id))
        self.assertFalse(result.payouts[0].created)
        self.assertEqual(VendorPayout.objects.filter(order=self.order, shop=self.shop_a).count(), 1)
        self.assertEqual(VendorPayout.objects.count(), 2)

    def test_calculate_fee_rounds_half_up(self):
        self.assertEqual(self.service.calculate_fee(10).platform_fee, 1)
        self.assertEqual(self.service.calculate_fee(29).platform_fee, 1)
        self.assertEqual(self.service.calculate_fee(30).platform_fee, 2)
        self.assertEqual(self.service.calculate_fee(0).platform_fee, 0)

        breakdown = self.service.calculate_fee(6000)
        self.assertEqual((breakdown.platform_fee, breakdown.vendor_amount), (300, 5700))

        with self.assertRaises(PayoutValidationError):
            self.service.calculate_fee(-1)

    @override_settings(VENDOR_PAYOUT_FEE_RATE=Decimal("0.10"))
    def test_fee_rate_is_read_from_settings(self):
        service = VendorPayoutService()
        self.assertEqual(service.calculate_fee(6000).platform_fee, 600)

    def test_invalid_fee_rate_is_a_configuration_error(self):
        for rate in ("1", "-0.01", "abc"):
            with self.assertRaises(PaymentConfigurationError):
                VendorPayoutService(fee_rate=rate)

    def test_transition_matrix(self):
        self.assertTrue(self.service._can_transition("PENDING", "PROCESSING"))
        self.assertTrue(self.service._can_transition("PROCESSING", "COMPLETED"))
        self.assertTrue(self.service._can_transition("PROCESSING", "FAILED"))
        self.assertFalse(self.service._can_transition("COMPLETED", "PROCESSING"))
        self.assertFalse(self.service._can_transition("FAILED", "COMPLETED"))

    def test_calculate_split_returns_percentage_per_subaccount(self):
        shares = {share.account_code: share for share in self.service.calculate_split(self.order.id)}

        self.assertEqual(shares["ACCT_a"].share, 60)
        self.assertEqual(shares["ACCT_b"].share, 40)
        self.assertEqual(shares["ACCT_b"].amount, 4000)

    def test_calculate_split_skips_unlinked_shops_and_rejects_empty_orders(self):
        self.shop_b.paystack_account_code = None
        self.shop_b.save(update_fields=["paystack_account_code"])
        self.assertEqual([s.account_code for s in self.service.calculate_split(self.order.id)], ["ACCT_a"])

        self.order.total = 0
        self.order.save(update_fields=["total", "updated_at"])
        with self.assertRaises(PayoutValidationError):
            self.service.calculate_split(self.order.id)


class VendorPayoutModelTests(TwoVendorOrderMixin, TestCase):
    def setUp(self):
        self.build_two_vendor_order()

    def _payout(self, **overrides):
        values = {
            "vendor": self.vendor_a,
            "shop": self.shop_a,
            "order": self.order,
            "amount": 5700,
            "platform_fee": 300,
            "total_amount": 6000,
        }
        values.update(overrides)
        return VendorPayout(**values)

    def test_clean_rejects_mismatched_amounts(self):
        with self.assertRaises(ValidationError):
            self._payout(amount=5800).clean()
        self._payout().clean()

    def test_one_payout_per_order_and_shop(self):
        self._payout().save()
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                self._payout().save()


class PayoutReportServiceTests(TestCase):
    def setUp(self):
        self.vendor = User.objects.create_user(email="report-vendor@shop.com", password="Pass123!", role="VENDOR")
        self.other_vendor = User.objects.create_user(email="other-vendor@shop.com", password="Pass123!", role="VENDOR")
        self.shop = Shop.objects.create(name="Report Shop", owner=self.vendor)
        self.other_shop = Shop.objects.create(name="Other Shop", owner=self.other_vendor)
        self.service = PayoutReportService()
        self._counter = 0

    def _payout(self, amount, fee, status, vendor=None, shop=None):
        self._counter += 1
        order = Order.objects.create(
            order_number=f"ORD-REP-{self._counter:03d}",
            total=amount + fee,
            payment_status=Order.PaymentStatus.PAID,
            payment_reference=f"PSK-REP-{self._counter}",
        )
        return VendorPayout.objects.create(
            vendor=vendor or self.vendor,
            shop=shop or self.shop,
            order=order,
            amount=amount,
            platform_fee=fee,
            total_amount=amount + fee,
            status=status,
        )

    def test_earnings_summary(self):
        self._payout(100, 10, VendorPayout.Status.COMPLETED)
        self._payout(50, 10, VendorPayout.Status.PENDING)
        self._payout(30, 10, VendorPayout.Status.PROCESSING)
        self._payout(999, 1, VendorPayout.Status.COMPLETED, vendor=self.other_vendor, shop=self.other_shop)

        earnings = self.service.get_earnings(self.vendor.id)

        self.assertEqual(earnings["total_earnings"], 210)
        self.assertEqual(earnings["total_payouts"], 100)
        self.assertEqual(earnings["pending_payouts"], 80)
        self.assertEqual(earnings["platform_fees"], 30)
        self.assertEqual(len(earnings["payouts"]), 3)

    def test_earnings_without_payouts_are_zero(self):
        earnings = self.service.get_earnings(self.vendor.id)
        self.assertEqual(
            (earnings["total_earnings"], earnings["total_payouts"], earnings["pending_payouts"], earnings["platform_fees"]),
            (0, 0, 0, 0),
        )
        self.assertEqual(earnings["payouts"], [])

    def test_earnings_date_range_is_inclusive(self):
        old = self._payout(100, 10, VendorPayout.Status.COMPLETED)
        self._payout(50, 10, VendorPayout.Status.COMPLETED)
        VendorPayout.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=10))
        today = timezone.localdate()

        recent = self.service.get_earnings(self.vendor.id, start_date=today, end_date=today)
        self.assertEqual(recent["total_payouts"], 50)

        everything = self.service.get_earnings(self.vendor.id, start_date=today - timedelta(days=10), end_date=today)
        self.assertEqual(everything["total_payouts"], 150)

    def test_history_is_paginated_newest_first(self):
        payouts = [self._payout(10 * (i + 1), 1, VendorPayout.Status.PROCESSING) for i in range(3)]
        now = timezone.now()
        for age, payout in enumerate(reversed(payouts)):
            VendorPayout.objects.filter(pk=payout.pk).update(created_at=now - timedelta(hours=age))

        first_page = self.service.get_payout_history(self.vendor.id, page=1, per_page=2)
        second_page = self.service.get_payout_history(self.vendor.id, page=2, per_page=2)

        self.assertEqual([p["id"] for p in first_page["payouts"]], [payouts[2].id, payouts[1].id])
        self.assertEqual([p["id"] for p in second_page["payouts"]], [payouts[0].id])
        self.assertEqual(first_page["pagination"], {"page": 1, "per_page": 2, "total": 3, "total_pages": 2})
        self.assertEqual(first_page["payouts"][0]["order"]["payment_reference"], payouts[2].order.payment_reference)

    def test_history_rejects_invalid_pagination(self):
        for page, per_page in ((0, 10), (1, 0), (1, 101), ("abc", 10)):
            with self.assertRaises(PayoutValidationError):
                self.service.get_payout_history(self.vendor.id, page=page, per_page=per_page)


class VendorAccountServiceTests(TestCase):
    def setUp(self):
        self.vendor = User.objects.create_user(email="acct-vendor@shop.com", password="Pass123!", role="VENDOR")
        self.stranger = User.objects.create_user(email="stranger@shop.com", password="Pass123!", role="VENDOR")
        self.shop = Shop.objects.create(name="Mama Put Kitchen", owner=self.vendor)
        self.sdk = MagicMock(spec=PaystackSDK)
        self.service = VendorAccountService(sdk=self.sdk)

    def _create(self, **overrides):
        values = {
            "vendor_id": self.vendor.id,
            "shop_id": self.shop.id,
            "business_name": "Mama Put Kitchen",
            "account_number": "0123456789",
            "bank_code": "058",
        }
        values.update(overrides)
        return self.service.create_account(**values)

    def test_create_account_links_shop(self):
        self.sdk.create_subaccount.return_value = _subaccount_payload()

        result = self._create()

        self.assertEqual(result.account_code, "ACCT_new")
        self.assertEqual(result.account_id, "55")
        self.assertEqual(result.status, "active")
        self.shop.refresh_from_db()
        self.assertEqual(self.shop.paystack_account_code, "ACCT_new")
        self.assertTrue(self.shop.paystack_account_active)

        kwargs = self.sdk.create_subaccount.call_args.kwargs
        self.assertEqual(kwargs["percentage_charge"], 5.0)
        self.assertEqual(kwargs["bank_code"], "058")
        self.assertEqual(kwargs["metadata"]["shop_id"], str(self.shop.id))

    def test_create_account_uses_given_percentage_charge(self):
        self.sdk.create_subaccount.return_value = _subaccount_payload()
        self._create(percentage_charge="12.5")
        self.assertEqual(self.sdk.create_subaccount.call_args.kwargs["percentage_charge"], 12.5)

    def test_create_account_requires_owned_shop(self):
        with self.assertRaises(StoreNotFoundError):
            self._create(vendor_id=self.stranger.id)
        with self.assertRaises(StoreNotFoundError):
            self._create(shop_id=uuid.uuid4())
        self.sdk.create_subaccount.assert_not_called()

    def test_create_account_validates_input(self):
        with self.assertRaises(PayoutValidationError) as ctx:
            self._create(account_number="12ab")
        self.assertIn("account_number", ctx.exception.errors)
        self.assertIn("Account number must be numeric", ctx.exception.errors["account_number"])

        with self.assertRaises(PayoutValidationError):
            self._create(percentage_charge="150")
        self.sdk.create_subaccount.assert_not_called()

    def test_create_account_surfaces_gateway_errors(self):
        self.sdk.create_subaccount.side_effect = PaystackAPIError("Invalid bank code", status_code=400)

        with self.assertRaises(PaymentGatewayError) as ctx:
            self._create()

        self.assertIn("Paystack error: Invalid bank code", str(ctx.exception))
        self.assertEqual(ctx.exception.status_code, 400)
        self.shop.refresh_from_db()
        self.assertIsNone(self.shop.paystack_account_code)

    def test_create_account_rejects_malformed_payload(self):
        self.sdk.create_subaccount.return_value = {"status": True, "data": {}}
        with self.assertRaises(PaymentGatewayError):
            self._create()

    def test_update_account_sends_only_supplied_fields(self):
        self.shop.paystack_account_code = "ACCT_new"
        self.shop.paystack_account_active = True
        self.shop.save()
        self.sdk.update_subaccount.return_value = _subaccount_payload(active=False, business_name="New Name")

        result = self.service.update_account("ACCT_new", business_name="New Name")

        self.sdk.update_subaccount.assert_called_once_with(
            account_code="ACCT_new",
            fields={"business_name": "New Name"},
        )
        self.assertEqual(result.status, "inactive")
        self.shop.refresh_from_db()
        self.assertFalse(self.shop.paystack_account_active)

    def test_update_account_requires_code_and_fields(self):
        with self.assertRaises(PayoutValidationError):
            self.service.update_account("ACCT_new")
        with self.assertRaises(PayoutValidationError):
            self.service.update_account("  ", business_name="x")
        self.sdk.update_subaccount.assert_not_called()

    def test_get_and_list_accounts(self):
        self.sdk.fetch_subaccount.return_value = _subaccount_payload()
        self.sdk.list_subaccounts.return_value = {
            "status": True,
            "data": [_subaccount_payload()["data"], _subaccount_payload(code="ACCT_two", id=56)["data"]],
        }

        account = self.service.get_account("ACCT_new")
        accounts = self.service.list_accounts()

        self.assertIsInstance(account, SubaccountDetails)
        self.assertEqual(account.bank_code, "058")
        self.assertEqual(account.percentage_charge, 5.0)
        self.assertEqual([a.account_code for a in accounts], ["ACCT_new", "ACCT_two"])

    def test_get_settlements_paginates(self):
        self.sdk.list_settlements.return_value = {
            "status": True,
            "data": [{"id": 1, "total_amount": 5700, "status": "success", "currency": "NGN"}],
            "meta": {"total": 21, "perPage": 10, "page": 2},
        }

        data = self.service.get_settlements("ACCT_new", page=2, per_page=10)

        self.sdk.list_settlements.assert_called_once_with(account_code="ACCT_new", page=2, per_page=10)
        self.assertEqual(data["pagination"], {"page": 2, "per_page": 10, "total": 21, "total_pages": 3})
        self.assertEqual(data["settlements"][0]["amount"], 5700)
        self.assertEqual(data["settlements"][0]["status"], "success")

    def test_get_settlements_without_meta_counts_rows(self):
        self.sdk.list_settlements.return_value = {
            "status": True,
            "data": [{"id": 1, "amount": 100, "status": "pending"}, {"id": 2, "amount": 200, "status": "success"}],
        }
        data = self.service.get_settlements("ACCT_new")
        self.assertEqual(data["pagination"]["total"], 2)
        self.assertEqual(data["pagination"]["total_pages"], 1)

    def test_get_settlements_rejects_non_numeric_amount(self):
        self.sdk.list_settlements.return_value = {
            "status": True,
            "data": [{"id": 1, "amount": "lots", "status": "success"}],
        }
        with self.assertRaises(PaymentGatewayError):
            self.service.get_settlements("ACCT_new")

    def test_get_settlements_validates_pagination(self):
        with self.assertRaises(PayoutValidationError):
            self.service.get_settlements("ACCT_new", per_page=500)
        self.sdk.list_settlements.assert_not_called()

    @override_settings(PAYSTACK_SECRET_KEY="")
    def test_missing_secret_key_is_a_configuration_error(self):
        with patch.dict("os.environ", {"PAYSTACK_SECRET_KEY": ""}):
            with self.assertRaises(PaymentConfigurationError):
                VendorAccountService()


class PaystackSDKTests(SimpleTestCase):
    def setUp(self):
        self.session = MagicMock()
        self.response = MagicMock(status_code=200)
        self.response.json.return_value = {"status": True, "data": {"subaccount_code": "ACCT_x"}}
        self.session.request.return_value = self.response
        self.sdk = PaystackSDK("sk_test_123", timeout=7, session=self.session)

    def test_request_sends_bearer_auth_and_timeout(self):
        body = self.sdk.fetch_subaccount("ACCT_x")

        self.assertEqual(body["data"]["subaccount_code"], "ACCT_x")
        self.session.request.assert_called_once_with(
            "GET",
            "https://api.paystack.co/subaccount/ACCT_x",
            json=None,
            params=None,
            headers={"Authorization": "Bearer sk_test_123", "Content-Type": "application/json"},
            timeout=7,
        )

    def test_list_settlements_passes_paging_params(self):
        self.sdk.list_settlements("ACCT_x", page=2, per_page=5)
        kwargs = self.session.request.call_args.kwargs
        self.assertEqual(kwargs["params"], {"subaccount": "ACCT_x", "page": 2, "perPage": 5})

    def test_status_false_raises(self):
        self.response.status_code = 404
        self.response.json.return_value = {"status": False, "message": "Subaccount not found"}

        with self.assertRaises(PaystackAPIError) as ctx:
            self.sdk.fetch_subaccount("ACCT_missing")

        self.assertEqual(str(ctx.exception), "Subaccount not found")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_non_json_response_raises(self):
        self.response.status_code = 502
        self.response.json.side_effect = ValueError("no json")
        with self.assertRaises(PaystackAPIError) as ctx:
            self.sdk.list_subaccounts()
        self.assertEqual(ctx.exception.status_code, 502)

    def test_transport_failure_raises(self):
        self.session.request.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(PaystackAPIError):
            self.sdk.update_subaccount("ACCT_x", {"business_name": "x"})

    def test_retry_policy_only_replays_idempotent_methods(self):
        sdk = PaystackSDK("sk_test_123", max_retries=4, backoff_factor=0.2)
        retry = sdk.session.get_adapter("https://api.paystack.co").max_retries

        self.assertEqual(retry.total, 4)
        self.assertEqual(retry.backoff_factor, 0.2)
        self.assertTrue(retry.is_retry("GET", 503))
        self.assertTrue(retry.is_retry("PUT", 502))
        self.assertFalse(retry.is_retry("POST", 502))
        self.assertFalse(retry.is_retry("GET", 400))


@override_settings(PAYSTACK_SECRET_KEY="sk_test_webhook")
class PaystackWebhookTests(TwoVendorOrderMixin, TestCase):
    url = "/payment/webhook/paystack/"

    def setUp(self):
        self.build_two_vendor_order(payment_status=Order.PaymentStatus.UNPAID)

    def _post(self, payload, signature=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        if signature is None:
            signature = hmac.new(b"sk_test_webhook", body, hashlib.sha512).hexdigest()
        return self.client.post(
            self.url,
            data=body,
            content_type="application/json",
            HTTP_X_PAYSTACK_SIGNATURE=signature,
        )

    def test_charge_success_marks_order_paid_and_settles(self):
        response = self._post({"event": "charge.success", "data": {"reference": "PSK-REF-1"}})

        self.assertEqual(response.status_code, 200, response.content)
        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)
        self.assertEqual(self.order.status, Order.Status.PROCESSING)
        self.assertEqual(VendorPayout.objects.filter(order=self.order).count(), 2)
        log = WebhookLog.objects.get(reference="PSK-REF-1")
        self.assertEqual(log.event_type, "PAYOUTS_PROCESSED")
        self.assertTrue(log.processed)

    def test_charge_success_keeps_later_fulfilment_status(self):
        self.order.status = Order.Status.SHIPPED
        self.order.save(update_fields=["status", "updated_at"])

        self._post({"event": "charge.success", "data": {"reference": "PSK-REF-1"}})

        self.order.refresh_from_db()
        self.assertTrue(self.order.is_paid)
        self.assertEqual(self.order.status, Order.Status.SHIPPED)

    def test_redelivered_webhook_does_not_duplicate_payouts(self):
        payload = {"event": "charge.success", "data": {"reference": "PSK-REF-1"}}
        self._post(payload)
        response = self._post(payload)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(VendorPayout.objects.count(), 2)
        self.assertEqual(OrderEvent.objects.filter(order=self.order).count(), 1)

    def test_invalid_signature_is_rejected(self):
        response = self._post({"event": "charge.success", "data": {"reference": "PSK-REF-1"}}, signature="bad")

        self.assertEqual(response.status_code, 401)
        self.order.refresh_from_db()
        self.assertFalse(self.order.is_paid)
        self.assertEqual(VendorPayout.objects.count(), 0)

    def test_other_events_are_logged_and_ignored(self):
        response = self._post({"event": "transfer.success", "data": {"reference": "TRF-1"}})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ignored")
        self.assertTrue(WebhookLog.objects.get(reference="TRF-1").processed)
        self.assertEqual(VendorPayout.objects.count(), 0)

    def test_unknown_reference_returns_404(self):
        response = self._post({"event": "charge.success", "data": {"reference": "PSK-UNKNOWN"}})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(WebhookLog.objects.get(reference="PSK-UNKNOWN").event_type, "NOT_FOUND")

    def test_invalid_json_is_logged(self):
        response = self._post(b"{not json")
        self.assertEqual(response.status_code, 400)
        self.assertTrue(WebhookLog.objects.filter(event_type="INVALID_JSON").exists())

    def test_non_object_json_is_rejected(self):
        response = self._post([1, 2])

        self.assertEqual(response.status_code, 400)
        self.assertTrue(WebhookLog.objects.filter(event_type="INVALID_PAYLOAD").exists())
        self.assertEqual(VendorPayout.objects.count(), 0)


@override_settings(PAYSTACK_SECRET_KEY="sk_test_views")
class PaymentViewsTests(TwoVendorOrderMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.build_two_vendor_order()
        self.admin = User.objects.create_superuser(email="admin@shop.com", password="Pass123!")
        self.sdk = MagicMock(spec=PaystackSDK)
        sdk_patcher = patch("payment.services.accounts.VendorAccountService._build_sdk", return_value=self.sdk)
        sdk_patcher.start()
        self.addCleanup(sdk_patcher.stop)

    def test_admin_can_settle_order(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post(f"/payment/orders/{self.order.id}/settle/")

        self.assertEqual(response.status_code, 200, response.data)
        self.assertTrue(response.data["success"])
        self.assertEqual(len(response.data["payouts"]), 2)

    def test_settle_requires_admin(self):
        self.client.force_authenticate(self.vendor_a)
        response = self.client.post(f"/payment/orders/{self.order.id}/settle/")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(VendorPayout.objects.count(), 0)

    def test_settle_maps_order_errors(self):
        self.client.force_authenticate(self.admin)
        missing = self.client.post(f"/payment/orders/{uuid.uuid4()}/settle/")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.data["error_code"], "ORDER_NOT_FOUND")

        self.order.payment_status = Order.PaymentStatus.UNPAID
        self.order.save(update_fields=["payment_status", "updated_at"])
        unpaid = self.client.post(f"/payment/orders/{self.order.id}/settle/")
        self.assertEqual(unpaid.status_code, 400)
        self.assertEqual(unpaid.data["error_code"], "ORDER_NOT_PAID")

    def test_vendor_creates_account_for_own_shop(self):
        self.sdk.create_subaccount.return_value = _subaccount_payload(code="ACCT_fresh")
        self.client.force_authenticate(self.vendor_a)

        response = self.client.post(
            "/payment/vendor/accounts/",
            {
                "shop_id": str(self.shop_a.id),
                "business_name": "Shop A",
                "account_number": "0123456789",
                "bank_code": "058",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201, response.data)
        self.assertEqual(response.data["account_code"], "ACCT_fresh")
        self.shop_a.refresh_from_db()
        self.assertEqual(self.shop_a.paystack_account_code, "ACCT_fresh")

    def test_account_create_maps_errors(self):
        self.client.force_authenticate(self.vendor_a)
        payload = {
            "shop_id": str(self.shop_b.id),
            "business_name": "Shop B",
            "account_number": "0123456789",
            "bank_code": "058",
        }
        not_owned = self.client.post("/payment/vendor/accounts/", payload, format="json")
        self.assertEqual(not_owned.status_code, 404)

        invalid = self.client.post(
            "/payment/vendor/accounts/",
            dict(payload, shop_id=str(self.shop_a.id), account_number="abc"),
            format="json",
        )
        self.assertEqual(invalid.status_code, 400)
        self.assertIn("account_number", invalid.data["errors"])

        self.sdk.create_subaccount.side_effect = PaystackAPIError("Gateway down", status_code=503)
        gateway = self.client.post(
            "/payment/vendor/accounts/",
            dict(payload, shop_id=str(self.shop_a.id)),
            format="json",
        )
        self.assertEqual(gateway.status_code, 502)
        self.assertEqual(gateway.data["code"], "GATEWAY_ERROR")

    def test_account_detail_is_limited_to_owner(self):
        self.sdk.fetch_subaccount.return_value = _subaccount_payload(code="ACCT_a")

        self.client.force_authenticate(self.vendor_b)
        self.assertEqual(self.client.get("/payment/vendor/accounts/ACCT_a/").status_code, 404)

        self.client.force_authenticate(self.vendor_a)
        response = self.client.get("/payment/vendor/accounts/ACCT_a/")
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["account_code"], "ACCT_a")

    def test_account_update_passes_fields(self):
        self.sdk.update_subaccount.return_value = _subaccount_payload(code="ACCT_a")
        self.client.force_authenticate(self.vendor_a)

        response = self.client.put("/payment/vendor/accounts/ACCT_a/", {"bank_code": "044"}, format="json")

        self.assertEqual(response.status_code, 200, response.data)
        self.sdk.update_subaccount.assert_called_once_with(account_code="ACCT_a", fields={"bank_code": "044"})

    def test_account_list_is_admin_only(self):
        self.sdk.list_subaccounts.return_value = {"status": True, "data": [_subaccount_payload()["data"]]}

        self.client.force_authenticate(self.vendor_a)
        self.assertEqual(self.client.get("/payment/vendor/accounts/all/").status_code, 403)

        self.client.force_authenticate(self.admin)
        response = self.client.get("/payment/vendor/accounts/all/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data["accounts"]), 1)

    def test_settlements_view(self):
        self.sdk.list_settlements.return_value = {
            "status": True,
            "data": [{"id": 9, "total_amount": 5700, "status": "success"}],
            "meta": {"total": 1},
        }
        self.client.force_authenticate(self.vendor_a)

        response = self.client.get("/payment/vendor/accounts/ACCT_a/settlements/", {"page": 1, "per_page": 5})

        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["pagination"]["per_page"], 5)
        self.assertEqual(response.data["settlements"][0]["id"], 9)

    def test_earnings_and_history_views(self):
        VendorPayoutService().settle(self.order.id)
        self.client.force_authenticate(self.vendor_a)

        earnings = self.client.get("/payment/vendor/earnings/")
        self.assertEqual(earnings.status_code, 200, earnings.data)
        self.assertEqual(earnings.data["total_earnings"], 6000)
        self.assertEqual(earnings.data["pending_payouts"], 5700)
        self.assertEqual(earnings.data["platform_fees"], 300)

        history = self.client.get("/payment/vendor/payouts/")
        self.assertEqual(history.status_code, 200, history.data)
        self.assertEqual(history.data["pagination"]["total"], 1)

    def test_report_views_validate_query(self):
        self.client.force_authenticate(self.vendor_a)
        bad_range = self.client.get(
            "/payment/vendor/earnings/",
            {"start_date": "2024-05-10", "end_date": "2024-05-01"},
        )
        self.assertEqual(bad_range.status_code, 400)

        bad_page = self.client.get("/payment/vendor/payouts/", {"per_page": 500})
        self.assertEqual(bad_page.status_code, 400)

    def test_reports_require_authentication(self):
        self.assertEqual(self.client.get("/payment/vendor/earnings/").status_code, 401)
