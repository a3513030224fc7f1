from django.test import TestCase

from account.models import User
from shop.models import Shop


class ShopModelTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(email="owner-shop@example.com", password="Pass123!", role="VENDOR")

    def test_shop_str_returns_name(self):
        shop = Shop.objects.create(name="Corner Store", owner=self.owner)
        self.assertEqual(str(shop), "Corner Store")

    def test_new_shop_is_not_payout_ready(self):
        shop = Shop.objects.create(name="Corner Store", owner=self.owner)
        self.assertFalse(shop.is_payout_ready)
        self.assertFalse(shop.paystack_account_active)

    def test_payout_ready_needs_owner_and_active_account(self):
        shop = Shop.objects.create(
            name="Corner Store",
            owner=self.owner,
            paystack_account_code="ACCT_corner",
            paystack_account_active=True,
        )
        self.assertTrue(shop.is_payout_ready)

        shop.owner = None
        self.assertFalse(shop.is_payout_ready)

        shop.owner = self.owner
        shop.paystack_account_active = False
        self.assertFalse(shop.is_payout_ready)

    def test_owner_deletion_keeps_shop(self):
        shop = Shop.objects.create(name="Corner Store", owner=self.owner)
        self.owner.delete()
        shop.refresh_from_db()
        self.assertIsNone(shop.owner)
