from django.test import TestCase

from account.models import User
from catalog.models import Product
from shop.models import Shop

from .models import Order, OrderEvent, OrderItem


class OrderModelTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(email="owner_order_tests@example.com", password="pass1234", role="VENDOR")
        self.buyer = User.objects.create_user(email="buyer_order_tests@example.com", password="pass1234")
        self.shop = Shop.objects.create(name="Order Test Shop", owner=self.owner)
        self.product = Product.objects.create(name="Order Test Product", shop=self.shop, price=12000)
        self.order = Order.objects.create(order_number="ORD-MODEL-001", user=self.buyer, total=24000)

    def test_new_order_is_unpaid(self):
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.UNPAID)
        self.assertFalse(self.order.is_paid)

        self.order.payment_status = Order.PaymentStatus.PAID
        self.assertTrue(self.order.is_paid)

    def test_item_snapshots_name_and_total(self):
        item = OrderItem.objects.create(order=self.order, product=self.product, price=12000, quantity=2)

        self.assertEqual(item.total, 24000)
        self.assertEqual(item.product_name, "Order Test Product")
        self.assertEqual(list(self.order.items.all()), [item])

    def test_explicit_item_total_is_kept(self):
        item = OrderItem.objects.create(
            order=self.order,
            product=self.product,
            product_name="Promo Bundle",
            price=12000,
            quantity=2,
            total=20000,
        )
        self.assertEqual(item.total, 20000)
        self.assertEqual(item.product_name, "Promo Bundle")

    def test_events_are_ordered_by_creation(self):
        first = OrderEvent.objects.create(
            order=self.order,
            event_type=OrderEvent.EventType.VENDOR_PAYOUTS_PROCESSED,
            description="first",
        )
        second = OrderEvent.objects.create(
            order=self.order,
            event_type=OrderEvent.EventType.VENDOR_PAYOUTS_PROCESSED,
            description="second",
        )
        self.assertEqual(list(self.order.events.all()), [first, second])
