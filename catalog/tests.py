from django.test import TestCase

from account.models import User
from catalog.models import Product
from shop.models import Shop


class CatalogModelTests(TestCase):
    def setUp(self):
        owner = User.objects.create_user(email="owner-catalog@example.com", password="Pass123!", role="VENDOR")
        self.shop = Shop.objects.create(name="Catalog Shop", owner=owner)

    def test_product_belongs_to_shop(self):
        product = Product.objects.create(name="Wireless Earbuds", shop=self.shop, price=250000)

        self.assertEqual(str(product), "Wireless Earbuds")
        self.assertTrue(product.is_active)
        self.assertEqual(list(self.shop.products.all()), [product])

    def test_products_are_removed_with_their_shop(self):
        Product.objects.create(name="Cable", shop=self.shop, price=1500)
        self.shop.delete()
        self.assertFalse(Product.objects.exists())
