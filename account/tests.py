from django.test import TestCase

from account.models import User


class UserModelTests(TestCase):
    def test_create_user_hashes_password(self):
        user = User.objects.create_user(
            email="user@example.com",
            password="Pass123!",
        )

        self.assertNotEqual(user.password, "Pass123!")
        self.assertTrue(user.check_password("Pass123!"))
        self.assertEqual(user.role, "CUSTOMER")
        self.assertFalse(user.is_vendor)

    def test_create_user_requires_email(self):
        with self.assertRaisesMessage(ValueError, "Users must have an email"):
            User.objects.create_user(email="", password="Pass123!")

    def test_vendor_role(self):
        vendor = User.objects.create_user(email="vendor@example.com", password="Pass123!", role="VENDOR")
        self.assertTrue(vendor.is_vendor)

    def test_create_superuser_sets_staff_flags(self):
        admin = User.objects.create_superuser(email="admin@example.com", password="Pass123!")
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_superuser)
