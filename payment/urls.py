# payment/urls.py
from django.urls import path
from .views import *

urlpatterns = [
    path("webhook/paystack/", PaystackWebhookView.as_view(), name="paystack-webhook"),
    path("orders/<uuid:pk>/settle/", OrderSettleView.as_view(), name="order-settle"),
    # Vendor subaccounts
    path("vendor/accounts/", VendorAccountCreateView.as_view(), name="vendor-account-create"),
    path("vendor/accounts/all/", VendorAccountListView.as_view(), name="vendor-account-list"),
    path("vendor/accounts/<str:account_code>/", VendorAccountDetailView.as_view(), name="vendor-account-detail"),
    path(
        "vendor/accounts/<str:account_code>/settlements/",
        VendorSettlementsView.as_view(),
        name="vendor-settlements",
    ),
    # Vendor reporting
    path("vendor/earnings/", VendorEarningsView.as_view(), name="vendor-earnings"),
    path("vendor/payouts/", VendorPayoutHistoryView.as_view(), name="vendor-payout-history"),
]
