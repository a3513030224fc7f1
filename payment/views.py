# payment/views.py
import hashlib
import hmac
import json
import logging

from django.conf import settings
from django.db import transaction
from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from rest_framework import permissions, status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from order.models import Order
from payment.models import WebhookLog
from payment.services.accounts import VendorAccountService
from payment.services.reports import PayoutReportService
from payment.services.service import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PayoutServiceError,
    StoreNotFoundError,
    VendorPayoutService,
)
from shop.models import Shop

from .serializers import EarningsQuerySerializer, PaginationQuerySerializer

logger = logging.getLogger(__name__)

_SETTLE_ERROR_STATUS = {
    "ORDER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "ORDER_NOT_PAID": status.HTTP_400_BAD_REQUEST,
}


def _service_error_response(exc: PayoutServiceError) -> Response:
    if isinstance(exc, PaymentConfigurationError):
        http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif isinstance(exc, PaymentGatewayError):
        http_status = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, StoreNotFoundError):
        http_status = status.HTTP_404_NOT_FOUND
    else:
        http_status = status.HTTP_400_BAD_REQUEST
    body = {"detail": str(exc), "code": exc.code}
    errors = getattr(exc, "errors", None)
    if errors:
        body["errors"] = errors
    return Response(body, status=http_status)


def _can_access_account(user, account_code: str) -> bool:
    if user.is_staff:
        return True
    return Shop.objects.filter(paystack_account_code=account_code, owner=user).exists()


class OrderSettleView(APIView):
    """Manual trigger for vendor settlement of a paid order."""
    permission_classes = [IsAdminUser]

    def post(self, request, pk):
        result = VendorPayoutService().settle(pk)
        if not result.success:
            http_status = _SETTLE_ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
            return Response(result.as_dict(), status=http_status)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class VendorAccountCreateView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        try:
            result = VendorAccountService().create_account(
                vendor_id=request.user.id,
                shop_id=request.data.get("shop_id"),
                business_name=request.data.get("business_name"),
                account_number=request.data.get("account_number"),
                bank_code=request.data.get("bank_code"),
                percentage_charge=request.data.get("percentage_charge"),
            )
        except PayoutServiceError as exc:
            return _service_error_response(exc)

        return Response(
            {
                "account_code": result.account_code,
                "account_id": result.account_id,
                "status": result.status,
            },
            status=status.HTTP_201_CREATED,
        )


class VendorAccountListView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        try:
            accounts = VendorAccountService().list_accounts()
        except PayoutServiceError as exc:
            return _service_error_response(exc)
        return Response({"accounts": [account.as_dict() for account in accounts]})


class VendorAccountDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, account_code):
        if not _can_access_account(request.user, account_code):
            return Response({"detail": "Account not found"}, status=status.HTTP_404_NOT_FOUND)
        try:
            account = VendorAccountService().get_account(account_code)
        except PayoutServiceError as exc:
            return _service_error_response(exc)
        return Response(account.as_dict())

    def put(self, request, account_code):
        if not _can_access_account(request.user, account_code):
            return Response({"detail": "Account not found"}, status=status.HTTP_404_NOT_FOUND)
        allowed = {"business_name", "account_number", "bank_code", "percentage_charge"}
        fields = {key: value for key, value in request.data.items() if key in allowed}
        try:
            result = VendorAccountService().update_account(account_code, **fields)
        except PayoutServiceError as exc:
            return _service_error_response(exc)
        return Response({"account_code": result.account_code, "status": result.status})


class VendorSettlementsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, account_code):
        if not _can_access_account(request.user, account_code):
            return Response({"detail": "Account not found"}, status=status.HTTP_404_NOT_FOUND)
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        try:
            data = VendorAccountService().get_settlements(
                account_code,
                page=query.validated_data["page"],
                per_page=query.validated_data["per_page"],
            )
        except PayoutServiceError as exc:
            return _service_error_response(exc)
        return Response(data)


class VendorEarningsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        query = EarningsQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = PayoutReportService().get_earnings(
            request.user.id,
            start_date=query.validated_data.get("start_date"),
            end_date=query.validated_data.get("end_date"),
        )
        return Response(data)


class VendorPayoutHistoryView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        query = PaginationQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = PayoutReportService().get_payout_history(
            request.user.id,
            page=query.validated_data["page"],
            per_page=query.validated_data["per_page"],
        )
        return Response(data)


@method_decorator(csrf_exempt, name="dispatch")
class PaystackWebhookView(View):
    """
    Receives Paystack webhook notifications. A verified ``charge.success``
    marks the referenced order as paid and settles it across vendors. A pending
    order also moves to processing.
    """

    def get(self, request: HttpRequest):
        return JsonResponse({"info": "Paystack Webhook endpoint, POST only"})

    def post(self, request: HttpRequest):
        secret = getattr(settings, "PAYSTACK_SECRET_KEY", "")
        if not secret:
            logger.error("Paystack webhook received but PAYSTACK_SECRET_KEY is not configured")
            return JsonResponse({"error": "Webhook not configured"}, status=500)

        signature = request.headers.get("x-paystack-signature", "")
        expected = hmac.new(secret.encode("utf-8"), request.body, hashlib.sha512).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature):
            logger.warning("Paystack webhook rejected: invalid signature")
            return JsonResponse({"error": "Invalid signature"}, status=401)

        try:
            payload = json.loads(request.body)
        except json.JSONDecodeError:
            logger.error("Paystack webhook invalid JSON: %s", request.body)
            WebhookLog.objects.create(
                provider="PAYSTACK",
                event_type="INVALID_JSON",
                reference="INVALID_JSON",
                payload={"raw_body": request.body.decode("utf-8", errors="replace")},
                processed=False,
                processing_attempts=1,
            )
            return JsonResponse({"error": "Invalid JSON"}, status=400)

        if not isinstance(payload, dict):
            logger.error("Paystack webhook payload is not an object: %s", request.body)
            WebhookLog.objects.create(
                provider="PAYSTACK",
                event_type="INVALID_PAYLOAD",
                reference="INVALID_PAYLOAD",
                payload={"raw_body": request.body.decode("utf-8", errors="replace")},
                processed=False,
                processing_attempts=1,
            )
            return JsonResponse({"error": "Invalid payload"}, status=400)

        event = payload.get("event") or ""
        data = payload.get("data") or {}
        reference = data.get("reference") if isinstance(data, dict) else None

        webhook_log = WebhookLog.objects.create(
            provider="PAYSTACK",
            event_type=event or "UNKNOWN",
            reference=reference or "MISSING_REFERENCE",
            payload=payload,
            processed=False,
            processing_attempts=1,
        )

        if event != "charge.success":
            webhook_log.event_type = f"IGNORED:{event}"[:100]
            webhook_log.processed = True
            webhook_log.save(update_fields=["event_type", "processed"])
            return JsonResponse({"status": "ignored"}, status=200)

        if not reference:
            logger.warning("Paystack webhook missing transaction reference")
            return JsonResponse({"error": "Missing transaction reference"}, status=400)

        order = Order.objects.filter(payment_reference=reference).first()
        if not order:
            webhook_log.event_type = "NOT_FOUND"
            webhook_log.save(update_fields=["event_type"])
            logger.warning("Paystack webhook order not found: reference=%s", reference)
            return JsonResponse({"error": "Order not found"}, status=404)

        with transaction.atomic():
            locked = Order.objects.select_for_update().get(pk=order.pk)
            update_fields = []
            if not locked.is_paid:
                locked.payment_status = Order.PaymentStatus.PAID
                update_fields.append("payment_status")
            if locked.status == Order.Status.PENDING:
                locked.status = Order.Status.PROCESSING
                update_fields.append("status")
            if update_fields:
                locked.save(update_fields=update_fields + ["updated_at"])

        result = VendorPayoutService().settle(order.id)
        webhook_log.event_type = "PAYOUTS_PROCESSED" if result.success else "PAYOUTS_FAILED"
        webhook_log.processed = result.success
        webhook_log.save(update_fields=["event_type", "processed"])

        if result.failed:
            logger.warning(
                "Paystack webhook settled order=%s with %d failed vendor payouts",
                order.id,
                len(result.failed),
            )
        return JsonResponse({"status": "payouts processed", "result": result.as_dict()}, status=200)
