# payment/services/accounts.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DEFAULT_DB_ALIAS

from payment.serializers import CreateVendorAccountSerializer, UpdateVendorAccountSerializer
from shop.models import Shop

from .paystack_sdk import DEFAULT_BASE_URL, PaystackAPIError, PaystackSDK
from .service import (
    PaymentConfigurationError,
    PaymentGatewayError,
    PayoutValidationError,
    StoreNotFoundError,
    build_pagination,
    validate_pagination,
)

logger = logging.getLogger(__name__)

_SUBACCOUNT_FIELDS = ("business_name", "account_number", "bank_code", "percentage_charge")


@dataclass(frozen=True)
class SubaccountDetails:
    id: int
    account_code: str
    business_name: str
    bank_code: str
    account_number: str
    percentage_charge: Optional[float]
    active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, data: Any) -> "SubaccountDetails":
        if not isinstance(data, dict) or not data.get("subaccount_code") or data.get("id") is None:
            raise PaymentGatewayError("Paystack returned a malformed subaccount payload")
        charge = data.get("percentage_charge")
        return cls(
            id=data["id"],
            account_code=data["subaccount_code"],
            business_name=data.get("business_name") or "",
            bank_code=str(data.get("settlement_bank") or data.get("bank_code") or ""),
            account_number=str(data.get("account_number") or ""),
            percentage_charge=float(charge) if charge is not None else None,
            active=bool(data.get("active", False)),
            created_at=data.get("createdAt") or data.get("created_at"),
            updated_at=data.get("updatedAt") or data.get("updated_at"),
            raw=data,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_code": self.account_code,
            "business_name": self.business_name,
            "bank_code": self.bank_code,
            "account_number": self.account_number,
            "percentage_charge": self.percentage_charge,
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class SettlementRecord:
    id: int
    amount: int
    status: str
    currency: str = ""
    settled_by: Optional[str] = None
    settlement_date: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> "SettlementRecord":
        if not isinstance(data, dict) or data.get("id") is None or data.get("status") is None:
            raise PaymentGatewayError("Paystack returned a malformed settlement payload")
        amount = data.get("total_amount", data.get("amount"))
        if amount is None:
            raise PaymentGatewayError("Paystack settlement payload is missing an amount")
        try:
            amount = int(amount)
        except (TypeError, ValueError) as exc:
            raise PaymentGatewayError(f"Paystack settlement amount is not numeric: {amount!r}") from exc
        return cls(
            id=data["id"],
            amount=amount,
            status=str(data["status"]),
            currency=data.get("currency") or "",
            settled_by=data.get("settled_by"),
            settlement_date=data.get("settlement_date"),
            created_at=data.get("createdAt") or data.get("created_at"),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "status": self.status,
            "currency": self.currency,
            "settled_by": self.settled_by,
            "settlement_date": self.settlement_date,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class AccountLinkResult:
    account_code: str
    account_id: str
    status: str


class VendorAccountService:
    """Links shops to Paystack subaccounts and reads settlement data for them."""

    def __init__(self, sdk: Optional[PaystackSDK] = None, using: str = DEFAULT_DB_ALIAS) -> None:
        self.sdk = sdk or self._build_sdk()
        self.using = using

    # -----------------------------
    # Subaccount lifecycle
    # -----------------------------
    def create_account(
        self,
        vendor_id: Any,
        shop_id: Any,
        business_name: str,
        account_number: str,
        bank_code: str,
        percentage_charge: Any = None,
    ) -> AccountLinkResult:
        payload = {
            "vendor_id": vendor_id,
            "shop_id": shop_id,
            "business_name": business_name,
            "account_number": account_number,
            "bank_code": bank_code,
        }
        if percentage_charge is not None:
            payload["percentage_charge"] = percentage_charge
        data = self._validate(CreateVendorAccountSerializer, payload)

        try:
            shop = Shop.objects.using(self.using).filter(id=data["shop_id"], owner_id=data["vendor_id"]).first()
        except DjangoValidationError:
            shop = None
        if not shop:
            raise StoreNotFoundError("Shop not found or does not belong to vendor")

        charge = data.get("percentage_charge")
        if charge is None:
            charge = getattr(settings, "VENDOR_PAYOUT_DEFAULT_PERCENTAGE_CHARGE", 5)

        response = self._call_gateway(
            self.sdk.create_subaccount,
            business_name=data["business_name"],
            bank_code=data["bank_code"],
            account_number=data["account_number"],
            percentage_charge=float(charge),
            description=f"Vendor account for {data['business_name']}",
            metadata={"vendor_id": str(data["vendor_id"]), "shop_id": str(shop.id)},
        )
        details = SubaccountDetails.from_payload(response.get("data"))

        shop.paystack_account_code = details.account_code
        shop.paystack_account_active = True
        shop.save(using=self.using, update_fields=["paystack_account_code", "paystack_account_active"])
        logger.info("Linked shop=%s to Paystack subaccount=%s", shop.id, details.account_code)

        return AccountLinkResult(
            account_code=details.account_code,
            account_id=str(details.id),
            status="active" if details.active else "inactive",
        )

    def update_account(self, account_code: str, **fields: Any) -> AccountLinkResult:
        account_code = self._require_code(account_code)
        data = self._validate(UpdateVendorAccountSerializer, fields)

        changes: Dict[str, Any] = {}
        for name in _SUBACCOUNT_FIELDS:
            if name in data:
                value = data[name]
                changes[name] = float(value) if name == "percentage_charge" else value

        response = self._call_gateway(self.sdk.update_subaccount, account_code=account_code, fields=changes)
        details = SubaccountDetails.from_payload(response.get("data"))

        Shop.objects.using(self.using).filter(paystack_account_code=details.account_code).update(
            paystack_account_active=details.active
        )
        logger.info("Updated Paystack subaccount=%s fields=%s", details.account_code, sorted(changes))

        return AccountLinkResult(
            account_code=details.account_code,
            account_id=str(details.id),
            status="active" if details.active else "inactive",
        )

    def get_account(self, account_code: str) -> SubaccountDetails:
        account_code = self._require_code(account_code)
        response = self._call_gateway(self.sdk.fetch_subaccount, account_code=account_code)
        return SubaccountDetails.from_payload(response.get("data"))

    def list_accounts(self) -> List[SubaccountDetails]:
        response = self._call_gateway(self.sdk.list_subaccounts)
        data = response.get("data")
        if not isinstance(data, list):
            raise PaymentGatewayError("Paystack returned a malformed subaccount list")
        return [SubaccountDetails.from_payload(entry) for entry in data]

    # -----------------------------
    # Settlement reconciliation reads
    # -----------------------------
    def get_settlements(self, account_code: str, page: Any = 1, per_page: Any = 10) -> Dict[str, Any]:
        account_code = self._require_code(account_code)
        page, per_page = validate_pagination(page, per_page)

        response = self._call_gateway(
            self.sdk.list_settlements,
            account_code=account_code,
            page=page,
            per_page=per_page,
        )
        data = response.get("data")
        if not isinstance(data, list):
            raise PaymentGatewayError("Paystack returned a malformed settlement list")
        meta = response.get("meta") or {}
        total = int(meta.get("total", len(data)))

        return {
            "settlements": [SettlementRecord.from_payload(entry).as_dict() for entry in data],
            "pagination": build_pagination(page, per_page, total),
        }

    # -----------------------------
    # Helpers
    # -----------------------------
    @staticmethod
    def _validate(serializer_class, payload: Dict[str, Any]) -> Dict[str, Any]:
        serializer = serializer_class(data=payload)
        if not serializer.is_valid():
            errors = {key: [str(msg) for msg in value] for key, value in serializer.errors.items()}
            summary = "; ".join(f"{key}: {' '.join(msgs)}" for key, msgs in errors.items())
            raise PayoutValidationError(summary or "Invalid account data", errors=errors)
        return dict(serializer.validated_data)

    @staticmethod
    def _require_code(account_code: str) -> str:
        code = (account_code or "").strip()
        if not code:
            raise PayoutValidationError("account_code is required")
        return code

    @staticmethod
    def _get_setting(key: str, default: Any = None, required: bool = False) -> Any:
        value = getattr(settings, key, None)
        if value is None or value == "":
            value = os.getenv(key) or default
        if required and not value:
            raise PaymentConfigurationError(
                f"Missing payment configuration: {key}. Set it in Django settings or environment variables."
            )
        return value

    def _build_sdk(self) -> PaystackSDK:
        return PaystackSDK(
            secret_key=self._get_setting("PAYSTACK_SECRET_KEY", required=True),
            base_url=self._get_setting("PAYSTACK_BASE_URL", default=DEFAULT_BASE_URL),
            timeout=float(self._get_setting("PAYSTACK_TIMEOUT", default=15)),
            max_retries=int(self._get_setting("PAYSTACK_MAX_RETRIES", default=3)),
            backoff_factor=float(self._get_setting("PAYSTACK_BACKOFF_FACTOR", default=0.5)),
        )

    @staticmethod
    def _call_gateway(func, **kwargs) -> Dict[str, Any]:
        try:
            return func(**kwargs)
        except PaystackAPIError as exc:
            message = str(exc).strip() or "Paystack request failed"
            logger.warning("Paystack call %s failed: %s", getattr(func, "__name__", func), message)
            raise PaymentGatewayError(f"Paystack error: {message}", status_code=exc.status_code) from exc
