import logging
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


DEFAULT_BASE_URL = "https://api.paystack.co"

logger = logging.getLogger(__name__)


class PaystackAPIError(Exception):
    """Raised for any non-success answer from Paystack, including transport failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class PaystackSDK:
    # POST is not replayed on 5xx: a lost response may still have created the subaccount.
    IDEMPOTENT_METHODS = frozenset({"GET", "PUT"})
    RETRY_STATUSES = (500, 502, 503, 504)

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or self._build_session(max_retries, backoff_factor)

    def _build_session(self, max_retries: int, backoff_factor: float) -> requests.Session:
        retry = Retry(
            total=max_retries,
            connect=max_retries,
            read=max_retries,
            status=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=self.RETRY_STATUSES,
            allowed_methods=self.IDEMPOTENT_METHODS,
            raise_on_status=False,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Paystack %s %s failed: %s", method, endpoint, exc)
            raise PaystackAPIError(f"Paystack request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise PaystackAPIError(
                f"Paystack returned a non-JSON response ({response.status_code})",
                status_code=response.status_code,
            ) from exc

        if not isinstance(body, dict) or body.get("status") is not True:
            message = body.get("message") if isinstance(body, dict) else None
            raise PaystackAPIError(
                message or f"Paystack request failed with HTTP {response.status_code}",
                status_code=response.status_code,
                payload=body if isinstance(body, dict) else None,
            )
        return body

    # -----------------------------
    # Subaccounts
    # -----------------------------
    def create_subaccount(
        self,
        business_name: str,
        bank_code: str,
        account_number: str,
        percentage_charge: float,
        description: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "business_name": business_name,
            "bank_code": bank_code,
            "account_number": account_number,
            "percentage_charge": percentage_charge,
            "description": description,
            "metadata": metadata or {},
        }
        return self._request("POST", "subaccount", payload=payload)

    def update_subaccount(self, account_code: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"subaccount/{account_code}", payload=fields)

    def fetch_subaccount(self, account_code: str) -> Dict[str, Any]:
        return self._request("GET", f"subaccount/{account_code}")

    def list_subaccounts(self) -> Dict[str, Any]:
        return self._request("GET", "subaccount")

    # -----------------------------
    # Settlements
    # -----------------------------
    def list_settlements(self, account_code: str, page: int = 1, per_page: int = 10) -> Dict[str, Any]:
        params = {"subaccount": account_code, "page": page, "perPage": per_page}
        return self._request("GET", "settlement", params=params)
