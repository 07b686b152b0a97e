"""
InfinitePay relay

Server-side calls to the InfinitePay public checkout API, so the browser never
deals with CORS and no secret leaves the server. Neither call retries on
network failure; the only fallback is the legacy payment-links endpoint when
the current one answers 404.
"""

from __future__ import annotations
import hashlib
import hmac
import logging
from functools import lru_cache
from typing import Any, Optional

import requests

from config import get_settings

logger = logging.getLogger(__name__)

CHECKOUT_LINKS_PATH = "/invoices/public/checkout/links"
LEGACY_LINKS_PATH = "/v2/payment-links"
PAYMENT_CHECK_PATH = "/invoices/public/checkout/payment_check"

SIGNATURE_HEADER = "X-InfinitePay-Signature"


class GatewayError(Exception):
    def __init__(self, message: str, status_code: int = 502, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body if body is not None else {"error": message}


def extract_checkout_url(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    return data.get("url") or data.get("payment_url") or nested.get("url")


def is_paid(data: Any) -> bool:
    return isinstance(data, dict) and data.get("paid") is True


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


class InfinitePayClient:
    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        try:
            return self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("InfinitePay %s unreachable: %s", path, e)
            raise GatewayError(f"Payment gateway unreachable: {e}") from e

    @staticmethod
    def _body(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text}

    def create_checkout_link(self, payload: dict[str, Any]) -> str:
        resp = self._post(CHECKOUT_LINKS_PATH, payload)
        if resp.status_code == 404:
            logger.info("Checkout links endpoint returned 404, retrying legacy %s", LEGACY_LINKS_PATH)
            resp = self._post(LEGACY_LINKS_PATH, payload)
        if not resp.ok:
            body = self._body(resp)
            logger.error("InfinitePay rejected checkout link (%s): %s", resp.status_code, body)
            raise GatewayError("GATEWAY_ERROR", status_code=resp.status_code, body=body)

        url = extract_checkout_url(self._body(resp))
        if not url:
            raise GatewayError("EMPTY_URL_RESPONSE")
        return url

    def check_payment(self, payload: dict[str, Any]) -> tuple[int, Any]:
        """Relay the gateway's answer unchanged: (status code, body)."""
        resp = self._post(PAYMENT_CHECK_PATH, payload)
        return resp.status_code, self._body(resp)


def build_checkout_payload(order: dict[str, Any], handle: str, redirect_url: str, webhook_url: Optional[str] = None) -> dict[str, Any]:
    if order.get("discount"):
        # Line prices would not add up to the discounted total
        items = [{"quantity": 1, "price": to_cents(order["total"]), "description": f"Pedido #{order.get('order_number') or order['id']}"}]
    else:
        items = [
            {"quantity": it["quantity"], "price": to_cents(it["price"]), "description": it["name"]}
            for it in order.get("items", [])
        ]
    payload: dict[str, Any] = {
        "handle": handle,
        "order_nsu": order["id"],
        "redirect_url": redirect_url,
        "items": items,
    }
    if webhook_url:
        payload["webhook_url"] = webhook_url
    customer = {
        "name": order.get("customer_name"),
        "email": order.get("customer_email"),
        "phone_number": order.get("customer_phone"),
    }
    customer = {k: v for k, v in customer.items() if v}
    if customer:
        payload["customer"] = customer
    return payload


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    signature = signature.strip().lower()
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign(secret, body), signature)


@lru_cache
def get_gateway() -> InfinitePayClient:
    settings = get_settings()
    return InfinitePayClient(settings.INFINITEPAY_API_URL, timeout=settings.GATEWAY_TIMEOUT)
