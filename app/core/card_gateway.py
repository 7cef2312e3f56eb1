# app/core/card_gateway.py
"""
Card payment gateway client (iframe / hosted payment page flow).

Responsibilities:
  - Build the signed token request for a payment attempt.
  - POST it to the gateway and return the iframe token.
  - Verify the hash on the gateway's server-to-server callback.

Outbound calls use `requests` with a bounded timeout. Every transport
or gateway-side failure is raised as ExternalServiceError.
"""

import base64
import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Any

import requests

from app.core.config import Settings, get_settings
from app.core.errors import ExternalServiceError
from app.core.money import to_minor_units

logger = logging.getLogger(__name__)

SERVICE_NAME = "Card gateway"


def encode_basket(lines: list[tuple[str, Decimal, int]]) -> str:
    """
    Basket as the gateway expects it: base64 of a JSON list of
    [name, "unit price", quantity] triples.
    """
    basket = [[name, f"{price:.2f}", quantity] for name, price, quantity in lines]
    return base64.b64encode(json.dumps(basket).encode("utf-8")).decode("ascii")


def _hmac_b64(key: str, message: str) -> str:
    digest = hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class CardGatewayClient:
    def __init__(self, settings: Settings | None = None, http: Any = None):
        self.settings = settings or get_settings()
        self.http = http or requests.Session()

    @property
    def iframe_url(self) -> str:
        return self.settings.CARD_GATEWAY_IFRAME_URL

    def make_token(
        self,
        *,
        user_ip: str,
        merchant_oid: str,
        email: str,
        payment_amount: int,
        user_basket: str,
        no_installment: int = 0,
    ) -> str:
        """base64(HMAC-SHA256(key, ordered fields + salt))."""
        s = self.settings
        message = "".join(
            [
                s.CARD_GATEWAY_MERCHANT_ID,
                user_ip,
                merchant_oid,
                email,
                str(payment_amount),
                user_basket,
                str(no_installment),
                str(s.CARD_GATEWAY_MAX_INSTALLMENT),
                s.CURRENCY,
                "1" if s.CARD_GATEWAY_TEST_MODE else "0",
                s.CARD_GATEWAY_MERCHANT_SALT,
            ]
        )
        return _hmac_b64(s.CARD_GATEWAY_MERCHANT_KEY, message)

    def callback_hash(self, merchant_oid: str, status: str, total_amount: str) -> str:
        s = self.settings
        message = merchant_oid + s.CARD_GATEWAY_MERCHANT_SALT + status + total_amount
        return _hmac_b64(s.CARD_GATEWAY_MERCHANT_KEY, message)

    def verify_callback(
        self,
        merchant_oid: str,
        status: str,
        total_amount: str,
        received_hash: str,
    ) -> bool:
        expected = self.callback_hash(merchant_oid, status, total_amount)
        return hmac.compare_digest(expected, received_hash or "")

    def request_token(
        self,
        *,
        merchant_oid: str,
        amount: Decimal,
        email: str,
        user_ip: str,
        basket: list[tuple[str, Decimal, int]],
        user_name: str,
        user_address: str,
        user_phone: str,
    ) -> str:
        """
        Ask the gateway for an iframe token for one payment attempt.

        Returns:
            The token string.

        Raises:
            ExternalServiceError: on timeout, transport error, non-2xx
            or a non-success gateway status.
        """
        s = self.settings
        payment_amount = to_minor_units(amount)
        user_basket = encode_basket(basket)

        data = {
            "merchant_id": s.CARD_GATEWAY_MERCHANT_ID,
            "user_ip": user_ip,
            "merchant_oid": merchant_oid,
            "email": email,
            "payment_amount": payment_amount,
            "paytr_token": self.make_token(
                user_ip=user_ip,
                merchant_oid=merchant_oid,
                email=email,
                payment_amount=payment_amount,
                user_basket=user_basket,
            ),
            "user_basket": user_basket,
            "debug_on": 1 if s.CARD_GATEWAY_TEST_MODE else 0,
            "no_installment": 0,
            "max_installment": s.CARD_GATEWAY_MAX_INSTALLMENT,
            "user_name": user_name,
            "user_address": user_address,
            "user_phone": user_phone,
            "merchant_ok_url": s.CARD_GATEWAY_OK_URL,
            "merchant_fail_url": s.CARD_GATEWAY_FAIL_URL,
            "timeout_limit": 30,
            "currency": s.CURRENCY,
            "test_mode": 1 if s.CARD_GATEWAY_TEST_MODE else 0,
        }

        try:
            response = self.http.post(
                s.CARD_GATEWAY_TOKEN_URL,
                data=data,
                timeout=s.HTTP_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Card gateway token request failed for %s: %s", merchant_oid, exc)
            raise ExternalServiceError(SERVICE_NAME, str(exc)) from exc

        if result.get("status") != "success" or not result.get("token"):
            reason = result.get("reason") or "token request rejected"
            logger.error("Card gateway refused token for %s: %s", merchant_oid, reason)
            raise ExternalServiceError(SERVICE_NAME, reason)

        return result["token"]
