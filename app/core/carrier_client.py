# app/core/carrier_client.py
"""
Cargo carrier REST client.

Endpoints used (POST, HTTP basic auth):
  - /setOrder      create a shipment -> tracking number + base64 label
  - /getOrderInfo  current status of a tracking number
  - /cancelOrder   cancel a shipment that has not been delivered

Carrier status codes are mapped to ShipmentStatus by
`map_carrier_status`; unknown codes count as in_transit.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import requests

from app.core.config import Settings, get_settings
from app.core.errors import ExternalServiceError
from app.models.shipment import ShipmentStatus

logger = logging.getLogger(__name__)

SERVICE_NAME = "Carrier"

CARRIER_STATUS_MAP: dict[str, ShipmentStatus] = {
    "CREATED": ShipmentStatus.CREATED,
    "PICKED_UP": ShipmentStatus.PICKED_UP,
    "TRANSIT": ShipmentStatus.IN_TRANSIT,
    "TRANSFER": ShipmentStatus.IN_TRANSIT,
    "DISTRIBUTION": ShipmentStatus.OUT_FOR_DELIVERY,
    "DELIVERED": ShipmentStatus.DELIVERED,
    "RETURNED": ShipmentStatus.RETURNED,
    "LOST": ShipmentStatus.LOST,
}


def map_carrier_status(code: str | None) -> ShipmentStatus:
    return CARRIER_STATUS_MAP.get((code or "").strip().upper(), ShipmentStatus.IN_TRANSIT)


@dataclass
class CarrierShipment:
    tracking_number: str
    label_b64: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class CarrierTracking:
    tracking_number: str
    status_code: str
    description: str = ""
    receiver_name: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class CarrierClient:
    def __init__(self, settings: Settings | None = None, http: Any = None):
        self.settings = settings or get_settings()
        self.http = http or requests.Session()

    @property
    def name(self) -> str:
        return self.settings.CARRIER_NAME

    # ---- Outbound ----

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        s = self.settings
        url = s.CARRIER_API_URL.rstrip("/") + path
        try:
            response = self.http.post(
                url,
                json=payload,
                auth=(s.CARRIER_USERNAME, s.CARRIER_PASSWORD),
                timeout=s.HTTP_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Carrier call %s failed: %s", path, exc)
            raise ExternalServiceError(SERVICE_NAME, str(exc)) from exc

        if result.get("result") is not True:
            message = result.get("message") or "request rejected"
            logger.error("Carrier call %s rejected: %s", path, message)
            raise ExternalServiceError(SERVICE_NAME, message)
        return result

    def create_shipment(
        self,
        *,
        order_number: str,
        receiver_name: str,
        receiver_phone: str | None,
        receiver_address: str,
        email: str | None,
        weight: Decimal,
        desi: Decimal,
        invoice_amount: Decimal,
        content: str,
        express: bool = False,
    ) -> CarrierShipment:
        # Address lines: street / district / city / postal code
        parts = receiver_address.split("\n")
        parts += [""] * (4 - len(parts))

        payload = {
            "orderNumber": order_number,
            "customerCode": self.settings.CARRIER_CUSTOMER_CODE,
            "receiverName": receiver_name,
            "receiverPhone": receiver_phone or "",
            "receiverAddress": parts[0],
            "receiverDistrict": parts[1],
            "receiverCity": parts[2],
            "receiverPostalCode": parts[3],
            "paymentType": "P",
            "productType": "K",
            "deliveryType": "E" if express else "N",
            "pieceCount": 1,
            "weight": float(weight),
            "desi": float(desi),
            "content": content,
            "collectionType": "0",
            "invoiceNumber": order_number,
            "invoiceAmount": str(invoice_amount),
            "smsNotification": True,
            "emailNotification": bool(email),
            "emailAddress": email or "",
        }
        result = self._post("/setOrder", payload)
        tracking_number = result.get("trackingNumber")
        if not tracking_number:
            raise ExternalServiceError(SERVICE_NAME, "no tracking number returned")
        return CarrierShipment(
            tracking_number=str(tracking_number),
            label_b64=result.get("barcodeData"),
            raw=result,
        )

    def track(self, tracking_number: str) -> CarrierTracking:
        result = self._post("/getOrderInfo", {"trackingNumber": tracking_number})
        return CarrierTracking(
            tracking_number=tracking_number,
            status_code=result.get("status", ""),
            description=result.get("statusDescription", ""),
            receiver_name=result.get("receiverName"),
            raw=result,
        )

    def cancel(self, tracking_number: str, reason: str = "Customer request") -> None:
        self._post("/cancelOrder", {"trackingNumber": tracking_number, "reason": reason})

    # ---- Inbound ----

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """
        Check the X-Carrier-Signature header (hex HMAC-SHA256 of the raw body).

        The header is optional: requests without it are accepted, a
        present header must match.
        """
        if not signature:
            return True
        secret = self.settings.CARRIER_WEBHOOK_SECRET
        if not secret:
            return False
        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)
