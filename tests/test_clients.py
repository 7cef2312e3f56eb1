"""Tests for the outbound clients: card gateway, carrier, document storage."""

import base64
import hashlib
import hmac
import json
from decimal import Decimal

import pytest
import requests

from app.core import storage_utils
from app.core.card_gateway import CardGatewayClient, encode_basket
from app.core.carrier_client import CarrierClient
from app.core.errors import ExternalServiceError

from conftest import FakeHttp, FakeResponse


class TestCardGateway:
    def _client(self, routes=None):
        http = FakeHttp(routes or {"/get-token": FakeResponse({"status": "success", "token": "abc"})})
        return CardGatewayClient(http=http), http

    def test_basket_encoding(self):
        encoded = encode_basket([("Olive oil 5L", Decimal("100"), 2)])
        assert json.loads(base64.b64decode(encoded)) == [["Olive oil 5L", "100.00", 2]]

    def test_token_is_deterministic(self):
        client, _ = self._client()
        kwargs = dict(
            user_ip="10.0.0.1",
            merchant_oid="PAY1",
            email="a@b.co",
            payment_amount=14500,
            user_basket="W10=",
        )
        assert client.make_token(**kwargs) == client.make_token(**kwargs)
        assert client.make_token(**kwargs) != client.make_token(**{**kwargs, "payment_amount": 14501})

    def test_callback_verification(self):
        client, _ = self._client()
        good = client.callback_hash("PAY1", "success", "14500")

        assert client.verify_callback("PAY1", "success", "14500", good)
        assert not client.verify_callback("PAY1", "success", "99999", good)
        assert not client.verify_callback("PAY1", "success", "14500", "")

    def test_request_token_sends_minor_units(self):
        client, http = self._client()

        token = client.request_token(
            merchant_oid="PAY1",
            amount=Decimal("145.5"),
            email="a@b.co",
            user_ip="10.0.0.1",
            basket=[("Widget", Decimal("120.50"), 1)],
            user_name="Acme",
            user_address="1 Market St",
            user_phone="555",
        )

        assert token == "abc"
        [(_, kwargs)] = http.calls
        assert kwargs["data"]["payment_amount"] == 14550
        assert kwargs["data"]["paytr_token"]
        assert kwargs["data"]["merchant_ok_url"].startswith("http")

    def test_http_error_is_external_failure(self):
        client, _ = self._client({"/get-token": FakeResponse({}, status_code=500)})
        with pytest.raises(ExternalServiceError):
            client.request_token(
                merchant_oid="PAY1",
                amount=Decimal("1"),
                email="a@b.co",
                user_ip="10.0.0.1",
                basket=[],
                user_name="Acme",
                user_address="",
                user_phone="",
            )


class TestCarrier:
    def test_rejected_call_raises(self):
        http = FakeHttp({"/getOrderInfo": FakeResponse({"result": False, "message": "unknown"})})
        with pytest.raises(ExternalServiceError, match="unknown"):
            CarrierClient(http=http).track("TRK1")

    def test_transport_error_raises(self):
        http = FakeHttp({"/cancelOrder": requests.ConnectionError("refused")})
        with pytest.raises(ExternalServiceError):
            CarrierClient(http=http).cancel("TRK1")

    def test_track_uses_auth_and_timeout(self):
        http = FakeHttp(
            {
                "/getOrderInfo": FakeResponse(
                    {"result": True, "status": "DELIVERED", "receiverName": "J. Doe"}
                )
            }
        )

        tracking = CarrierClient(http=http).track("TRK1")

        assert tracking.status_code == "DELIVERED"
        assert tracking.receiver_name == "J. Doe"
        [(url, kwargs)] = http.calls
        assert url.endswith("/getOrderInfo")
        assert kwargs["json"] == {"trackingNumber": "TRK1"}
        assert len(kwargs["auth"]) == 2
        assert kwargs["timeout"] > 0

    def test_missing_tracking_number(self):
        http = FakeHttp({"/setOrder": FakeResponse({"result": True})})
        with pytest.raises(ExternalServiceError, match="tracking number"):
            CarrierClient(http=http).create_shipment(
                order_number="ORD1",
                receiver_name="Acme",
                receiver_phone=None,
                receiver_address="1 Market St\nKadikoy\nIstanbul\n34710",
                email=None,
                weight=Decimal("1"),
                desi=Decimal("1"),
                invoice_amount=Decimal("10.00"),
                content="Widgets",
            )

    def test_signature(self):
        client = CarrierClient(http=FakeHttp())
        body = b'{"trackingNumber": "TRK1"}'
        signature = hmac.new(b"carrier-secret", body, hashlib.sha256).hexdigest()

        assert client.verify_signature(body, signature)
        assert client.verify_signature(body, None)
        assert not client.verify_signature(body + b" ", signature)


class FakeBucket:
    def __init__(self):
        self.objects = {}

    def upload(self, path, content, options):
        self.objects[path] = (content, options)


class TestStorage:
    def test_upload_overwrites_in_documents_bucket(self, monkeypatch):
        bucket = FakeBucket()
        monkeypatch.setattr(storage_utils, "documents_bucket", lambda: bucket)

        path = storage_utils.upload_to_storage("a/b.pdf", b"%PDF", "application/pdf")

        assert path == "a/b.pdf"
        content, options = bucket.objects["a/b.pdf"]
        assert content == b"%PDF"
        assert options == {"content-type": "application/pdf", "upsert": "true"}

    def test_document_paths(self):
        receipt = storage_utils.receipt_path("ORD202601010001", "png")
        assert receipt.startswith("payments/receipts/ORD202601010001/")
        assert receipt.endswith(".png")
        assert storage_utils.receipt_path("ORD1", "pdf") != storage_utils.receipt_path("ORD1", "pdf")

        assert storage_utils.label_path("ORD1").endswith("/label_ORD1.pdf")
