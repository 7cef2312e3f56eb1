"""Pytest fixtures for the commerce core tests."""

import os

# Settings are read once at import time; point them at test values first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_KEY", "anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ENABLE_BACKGROUND_SWEEPS", "false")
os.environ.setdefault("CARD_GATEWAY_MERCHANT_ID", "123456")
os.environ.setdefault("CARD_GATEWAY_MERCHANT_KEY", "merchant-key")
os.environ.setdefault("CARD_GATEWAY_MERCHANT_SALT", "merchant-salt")
os.environ.setdefault("CARRIER_WEBHOOK_SECRET", "carrier-secret")
os.environ.setdefault("CARRIER_POLL_DELAY_SECONDS", "0")

import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.core.auth import require_admin, require_buyer
from app.core.card_gateway import CardGatewayClient
from app.core.carrier_client import CarrierClient
from app.database import get_session
from app.main import app
from app.models.company import Company, CustomerGroup, UserGroupLink
from app.models.product import Product
from app.models.user import User
from app.repositories.cart_repo import CartRepository
from app.repositories.company_repo import CompanyRepository
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.shipment_repo import ShipmentRepository
from app.services import registry
from app.services.balance_ledger import BalanceLedger
from app.services.cart_service import CartService
from app.services.order_service import OrderService
from app.services.payment_service import PaymentProcessor
from app.services.pricing import PricingResolver
from app.services.shipment_service import ShipmentTracker
from app.services.stock_ledger import StockLedger


# ---- Outbound HTTP fakes ----


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeHttp:
    """
    Stand-in for requests.Session: `routes` maps a URL suffix to a
    FakeResponse or an exception to raise. Every call is recorded.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        for suffix, outcome in self.routes.items():
            if url.endswith(suffix):
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        raise requests.ConnectionError(f"no fake route for {url}")

    def paths(self):
        return [url for url, _ in self.calls]


class FakeUploader:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    def __call__(self, path, content, content_type="application/octet-stream"):
        if self.fail:
            raise RuntimeError("storage down")
        self.uploads.append((path, content, content_type))
        return path


# ---- Database ----


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# ---- Seed data ----


@pytest.fixture
def make_user(session):
    def _make(role="user", name="Buyer", phone="5551112233"):
        user = User(
            id=uuid.uuid4(),
            email=f"{uuid.uuid4().hex[:8]}@example.com",
            name=name,
            phone=phone,
            role=role,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_buyer(session, make_user):
    def _make(balance="1000.00", approved=True, company_name="Acme Ltd"):
        user = make_user()
        company = Company(
            user_id=user.id,
            company_name=company_name,
            address="1 Market St",
            district="Kadikoy",
            city="Istanbul",
            postal_code="34710",
            is_approved=approved,
            balance=Decimal(balance),
        )
        session.add(company)
        session.commit()
        session.refresh(company)
        return user

    return _make


@pytest.fixture
def make_product(session):
    def _make(base_price="100.00", stock=50, vat_rate="20.00", min_qty=1, weight=None, active=True):
        product = Product(
            sku=f"SKU-{uuid.uuid4().hex[:8]}",
            name=f"Product {uuid.uuid4().hex[:4]}",
            base_price=Decimal(base_price),
            vat_rate=Decimal(vat_rate),
            stock_quantity=stock,
            min_order_quantity=min_qty,
            weight=Decimal(weight) if weight is not None else None,
            is_active=active,
        )
        session.add(product)
        session.commit()
        session.refresh(product)
        return product

    return _make


@pytest.fixture
def make_group(session):
    def _make(user, discount="0.00", active=True, name="Dealers"):
        group = CustomerGroup(
            name=name,
            discount_percentage=Decimal(discount),
            is_active=active,
        )
        session.add(group)
        session.commit()
        session.refresh(group)
        session.add(UserGroupLink(user_id=user.id, group_id=group.id))
        session.commit()
        return group

    return _make


@pytest.fixture
def buyer(make_buyer):
    return make_buyer()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Admin")


# ---- Services wired with fakes ----


@pytest.fixture
def gateway_http():
    return FakeHttp({"/get-token": FakeResponse({"status": "success", "token": "tok-123"})})


@pytest.fixture
def carrier_http():
    return FakeHttp(
        {
            "/setOrder": FakeResponse(
                {"result": True, "trackingNumber": "TRK1001", "barcodeData": "JVBERi0xLjQ="}
            ),
            "/cancelOrder": FakeResponse({"result": True}),
        }
    )


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def services(gateway_http, carrier_http, uploader):
    cart_repo = CartRepository()
    company_repo = CompanyRepository()
    ledger_repo = LedgerRepository()
    order_repo = OrderRepository()
    payment_repo = PaymentRepository()
    product_repo = ProductRepository()
    shipment_repo = ShipmentRepository()

    pricing = PricingResolver(product_repo)
    stock_ledger = StockLedger(product_repo, ledger_repo)
    balance_ledger = BalanceLedger(company_repo, ledger_repo)
    orders = OrderService(
        order_repo, cart_repo, product_repo, company_repo, payment_repo,
        pricing, stock_ledger, balance_ledger,
    )
    gateway = CardGatewayClient(http=gateway_http)
    carrier = CarrierClient(http=carrier_http)
    return SimpleNamespace(
        cart_repo=cart_repo,
        order_repo=order_repo,
        payment_repo=payment_repo,
        shipment_repo=shipment_repo,
        pricing=pricing,
        stock=stock_ledger,
        balance=balance_ledger,
        cart=CartService(cart_repo, product_repo, pricing, order_repo),
        orders=orders,
        gateway=gateway,
        carrier=carrier,
        payments=PaymentProcessor(
            order_repo, payment_repo, company_repo, orders, balance_ledger,
            gateway, upload=uploader,
        ),
        shipments=ShipmentTracker(
            shipment_repo, order_repo, product_repo, orders, carrier,
            upload=uploader, sleep=lambda seconds: None,
        ),
    )


# ---- API ----


@pytest.fixture
def client(session, buyer, admin, gateway_http, carrier_http, uploader, monkeypatch):
    """
    TestClient on the real app: the DB session is the test session,
    buyer routes see `buyer`, admin routes see `admin`, and the shared
    services talk to the fake gateway / carrier / storage.
    """

    def _get_session():
        yield session

    monkeypatch.setattr(registry.payment_processor, "gateway", CardGatewayClient(http=gateway_http))
    monkeypatch.setattr(registry.payment_processor, "upload", uploader)
    monkeypatch.setattr(registry.shipment_tracker, "carrier", CarrierClient(http=carrier_http))
    monkeypatch.setattr(registry.shipment_tracker, "upload", uploader)
    monkeypatch.setattr(registry.shipment_tracker, "sleep", lambda seconds: None)

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[require_buyer] = lambda: buyer
    app.dependency_overrides[require_admin] = lambda: admin
    yield TestClient(app)
    app.dependency_overrides.clear()
