# app/services/registry.py
"""
Process-wide repository and service instances.

Routers and background jobs share these so that every entry point
goes through the same wiring (and tests can swap the outbound clients
on one object).
"""

from app.core.card_gateway import CardGatewayClient
from app.core.carrier_client import CarrierClient
from app.repositories.cart_repo import CartRepository
from app.repositories.company_repo import CompanyRepository
from app.repositories.ledger_repo import LedgerRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.product_repo import ProductRepository
from app.repositories.shipment_repo import ShipmentRepository
from app.services.balance_ledger import BalanceLedger
from app.services.cart_service import CartService
from app.services.order_service import OrderService
from app.services.payment_service import PaymentProcessor
from app.services.pricing import PricingResolver
from app.services.shipment_service import ShipmentTracker
from app.services.stock_ledger import StockLedger

# ---- Repositories ----
cart_repo = CartRepository()
company_repo = CompanyRepository()
ledger_repo = LedgerRepository()
order_repo = OrderRepository()
payment_repo = PaymentRepository()
product_repo = ProductRepository()
shipment_repo = ShipmentRepository()

# ---- Leaf services ----
pricing = PricingResolver(product_repo)
stock_ledger = StockLedger(product_repo, ledger_repo)
balance_ledger = BalanceLedger(company_repo, ledger_repo)

# ---- Workflow ----
cart_service = CartService(cart_repo, product_repo, pricing, order_repo)
order_service = OrderService(
    order_repo,
    cart_repo,
    product_repo,
    company_repo,
    payment_repo,
    pricing,
    stock_ledger,
    balance_ledger,
)
payment_processor = PaymentProcessor(
    order_repo,
    payment_repo,
    company_repo,
    order_service,
    balance_ledger,
    CardGatewayClient(),
)
shipment_tracker = ShipmentTracker(
    shipment_repo,
    order_repo,
    product_repo,
    order_service,
    CarrierClient(),
)
