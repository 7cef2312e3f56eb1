# app/services/payment_service.py
import logging
import secrets
import string
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from sqlmodel import Session

from app.core.card_gateway import CardGatewayClient
from app.core.clock import utcnow
from app.core.config import Settings, get_settings
from app.core.errors import (
    ExternalServiceError,
    IllegalTransitionError,
    InsufficientBalanceError,
    NotFoundError,
    PaymentNotAllowedError,
    SignatureError,
    ValidationFailedError,
)
from app.core.money import money
from app.core.storage_utils import receipt_path, upload_to_storage
from app.database import transaction
from app.models.ledger import BalanceTransactionType, LedgerRef, ReferenceKind
from app.models.order import (
    Order,
    OrderLogAction,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.models.payment import PaymentTransaction, PaymentTransactionStatus
from app.models.user import User
from app.repositories.company_repo import CompanyRepository
from app.repositories.order_repo import OrderRepository
from app.repositories.payment_repo import PaymentRepository
from app.schemas.payment import PaymentResult
from app.services.balance_ledger import BalanceLedger
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)

RECEIPT_EXTENSIONS = {"pdf", "jpg", "jpeg", "png"}
MAX_RECEIPT_BYTES = 5 * 1024 * 1024

MANUAL_REFUND_NOTE = "Payment captured for an order that was already paid or cancelled; manual refund required"


@dataclass
class ReceiptUpload:
    content: bytes
    filename: str
    content_type: str = "application/octet-stream"

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1].lower() if "." in self.filename else ""


def generate_merchant_oid() -> str:
    """PAY<YYYYmmddHHMMSS><6 random alphanumerics>."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"PAY{utcnow():%Y%m%d%H%M%S}{suffix}"


class PaymentProcessor:
    """
    Business logic for paying orders.

    Responsibilities:
      - credit_card: create a pending attempt, get a gateway token
        (outside any lock), settle it from the gateway callback
      - bank_transfer: store the receipt on a pending attempt, settle
        it on admin approval / rejection
      - balance: withdraw from the buyer's balance and mark the order
        paid in one transaction

    Failed attempts stay as history and the order remains payable.
    """

    def __init__(
        self,
        order_repo: OrderRepository,
        payment_repo: PaymentRepository,
        company_repo: CompanyRepository,
        order_service: OrderService,
        balance_ledger: BalanceLedger,
        gateway: CardGatewayClient,
        upload: Callable[[str, bytes, str], str] = upload_to_storage,
        settings: Settings | None = None,
    ):
        self.order_repo = order_repo
        self.payment_repo = payment_repo
        self.company_repo = company_repo
        self.order_service = order_service
        self.balance_ledger = balance_ledger
        self.gateway = gateway
        self.upload = upload
        self.settings = settings or get_settings()

    # -------- Entry point --------

    def process(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        method: PaymentMethod,
        *,
        user_ip: str = "127.0.0.1",
        card_holder_name: str | None = None,
        bank_name: str | None = None,
        receipt: ReceiptUpload | None = None,
    ) -> PaymentResult:
        if method == PaymentMethod.CREDIT_CARD:
            return self._pay_by_card(session, user_id, order_id, user_ip, card_holder_name)
        if method == PaymentMethod.BALANCE:
            return self._pay_by_balance(session, user_id, order_id)
        if method == PaymentMethod.BANK_TRANSFER:
            return self._submit_bank_transfer(session, user_id, order_id, bank_name, receipt)
        raise ValidationFailedError(f"Unsupported payment method: {method}")

    # -------- Credit card --------

    def _pay_by_card(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        user_ip: str,
        card_holder_name: str | None,
    ) -> PaymentResult:
        """
        Steps:
          1. Check the order is payable; record a pending attempt and commit.
          2. Ask the gateway for a token (no transaction open).
          3. On gateway failure mark the attempt failed and re-raise.
        """
        order = self._payable_order(session, user_id, order_id)
        user = session.get(User, user_id)
        company = self.company_repo.get_by_user(session, user_id)

        basket: list[tuple[str, Decimal, int]] = []
        for item in self.order_repo.list_items_for_order(session, order.id):
            gross_unit = money(item.unit_price * (1 + item.vat_rate / 100))
            basket.append((item.product_name or "Item", gross_unit, item.quantity))
        if order.shipping_cost > 0:
            basket.append(("Shipping", money(order.shipping_cost), 1))

        merchant_oid = generate_merchant_oid()
        amount = money(order.grand_total)
        with transaction(session):
            txn = self.payment_repo.create(
                session,
                PaymentTransaction(
                    order_id=order.id,
                    transaction_id=merchant_oid,
                    payment_method=PaymentMethod.CREDIT_CARD,
                    amount=amount,
                    currency=self.settings.CURRENCY,
                    status=PaymentTransactionStatus.PENDING,
                    card_holder_name=card_holder_name,
                ),
            )
            txn_id = txn.id

        try:
            token = self.gateway.request_token(
                merchant_oid=merchant_oid,
                amount=amount,
                email=user.email if user else "",
                user_ip=user_ip,
                basket=basket,
                user_name=card_holder_name or (company.company_name if company else ""),
                user_address=order.billing_address,
                user_phone=order.billing_contact_phone or "",
            )
        except ExternalServiceError as exc:
            with transaction(session):
                failed = self.payment_repo.get_for_update(session, txn_id)
                failed.status = PaymentTransactionStatus.FAILED
                failed.processed_at = utcnow()
                failed.gateway_response = {"error": exc.message}
                self.payment_repo.update(session, failed)
            logger.error(
                "Card payment start failed for order %s (attempt %s, user %s)",
                order.order_number, merchant_oid, user_id,
            )
            raise

        logger.info("Card payment started for order %s (%s)", order.order_number, merchant_oid)
        return PaymentResult(
            transaction_id=txn_id,
            merchant_oid=merchant_oid,
            payment_method=PaymentMethod.CREDIT_CARD,
            status=PaymentTransactionStatus.PENDING,
            amount=amount,
            token=token,
            iframe_url=f"{self.gateway.iframe_url}{token}",
            message="Redirect to the payment page to complete the payment",
        )

    def handle_card_callback(
        self,
        session: Session,
        *,
        merchant_oid: str,
        status: str,
        total_amount: str,
        received_hash: str,
        failed_reason: str | None = None,
        masked_pan: str | None = None,
    ) -> PaymentTransaction:
        """
        Settle a card attempt from the gateway's server-to-server callback.

        Rules:
          - bad hash -> SignatureError, nothing changes
          - unknown merchant_oid -> NotFoundError
          - attempt already settled -> no-op (gateways retry callbacks)
          - success -> attempt success, order paid + confirmed
          - anything else -> attempt failed, order stays payable
        """
        if not self.gateway.verify_callback(merchant_oid, status, total_amount, received_hash):
            logger.warning(
                "Card callback hash mismatch for %s (status=%s, total_amount=%s)",
                merchant_oid, status, total_amount,
            )
            raise SignatureError("Invalid callback hash")

        with transaction(session):
            txn = self.payment_repo.get_by_transaction_id_for_update(session, merchant_oid)
            if txn is None:
                logger.warning("Card callback for unknown transaction %s", merchant_oid)
                raise NotFoundError("Payment transaction", merchant_oid)

            if txn.status != PaymentTransactionStatus.PENDING:
                logger.info(
                    "Card callback for %s ignored: already %s", merchant_oid, txn.status.value
                )
                return txn

            order = self.order_repo.get_for_update(session, txn.order_id)
            response = {"status": status, "total_amount": total_amount}
            if failed_reason:
                response["failed_reason_msg"] = failed_reason

            if status == "success":
                if order.status == OrderStatus.CANCELLED or order.payment_status != PaymentStatus.PENDING:
                    txn.status = PaymentTransactionStatus.CANCELLED
                    response["note"] = MANUAL_REFUND_NOTE
                    logger.error(
                        "Card payment %s captured for order %s in status %s/%s; manual refund required",
                        merchant_oid, order.order_number, order.status.value, order.payment_status.value,
                    )
                else:
                    txn.status = PaymentTransactionStatus.SUCCESS
                    txn.masked_card_number = masked_pan
                    self.order_service.mark_paid(session, order, PaymentMethod.CREDIT_CARD)
                    if order.status == OrderStatus.PENDING:
                        self.order_service.transition(
                            session, order, OrderStatus.CONFIRMED, None,
                            "Order confirmed after card payment",
                        )
                    logger.info("Card payment %s succeeded for order %s", merchant_oid, order.order_number)
            else:
                txn.status = PaymentTransactionStatus.FAILED
                logger.info(
                    "Card payment %s failed for order %s: %s",
                    merchant_oid, order.order_number, failed_reason or status,
                )

            txn.gateway_response = response
            txn.processed_at = utcnow()
            self.payment_repo.update(session, txn)
        return txn

    # -------- Balance --------

    def _pay_by_balance(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> PaymentResult:
        with transaction(session):
            order = self._payable_order(session, user_id, order_id, lock=True)
            amount = money(order.grand_total)

            company = self.company_repo.get_by_user_for_update(session, user_id)
            if company is None:
                raise NotFoundError("Company", user_id)
            if not self.balance_ledger.has_balance(session, user_id, amount):
                logger.info(
                    "Balance payment refused for order %s: balance %s, required %s",
                    order.order_number, company.balance, amount,
                )
                raise InsufficientBalanceError(money(company.balance), amount)

            ref = LedgerRef(ReferenceKind.ORDER, order.id)
            entry = self.balance_ledger.withdraw(
                session,
                user_id,
                amount,
                f"Payment for order {order.order_number}",
                reference=ref,
                actor_id=user_id,
                kind=BalanceTransactionType.ORDER_PAYMENT,
            )
            if entry is None:
                raise InsufficientBalanceError(money(company.balance), amount)

            txn = self.payment_repo.create(
                session,
                PaymentTransaction(
                    order_id=order.id,
                    transaction_id=generate_merchant_oid(),
                    payment_method=PaymentMethod.BALANCE,
                    amount=amount,
                    currency=self.settings.CURRENCY,
                    status=PaymentTransactionStatus.SUCCESS,
                    processed_at=utcnow(),
                ),
            )
            self.order_service.mark_paid(session, order, PaymentMethod.BALANCE, user_id)
            order_number = order.order_number
            result = PaymentResult(
                transaction_id=txn.id,
                merchant_oid=txn.transaction_id,
                payment_method=PaymentMethod.BALANCE,
                status=PaymentTransactionStatus.SUCCESS,
                amount=amount,
                message="Payment completed from account balance",
            )

        logger.info("Order %s paid from balance (%s)", order_number, amount)
        return result

    # -------- Bank transfer --------

    def _submit_bank_transfer(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        bank_name: str | None,
        receipt: ReceiptUpload | None,
    ) -> PaymentResult:
        """
        Steps:
          1. Validate bank name + receipt (pdf/jpg/jpeg/png, max 5MB).
          2. Upload the receipt (outside the transaction).
          3. Record a pending attempt and log `bank_receipt_uploaded`.
        """
        if not bank_name or not bank_name.strip():
            raise ValidationFailedError("Bank name is required")
        if receipt is None or not receipt.content:
            raise ValidationFailedError("Receipt file is required")
        if receipt.extension not in RECEIPT_EXTENSIONS:
            raise ValidationFailedError("Receipt must be a PDF, JPG or PNG file")
        if len(receipt.content) > MAX_RECEIPT_BYTES:
            raise ValidationFailedError("Receipt file is too large (max 5MB)")

        order = self._payable_order(session, user_id, order_id)
        path = receipt_path(order.order_number, receipt.extension)
        try:
            self.upload(path, receipt.content, receipt.content_type)
        except Exception as exc:
            logger.error("Receipt upload failed for order %s: %s", order.order_number, exc)
            raise ExternalServiceError("Storage", str(exc)) from exc

        with transaction(session):
            order = self._payable_order(session, user_id, order_id, lock=True)
            txn = self.payment_repo.create(
                session,
                PaymentTransaction(
                    order_id=order.id,
                    transaction_id=generate_merchant_oid(),
                    payment_method=PaymentMethod.BANK_TRANSFER,
                    amount=money(order.grand_total),
                    currency=self.settings.CURRENCY,
                    status=PaymentTransactionStatus.PENDING,
                    bank_name=bank_name.strip(),
                    bank_receipt=path,
                ),
            )
            order.payment_method = PaymentMethod.BANK_TRANSFER
            self.order_repo.update_order(session, order)
            self.order_service.log_action(
                session,
                order,
                OrderLogAction.BANK_RECEIPT_UPLOADED,
                f"Bank transfer receipt uploaded ({bank_name.strip()})",
                user_id,
                new_value={"transaction_id": str(txn.id), "bank_name": bank_name.strip()},
            )
            result = PaymentResult(
                transaction_id=txn.id,
                merchant_oid=txn.transaction_id,
                payment_method=PaymentMethod.BANK_TRANSFER,
                status=PaymentTransactionStatus.PENDING,
                amount=txn.amount,
                message="Receipt received; the payment will be confirmed after review",
            )
        return result

    def approve_bank_transfer(
        self,
        session: Session,
        txn_id: uuid.UUID,
        actor_id: uuid.UUID | None = None,
    ) -> PaymentTransaction:
        """Admin: accept a bank transfer, mark the order paid and confirm it."""
        with transaction(session):
            txn = self._pending_bank_transfer(session, txn_id, PaymentTransactionStatus.SUCCESS)
            order = self.order_repo.get_for_update(session, txn.order_id)
            if order.status == OrderStatus.CANCELLED or order.payment_status != PaymentStatus.PENDING:
                raise PaymentNotAllowedError("Order is not awaiting payment")

            txn.status = PaymentTransactionStatus.SUCCESS
            txn.processed_at = utcnow()
            self.payment_repo.update(session, txn)

            self.order_service.mark_paid(session, order, PaymentMethod.BANK_TRANSFER, actor_id)
            if order.status == OrderStatus.PENDING:
                self.order_service.transition(
                    session, order, OrderStatus.CONFIRMED, actor_id,
                    "Order confirmed after bank transfer approval",
                )
        logger.info("Bank transfer %s approved by %s", txn_id, actor_id)
        session.refresh(txn)
        return txn

    def reject_bank_transfer(
        self,
        session: Session,
        txn_id: uuid.UUID,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> PaymentTransaction:
        """Admin: refuse a bank transfer. The order stays payable."""
        with transaction(session):
            txn = self._pending_bank_transfer(session, txn_id, PaymentTransactionStatus.FAILED)
            txn.status = PaymentTransactionStatus.FAILED
            txn.processed_at = utcnow()
            txn.gateway_response = {"rejection_reason": reason, "rejected_by": str(actor_id)}
            self.payment_repo.update(session, txn)
        logger.info("Bank transfer %s rejected by %s: %s", txn_id, actor_id, reason)
        session.refresh(txn)
        return txn

    # -------- Reads --------

    def get_transaction(
        self,
        session: Session,
        txn_id: uuid.UUID,
        owner_id: uuid.UUID | None = None,
    ) -> PaymentTransaction:
        txn = self.payment_repo.get_by_id(session, txn_id)
        if txn is None:
            raise NotFoundError("Payment transaction", txn_id)
        if owner_id is not None:
            order = self.order_repo.get_by_id(session, txn.order_id)
            if order is None or order.user_id != owner_id:
                raise NotFoundError("Payment transaction", txn_id)
        return txn

    def list_for_order(self, session: Session, order_id: uuid.UUID) -> list[PaymentTransaction]:
        return self.payment_repo.list_for_order(session, order_id)

    # -------- Internals --------

    def _payable_order(
        self,
        session: Session,
        user_id: uuid.UUID,
        order_id: uuid.UUID,
        lock: bool = False,
    ) -> Order:
        if lock:
            order = self.order_repo.get_for_update(session, order_id)
        else:
            order = self.order_repo.get_by_id(session, order_id)
        if order is None or order.user_id != user_id:
            raise NotFoundError("Order", order_id)
        if order.status == OrderStatus.CANCELLED:
            raise PaymentNotAllowedError("Order is cancelled")
        if order.payment_status != PaymentStatus.PENDING:
            raise PaymentNotAllowedError("Order is not awaiting payment")
        return order

    def _pending_bank_transfer(
        self,
        session: Session,
        txn_id: uuid.UUID,
        target: PaymentTransactionStatus,
    ) -> PaymentTransaction:
        txn = self.payment_repo.get_for_update(session, txn_id)
        if txn is None:
            raise NotFoundError("Payment transaction", txn_id)
        if txn.payment_method != PaymentMethod.BANK_TRANSFER:
            raise ValidationFailedError("Not a bank transfer")
        if txn.status != PaymentTransactionStatus.PENDING:
            raise IllegalTransitionError("payment", txn.status.value, target.value)
        return txn
