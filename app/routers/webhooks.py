# app/routers/webhooks.py
from fastapi import APIRouter, Depends, Form, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from sqlmodel import Session

from app.database import get_session
from app.schemas.shipment import CarrierWebhookAck
from app.services.registry import payment_processor, shipment_tracker

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/payment", response_class=PlainTextResponse)
def card_payment_callback(
    merchant_oid: str = Form(...),
    status: str = Form(...),
    total_amount: str = Form(...),
    hash: str = Form(...),
    failed_reason_msg: str | None = Form(None),
    masked_pan: str | None = Form(None),
    session: Session = Depends(get_session),
):
    """
    Server-to-server callback from the card gateway.

    The gateway expects the literal body "OK"; any non-2xx reply
    (bad hash, unknown transaction) makes it retry.
    """
    payment_processor.handle_card_callback(
        session,
        merchant_oid=merchant_oid,
        status=status,
        total_amount=total_amount,
        received_hash=hash,
        failed_reason=failed_reason_msg,
        masked_pan=masked_pan,
    )
    return "OK"


@router.post("/carrier", response_model=CarrierWebhookAck)
async def carrier_callback(
    request: Request,
    x_carrier_signature: str | None = Header(default=None),
    session: Session = Depends(get_session),
):
    """
    Shipment events from the carrier.

    The optional X-Carrier-Signature header is checked against the raw body,
    so the body is read here and the database work runs in the threadpool.
    """
    raw_body = await request.body()
    shipment = await run_in_threadpool(
        shipment_tracker.handle_webhook, session, raw_body, x_carrier_signature
    )
    return CarrierWebhookAck(success=True, processed=shipment is not None)
