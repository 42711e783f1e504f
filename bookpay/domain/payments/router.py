"""Payments router - FastAPI endpoints for payment initialization, verification and webhooks"""

import json
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ...config import BASE_URL
from ...database import get_db
from ...email_service import Mailer, get_mailer
from ...tenancy import TenantScope, TenantSessions, get_tenant_or_404, get_tenant_sessions
from ...webhook_security import (
    WebhookSecrets,
    get_webhook_secrets,
    verify_flutterwave_webhook,
    verify_paystack_webhook,
)
from ..scheduling.availability import get_clock
from .gateways import FlutterwaveGateway, PaystackGateway, build_gateway
from .repository import PaymentRepository
from .schemas import (
    InitializePaymentRequest,
    InitializePaymentResponse,
    TransactionResponse,
    WebhookAck,
    WebhookUrlResponse,
)
from .service import PaymentService, process_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_gateway_factory() -> Callable:
    """Dependency injection for gateway adapter construction"""
    return build_gateway


# ============================================================================
# PAYMENTS
# ============================================================================


@router.post("/initialize", response_model=InitializePaymentResponse)
async def initialize_payment(
    body: InitializePaymentRequest,
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
    gateway_factory: Callable = Depends(get_gateway_factory),
    mailer: Mailer = Depends(get_mailer),
    clock: Callable = Depends(get_clock),
):
    """Start a payment with the tenant's default gateway"""
    tenant = get_tenant_or_404(db, body.tenant_id)
    with sessions.open(tenant, db) as tenant_db:
        service = PaymentService(
            tenant_db, tenant, gateway_factory=gateway_factory, mailer=mailer, clock=clock
        )
        return await service.initialize(body)


@router.get("/verify", response_model=TransactionResponse)
async def verify_payment(
    tenant_id: Optional[int] = Query(None),
    reference: Optional[str] = Query(None),
    tx_ref: Optional[str] = Query(None, description="Flutterwave redirect parameter"),
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
    gateway_factory: Callable = Depends(get_gateway_factory),
    mailer: Mailer = Depends(get_mailer),
    clock: Callable = Depends(get_clock),
):
    """Verify a payment by reference (Paystack) or tx_ref (Flutterwave)"""
    payment_reference = reference or tx_ref
    if not payment_reference:
        raise HTTPException(status_code=400, detail="Payment reference is required")

    tenant = get_tenant_or_404(db, tenant_id)
    with sessions.open(tenant, db) as tenant_db:
        service = PaymentService(
            tenant_db, tenant, gateway_factory=gateway_factory, mailer=mailer, clock=clock
        )
        return await service.verify(payment_reference)


@router.get("/webhook-url/{online_store_id}", response_model=WebhookUrlResponse)
async def get_webhook_url(
    online_store_id: int,
    tenant_id: int = Query(...),
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
):
    """Get the webhook URL a merchant registers with Paystack"""
    tenant = get_tenant_or_404(db, tenant_id)
    with sessions.open(tenant, db) as tenant_db:
        online_store = PaymentRepository.get_online_store(
            tenant_db, TenantScope.for_tenant(tenant), online_store_id
        )
        if not online_store:
            raise HTTPException(status_code=404, detail="Online store not found")

    webhook_url = f"{BASE_URL.rstrip('/')}/webhooks/paystack?online_store_id={online_store_id}"
    return {
        "webhook_url": webhook_url,
        "online_store_id": online_store_id,
        "instructions": [
            "Log in to your Paystack dashboard",
            "Go to Settings > API Keys & Webhooks",
            f"Paste this URL into the Webhook URL field: {webhook_url}",
            "Save changes",
        ],
    }


# ============================================================================
# WEBHOOKS
# ============================================================================


def parse_json_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("❌ Invalid JSON payload")
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    return payload


@webhook_router.post("/paystack", response_model=WebhookAck)
async def handle_paystack_webhook(
    request: Request,
    online_store_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
    secrets: WebhookSecrets = Depends(get_webhook_secrets),
    gateway_factory: Callable = Depends(get_gateway_factory),
    mailer: Mailer = Depends(get_mailer),
    clock: Callable = Depends(get_clock),
):
    """
    Handle Paystack webhook events

    Events handled:
    - charge.success - Payment completed; reconciles order/invoice/booking
    - charge.failed - Payment failed

    Creates the transaction from webhook metadata when it is missing.
    """
    raw_body = await verify_paystack_webhook(request, secrets.paystack_secret_key)
    payload = parse_json_body(raw_body)

    event = PaystackGateway.parse_webhook(payload)
    logger.info(
        f"📥 Received Paystack webhook: {event.event} for online_store_id: {online_store_id or 'N/A'}"
    )
    return await process_webhook_event(
        db, sessions, event, gateway_factory=gateway_factory, mailer=mailer, clock=clock
    )


@webhook_router.post("/flutterwave", response_model=WebhookAck)
async def handle_flutterwave_webhook(
    request: Request,
    db: Session = Depends(get_db),
    sessions: TenantSessions = Depends(get_tenant_sessions),
    secrets: WebhookSecrets = Depends(get_webhook_secrets),
    gateway_factory: Callable = Depends(get_gateway_factory),
    mailer: Mailer = Depends(get_mailer),
    clock: Callable = Depends(get_clock),
):
    """Handle Flutterwave charge.completed webhook events"""
    raw_body = await verify_flutterwave_webhook(request, secrets.flutterwave_secret_hash)
    payload = parse_json_body(raw_body)

    event = FlutterwaveGateway.parse_webhook(payload)
    logger.info(f"📥 Received Flutterwave webhook: {event.event} ({event.status})")
    return await process_webhook_event(
        db, sessions, event, gateway_factory=gateway_factory, mailer=mailer, clock=clock
    )
