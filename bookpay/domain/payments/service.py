"""
Payment service - Transaction lifecycle across initialize, verify and webhook.

A transaction moves ``pending -> success`` or ``pending -> failed`` and both
outcomes are terminal. Three independent callers can drive that move:

* ``initialize`` creates the pending row after the booking slot (if any) has
  been validated, then asks the gateway for an authorization URL
* ``verify`` asks the gateway for the outcome and applies it under a row lock
* ``handle_webhook`` applies a provider push with compare-and-set updates,
  recreating the transaction first if initialize never persisted it

Side effects of a success are owned by :class:`ReconciliationApplier`.
"""

import logging
import secrets
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import DEFAULT_CURRENCY, FRONTEND_URL
from ...email_service import Mailer
from ...models import OnlineStore, PaymentTransaction, Tenant
from ...tenancy import TenantScope, TenantSessions, get_tenant
from ..scheduling.availability import local_now
from ..scheduling.service import SchedulingService
from .fees import (
    build_split_instruction,
    compute_fee,
    fee_percent_for_tenant,
    to_decimal,
    to_minor_units,
)
from .gateways import GatewayError, WebhookEvent, build_gateway
from .reconciliation import (
    Notification,
    ReconciliationApplier,
    ReconciliationOutcome,
    as_int,
    is_booking_payment,
)
from .repository import PaymentRepository

logger = logging.getLogger(__name__)


def generate_reference() -> str:
    """TXN-<epoch ms>-<8 hex chars>"""
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_transaction(transaction: PaymentTransaction, **extra) -> dict:
    booking = transaction.booking
    data = {
        "id": transaction.id,
        "reference": transaction.transaction_reference,
        "status": transaction.status,
        "amount": float(transaction.amount),
        "currency": transaction.currency,
        "platform_fee": float(transaction.platform_fee or 0),
        "merchant_amount": float(transaction.merchant_amount or 0),
        "paid_at": transaction.paid_at.isoformat() if transaction.paid_at else None,
        "failure_reason": transaction.failure_reason,
        "already_verified": False,
        "booking_id": booking.id if booking else None,
    }
    data.update(extra)
    return data


class PaymentService:
    def __init__(
        self,
        db: Session,
        tenant: Tenant,
        gateway_factory: Callable = build_gateway,
        mailer: Optional[Mailer] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.db = db
        self.tenant = tenant
        self.scope = TenantScope.for_tenant(tenant)
        self.gateway_factory = gateway_factory
        self.mailer = mailer or Mailer()
        self.clock = clock
        self.repo = PaymentRepository()

    # ==========================================
    # INITIALIZE
    # ==========================================

    async def initialize(self, data) -> dict:
        """Validate, create the pending transaction and start the gateway payment"""
        if not data.amount or not data.email:
            raise HTTPException(status_code=400, detail="Amount and email are required")

        amount = to_decimal(data.amount)
        if amount <= 0:
            raise HTTPException(status_code=400, detail="Amount must be greater than zero")

        gateway_row = self.repo.get_default_gateway(self.db, self.scope)
        if not gateway_row:
            raise HTTPException(
                status_code=400,
                detail="No active payment gateway configured. Please configure a payment gateway first.",
            )

        try:
            gateway = self.gateway_factory(gateway_row)
        except GatewayError as e:
            raise HTTPException(status_code=400, detail=str(e))

        metadata = dict(data.metadata or {})
        if is_booking_payment(metadata):
            # Must run before any transaction row exists
            metadata.update(self._validate_booking_slot(metadata))

        fees = compute_fee(amount, fee_percent_for_tenant(self.tenant))
        online_store = self._find_online_store(data.order_id, metadata)
        split = None
        if gateway_row.gateway_name == "paystack":
            split = build_split_instruction(
                fees, online_store.paystack_subaccount_code if online_store else None
            )
            if split:
                logger.info(
                    f"💰 Split payment: platform fee {fees.platform_fee} ({split.charge_amount} kobo), "
                    f"merchant {fees.merchant_amount}"
                )

        currency = data.currency or DEFAULT_CURRENCY
        transaction = PaymentTransaction(
            tenant_id=self.scope.row_tenant_id,
            order_id=data.order_id,
            invoice_id=data.invoice_id,
            transaction_reference=generate_reference(),
            gateway_name=gateway_row.gateway_name,
            amount=amount,
            currency=currency,
            platform_fee=fees.platform_fee,
            merchant_amount=fees.merchant_amount,
            customer_email=data.email,
            customer_name=data.name,
            customer_phone=data.phone,
            status=PaymentTransaction.STATUS_PENDING,
        )
        self.db.add(transaction)
        self.db.flush()

        gateway_metadata = {
            **metadata,
            "tenant_id": self.tenant.id,
            "transaction_id": transaction.id,
            "gateway_name": gateway_row.gateway_name,
            "platform_fee": str(fees.platform_fee),
        }
        if data.order_id:
            gateway_metadata["order_id"] = data.order_id
        if data.invoice_id:
            gateway_metadata["invoice_id"] = data.invoice_id
        if online_store:
            gateway_metadata["online_store_id"] = online_store.id
        if data.name:
            gateway_metadata.setdefault("customer_name", data.name)

        transaction.payment_metadata = gateway_metadata
        self.db.commit()
        logger.info(
            f"💰 Created pending transaction {transaction.transaction_reference} "
            f"({amount} {currency}, fee {fees.platform_fee}) via {gateway_row.gateway_name}"
        )

        try:
            result = await gateway.initialize(
                amount_minor=to_minor_units(amount),
                email=data.email,
                reference=transaction.transaction_reference,
                redirect_url=data.redirect_url or f"{FRONTEND_URL}/payment/callback",
                metadata=gateway_metadata,
                split=split,
                currency=currency,
                customer_name=data.name,
            )
        except GatewayError as e:
            self.repo.transition_status(
                self.db,
                transaction.id,
                PaymentTransaction.STATUS_FAILED,
                failure_reason=str(e),
                gateway_response=e.payload or None,
            )
            self.db.commit()
            logger.error(f"❌ Gateway initialization failed for {transaction.transaction_reference}: {e}")
            raise HTTPException(status_code=502, detail=f"Failed to initialize payment: {e}")

        transaction.gateway_transaction_id = result.provider_reference
        transaction.gateway_response = result.raw
        self.db.commit()

        return {
            "transaction_reference": transaction.transaction_reference,
            "authorization_url": result.authorization_url,
            "access_code": result.access_code,
            "gateway": gateway_row.gateway_name,
            "amount": float(amount),
            "currency": currency,
            "platform_fee": float(fees.platform_fee),
            "merchant_amount": float(fees.merchant_amount),
        }

    def _validate_booking_slot(self, metadata: dict) -> dict:
        if not metadata.get("service_id") or not metadata.get("scheduled_at"):
            raise HTTPException(
                status_code=400,
                detail="service_id and scheduled_at are required for booking payments",
            )

        slot = SchedulingService(self.db, self.tenant, clock=self.clock).validate_slot(
            as_int(metadata.get("service_id")), metadata.get("scheduled_at"), as_int(metadata.get("store_id"))
        )
        return {
            "is_booking": True,
            "service_id": slot.service.id,
            "store_id": slot.store_id,
            "scheduled_at": slot.scheduled_at.isoformat(),
        }

    def _find_online_store(self, order_id: Optional[int], metadata: dict) -> Optional[OnlineStore]:
        online_store_id = None
        if order_id:
            order = self.repo.get_order(self.db, self.scope, order_id)
            if order:
                online_store_id = order.online_store_id
        online_store_id = online_store_id or as_int(metadata.get("online_store_id"))
        if not online_store_id:
            return None
        return self.repo.get_online_store(self.db, self.scope, online_store_id)

    # ==========================================
    # VERIFY
    # ==========================================

    async def verify(self, reference: Optional[str]) -> dict:
        """Ask the gateway for the outcome and apply it under a row lock"""
        if not reference:
            raise HTTPException(status_code=400, detail="Payment reference is required")

        transaction = self.repo.get_transaction_by_reference(self.db, self.scope, reference)
        if not transaction:
            raise HTTPException(status_code=404, detail="Transaction not found")

        if transaction.is_successful:
            return serialize_transaction(transaction, already_verified=True)
        if transaction.status != PaymentTransaction.STATUS_PENDING:
            return serialize_transaction(transaction)

        gateway_row = self.repo.get_active_gateway(self.db, self.scope, transaction.gateway_name)
        if not gateway_row:
            raise HTTPException(status_code=500, detail="Payment gateway not configured")

        try:
            result = await self.gateway_factory(gateway_row).verify(reference)
        except GatewayError as e:
            logger.error(f"❌ Gateway verification failed for {reference}: {e}")
            raise HTTPException(status_code=502, detail=f"Failed to verify payment: {e}")

        # Critical section: re-read under lock, re-check, write, reconcile, commit
        outcome = None
        try:
            locked = self.repo.lock_transaction(self.db, transaction.id)
            if locked.is_successful:
                self.db.commit()
                logger.info(f"Transaction {reference} completed concurrently; skipping")
                return serialize_transaction(locked, already_verified=True)
            if locked.status != PaymentTransaction.STATUS_PENDING:
                self.db.commit()
                return serialize_transaction(locked)

            if result.is_success:
                if result.provider_amount is not None and result.provider_amount != to_decimal(locked.amount):
                    logger.warning(
                        f"⚠️ Amount mismatch on {reference}: expected {locked.amount}, gateway {result.provider_amount}"
                    )
                locked.status = PaymentTransaction.STATUS_SUCCESS
                locked.paid_at = result.paid_at or utcnow()
                locked.gateway_response = result.raw
                locked.failure_reason = None
                if result.provider_reference:
                    locked.gateway_transaction_id = result.provider_reference
                outcome = ReconciliationApplier(self.db, self.tenant, self.scope).apply(
                    locked, payment_method=result.channel
                )
                logger.info(f"💰 Transaction {reference} verified as success")
            elif result.status == "failed":
                locked.status = PaymentTransaction.STATUS_FAILED
                locked.gateway_response = result.raw
                locked.failure_reason = result.message or "Payment verification failed"
                logger.info(f"❌ Transaction {reference} verified as failed: {locked.failure_reason}")
            else:
                self.db.commit()
                return serialize_transaction(locked, provider_status=result.status)

            self.db.commit()
        except IntegrityError:
            # Another caller reconciled this payment first
            self.db.rollback()
            logger.warning(f"⚠️ Concurrent reconciliation detected for {reference}")
            current = self.repo.get_transaction_by_reference(self.db, self.scope, reference)
            return serialize_transaction(current, already_verified=current.is_successful)

        if outcome:
            await self.deliver_notifications(outcome.notifications)
        self.db.refresh(locked)
        return serialize_transaction(locked)

    # ==========================================
    # WEBHOOK
    # ==========================================

    async def handle_webhook(self, event: WebhookEvent) -> dict:
        """Apply a provider push; idempotent under redelivery"""
        if not event.reference:
            logger.warning(f"⚠️ {event.gateway_name} webhook without a reference ignored")
            return {"received": True, "warning": "Missing payment reference"}

        if not (event.is_success or event.is_failure):
            logger.info(f"Ignoring {event.gateway_name} webhook event {event.event}")
            return {"received": True, "status": "ignored"}

        transaction = self.repo.get_transaction_by_reference(self.db, self.scope, event.reference)
        if transaction is None:
            transaction = self._reconstruct_transaction(event)
            if transaction is None:
                return {"received": True, "warning": "Transaction not found and could not be created"}

        if event.is_failure:
            changed = self.repo.transition_status(
                self.db,
                transaction.id,
                PaymentTransaction.STATUS_FAILED,
                gateway_response=event.raw,
                failure_reason=event.gateway_response or "Payment failed",
            )
            self.db.commit()
            if changed:
                logger.info(f"❌ Transaction {event.reference} marked failed by webhook")
            return {"received": True, "status": PaymentTransaction.STATUS_FAILED if changed else "unchanged"}

        changed = self.repo.transition_status(
            self.db,
            transaction.id,
            PaymentTransaction.STATUS_SUCCESS,
            gateway_response=event.raw,
            paid_at=event.paid_at or utcnow(),
            failure_reason=None,
        )
        self.db.commit()
        self.db.refresh(transaction)

        # failed, cancelled and refunded rows are terminal
        if transaction.status != PaymentTransaction.STATUS_SUCCESS:
            logger.warning(
                f"⚠️ Success webhook for {event.reference} after it was marked {transaction.status}; not applied"
            )
            return {"received": True, "warning": f"Transaction already {transaction.status}"}

        if changed:
            logger.info(f"💰 Transaction {event.reference} marked success by webhook")

        # Runs on redelivery too; every write inside is guarded
        outcome = ReconciliationOutcome()
        try:
            outcome = ReconciliationApplier(self.db, self.tenant, self.scope).apply(
                transaction, payment_method=event.channel
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Transaction {event.reference} was reconciled concurrently")

        await self.deliver_notifications(outcome.notifications)
        return {"received": True, "status": PaymentTransaction.STATUS_SUCCESS}

    def _reconstruct_transaction(self, event: WebhookEvent) -> Optional[PaymentTransaction]:
        """Create the transaction a lost initialize never persisted, from webhook metadata"""
        metadata = event.metadata
        amount = event.amount or Decimal("0")
        if metadata.get("platform_fee") not in (None, ""):
            platform_fee = to_decimal(metadata["platform_fee"])
            merchant_amount = amount - platform_fee
        else:
            fees = compute_fee(amount, fee_percent_for_tenant(self.tenant))
            platform_fee, merchant_amount = fees.platform_fee, fees.merchant_amount

        logger.warning(
            f"⚠️ Transaction not found for reference {event.reference}. Creating from webhook data..."
        )
        transaction = PaymentTransaction(
            tenant_id=self.scope.row_tenant_id,
            order_id=as_int(metadata.get("order_id")),
            invoice_id=as_int(metadata.get("invoice_id")),
            transaction_reference=event.reference,
            gateway_name=metadata.get("gateway_name") or event.gateway_name,
            gateway_transaction_id=event.reference,
            amount=amount,
            currency=event.currency or DEFAULT_CURRENCY,
            platform_fee=platform_fee,
            merchant_amount=merchant_amount,
            customer_email=event.customer_email or metadata.get("customer_email"),
            customer_name=event.customer_name or metadata.get("customer_name"),
            customer_phone=event.customer_phone or metadata.get("customer_phone"),
            status=PaymentTransaction.STATUS_PENDING,
            payment_metadata=metadata,
            gateway_response=event.raw,
        )
        self.db.add(transaction)
        try:
            self.db.commit()
        except IntegrityError:
            # Created concurrently by initialize or a redelivered webhook
            self.db.rollback()
            transaction = self.repo.get_transaction_by_reference(self.db, self.scope, event.reference)
            if transaction is None:
                logger.error(f"❌ Could not create or find transaction {event.reference}")
            return transaction

        logger.info(f"✅ Created missing transaction {transaction.id} from webhook")
        return transaction

    # ==========================================
    # NOTIFICATIONS
    # ==========================================

    async def deliver_notifications(self, notifications: Iterable[Notification]) -> None:
        """Send confirmation emails; failures are logged and never raised"""
        for notification in notifications:
            try:
                if notification.kind == "order":
                    await self.mailer.send_order_confirmation(**notification.payload)
                elif notification.kind == "booking":
                    await self.mailer.send_booking_confirmation(**notification.payload)
                else:
                    logger.warning(f"⚠️ Unknown notification kind: {notification.kind}")
            except Exception as e:
                logger.error(f"❌ Failed to send {notification.kind} confirmation email: {e}")


async def process_webhook_event(
    platform_db: Session,
    sessions: TenantSessions,
    event: WebhookEvent,
    gateway_factory: Callable = build_gateway,
    mailer: Optional[Mailer] = None,
    clock: Callable[[], datetime] = local_now,
) -> dict:
    """
    Route a verified webhook to its tenant and apply it.

    Always returns an acknowledgement once the payload parsed: failures are
    logged so the provider does not keep retrying.
    """
    tenant_id = as_int(event.metadata.get("tenant_id"))
    if not tenant_id:
        logger.warning(f"⚠️ {event.gateway_name} webhook {event.reference} is missing tenant_id in metadata")
        return {"received": True, "warning": "Missing tenant_id in metadata - cannot process webhook"}

    tenant = get_tenant(platform_db, tenant_id)
    if not tenant:
        logger.warning(f"⚠️ Tenant not found for webhook {event.reference}: {tenant_id}")
        return {"received": True, "warning": f"Tenant {tenant_id} not found"}

    try:
        with sessions.open(tenant, platform_db) as db:
            service = PaymentService(db, tenant, gateway_factory=gateway_factory, mailer=mailer, clock=clock)
            return await service.handle_webhook(event)
    except Exception as e:
        platform_db.rollback()
        logger.error(f"❌ Error processing {event.gateway_name} webhook {event.reference}: {e}", exc_info=True)
        return {"received": True, "warning": "Webhook processing failed"}
