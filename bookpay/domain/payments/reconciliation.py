"""
Side effects of a successful payment.

The applier runs in the caller's session and never commits. Each write is
guarded so a second run is a no-op:

* orders and invoices are only updated while not yet paid
* a booking is only created when none exists for the transaction, and the
  unique ``bookings.payment_transaction_id`` column rejects a concurrent twin

Confirmation emails are collected as :class:`Notification` objects and sent by
the caller once its unit of work has committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ...config import BOOKING_TIMEZONE
from ...models import Booking, Customer, PaymentTransaction, Tenant
from ...tenancy import TenantScope
from ..scheduling.availability import parse_scheduled_at
from ..scheduling.repository import SchedulingRepository
from .repository import PaymentRepository

logger = logging.getLogger(__name__)


def is_booking_payment(metadata: Optional[Dict[str, Any]]) -> bool:
    if not metadata:
        return False
    if metadata.get("is_booking") in (True, "true", "True", 1, "1"):
        return True
    return bool(metadata.get("service_id") and metadata.get("scheduled_at"))


def as_int(value) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


@dataclass
class Notification:
    kind: str  # order, booking
    payload: Dict[str, Any]


@dataclass
class ReconciliationOutcome:
    order_updated: bool = False
    invoice_updated: bool = False
    booking: Optional[Booking] = None
    booking_created: bool = False
    notifications: List[Notification] = field(default_factory=list)


class ReconciliationApplier:
    def __init__(self, db: Session, tenant: Tenant, scope: Optional[TenantScope] = None):
        self.db = db
        self.tenant = tenant
        self.scope = scope or TenantScope.for_tenant(tenant)
        self.repo = PaymentRepository()
        self.scheduling = SchedulingRepository()

    def apply(
        self, transaction: PaymentTransaction, payment_method: Optional[str] = None
    ) -> ReconciliationOutcome:
        outcome = ReconciliationOutcome()
        paid_at = transaction.paid_at or datetime.now(timezone.utc)

        if transaction.order_id:
            outcome.order_updated = self.repo.mark_order_paid(
                self.db, self.scope, transaction.order_id, paid_at
            )
            if outcome.order_updated:
                logger.info(f"✅ Order {transaction.order_id} marked paid")
                notification = self._order_notification(transaction)
                if notification:
                    outcome.notifications.append(notification)

        if transaction.invoice_id and not outcome.order_updated:
            outcome.invoice_updated = self.repo.mark_invoice_paid(
                self.db, self.scope, transaction.invoice_id, paid_at, payment_method
            )
            if outcome.invoice_updated:
                logger.info(f"✅ Invoice {transaction.invoice_id} marked paid")

        metadata = transaction.payment_metadata or {}
        if is_booking_payment(metadata):
            self._apply_booking(transaction, metadata, outcome)

        return outcome

    # ==========================================
    # Bookings
    # ==========================================

    def _apply_booking(
        self, transaction: PaymentTransaction, metadata: dict, outcome: ReconciliationOutcome
    ) -> None:
        existing = self.repo.get_booking_for_transaction(self.db, transaction.id)
        if existing:
            logger.info(f"Booking {existing.id} already exists for transaction {transaction.id}")
            outcome.booking = existing
            return

        service = self.scheduling.get_service(self.db, self.scope, as_int(metadata.get("service_id")))
        if not service:
            logger.warning(
                f"⚠️ Booking payment {transaction.transaction_reference} references unknown service "
                f"{metadata.get('service_id')}"
            )
            return

        store_id = as_int(metadata.get("store_id")) or service.store_id
        if not store_id and not self.tenant.is_shared_database:
            logger.warning(
                f"⚠️ Booking payment {transaction.transaction_reference} has no store_id"
            )
            return

        scheduled_at = parse_scheduled_at(metadata.get("scheduled_at"))
        if scheduled_at is None:
            logger.warning(
                f"⚠️ Booking payment {transaction.transaction_reference} has invalid scheduled_at"
            )
            return

        customer = self._resolve_customer(transaction, metadata)

        booking = Booking(
            tenant_id=self.scope.row_tenant_id,
            store_id=store_id,
            service_id=service.id,
            customer_id=customer.id if customer else None,
            service_title=service.service_title,
            description=service.description,
            scheduled_at=scheduled_at,
            duration_minutes=service.duration_minutes,
            timezone=metadata.get("timezone") or BOOKING_TIMEZONE,
            location_type=metadata.get("location_type") or service.location_type,
            status=Booking.STATUS_CONFIRMED,
            notes=metadata.get("notes"),
            payment_transaction_id=transaction.id,
        )
        self.db.add(booking)
        # Surfaces a duplicate payment_transaction_id as IntegrityError here
        self.db.flush()

        logger.info(
            f"✅ Booking {booking.id} confirmed for service {service.id} at {scheduled_at:%Y-%m-%d %H:%M}"
        )
        outcome.booking = booking
        outcome.booking_created = True

        email = transaction.customer_email or (customer.email if customer else None)
        if email:
            outcome.notifications.append(
                Notification(
                    kind="booking",
                    payload={
                        "to": email,
                        "customer_name": (customer.name if customer else None)
                        or transaction.customer_name
                        or "Customer",
                        "business_name": self.tenant.name,
                        "service_title": service.service_title,
                        "scheduled_at": scheduled_at.strftime("%A, %d %B %Y at %H:%M"),
                        "duration_minutes": booking.duration_minutes or 0,
                        "location_type": booking.location_type,
                        "amount": transaction.amount,
                        "currency": transaction.currency,
                        "payment_reference": transaction.transaction_reference,
                        "logo_url": self.tenant.logo_url,
                    },
                )
            )

    def _resolve_customer(self, transaction: PaymentTransaction, metadata: dict) -> Optional[Customer]:
        email = transaction.customer_email or metadata.get("customer_email")
        phone = transaction.customer_phone or metadata.get("customer_phone")
        name = transaction.customer_name or metadata.get("customer_name")

        customer = self.repo.find_customer(self.db, self.scope, email, phone)
        if customer:
            return customer

        if not (name or email or phone):
            logger.info(
                f"No customer details on {transaction.transaction_reference}; booking left without customer"
            )
            return None

        # name is required; fall back to the contact we do have
        customer = Customer(
            tenant_id=self.scope.row_tenant_id, name=name or email or phone, email=email, phone=phone
        )
        self.db.add(customer)
        self.db.flush()
        logger.info(f"👤 Created customer {customer.id} for booking payment")
        return customer

    # ==========================================
    # Orders
    # ==========================================

    def _order_notification(self, transaction: PaymentTransaction) -> Optional[Notification]:
        order = self.repo.get_order(self.db, self.scope, transaction.order_id)
        if not order:
            return None

        email = transaction.customer_email or order.customer_email
        if not email:
            return None

        return Notification(
            kind="order",
            payload={
                "to": email,
                "customer_name": transaction.customer_name or order.customer_name or "Customer",
                "business_name": self.tenant.name,
                "order_number": order.order_number,
                "amount": transaction.amount,
                "currency": transaction.currency,
                "payment_reference": transaction.transaction_reference,
                "logo_url": self.tenant.logo_url,
            },
        )
