"""Payments repository - Database operations for transactions and their reconciliation targets"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    Booking,
    Customer,
    Invoice,
    OnlineStore,
    OnlineStoreOrder,
    PaymentGateway,
    PaymentTransaction,
)
from ...tenancy import TenantScope


class PaymentRepository:
    """Repository for payment database operations"""

    # ==========================================
    # Gateways
    # ==========================================

    @staticmethod
    def get_default_gateway(db: Session, scope: TenantScope) -> Optional[PaymentGateway]:
        """Get the tenant's active default gateway"""
        query = db.query(PaymentGateway).filter(
            PaymentGateway.is_active.is_(True), PaymentGateway.is_default.is_(True)
        )
        return scope.apply(query, PaymentGateway).first()

    @staticmethod
    def get_active_gateway(db: Session, scope: TenantScope, gateway_name: str) -> Optional[PaymentGateway]:
        """Get an active gateway by provider name"""
        query = db.query(PaymentGateway).filter(
            PaymentGateway.gateway_name == gateway_name, PaymentGateway.is_active.is_(True)
        )
        return scope.apply(query, PaymentGateway).first()

    # ==========================================
    # Transactions
    # ==========================================

    @staticmethod
    def get_transaction_by_reference(
        db: Session, scope: TenantScope, reference: str
    ) -> Optional[PaymentTransaction]:
        query = db.query(PaymentTransaction).filter(
            PaymentTransaction.transaction_reference == reference
        )
        return scope.apply(query, PaymentTransaction).first()

    @staticmethod
    def lock_transaction(db: Session, transaction_id: int) -> Optional[PaymentTransaction]:
        """Re-read a transaction under a row lock, discarding any stale identity-map state"""
        return (
            db.query(PaymentTransaction)
            .filter(PaymentTransaction.id == transaction_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def transition_status(db: Session, transaction_id: int, new_status: str, **fields) -> bool:
        """
        Move a pending transaction to ``new_status``.

        Compare-and-set on ``status = 'pending'``: returns False without writing
        when another caller already finished the transaction.
        """
        values = {"status": new_status, **fields}
        updated = (
            db.query(PaymentTransaction)
            .filter(
                PaymentTransaction.id == transaction_id,
                PaymentTransaction.status == PaymentTransaction.STATUS_PENDING,
            )
            .update(values, synchronize_session=False)
        )
        return updated > 0

    # ==========================================
    # Orders & invoices
    # ==========================================

    @staticmethod
    def get_order(db: Session, scope: TenantScope, order_id: int) -> Optional[OnlineStoreOrder]:
        query = db.query(OnlineStoreOrder).filter(OnlineStoreOrder.id == order_id)
        return scope.apply(query, OnlineStoreOrder).first()

    @staticmethod
    def get_online_store(db: Session, scope: TenantScope, online_store_id: int) -> Optional[OnlineStore]:
        query = db.query(OnlineStore).filter(OnlineStore.id == online_store_id)
        return scope.apply(query, OnlineStore).first()

    @staticmethod
    def mark_order_paid(db: Session, scope: TenantScope, order_id: int, paid_at: datetime) -> bool:
        """Mark an order paid and confirmed unless it already is paid"""
        query = db.query(OnlineStoreOrder).filter(
            OnlineStoreOrder.id == order_id, OnlineStoreOrder.payment_status != "paid"
        )
        updated = scope.apply(query, OnlineStoreOrder).update(
            {"payment_status": "paid", "status": "confirmed", "paid_at": paid_at},
            synchronize_session=False,
        )
        return updated > 0

    @staticmethod
    def mark_invoice_paid(
        db: Session,
        scope: TenantScope,
        invoice_id: int,
        paid_at: datetime,
        payment_method: Optional[str] = None,
    ) -> bool:
        """Mark an invoice paid unless it already is paid"""
        query = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.status != "paid")
        updated = scope.apply(query, Invoice).update(
            {"status": "paid", "payment_date": paid_at, "payment_method": payment_method or "card"},
            synchronize_session=False,
        )
        return updated > 0

    # ==========================================
    # Bookings & customers
    # ==========================================

    @staticmethod
    def get_booking_for_transaction(db: Session, transaction_id: int) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.payment_transaction_id == transaction_id).first()

    @staticmethod
    def find_customer(
        db: Session, scope: TenantScope, email: Optional[str], phone: Optional[str]
    ) -> Optional[Customer]:
        """Find a customer by email, then by phone"""
        if email:
            query = db.query(Customer).filter(Customer.email == email)
            customer = scope.apply(query, Customer).first()
            if customer:
                return customer
        if phone:
            query = db.query(Customer).filter(Customer.phone == phone)
            return scope.apply(query, Customer).first()
        return None
