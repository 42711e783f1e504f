from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

FREE_PLAN = "free"


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    subdomain = Column(String(100), unique=True, nullable=True, index=True)
    email = Column(String(255), nullable=True)
    logo_url = Column(String(500), nullable=True)
    subscription_plan = Column(String(50), default=FREE_PLAN, nullable=False)  # free, starter, pro
    # Overrides the platform default; only charged on the free plan
    transaction_fee_percentage = Column(Numeric(5, 2), nullable=True)
    # Set for tenants with an isolated database; free-plan tenants share the platform database
    database_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_shared_database(self) -> bool:
        return (self.subscription_plan or FREE_PLAN) == FREE_PLAN


class PaymentGateway(Base):
    __tablename__ = "payment_gateways"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    gateway_name = Column(String(50), nullable=False)  # paystack, flutterwave
    is_active = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    public_key = Column(String(255), nullable=True)
    secret_key = Column(Text, nullable=True)  # Fernet-encrypted
    webhook_secret = Column(Text, nullable=True)
    test_mode = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    STATUS_PENDING = "pending"
    STATUS_SUCCESS = "success"
    STATUS_FAILED = "failed"
    STATUS_CANCELLED = "cancelled"
    STATUS_REFUNDED = "refunded"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    order_id = Column(Integer, ForeignKey("online_store_orders.id"), nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    transaction_reference = Column(String(100), unique=True, nullable=False, index=True)
    gateway_name = Column(String(50), nullable=False)
    gateway_transaction_id = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default="NGN", nullable=False)
    platform_fee = Column(Numeric(12, 2), default=0, nullable=False)
    merchant_amount = Column(Numeric(12, 2), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)  # pending, success, failed, cancelled, refunded
    gateway_response = Column(JSON, nullable=True)  # Raw provider payload
    payment_metadata = Column("metadata", JSON, nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking", back_populates="payment_transaction", uselist=False)

    @property
    def is_successful(self) -> bool:
        return self.status == self.STATUS_SUCCESS


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    phone = Column(String(50), nullable=True)


class OnlineStore(Base):
    __tablename__ = "online_stores"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)
    store_name = Column(String(255), nullable=False)
    # Paystack subaccount that receives the merchant share of split payments
    paystack_subaccount_code = Column(String(100), nullable=True)
    is_published = Column(Boolean, default=False)


class StoreService(Base):
    __tablename__ = "store_services"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)
    service_title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    duration_minutes = Column(Integer, default=30)
    location_type = Column(String(50), default="in_person")  # in_person, online, customer_location
    # {"monday": {"available": true, "time_slots": ["09:00", "10:00"]}, ...}
    availability = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)

    availability_slots = relationship("AvailabilitySlot", back_populates="service")


class AvailabilitySlot(Base):
    __tablename__ = "booking_availability"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)
    service_id = Column(Integer, ForeignKey("store_services.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    max_bookings_per_slot = Column(Integer, default=1)

    service = relationship("StoreService", back_populates="availability_slots")


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"
    STATUS_NO_SHOW = "no_show"

    # Statuses that hold a slot
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True)
    service_id = Column(Integer, ForeignKey("store_services.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)
    # Snapshot of the service at time of payment
    service_title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    scheduled_at = Column(DateTime, nullable=False, index=True)  # Local wall-clock time
    duration_minutes = Column(Integer, nullable=True)
    timezone = Column(String(64), nullable=True)
    location_type = Column(String(50), nullable=True)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)  # pending, confirmed, completed, cancelled, no_show
    notes = Column(Text, nullable=True)
    # One booking per payment
    payment_transaction_id = Column(
        Integer, ForeignKey("payment_transactions.id"), unique=True, nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    customer = relationship("Customer")
    service = relationship("StoreService")
    payment_transaction = relationship("PaymentTransaction", back_populates="booking")


class OnlineStoreOrder(Base):
    __tablename__ = "online_store_orders"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    online_store_id = Column(Integer, ForeignKey("online_stores.id"), nullable=True)
    order_number = Column(String(50), nullable=False)
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(10), default="NGN")
    payment_status = Column(String(20), default="unpaid", nullable=False)  # unpaid, paid, refunded
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed, shipped, cancelled
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    online_store = relationship("OnlineStore")


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    invoice_number = Column(String(50), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(50), default="pending")  # pending, sent, paid, overdue, cancelled
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
