import os

# Must be set before bookpay.database builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ.pop("RESEND_API_KEY", None)

from datetime import datetime, time
from decimal import Decimal

import pytest

from bookpay.database import Base, SessionLocal, engine
from bookpay.domain.payments.gateways import (
    VERIFY_SUCCESS,
    GatewayError,
    InitializeResult,
    PaystackGateway,
    VerifyResult,
)
from bookpay.domain.payments.service import PaymentService
from bookpay.models import (
    AvailabilitySlot,
    Booking,
    OnlineStore,
    OnlineStoreOrder,
    PaymentGateway,
    PaymentTransaction,
    Store,
    StoreService,
    Tenant,
)

# Thursday; bookings are requested for Monday 2026-02-02
FIXED_NOW = datetime(2026, 1, 15, 10, 0)
MONDAY = "2026-02-02T09:00:00"


def fixed_clock():
    return FIXED_NOW


class FakeGateway:
    """Records adapter calls and returns canned results"""

    name = "paystack"

    def __init__(self):
        self.initialize_calls: list[dict] = []
        self.verify_calls: list[str] = []
        self.verify_result = VerifyResult(
            status=VERIFY_SUCCESS,
            provider_amount=Decimal("5000.00"),
            paid_at=datetime(2026, 1, 15, 9, 5),
            message="Approved",
            channel="card",
            raw={"status": True, "data": {"status": "success"}},
        )
        self.initialize_error: GatewayError | None = None
        self.verify_error: GatewayError | None = None
        self.on_verify = None

    async def initialize(self, **kwargs) -> InitializeResult:
        self.initialize_calls.append(kwargs)
        if self.initialize_error:
            raise self.initialize_error
        return InitializeResult(
            authorization_url=f"https://checkout.paystack.com/{kwargs['reference']}",
            provider_reference=kwargs["reference"],
            access_code="ACCESS123",
            raw={"status": True, "data": {"reference": kwargs["reference"]}},
        )

    async def verify(self, reference: str) -> VerifyResult:
        self.verify_calls.append(reference)
        if self.on_verify:
            await self.on_verify(reference)
        if self.verify_error:
            raise self.verify_error
        return self.verify_result


class FakeMailer:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, dict]] = []
        self.fail = fail

    async def send_order_confirmation(self, **kwargs):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(("order", kwargs))
        return {"id": "email_order"}

    async def send_booking_confirmation(self, **kwargs):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append(("booking", kwargs))
        return {"id": "email_booking"}


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def gateway_factory(fake_gateway):
    return lambda row: fake_gateway


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def tenant(db):
    tenant = Tenant(id=1, name="Glow Studio", subscription_plan="free", email="owner@glow.test")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def paid_tenant(db):
    tenant = Tenant(id=2, name="Prime Spa", subscription_plan="pro", email="owner@prime.test")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def store(db, tenant):
    store = Store(id=3, tenant_id=tenant.id, name="Lekki Branch")
    db.add(store)
    db.commit()
    return store


@pytest.fixture
def service(db, tenant, store):
    service = StoreService(
        id=7,
        tenant_id=tenant.id,
        store_id=store.id,
        service_title="Silk Press",
        description="Wash, blow-dry and press",
        price=Decimal("5000.00"),
        duration_minutes=30,
        location_type="in_person",
        availability={"monday": {"available": True, "time_slots": ["09:00", "09:30", "10:00"]}},
        is_active=True,
    )
    db.add(service)
    db.commit()
    return service


@pytest.fixture
def relational_service(db, tenant, store):
    service = StoreService(
        id=8,
        tenant_id=tenant.id,
        store_id=store.id,
        service_title="Consultation",
        duration_minutes=45,
        is_active=True,
    )
    db.add(service)
    db.flush()
    db.add(
        AvailabilitySlot(
            tenant_id=tenant.id,
            store_id=store.id,
            service_id=service.id,
            day_of_week=1,  # Monday
            start_time=time(9, 0),
            end_time=time(12, 0),
            is_available=True,
        )
    )
    db.commit()
    return service


@pytest.fixture
def gateway_row(db, tenant):
    row = PaymentGateway(
        tenant_id=tenant.id,
        gateway_name="paystack",
        is_active=True,
        is_default=True,
        secret_key="sk_test_glow",
        test_mode=True,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def make_booking(db, tenant):
    def _make(service, scheduled_at, duration_minutes=None, status=Booking.STATUS_CONFIRMED):
        booking = Booking(
            tenant_id=tenant.id,
            store_id=service.store_id,
            service_id=service.id,
            scheduled_at=scheduled_at,
            duration_minutes=duration_minutes,
            status=status,
        )
        db.add(booking)
        db.commit()
        return booking

    return _make


@pytest.fixture
def make_transaction(db, tenant):
    def _make(reference="TXN-1-ABCDEF01", status=PaymentTransaction.STATUS_PENDING, **fields):
        values = {
            "tenant_id": tenant.id,
            "transaction_reference": reference,
            "gateway_name": "paystack",
            "amount": Decimal("5000.00"),
            "currency": "NGN",
            "platform_fee": Decimal("150.00"),
            "merchant_amount": Decimal("4850.00"),
            "customer_email": "a@b.com",
            "customer_name": "Ada Obi",
            "status": status,
        }
        values.update(fields)
        transaction = PaymentTransaction(**values)
        db.add(transaction)
        db.commit()
        return transaction

    return _make


@pytest.fixture
def order(db, tenant):
    online_store = OnlineStore(
        id=11, tenant_id=tenant.id, store_name="Glow Online", paystack_subaccount_code="ACCT_glow"
    )
    db.add(online_store)
    db.flush()
    order = OnlineStoreOrder(
        id=21,
        tenant_id=tenant.id,
        online_store_id=online_store.id,
        order_number="ORD-0021",
        customer_name="Ada Obi",
        customer_email="a@b.com",
        total_amount=Decimal("20000.00"),
    )
    db.add(order)
    db.commit()
    return order


@pytest.fixture
def payment_service(db, tenant, gateway_factory, mailer):
    return PaymentService(db, tenant, gateway_factory=gateway_factory, mailer=mailer, clock=fixed_clock)


@pytest.fixture
def paystack_event():
    def _event(reference, metadata, event="charge.success", amount_kobo=500000, **data):
        payload = {
            "event": event,
            "data": {
                "reference": reference,
                "status": "success" if event == "charge.success" else "failed",
                "amount": amount_kobo,
                "currency": "NGN",
                "paid_at": "2026-01-15T09:05:00.000Z",
                "gateway_response": "Approved" if event == "charge.success" else "Declined",
                "customer": {"email": "a@b.com", "first_name": "Ada", "last_name": "Obi"},
                "authorization": {"channel": "bank_transfer"},
                "metadata": metadata,
                **data,
            },
        }
        return PaystackGateway.parse_webhook(payload)

    return _event
