import logging
from decimal import Decimal

import pytest

from bookpay.domain.payments import service as payment_service_module
from bookpay.domain.payments.gateways import PaystackGateway
from bookpay.domain.payments.schemas import InitializePaymentRequest
from bookpay.domain.payments.service import process_webhook_event
from bookpay.models import Booking, Customer, Invoice, PaymentTransaction
from bookpay.tenancy import TenantSessions

from .conftest import MONDAY, fixed_clock

REFERENCE = "TXN-1768467900000-ABCDEF01"
BOOKING_METADATA = {
    "tenant_id": 1,
    "is_booking": True,
    "service_id": 7,
    "store_id": 3,
    "scheduled_at": MONDAY,
    "gateway_name": "paystack",
    "platform_fee": "150.00",
}


async def deliver(db, event, gateway_factory, mailer):
    return await process_webhook_event(
        db, TenantSessions(), event, gateway_factory=gateway_factory, mailer=mailer, clock=fixed_clock
    )


@pytest.mark.asyncio
async def test_missing_transaction_is_reconstructed_and_booking_confirmed(
    db, tenant, service, gateway_factory, mailer, paystack_event
):
    ack = await deliver(db, paystack_event(REFERENCE, BOOKING_METADATA), gateway_factory, mailer)

    assert ack == {"received": True, "status": PaymentTransaction.STATUS_SUCCESS}

    transaction = db.query(PaymentTransaction).one()
    assert transaction.transaction_reference == REFERENCE
    assert transaction.status == PaymentTransaction.STATUS_SUCCESS
    assert transaction.tenant_id == 1
    assert transaction.amount == Decimal("5000.00")
    assert transaction.platform_fee == Decimal("150.00")
    assert transaction.merchant_amount == Decimal("4850.00")
    assert transaction.customer_name == "Ada Obi"
    assert transaction.paid_at is not None

    booking = db.query(Booking).one()
    assert booking.service_id == 7
    assert booking.status == Booking.STATUS_CONFIRMED
    assert booking.payment_transaction_id == transaction.id
    assert booking.customer.email == "a@b.com"
    assert [kind for kind, _ in mailer.sent] == ["booking"]


@pytest.mark.asyncio
async def test_reconstruction_computes_fee_when_metadata_lacks_it(db, tenant, gateway_factory, mailer, paystack_event):
    await deliver(db, paystack_event(REFERENCE, {"tenant_id": 1}, amount_kobo=2000000), gateway_factory, mailer)

    transaction = db.query(PaymentTransaction).one()
    assert transaction.platform_fee == Decimal("500.00")
    assert transaction.merchant_amount == Decimal("19500.00")


@pytest.mark.asyncio
async def test_redelivery_creates_nothing_new(db, tenant, service, gateway_factory, mailer, paystack_event):
    event = paystack_event(REFERENCE, BOOKING_METADATA)

    await deliver(db, event, gateway_factory, mailer)
    ack = await deliver(db, event, gateway_factory, mailer)

    assert ack["status"] == PaymentTransaction.STATUS_SUCCESS
    assert db.query(PaymentTransaction).count() == 1
    assert db.query(Booking).count() == 1
    assert db.query(Customer).count() == 1
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_webhook_for_existing_pending_transaction(
    db, tenant, service, make_transaction, gateway_factory, mailer, paystack_event
):
    transaction = make_transaction(reference=REFERENCE, payment_metadata=BOOKING_METADATA)

    await deliver(db, paystack_event(REFERENCE, BOOKING_METADATA), gateway_factory, mailer)

    db.refresh(transaction)
    assert transaction.status == PaymentTransaction.STATUS_SUCCESS
    assert transaction.gateway_response["event"] == "charge.success"
    assert db.query(PaymentTransaction).count() == 1
    assert db.query(Booking).one().payment_transaction_id == transaction.id


@pytest.mark.asyncio
async def test_webhook_completes_reconciliation_for_already_successful_row(
    db, tenant, service, make_transaction, gateway_factory, mailer, paystack_event
):
    # e.g. a verify that committed the status but crashed before the booking
    make_transaction(reference=REFERENCE, status=PaymentTransaction.STATUS_SUCCESS, payment_metadata=BOOKING_METADATA)

    await deliver(db, paystack_event(REFERENCE, BOOKING_METADATA), gateway_factory, mailer)

    assert db.query(Booking).count() == 1


@pytest.mark.asyncio
async def test_charge_failed_marks_transaction_failed(db, tenant, make_transaction, gateway_factory, mailer, paystack_event):
    transaction = make_transaction(reference=REFERENCE)

    ack = await deliver(db, paystack_event(REFERENCE, {"tenant_id": 1}, event="charge.failed"), gateway_factory, mailer)

    assert ack["status"] == PaymentTransaction.STATUS_FAILED
    db.refresh(transaction)
    assert transaction.status == PaymentTransaction.STATUS_FAILED
    assert transaction.failure_reason == "Declined"


@pytest.mark.asyncio
async def test_success_after_failure_is_not_applied(
    db, tenant, service, make_transaction, gateway_factory, mailer, paystack_event, caplog
):
    transaction = make_transaction(
        reference=REFERENCE, status=PaymentTransaction.STATUS_FAILED, payment_metadata=BOOKING_METADATA
    )

    with caplog.at_level(logging.WARNING):
        ack = await deliver(db, paystack_event(REFERENCE, BOOKING_METADATA), gateway_factory, mailer)

    assert ack["warning"] == "Transaction already failed"
    db.refresh(transaction)
    assert transaction.status == PaymentTransaction.STATUS_FAILED
    assert db.query(Booking).count() == 0
    assert "after it was marked failed" in caplog.text


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status", [PaymentTransaction.STATUS_REFUNDED, PaymentTransaction.STATUS_CANCELLED]
)
async def test_success_webhook_leaves_closed_transaction_untouched(
    db, tenant, service, order, make_transaction, gateway_factory, mailer, paystack_event, status
):
    order.payment_status = "refunded"
    db.commit()
    transaction = make_transaction(
        reference=REFERENCE, status=status, order_id=order.id, payment_metadata=BOOKING_METADATA
    )

    ack = await deliver(db, paystack_event(REFERENCE, BOOKING_METADATA), gateway_factory, mailer)

    assert ack == {"received": True, "warning": f"Transaction already {status}"}
    db.refresh(transaction)
    db.refresh(order)
    assert transaction.status == status
    assert order.payment_status == "refunded"
    assert db.query(Booking).count() == 0
    assert mailer.sent == []


@pytest.mark.asyncio
async def test_missing_tenant_id_is_acknowledged(db, tenant, gateway_factory, mailer, paystack_event):
    ack = await deliver(db, paystack_event(REFERENCE, {}), gateway_factory, mailer)

    assert ack["received"] is True
    assert "Missing tenant_id" in ack["warning"]
    assert db.query(PaymentTransaction).count() == 0


@pytest.mark.asyncio
async def test_unknown_tenant_is_acknowledged(db, tenant, gateway_factory, mailer, paystack_event):
    ack = await deliver(db, paystack_event(REFERENCE, {"tenant_id": 404}), gateway_factory, mailer)

    assert ack == {"received": True, "warning": "Tenant 404 not found"}


@pytest.mark.asyncio
async def test_other_events_are_ignored(db, tenant, gateway_factory, mailer):
    event = PaystackGateway.parse_webhook(
        {"event": "transfer.success", "data": {"reference": REFERENCE, "metadata": {"tenant_id": 1}}}
    )

    ack = await deliver(db, event, gateway_factory, mailer)

    assert ack["status"] == "ignored"
    assert db.query(PaymentTransaction).count() == 0


@pytest.mark.asyncio
async def test_event_without_reference(db, tenant, gateway_factory, mailer, paystack_event):
    ack = await deliver(db, paystack_event(None, {"tenant_id": 1}), gateway_factory, mailer)

    assert ack["warning"] == "Missing payment reference"


@pytest.mark.asyncio
async def test_processing_error_is_acknowledged(db, tenant, gateway_factory, mailer, paystack_event, monkeypatch):
    async def broken(self, event):
        raise RuntimeError("database went away")

    monkeypatch.setattr(payment_service_module.PaymentService, "handle_webhook", broken)

    ack = await deliver(db, paystack_event(REFERENCE, {"tenant_id": 1}), gateway_factory, mailer)

    assert ack == {"received": True, "warning": "Webhook processing failed"}


@pytest.mark.asyncio
async def test_invoice_paid_with_channel_as_method(db, tenant, make_transaction, gateway_factory, mailer, paystack_event):
    invoice = Invoice(id=31, tenant_id=tenant.id, invoice_number="INV-0031", total_amount=Decimal("5000.00"))
    db.add(invoice)
    db.commit()
    make_transaction(reference=REFERENCE, invoice_id=invoice.id)

    await deliver(db, paystack_event(REFERENCE, {"tenant_id": 1, "invoice_id": 31}), gateway_factory, mailer)

    db.refresh(invoice)
    assert invoice.status == "paid"
    assert invoice.payment_method == "bank_transfer"
    assert invoice.payment_date is not None


@pytest.mark.asyncio
async def test_initialize_then_webhook_confirms_booking(
    db, payment_service, fake_gateway, service, gateway_row, gateway_factory, mailer, paystack_event
):
    result = await payment_service.initialize(
        InitializePaymentRequest(
            tenant_id=1,
            amount=Decimal("5000"),
            email="a@b.com",
            metadata={"service_id": 7, "scheduled_at": MONDAY, "is_booking": True},
        )
    )
    sent_metadata = fake_gateway.initialize_calls[0]["metadata"]

    ack = await deliver(db, paystack_event(result["transaction_reference"], sent_metadata), gateway_factory, mailer)

    assert ack["status"] == PaymentTransaction.STATUS_SUCCESS
    assert db.query(PaymentTransaction).one().status == PaymentTransaction.STATUS_SUCCESS
    booking = db.query(Booking).one()
    assert booking.status == Booking.STATUS_CONFIRMED
    assert booking.service_id == 7
    assert booking.customer.email == "a@b.com"
