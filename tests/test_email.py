from decimal import Decimal

import pytest

from bookpay import email_service
from bookpay.email_service import EmailNotConfiguredError, Mailer, send_email
from bookpay.email_templates import booking_confirmation_template, format_money, order_confirmation_template


def booking_mjml(**overrides) -> str:
    values = dict(
        customer_name="Ada Obi",
        business_name="Glow Studio",
        service_title="Silk Press",
        scheduled_at="Monday, 02 February 2026 at 09:00",
        duration_minutes=30,
        location_type="in_person",
        amount=Decimal("5000.00"),
        currency="NGN",
        payment_reference="TXN-1-ABCDEF01",
    )
    values.update(overrides)
    return booking_confirmation_template(**values)


def test_format_money():
    assert format_money(Decimal("5000"), "NGN") == "₦5,000.00"
    assert format_money(12.5, "USD") == "USD 12.50"


def test_booking_template_contents():
    mjml = booking_mjml()

    assert "<mjml>" in mjml
    assert "Silk Press" in mjml
    assert "Monday, 02 February 2026 at 09:00" in mjml
    assert "TXN-1-ABCDEF01" in mjml
    assert "₦5,000.00" in mjml


def test_templates_escape_customer_input():
    mjml = booking_mjml(customer_name="<script>alert(1)</script>")

    assert "<script>" not in mjml
    assert "&lt;script&gt;" in mjml


def test_order_template_contents():
    mjml = order_confirmation_template(
        customer_name="Ada Obi",
        business_name="Glow Studio",
        order_number="ORD-0021",
        amount=Decimal("20000.00"),
        currency="NGN",
        payment_reference="TXN-1-ABCDEF01",
    )

    assert "ORD-0021" in mjml
    assert "₦20,000.00" in mjml


@pytest.mark.asyncio
async def test_send_email_requires_api_key(monkeypatch):
    monkeypatch.setattr(email_service, "RESEND_API_KEY", None)

    with pytest.raises(EmailNotConfiguredError):
        await send_email("a@b.com", "Hello", "<mjml></mjml>")


@pytest.mark.asyncio
async def test_mailer_sends_booking_subject(monkeypatch):
    sent = {}

    async def fake_send_email(to, subject, mjml_content, from_address=None):
        sent.update(to=to, subject=subject)
        return {"id": "email_1"}

    monkeypatch.setattr(email_service, "send_email", fake_send_email)

    await Mailer().send_booking_confirmation(
        to="a@b.com",
        customer_name="Ada Obi",
        business_name="Glow Studio",
        service_title="Silk Press",
        scheduled_at="Monday, 02 February 2026 at 09:00",
        duration_minutes=30,
        location_type="in_person",
        amount=Decimal("5000.00"),
        currency="NGN",
        payment_reference="TXN-1-ABCDEF01",
    )

    assert sent == {"to": "a@b.com", "subject": "Booking Confirmation - Silk Press"}
