"""
Email Service using Resend
Compiles MJML templates and delivers payment and booking confirmations
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import booking_confirmation_template, order_confirmation_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailNotConfiguredError(Exception):
    pass


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e

    # mjml_to_html returns an object/dict carrying 'html' and 'errors'
    errors = getattr(result, "errors", None) or (result.get("errors") if isinstance(result, dict) else None)
    if errors:
        logger.warning(f"MJML compilation warnings: {errors}")
    html = getattr(result, "html", None)
    if html is None and isinstance(result, dict):
        html = result.get("html", "")
    return html if html is not None else str(result)


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise EmailNotConfiguredError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {to}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


# ============================================
# Confirmation emails
# ============================================


async def send_order_confirmation_email(
    to: str,
    customer_name: str,
    business_name: str,
    order_number: str,
    amount,
    currency: str,
    payment_reference: str,
    logo_url: Optional[str] = None,
) -> dict:
    """Confirm a paid online store order to the customer"""
    mjml_content = order_confirmation_template(
        customer_name=customer_name,
        business_name=business_name,
        order_number=order_number,
        amount=amount,
        currency=currency,
        payment_reference=payment_reference,
        logo_url=logo_url,
    )
    return await send_email(
        to=to,
        subject=f"Order Confirmation - #{order_number}",
        mjml_content=mjml_content,
    )


async def send_booking_confirmation_email(
    to: str,
    customer_name: str,
    business_name: str,
    service_title: str,
    scheduled_at: str,
    duration_minutes: int,
    location_type: Optional[str],
    amount,
    currency: str,
    payment_reference: str,
    logo_url: Optional[str] = None,
) -> dict:
    """Confirm a paid booking to the customer"""
    mjml_content = booking_confirmation_template(
        customer_name=customer_name,
        business_name=business_name,
        service_title=service_title,
        scheduled_at=scheduled_at,
        duration_minutes=duration_minutes,
        location_type=location_type,
        amount=amount,
        currency=currency,
        payment_reference=payment_reference,
        logo_url=logo_url,
    )
    return await send_email(
        to=to,
        subject=f"Booking Confirmation - {service_title}",
        mjml_content=mjml_content,
    )


class Mailer:
    """Confirmation email sender injected into the payment service"""

    async def send_order_confirmation(self, **kwargs) -> dict:
        return await send_order_confirmation_email(**kwargs)

    async def send_booking_confirmation(self, **kwargs) -> dict:
        return await send_booking_confirmation_email(**kwargs)


def get_mailer() -> Mailer:
    return Mailer()
