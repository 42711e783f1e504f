"""
MJML Email Templates
Payment and booking confirmations sent to customers
"""

from html import escape
from typing import Optional

# App theme colors - Teal/Slate color scheme
THEME = {
    "primary": "#14b8a6",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#14b8a6",
}


def format_money(amount, currency: str = "NGN") -> str:
    symbol = "₦" if currency == "NGN" else f"{currency} "
    return f"{symbol}{float(amount or 0):,.2f}"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    business_name: str,
    logo_url: Optional[str] = None,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    header = (
        f'<mj-image src="{logo_url}" alt="{escape(business_name)}" width="120px" padding="0" />'
        if logo_url
        else f'<mj-text font-size="20px" font-weight="700" color="{THEME["text_primary"]}" padding="0">{escape(business_name)}</mj-text>'
    )

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button href="{cta_url}" background-color="{THEME['primary']}" color="#ffffff"
              font-weight="600" border-radius="8px" padding="18px 40px" font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px">
          <mj-column>
            {header}
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 32px 0" />
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              This is an automated confirmation from {escape(business_name)}. Please do not reply to this message.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def order_confirmation_template(
    customer_name: str,
    business_name: str,
    order_number: str,
    amount,
    currency: str,
    payment_reference: str,
    logo_url: Optional[str] = None,
) -> str:
    """Order payment confirmation for the customer"""
    content = f"""
    <mj-text>
      Hi {escape(customer_name or 'there')},
    </mj-text>

    <mj-text>
      Thank you! Your payment for order <strong>#{escape(order_number)}</strong> has been received and your order is confirmed.
    </mj-text>

    <mj-text align="center" font-size="36px" font-weight="700" color="{THEME['success']}" padding="20px 0">
      {format_money(amount, currency)}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      Order: #{escape(order_number)}<br/>
      Payment Reference: {escape(payment_reference)}<br/>
      Store: {escape(business_name)}
    </mj-text>
    """

    return get_base_template(
        title="Order Confirmed",
        preview_text=f"✅ Order #{order_number} confirmed",
        content_sections=content,
        business_name=business_name,
        logo_url=logo_url,
    )


def booking_confirmation_template(
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
) -> str:
    """Booking confirmation for the customer"""
    location = (location_type or "in_person").replace("_", " ").title()
    content = f"""
    <mj-text>
      Hi {escape(customer_name or 'there')},
    </mj-text>

    <mj-text>
      Your booking for <strong>{escape(service_title)}</strong> is confirmed. We look forward to seeing you!
    </mj-text>

    <mj-text align="center" font-size="22px" font-weight="700" color="{THEME['success']}" padding="20px 0">
      {scheduled_at}
    </mj-text>

    <mj-text font-size="14px" color="{THEME['text_muted']}" padding="20px 0">
      Service: {escape(service_title)}<br/>
      Duration: {duration_minutes} minutes<br/>
      Location: {location}<br/>
      Amount Paid: {format_money(amount, currency)}<br/>
      Payment Reference: {escape(payment_reference)}
    </mj-text>
    """

    return get_base_template(
        title="Booking Confirmed",
        preview_text=f"✅ {service_title} on {scheduled_at}",
        content_sections=content,
        business_name=business_name,
        logo_url=logo_url,
    )
