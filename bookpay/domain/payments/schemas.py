"""Payments domain schemas - Pydantic models for validation"""

from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, field_validator


class InitializePaymentRequest(BaseModel):
    """Schema for starting a payment"""

    tenant_id: int
    # amount and email are checked by the service so a missing value is a 400
    amount: Optional[Decimal] = None
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    order_id: Optional[int] = None
    invoice_id: Optional[int] = None
    currency: Optional[str] = None
    redirect_url: Optional[str] = None  # Falls back to FRONTEND_URL/payment/callback
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Valid tenant_id is required")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class InitializePaymentResponse(BaseModel):
    transaction_reference: str
    authorization_url: str
    access_code: Optional[str] = None
    gateway: str
    amount: float
    currency: str
    platform_fee: float
    merchant_amount: float


class TransactionResponse(BaseModel):
    """Public view of a payment transaction"""

    id: int
    reference: str
    status: str
    amount: float
    currency: str
    platform_fee: float
    merchant_amount: float
    paid_at: Optional[str] = None
    failure_reason: Optional[str] = None
    already_verified: bool = False
    provider_status: Optional[str] = None
    booking_id: Optional[int] = None


class WebhookAck(BaseModel):
    received: bool = True
    status: Optional[str] = None
    warning: Optional[str] = None


class WebhookUrlResponse(BaseModel):
    webhook_url: str
    online_store_id: int
    instructions: list[str]
