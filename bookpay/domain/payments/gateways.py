"""
Payment gateway adapters.

Each adapter turns one provider's HTTP API into the same internal shapes:
``initialize`` returns an :class:`InitializeResult` with the URL the customer
is redirected to, ``verify`` returns a :class:`VerifyResult` whose status is
``success``, ``failed`` or ``pending``, and ``parse_webhook`` normalizes a
provider push into a :class:`WebhookEvent`.

Adapters are built per request from the tenant's ``payment_gateways`` row with
an explicit :class:`GatewayConfig`; nothing here holds process-wide state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken
from dateutil import parser as date_parser

from ...config import DEFAULT_CURRENCY, FLUTTERWAVE_BASE_URL, GATEWAY_ENCRYPTION_KEY, PAYSTACK_BASE_URL
from ...models import PaymentGateway
from .fees import SplitInstruction, from_minor_units, to_decimal

logger = logging.getLogger(__name__)

VERIFY_SUCCESS = "success"
VERIFY_FAILED = "failed"
VERIFY_PENDING = "pending"

EVENT_CHARGE_SUCCESS = "charge.success"
EVENT_CHARGE_FAILED = "charge.failed"

fernet = Fernet(GATEWAY_ENCRYPTION_KEY) if GATEWAY_ENCRYPTION_KEY else None


def encrypt_secret_key(plain: str) -> str:
    """Encrypt a gateway secret key for storage"""
    if not fernet or not plain:
        return plain or ""
    return fernet.encrypt(plain.encode()).decode()


def decrypt_secret_key(encrypted: str) -> str:
    """Decrypt a stored gateway secret key"""
    if not fernet or not encrypted:
        return encrypted or ""
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        # Keys saved before encryption was enabled are stored as plaintext
        return encrypted


class GatewayError(Exception):
    """Raised when a payment provider call fails or is rejected"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


@dataclass(frozen=True)
class GatewayConfig:
    secret_key: str
    base_url: Optional[str] = None


@dataclass
class InitializeResult:
    authorization_url: str
    provider_reference: Optional[str] = None
    access_code: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VerifyResult:
    status: str  # success, failed, pending
    provider_amount: Optional[Decimal] = None  # Major units
    paid_at: Optional[datetime] = None
    message: Optional[str] = None
    provider_reference: Optional[str] = None
    channel: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status == VERIFY_SUCCESS


@dataclass
class WebhookEvent:
    """Provider push normalized to the fields reconciliation needs"""

    gateway_name: str
    event: str  # charge.success, charge.failed, or the provider's raw event name
    reference: Optional[str]
    status: str
    amount: Optional[Decimal] = None  # Major units
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None
    gateway_response: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.event == EVENT_CHARGE_SUCCESS

    @property
    def is_failure(self) -> bool:
        return self.event == EVENT_CHARGE_FAILED


def as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return date_parser.isoparse(str(value))
    except (ValueError, OverflowError):
        logger.warning(f"⚠️ Unparseable gateway timestamp: {value}")
        return None


class BaseGateway:
    name = ""
    default_base_url = ""

    def __init__(self, config: GatewayConfig, transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 30.0):
        self.config = config
        self.transport = transport
        self.timeout = timeout
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.name} request to {path} failed: {e}")
            raise GatewayError(f"Failed to reach {self.name}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not self._body_ok(body):
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(f"❌ {self.name} {path} returned {response.status_code}: {message or response.text[:200]}")
            raise GatewayError(
                message or f"{self.name} request failed",
                status_code=response.status_code,
                payload=body if isinstance(body, dict) else {},
            )

        logger.info(f"✅ {self.name} {method} {path} -> {response.status_code}")
        return body

    def _body_ok(self, body) -> bool:
        return isinstance(body, dict)

    async def initialize(
        self,
        amount_minor: int,
        email: str,
        reference: str,
        redirect_url: str,
        metadata: dict,
        split: Optional[SplitInstruction] = None,
        currency: str = DEFAULT_CURRENCY,
        customer_name: Optional[str] = None,
    ) -> InitializeResult:
        raise NotImplementedError

    async def verify(self, reference: str) -> VerifyResult:
        raise NotImplementedError


class PaystackGateway(BaseGateway):
    name = "paystack"
    default_base_url = PAYSTACK_BASE_URL

    def _body_ok(self, body) -> bool:
        return isinstance(body, dict) and body.get("status") is not False

    async def initialize(
        self,
        amount_minor: int,
        email: str,
        reference: str,
        redirect_url: str,
        metadata: dict,
        split: Optional[SplitInstruction] = None,
        currency: str = DEFAULT_CURRENCY,
        customer_name: Optional[str] = None,
    ) -> InitializeResult:
        payload = {
            "amount": amount_minor,
            "email": email,
            "reference": reference,
            "callback_url": redirect_url,
            "currency": currency,
            "metadata": metadata,
        }
        if split:
            # Fixed charge to the platform, remainder settles to the subaccount
            payload["subaccount"] = split.subaccount
            payload["transaction_charge"] = split.charge_amount

        body = await self._request("POST", "/transaction/initialize", json=payload)
        data = body.get("data") or {}
        if not data.get("authorization_url"):
            raise GatewayError("Paystack did not return an authorization URL", payload=body)

        return InitializeResult(
            authorization_url=data["authorization_url"],
            provider_reference=data.get("reference") or reference,
            access_code=data.get("access_code"),
            raw=body,
        )

    async def verify(self, reference: str) -> VerifyResult:
        body = await self._request("GET", f"/transaction/verify/{reference}")
        data = body.get("data") or {}
        provider_status = data.get("status")

        if provider_status == "success":
            status = VERIFY_SUCCESS
        elif provider_status in ("failed", "reversed"):
            status = VERIFY_FAILED
        else:
            # abandoned, ongoing, pending, processing, queued
            status = VERIFY_PENDING

        amount = data.get("amount")
        return VerifyResult(
            status=status,
            provider_amount=from_minor_units(amount) if amount is not None else None,
            paid_at=parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            message=data.get("gateway_response") or body.get("message"),
            provider_reference=data.get("reference") or reference,
            channel=data.get("channel"),
            raw=body,
        )

    @staticmethod
    def parse_webhook(payload: dict) -> WebhookEvent:
        payload = as_dict(payload)
        data = as_dict(payload.get("data"))
        customer = as_dict(data.get("customer"))
        authorization = as_dict(data.get("authorization"))
        metadata = as_dict(data.get("metadata"))

        name = " ".join(
            part for part in (customer.get("first_name"), customer.get("last_name")) if part
        )
        amount = data.get("amount")
        return WebhookEvent(
            gateway_name="paystack",
            event=payload.get("event") or "",
            reference=data.get("reference"),
            status=data.get("status") or "",
            amount=from_minor_units(amount) if amount is not None else None,
            currency=data.get("currency"),
            paid_at=parse_timestamp(data.get("paid_at") or data.get("paidAt")),
            channel=authorization.get("channel") or data.get("channel"),
            gateway_response=data.get("gateway_response"),
            customer_email=customer.get("email"),
            customer_name=name or None,
            customer_phone=customer.get("phone"),
            metadata=metadata,
            raw=payload,
        )


class FlutterwaveGateway(BaseGateway):
    name = "flutterwave"
    default_base_url = FLUTTERWAVE_BASE_URL

    def _body_ok(self, body) -> bool:
        return isinstance(body, dict) and body.get("status") != "error"

    async def initialize(
        self,
        amount_minor: int,
        email: str,
        reference: str,
        redirect_url: str,
        metadata: dict,
        split: Optional[SplitInstruction] = None,
        currency: str = DEFAULT_CURRENCY,
        customer_name: Optional[str] = None,
    ) -> InitializeResult:
        if split:
            logger.warning("⚠️ Split payments are only supported on Paystack; charging without split")

        payload = {
            "tx_ref": reference,
            # Flutterwave takes major units
            "amount": str(from_minor_units(amount_minor)),
            "currency": currency,
            "redirect_url": redirect_url,
            "customer": {"email": email, "name": customer_name or "Customer"},
            "meta": metadata,
        }
        body = await self._request("POST", "/payments", json=payload)
        data = body.get("data") or {}
        if not data.get("link"):
            raise GatewayError("Flutterwave did not return a payment link", payload=body)

        return InitializeResult(
            authorization_url=data["link"], provider_reference=reference, raw=body
        )

    async def verify(self, reference: str) -> VerifyResult:
        body = await self._request(
            "GET", "/transactions/verify_by_reference", params={"tx_ref": reference}
        )
        data = body.get("data") or {}
        provider_status = data.get("status")

        if provider_status == "successful":
            status = VERIFY_SUCCESS
        elif provider_status == "failed":
            status = VERIFY_FAILED
        else:
            status = VERIFY_PENDING

        amount = data.get("amount")
        return VerifyResult(
            status=status,
            provider_amount=to_decimal(amount) if amount is not None else None,
            paid_at=parse_timestamp(data.get("created_at")),
            message=data.get("processor_response") or provider_status,
            provider_reference=data.get("tx_ref") or reference,
            channel=data.get("payment_type"),
            raw=body,
        )

    @staticmethod
    def parse_webhook(payload: dict) -> WebhookEvent:
        payload = as_dict(payload)
        data = as_dict(payload.get("data"))
        customer = as_dict(data.get("customer"))
        metadata = as_dict(payload.get("meta_data") or data.get("meta"))

        provider_status = data.get("status") or ""
        if provider_status == "successful":
            event = EVENT_CHARGE_SUCCESS
        elif provider_status == "failed":
            event = EVENT_CHARGE_FAILED
        else:
            event = payload.get("event") or ""

        amount = data.get("amount")
        return WebhookEvent(
            gateway_name="flutterwave",
            event=event,
            reference=data.get("tx_ref"),
            status=provider_status,
            amount=to_decimal(amount) if amount is not None else None,
            currency=data.get("currency"),
            paid_at=parse_timestamp(data.get("created_at")),
            channel=data.get("payment_type"),
            gateway_response=data.get("processor_response"),
            customer_email=customer.get("email"),
            customer_name=customer.get("name"),
            customer_phone=customer.get("phone_number"),
            metadata=metadata,
            raw=payload,
        )


GATEWAYS = {
    PaystackGateway.name: PaystackGateway,
    FlutterwaveGateway.name: FlutterwaveGateway,
}


def build_gateway(row: PaymentGateway, transport: Optional[httpx.AsyncBaseTransport] = None) -> BaseGateway:
    """Build the adapter for a tenant's gateway row"""
    gateway_class = GATEWAYS.get((row.gateway_name or "").lower())
    if gateway_class is None:
        raise GatewayError(f"Unsupported payment gateway: {row.gateway_name}")

    config = GatewayConfig(secret_key=decrypt_secret_key(row.secret_key))
    return gateway_class(config, transport=transport)
