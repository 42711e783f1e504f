"""
Webhook Security Module

Signature verification for payment provider webhooks:
- Paystack signs the raw body with HMAC-SHA512 (``x-paystack-signature``)
- Flutterwave echoes the configured secret hash (``verif-hash``)

Both comparisons are constant-time and always run against the raw request
body, before any JSON parsing.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from .config import FLUTTERWAVE_SECRET_HASH, PAYSTACK_SECRET_KEY

logger = logging.getLogger(__name__)

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
FLUTTERWAVE_SIGNATURE_HEADER = "verif-hash"


class WebhookSignatureError(Exception):
    """Raised when webhook signature verification fails"""

    def __init__(self, message: str, status_code: int = 403):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class WebhookSecrets:
    """Signing secrets handed to webhook handlers per request"""

    paystack_secret_key: Optional[str] = None
    flutterwave_secret_hash: Optional[str] = None


def get_webhook_secrets() -> WebhookSecrets:
    """Dependency returning the configured webhook secrets"""
    return WebhookSecrets(
        paystack_secret_key=PAYSTACK_SECRET_KEY,
        flutterwave_secret_hash=FLUTTERWAVE_SECRET_HASH,
    )


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Uses hmac.compare_digest which is designed for this purpose.
    """
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def compute_hmac_sha512(secret: str, payload: bytes) -> str:
    """Compute HMAC-SHA512 signature of payload"""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def check_paystack_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    if not signature:
        raise WebhookSignatureError("Missing webhook signature", status_code=400)
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured", status_code=500)
    if not constant_time_compare(compute_hmac_sha512(secret, raw_body), signature.strip().lower()):
        raise WebhookSignatureError("Invalid webhook signature", status_code=403)


def check_flutterwave_signature(signature: Optional[str], secret_hash: Optional[str]) -> None:
    if not signature:
        raise WebhookSignatureError("Missing webhook signature", status_code=400)
    if not secret_hash:
        raise WebhookSignatureError("Webhook secret not configured", status_code=500)
    if not constant_time_compare(secret_hash, signature.strip()):
        raise WebhookSignatureError("Invalid webhook signature", status_code=403)


async def verify_paystack_webhook(request: Request, secret: Optional[str]) -> bytes:
    """
    Verify a Paystack webhook and return the raw body.

    Raises:
        HTTPException: 400 without a signature header, 500 when no secret is
            configured, 403 on a signature mismatch
    """
    # Get raw body BEFORE any parsing
    raw_body = await request.body()
    logger.info(f"📥 Paystack webhook received ({len(raw_body)} bytes)")

    try:
        check_paystack_signature(raw_body, request.headers.get(PAYSTACK_SIGNATURE_HEADER), secret)
    except WebhookSignatureError as e:
        logger.error(f"❌ Paystack webhook rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    logger.info("✅ Paystack webhook signature verified")
    return raw_body


async def verify_flutterwave_webhook(request: Request, secret_hash: Optional[str]) -> bytes:
    """Verify a Flutterwave webhook and return the raw body"""
    raw_body = await request.body()
    logger.info(f"📥 Flutterwave webhook received ({len(raw_body)} bytes)")

    try:
        check_flutterwave_signature(request.headers.get(FLUTTERWAVE_SIGNATURE_HEADER), secret_hash)
    except WebhookSignatureError as e:
        logger.error(f"❌ Flutterwave webhook rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    logger.info("✅ Flutterwave webhook signature verified")
    return raw_body
