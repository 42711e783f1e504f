import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookpay.db")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Frontend base URL for payment redirects
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
# Public base URL of this API, used when telling merchants where to point webhooks
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")

# Paystack Configuration
PAYSTACK_BASE_URL = os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co")
# Platform-level secret used to sign Paystack webhooks
PAYSTACK_SECRET_KEY = os.getenv("PAYSTACK_SECRET_KEY")

# Flutterwave Configuration
FLUTTERWAVE_BASE_URL = os.getenv("FLUTTERWAVE_BASE_URL", "https://api.flutterwave.com/v3")
FLUTTERWAVE_SECRET_HASH = os.getenv("FLUTTERWAVE_SECRET_HASH")  # Sent back as the verif-hash header

# Gateway secret keys are stored encrypted (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")
GATEWAY_ENCRYPTION_KEY = os.getenv("GATEWAY_ENCRYPTION_KEY")
if not GATEWAY_ENCRYPTION_KEY:
    import warnings

    warnings.warn(
        "GATEWAY_ENCRYPTION_KEY not set! Gateway secret keys will be read as plaintext",
        RuntimeWarning,
        stacklevel=2,
    )

# Platform fee rules
PLATFORM_FEE_CAP = Decimal(os.getenv("PLATFORM_FEE_CAP", "500.00"))
DEFAULT_FREE_PLAN_FEE_PERCENT = Decimal(os.getenv("DEFAULT_FREE_PLAN_FEE_PERCENT", "3.00"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "NGN")

# Slot tables store local wall-clock strings in this zone
BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE", "Africa/Lagos")
DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "60"))

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "BookPay <noreply@bookpay.app>")
