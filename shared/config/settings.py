import os
from dotenv import load_dotenv

load_dotenv()

# Payment processor
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "stripe")  # stripe | fake
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# Checkout
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173").rstrip("/")
CURRENCY = os.getenv("CURRENCY", "inr")
CHECKOUT_RATE_LIMIT = os.getenv("CHECKOUT_RATE_LIMIT", "10/minute")

# Access control
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()

# Observability; tracing is only wired up when an OTLP collector is configured
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "")
