import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./heromount.db")

# Civil time: every slot, lead-time and day-boundary calculation happens here
SERVICE_TIMEZONE = os.getenv("SERVICE_TIMEZONE", "America/Chicago")

# Slot grid (08:00 .. 19:00 hourly starts by default)
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "60"))
SLOT_DAY_START = os.getenv("SLOT_DAY_START", "08:00")
SLOT_DAY_END = os.getenv("SLOT_DAY_END", "20:00")
SAME_DAY_LEAD_MINUTES = int(os.getenv("SAME_DAY_LEAD_MINUTES", "30"))
AVAILABILITY_HORIZON_DAYS = int(os.getenv("AVAILABILITY_HORIZON_DAYS", "30"))
DEFAULT_JOB_DURATION_MINUTES = int(os.getenv("DEFAULT_JOB_DURATION_MINUTES", "60"))
AVAILABILITY_CACHE_TTL = int(os.getenv("AVAILABILITY_CACHE_TTL", "60"))
AVAILABILITY_CACHE_MAX_ENTRIES = int(os.getenv("AVAILABILITY_CACHE_MAX_ENTRIES", "1024"))

# Stripe (payment holds use capture_method=manual)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_API_URL = os.getenv("STRIPE_API_URL", "https://api.stripe.com/v1")
PAYMENT_MAX_ATTEMPTS = int(os.getenv("PAYMENT_MAX_ATTEMPTS", "3"))
PAYMENT_BACKOFF_SECONDS = float(os.getenv("PAYMENT_BACKOFF_SECONDS", "0.5"))
PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "15.0"))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "usd")

# Twilio SMS
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Hero TV Mounting <bookings@herotvmounting.com>")
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@herotvmounting.com")

# Optional shared cache backend; in-process cache is used when unset
REDIS_URL = os.getenv("REDIS_URL")

# Assignment / notification recovery
ASSIGNMENT_CLAIM_TIMEOUT_MINUTES = int(os.getenv("ASSIGNMENT_CLAIM_TIMEOUT_MINUTES", "5"))
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "3"))
