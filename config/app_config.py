import os
from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./collabflow.db")

# Payment split
TAX_RATE = float(os.getenv("TAX_RATE", 0.18))
PLATFORM_COMMISSION_RATE = float(os.getenv("PLATFORM_COMMISSION_RATE", 0.05))
DEFAULT_UPFRONT_PERCENTAGE = int(os.getenv("DEFAULT_UPFRONT_PERCENTAGE", 50))
DEFAULT_COMPLETION_PERCENTAGE = int(os.getenv("DEFAULT_COMPLETION_PERCENTAGE", 50))
DEFAULT_BONUS_PERCENTAGE = int(os.getenv("DEFAULT_BONUS_PERCENTAGE", 0))
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "INR")

# Cap on Payment rows per (proposal, payment type), failed ones included
MAX_PAYMENT_ATTEMPTS_PER_TYPE = int(os.getenv("MAX_PAYMENT_ATTEMPTS_PER_TYPE", 3))

# Integration retries (linear backoff: attempt * unit)
INTEGRATION_MAX_ATTEMPTS = int(os.getenv("INTEGRATION_MAX_ATTEMPTS", 3))
INTEGRATION_BACKOFF_SECONDS = float(os.getenv("INTEGRATION_BACKOFF_SECONDS", 1.0))
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", 10))

# Per-actor throttle on milestone completion / content publishing
RATE_LIMIT_MAX_ACTIONS = int(os.getenv("RATE_LIMIT_MAX_ACTIONS", 10))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 60))

# Razorpay
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")

# Auth
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "your-secret-key-here")
JWT_ALGORITHM = "HS256"
