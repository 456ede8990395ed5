import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))

# Seeded admin account
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@shop.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

PAYMENT_API_URL = os.getenv("PAYMENT_API_URL", "http://localhost:5000")
EMAIL_RELAY_URL = os.getenv("EMAIL_RELAY_URL", "http://localhost:3001")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 10))

STORE_NAME = os.getenv("STORE_NAME", "Shopki")
STORE_BASE_URL = os.getenv("STORE_BASE_URL", "http://localhost:3000")
CURRENCY = "KES"

# Shipping
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", 5000))
STANDARD_SHIPPING_FEE = float(os.getenv("STANDARD_SHIPPING_FEE", 300))

# M-Pesa
MPESA_MIN_AMOUNT = float(os.getenv("MPESA_MIN_AMOUNT", 1))
MPESA_MAX_AMOUNT = float(os.getenv("MPESA_MAX_AMOUNT", 150000))
MPESA_CALLBACK_TOKEN = os.getenv("MPESA_CALLBACK_TOKEN")
MAX_PAYMENT_ATTEMPTS = int(os.getenv("MAX_PAYMENT_ATTEMPTS", 3))

# Notifications
NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", 3))
NOTIFY_BACKOFF_SECONDS = float(os.getenv("NOTIFY_BACKOFF_SECONDS", 0.5))
# Per attempt; kept short because delivery runs inside the request.
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", 3))

PLATFORM_COMMISSION_RATE = float(os.getenv("PLATFORM_COMMISSION_RATE", 0.04))
