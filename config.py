"""
Application configuration, read from the environment once at import time.
"""

import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Admin routes are open when no key is configured (local development)
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "15"))
DISCOUNT_CODE_LENGTH = int(os.getenv("DISCOUNT_CODE_LENGTH", "8"))
PRODUCT_CACHE_TTL = float(os.getenv("PRODUCT_CACHE_TTL", "30"))

CURRENCY = os.getenv("CURRENCY", "UGX")
