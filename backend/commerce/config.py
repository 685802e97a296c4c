# backend/commerce/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/commerce.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///commerce.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Lifecycle tuning
    CART_EXPIRATION_DAYS = int(os.environ.get("CART_EXPIRATION_DAYS", "30"))
    PRICE_DRIFT_TOLERANCE = float(os.environ.get("PRICE_DRIFT_TOLERANCE", "0.05"))
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD")
    ORDER_NUMBER_MAX_ATTEMPTS = int(os.environ.get("ORDER_NUMBER_MAX_ATTEMPTS", "10"))

    # Checkout pricing (country code -> rate; others use DEFAULT_TAX_RATE)
    TAX_RATES = {"US": "0.08", "CA": "0.13", "UK": "0.20"}
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "0.08")
    FREE_SHIPPING_THRESHOLD = os.environ.get("FREE_SHIPPING_THRESHOLD", "50.00")

    # Cost factor for guest -> user conversions
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    # Storefront origins allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",")
        if origin.strip()
    )
