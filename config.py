import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as placeslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "placeslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token (Authorization: Bearer also accepted)
    AUTH_COOKIE_NAME = "placeslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # Business timezone for "is this slot in the past" checks
    APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Tashkent")

    # Public URLs
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://127.0.0.1:5002")
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Click payment gateway
    CLICK_SERVICE_ID = os.getenv("CLICK_SERVICE_ID")
    CLICK_MERCHANT_ID = os.getenv("CLICK_MERCHANT_ID")
    CLICK_SECRET_KEY = os.getenv("CLICK_SECRET_KEY")
    CLICK_MERCHANT_USER_ID = os.getenv("CLICK_MERCHANT_USER_ID")
    CLICK_CHECKOUT_BASE_URL = os.getenv("CLICK_CHECKOUT_BASE_URL", "https://my.click.uz")
    CLICK_MERCHANT_API_URL = os.getenv("CLICK_MERCHANT_API_URL", "https://api.click.uz/v2/merchant")
    CLICK_API_TIMEOUT_SECONDS = int(os.getenv("CLICK_API_TIMEOUT_SECONDS", "15"))

    # Create tables at startup instead of running migrations (local dev, tests)
    CREATE_TABLES_ON_START = os.getenv("CREATE_TABLES_ON_START", "false").lower() == "true"

    # Basic app settings
    DEBUG = False
