"""
PATH: backend/settings/base.py

TILL SETTINGS (shared by dev + prod)

Everything tunable comes from the environment (or a .env next to the project):
- Retail backend connection (base URL + timeout)
- Payment confirmation polling policy (interval, attempts, backoff)
- Unit inventory cache lifetime
- Receipt header/footer strings
- Sentry (optional), enabled by SENTRY_DSN
"""

from __future__ import annotations

import sys
from pathlib import Path

import environ
from corsheaders.defaults import default_headers, default_methods

# -----------------------------------------
# BASE DIRECTORY
# -----------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# -----------------------------------------
# TEST MODE DETECTION
# -----------------------------------------
TESTING = "test" in sys.argv or "pytest" in sys.modules

# -----------------------------------------
# ENV (django-environ)
# -----------------------------------------
env = environ.Env(
    DEBUG=(bool, True),
    SECRET_KEY=(str, ""),
    TIME_ZONE=(str, "Africa/Lagos"),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1"]),
    CORS_ALLOWED_ORIGINS=(list, ["http://localhost:5173"]),
    CSRF_TRUSTED_ORIGINS=(list, ["http://localhost:5173"]),
    DATABASE_URL=(str, f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
    LOG_LEVEL=(str, "INFO"),
    # Retail backend
    RETAIL_API_BASE_URL=(str, "http://localhost:8000/api"),
    RETAIL_API_TIMEOUT=(int, 25),
    # Payment confirmation polling
    PAYMENT_POLL_INTERVAL_SECONDS=(float, 5.0),
    PAYMENT_POLL_MAX_ATTEMPTS=(int, 120),
    PAYMENT_POLL_BACKOFF_FACTOR=(float, 1.0),
    PAYMENT_POLL_MAX_INTERVAL_SECONDS=(float, 60.0),
    PAYMENT_POLL_AUTOSTART=(bool, not TESTING),
    # Catalog
    INVENTORY_CACHE_SECONDS=(int, 60),
    # Tills idle this long are closed (0 keeps them until logout)
    TERMINAL_IDLE_SECONDS=(int, 8 * 60 * 60),
    # Receipt
    RECEIPT_BUSINESS_NAME=(str, "Inventory Sys"),
    RECEIPT_ADDRESS=(str, "123 Business Road, Lagos"),
    RECEIPT_PHONE=(str, "+234 800 123 4567"),
    # Sentry (optional; enable by setting SENTRY_DSN)
    SENTRY_DSN=(str, ""),
    SENTRY_ENVIRONMENT=(str, "development"),
    SENTRY_TRACES_SAMPLE_RATE=(float, 0.0),
    SENTRY_SEND_PII=(bool, False),
)

# -----------------------------------------
# LOAD .env
# -----------------------------------------
for _env_file in (BASE_DIR / ".env", BASE_DIR.parent / ".env"):
    if _env_file.exists():
        env.read_env(str(_env_file))
        break

# -----------------------------------------
# CORE SECURITY
# -----------------------------------------
SECRET_KEY = (env("SECRET_KEY") or "dev-insecure-change-me").strip()
DEBUG = env.bool("DEBUG")
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS")

# -----------------------------------------
# I18N / TZ
# -----------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = (env("TIME_ZONE") or "UTC").strip()
USE_I18N = True
USE_TZ = True

# -----------------------------------------
# INSTALLED APPS
# -----------------------------------------
INSTALLED_APPS = [
    "corsheaders",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "terminal.apps.TerminalConfig",
]

# -----------------------------------------
# MIDDLEWARE
# -----------------------------------------
MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "backend.urls"
WSGI_APPLICATION = "backend.wsgi.application"
APPEND_SLASH = True

# -----------------------------------------
# TEMPLATES (printable receipts)
# -----------------------------------------
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
            ],
        },
    }
]

# -----------------------------------------
# REST FRAMEWORK
# -----------------------------------------
# Operators authenticate against the retail backend, not against local users.
# The terminal session (Django session cookie) is the only credential here.
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (),
    "DEFAULT_PERMISSION_CLASSES": ("terminal.views.permissions.HasOpenTerminal",),
    "UNAUTHENTICATED_USER": None,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

# -----------------------------------------
# DATABASE (sessions only)
# -----------------------------------------
DATABASES = {
    "default": env.db("DATABASE_URL"),
}

# -----------------------------------------
# CACHE (unit inventory)
# -----------------------------------------
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "pos-terminal",
    }
}

INVENTORY_CACHE_SECONDS = env.int("INVENTORY_CACHE_SECONDS")
TERMINAL_IDLE_SECONDS = env.int("TERMINAL_IDLE_SECONDS")

# -----------------------------------------
# RETAIL BACKEND
# -----------------------------------------
RETAIL_API = {
    "BASE_URL": (env("RETAIL_API_BASE_URL") or "").strip().rstrip("/"),
    "TIMEOUT": env.int("RETAIL_API_TIMEOUT"),
}

# -----------------------------------------
# PAYMENT CONFIRMATION POLLING
# -----------------------------------------
PAYMENT_POLL = {
    "INTERVAL_SECONDS": env.float("PAYMENT_POLL_INTERVAL_SECONDS"),
    "MAX_ATTEMPTS": env.int("PAYMENT_POLL_MAX_ATTEMPTS"),
    "BACKOFF_FACTOR": env.float("PAYMENT_POLL_BACKOFF_FACTOR"),
    "MAX_INTERVAL_SECONDS": env.float("PAYMENT_POLL_MAX_INTERVAL_SECONDS"),
    "AUTOSTART": env.bool("PAYMENT_POLL_AUTOSTART"),
}

# -----------------------------------------
# RECEIPT
# -----------------------------------------
RECEIPT = {
    "BUSINESS_NAME": env("RECEIPT_BUSINESS_NAME"),
    "ADDRESS": env("RECEIPT_ADDRESS"),
    "PHONE": env("RECEIPT_PHONE"),
    "FOOTER": ["Thank you for your patronage!", "No refunds after purchase."],
}

# -----------------------------------------
# LOGGING
# -----------------------------------------
LOG_LEVEL = (env("LOG_LEVEL") or "INFO").strip().upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "terminal": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "django": {
            "handlers": ["console"],
            "level": "WARNING",
        },
    },
}

# -----------------------------------------
# SENTRY (optional)
# -----------------------------------------
SENTRY_DSN = (env("SENTRY_DSN") or "").strip()
SENTRY_ENVIRONMENT = (env("SENTRY_ENVIRONMENT") or "development").strip()
SENTRY_TRACES_SAMPLE_RATE = float(env("SENTRY_TRACES_SAMPLE_RATE"))
SENTRY_SEND_PII = env.bool("SENTRY_SEND_PII")

if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        integrations=[DjangoIntegration()],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=SENTRY_SEND_PII,
    )

# -----------------------------------------
# CORS / CSRF
# -----------------------------------------
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_METHODS = list(default_methods)
CORS_ALLOW_HEADERS = list(default_headers)

CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS")

# -----------------------------------------
# STATIC FILES
# -----------------------------------------
STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------
# SWAGGER
# -----------------------------------------
SPECTACULAR_SETTINGS = {
    "TITLE": "POS Terminal API",
    "DESCRIPTION": "Cart, checkout, payment confirmation and invoice API for a single till",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}
