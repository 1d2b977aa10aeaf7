"""
Django settings for the voicehub project.

Values are read from the environment; a ``.env`` file next to ``manage.py`` is
loaded first when present.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_bool(name):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-voicehub-dev-key")
DEBUG = _env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [host for host in os.getenv("DJANGO_ALLOWED_HOSTS", "*").split(",") if host]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "django_filters",
    "accounts",
    "audit",
    "payments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "voicehub.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "voicehub.wsgi.application"
ASGI_APPLICATION = "voicehub.asgi.application"

if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("POSTGRES_DB"),
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

AUTH_USER_MODEL = "accounts.User"

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_FILTER_BACKENDS": ["django_filters.rest_framework.DjangoFilterBackend"],
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 50,
}

# Email
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "25"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", False)
EMAIL_TIMEOUT = float(os.getenv("EMAIL_TIMEOUT", "10"))
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "billing@voicehub.local")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)

# Payment gateways. Values stored in the GatewaySetting table take precedence
# over the environment defaults below.
PAYMENT_GATEWAYS = {
    "stripe": {
        "enabled": _env_optional_bool("STRIPE_ENABLED"),
        "secret_key": os.getenv("STRIPE_SECRET_KEY", ""),
        "publishable_key": os.getenv("STRIPE_PUBLISHABLE_KEY", ""),
        "webhook_secret": os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        "currency": os.getenv("STRIPE_CURRENCY", "USD"),
    },
    "razorpay": {
        "enabled": _env_optional_bool("RAZORPAY_ENABLED"),
        "key_id": os.getenv("RAZORPAY_KEY_ID", ""),
        "key_secret": os.getenv("RAZORPAY_KEY_SECRET", ""),
        "webhook_secret": os.getenv("RAZORPAY_WEBHOOK_SECRET", ""),
        "currency": os.getenv("RAZORPAY_CURRENCY", "INR"),
        "base_url": os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1"),
    },
    "paypal": {
        "enabled": _env_optional_bool("PAYPAL_ENABLED"),
        "client_id": os.getenv("PAYPAL_CLIENT_ID", ""),
        "client_secret": os.getenv("PAYPAL_CLIENT_SECRET", ""),
        "webhook_id": os.getenv("PAYPAL_WEBHOOK_ID", ""),
        "mode": os.getenv("PAYPAL_MODE", "sandbox"),
        "currency": os.getenv("PAYPAL_CURRENCY", "USD"),
    },
    "paystack": {
        "enabled": _env_optional_bool("PAYSTACK_ENABLED"),
        "public_key": os.getenv("PAYSTACK_PUBLIC_KEY", ""),
        "secret_key": os.getenv("PAYSTACK_SECRET_KEY", ""),
        "currency": os.getenv("PAYSTACK_CURRENCY", "NGN"),
        "base_url": os.getenv("PAYSTACK_BASE_URL", "https://api.paystack.co"),
    },
    "mercadopago": {
        "enabled": _env_optional_bool("MERCADOPAGO_ENABLED"),
        "access_token": os.getenv("MERCADOPAGO_ACCESS_TOKEN", ""),
        "public_key": os.getenv("MERCADOPAGO_PUBLIC_KEY", ""),
        "webhook_secret": os.getenv("MERCADOPAGO_WEBHOOK_SECRET", ""),
        "currency": os.getenv("MERCADOPAGO_CURRENCY", "BRL"),
        "base_url": os.getenv("MERCADOPAGO_BASE_URL", "https://api.mercadopago.com"),
    },
}

PAYMENT_GATEWAY_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT_SECONDS", "10"))
PAYMENT_WEBHOOK_RETRY_INTERVALS_MINUTES = [1, 5, 15, 30, 60]
PAYMENT_WEBHOOK_MAX_ATTEMPTS = int(os.getenv("PAYMENT_WEBHOOK_MAX_ATTEMPTS", "5"))
PAYMENT_WEBHOOK_EXPIRY_HOURS = int(os.getenv("PAYMENT_WEBHOOK_EXPIRY_HOURS", "24"))
# Matches the Celery task time limit
PAYMENT_WEBHOOK_PROCESSING_LEASE_SECONDS = int(os.getenv("PAYMENT_WEBHOOK_PROCESSING_LEASE_SECONDS", "600"))
PAYMENT_RETRY_BATCH_SIZE = int(os.getenv("PAYMENT_RETRY_BATCH_SIZE", "100"))

PLAN_CONFIG = {
    "free": {"display_name": "Free", "included_credits": 0, "monthly_price": "0.00", "yearly_price": "0.00"},
    "starter": {"display_name": "Starter", "included_credits": 500, "monthly_price": "19.00", "yearly_price": "190.00"},
    "pro": {"display_name": "Pro", "included_credits": 2000, "monthly_price": "49.00", "yearly_price": "490.00"},
    "business": {"display_name": "Business", "included_credits": 10000, "monthly_price": "199.00", "yearly_price": "1990.00"},
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "loggers": {
        "payments": {"handlers": ["console"], "level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO"), "propagate": True},
        "audit": {"handlers": ["console"], "level": "INFO", "propagate": True},
    },
    "root": {"handlers": ["console"], "level": os.getenv("DJANGO_LOG_LEVEL", "WARNING")},
}
