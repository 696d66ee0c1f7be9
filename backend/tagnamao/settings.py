import os
from pathlib import Path
from datetime import timedelta
from dotenv import load_dotenv
from django.core.exceptions import ImproperlyConfigured

# === BASE DIR ===
BASE_DIR = Path(__file__).resolve().parent.parent
# Carregar variáveis de backend/.env (desligável nos testes de settings)
if not os.getenv("DJANGO_SKIP_DOTENV"):
    load_dotenv(BASE_DIR / ".env")

# === HELPERS ===
def _bool(value, default=False):
    if value is None:
        return default
    return str(value).strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# === CORE ===
DJANGO_ENV = (os.getenv("DJANGO_ENV") or "development").strip().lower()
IS_PRODUCTION = DJANGO_ENV == "production"

SECRET_KEY = (
    os.getenv("DJANGO_SECRET_KEY")
    or os.getenv("SECRET_KEY")
    or "dev-secret-key-change-me"
)
if IS_PRODUCTION and SECRET_KEY == "dev-secret-key-change-me":
    raise ImproperlyConfigured("DJANGO_SECRET_KEY é obrigatório em produção.")

# Em produção deve ficar False; por padrão fica desligado salvo pedido explícito.
DEBUG = _bool(os.getenv("DJANGO_DEBUG") or os.getenv("DEBUG"), False)
if IS_PRODUCTION and DEBUG:
    raise ImproperlyConfigured("DJANGO_DEBUG não pode estar ativo com DJANGO_ENV=production.")

_hosts_env = os.getenv("DJANGO_ALLOWED_HOSTS") or os.getenv(
    "ALLOWED_HOSTS", "localhost,127.0.0.1"
)
ALLOWED_HOSTS = (
    ["*"]
    if "*" in _hosts_env
    else [h.strip() for h in _hosts_env.split(",") if h.strip()]
)

# === INSTALLED APPS ===
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",

    # Terceiros
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",

    # Apps locais
    "common",
    "accounts",
    "orders",
    "payments",
    "notifications",
]

# === MIDDLEWARE ===
MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",  # CORS alto e antes do Common
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]


# === CORS / CSRF ===
_frontend_env = os.getenv("FRONTEND_ORIGINS") or os.getenv(
    "FRONTEND_ORIGIN", "http://localhost:5173,http://127.0.0.1:5173"
)
CORS_ALLOWED_ORIGINS = [o.strip() for o in _frontend_env.split(",") if o.strip()]
CORS_ALLOW_CREDENTIALS = _bool(os.getenv("CORS_ALLOW_CREDENTIALS"), False)
CORS_ALLOW_ALL_ORIGINS = bool(DEBUG)
# O Asaas manda o token do webhook neste header
CORS_ALLOW_HEADERS = (
    "accept",
    "authorization",
    "content-type",
    "origin",
    "x-csrftoken",
    "x-requested-with",
    "asaas-access-token",
)

CSRF_TRUSTED_ORIGINS = [
    o for o in CORS_ALLOWED_ORIGINS if o.startswith(("http://", "https://"))
]


# === URLS / WSGI ===
ROOT_URLCONF = "tagnamao.urls"

ADMIN_URL = os.getenv("ADMIN_URL", "admin/")

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "tagnamao.wsgi.application"


# === DATABASE ===
if os.getenv("DB_ENGINE"):
    DATABASES = {
        "default": {
            "ENGINE": os.getenv("DB_ENGINE"),
            "NAME": os.getenv("DB_NAME"),
            "USER": os.getenv("DB_USER"),
            "PASSWORD": os.getenv("DB_PASSWORD"),
            "HOST": os.getenv("DB_HOST"),
            "PORT": os.getenv("DB_PORT"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }


# === AUTH ===
AUTH_USER_MODEL = "accounts.User"


# === DRF / JWT ===
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "common.authentication.StrictJWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated"
    ],
    "DEFAULT_THROTTLE_CLASSES": (
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
        "rest_framework.throttling.ScopedRateThrottle",
    ),
    "DEFAULT_THROTTLE_RATES": {
        "anon": os.getenv("API_THROTTLE_ANON", "60/hour"),
        "user": os.getenv("API_THROTTLE_USER", "600/hour"),
        "login": os.getenv("API_THROTTLE_LOGIN", "20/hour"),
        "checkout": os.getenv("API_THROTTLE_CHECKOUT", "30/hour"),
        # Polling a cada 5s = 720/h por tentativa
        "payment_status": os.getenv("API_THROTTLE_PAYMENT_STATUS", "1500/hour"),
    },
}

# Em produção, só JSON (sem UI navegável).
if not DEBUG:
    REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"] = (
        "rest_framework.renderers.JSONRenderer",
    )

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(hours=_int(os.getenv("JWT_ACCESS_HOURS"), 8)),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=_int(os.getenv("JWT_REFRESH_DAYS"), 7)),
    "ROTATE_REFRESH_TOKENS": True,
    "AUTH_HEADER_TYPES": ("Bearer",),
    "ALGORITHM": os.getenv("JWT_ALGORITHM", "HS256"),
    "SIGNING_KEY": os.getenv("JWT_SIGNING_KEY", SECRET_KEY),
}


# === INTERNACIONALIZAÇÃO ===
LANGUAGE_CODE = "pt-br"
TIME_ZONE = "America/Porto_Velho"
USE_I18N = True
USE_TZ = True


# === STATIC ===
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"


# === PAGAMENTOS (Asaas + PIX direto) ===
ASAAS_API_KEY = (os.getenv("ASAAS_API_KEY") or "").strip()
# Chaves de homologação carregam "_hmlg_" e apontam para o sandbox
ASAAS_BASE_URL = os.getenv("ASAAS_BASE_URL") or (
    "https://sandbox.asaas.com/api/v3"
    if "_hmlg_" in ASAAS_API_KEY
    else "https://api.asaas.com/v3"
)
ASAAS_TIMEOUT_SECONDS = _int(os.getenv("ASAAS_TIMEOUT_SECONDS"), 10)
ASAAS_WEBHOOK_TOKEN = (os.getenv("ASAAS_WEBHOOK_TOKEN") or "").strip()
# Em produção exigimos o token por padrão; em DEBUG pode ser relaxado explicitamente.
ASAAS_REQUIRE_WEBHOOK_TOKEN = _bool(os.getenv("ASAAS_REQUIRE_WEBHOOK_TOKEN"), not DEBUG)
ASAAS_ALLOW_WEBHOOK_NO_TOKEN = _bool(os.getenv("ASAAS_ALLOW_WEBHOOK_NO_TOKEN"), False)

PAYMENT_POLL_INTERVAL_SECONDS = _int(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS"), 5)
PAYMENT_STREAM_TIMEOUT_SECONDS = _int(os.getenv("PAYMENT_STREAM_TIMEOUT_SECONDS"), 35 * 60)
PAYMENT_STREAM_HEARTBEAT_SECONDS = _int(os.getenv("PAYMENT_STREAM_HEARTBEAT_SECONDS"), 15)

# === NOTIFICAÇÕES ===
WHATSAPP_WEBHOOK_URL = (os.getenv("WHATSAPP_WEBHOOK_URL") or "").strip()
ADMIN_WHATSAPP = (os.getenv("ADMIN_WHATSAPP") or "").strip()
NOTIFICATION_MAX_ATTEMPTS = _int(os.getenv("NOTIFICATION_MAX_ATTEMPTS"), 5)
# thread | inline | outbox (só o comando dispatch_notifications envia)
NOTIFICATION_DISPATCH_MODE = (os.getenv("NOTIFICATION_DISPATCH_MODE") or "thread").strip().lower()

# === EMAIL ===
EMAIL_BACKEND = os.getenv(
    "DJANGO_EMAIL_BACKEND",
    os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend"),
)
EMAIL_HOST = os.getenv("EMAIL_HOST", "smtp.resend.com")
EMAIL_PORT = _int(os.getenv("EMAIL_PORT"), 587)
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _bool(os.getenv("EMAIL_USE_TLS"), True)
EMAIL_USE_SSL = _bool(os.getenv("EMAIL_USE_SSL"), False)
EMAIL_TIMEOUT = _int(os.getenv("EMAIL_TIMEOUT"), 10)
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "Tag na Mão <no-reply@tagnamao.com.br>")
# Backend de console bloqueado em produção para garantir entrega real,
# salvo exceção explícita.
if (
    IS_PRODUCTION
    and EMAIL_BACKEND.endswith("console.EmailBackend")
    and not _bool(os.getenv("ALLOW_CONSOLE_EMAIL_IN_PROD"), False)
):
    raise ImproperlyConfigured(
        "EMAIL_BACKEND aponta para console em produção. Configure SMTP ou defina ALLOW_CONSOLE_EMAIL_IN_PROD=true."
    )


# === LOGGING ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "simple"},
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "payments": {"level": os.getenv("PAYMENTS_LOG_LEVEL", LOG_LEVEL), "propagate": True},
    },
}

# === SECURITY / COOKIES ===
SESSION_COOKIE_SECURE = _bool(os.getenv("SESSION_COOKIE_SECURE"), IS_PRODUCTION)
CSRF_COOKIE_SECURE = _bool(os.getenv("CSRF_COOKIE_SECURE"), IS_PRODUCTION)
SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
CSRF_COOKIE_SAMESITE = os.getenv("CSRF_COOKIE_SAMESITE", "Lax")
SECURE_CONTENT_TYPE_NOSNIFF = True
SECURE_SSL_REDIRECT = _bool(os.getenv("SECURE_SSL_REDIRECT"), IS_PRODUCTION)
SECURE_HSTS_SECONDS = _int(os.getenv("SECURE_HSTS_SECONDS"), 3600 if IS_PRODUCTION else 0)
SECURE_HSTS_INCLUDE_SUBDOMAINS = _bool(os.getenv("SECURE_HSTS_INCLUDE_SUBDOMAINS"), True)
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_HTTPONLY = False


# === DEFAULTS ===
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
