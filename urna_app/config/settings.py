from pathlib import Path
import os
import sys

import environ
from django.core.exceptions import ImproperlyConfigured

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
)

# Optional local env file support (deployments usually set env vars directly).
environ.Env.read_env(os.path.join(BASE_DIR, ".env"))

DEBUG = env.bool("DEBUG", default=False)

# Management commands (migrate, advance_elections, ...) and the test runner
# don't serve requests, so they must not require web runtime secrets.
_WEB_COMMANDS = {"runserver"}
RUNNING_TESTS = "pytest" in sys.modules or (len(sys.argv) > 1 and sys.argv[1] == "test")
RUNNING_MANAGEMENT_COMMAND = (
    len(sys.argv) > 1
    and os.path.basename(sys.argv[0]) == "manage.py"
    and sys.argv[1] not in _WEB_COMMANDS
)
_RELAX_RUNTIME_REQUIREMENTS = RUNNING_TESTS or RUNNING_MANAGEMENT_COMMAND

SECRET_KEY = env(
    "SECRET_KEY",
    default="django-insecure-dev-only-change-me",
)
if not DEBUG and not _RELAX_RUNTIME_REQUIREMENTS and SECRET_KEY.startswith("django-insecure-dev-only"):
    raise ImproperlyConfigured("SECRET_KEY must be set in production.")

_dev_allowed_hosts = ["localhost", "127.0.0.1", "[::1]", "testserver"]
ALLOWED_HOSTS = env.list(
    "ALLOWED_HOSTS",
    default=_dev_allowed_hosts if (DEBUG or _RELAX_RUNTIME_REQUIREMENTS) else [],
)
if not DEBUG and not _RELAX_RUNTIME_REQUIREMENTS and not ALLOWED_HOSTS:
    raise ImproperlyConfigured("ALLOWED_HOSTS must be set in production.")

INSTALLED_APPS = [
    'jazzmin',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'voting',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'config.wsgi.application'

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases
# Production runs on PostgreSQL; the vote uniqueness constraints are enforced by
# the database on every backend.
DATABASES = {
    'default': {
        **env.db(
            'DATABASE_URL',
            default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        ),
    }
}

JAZZMIN_SETTINGS = {
    "site_title": "Urna",
    "site_header": "Urna elections",
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = env('TIME_ZONE', default='America/Bogota')
USE_I18N = True
USE_TZ = True

# Security
if not DEBUG:
    if env.bool("SECURE_PROXY_SSL", default=True):
        SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=False)
    SESSION_COOKIE_SECURE = env.bool("SESSION_COOKIE_SECURE", default=True)
    CSRF_COOKIE_SECURE = env.bool("CSRF_COOKIE_SECURE", default=True)
    SECURE_CONTENT_TYPE_NOSNIFF = True
    CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS", default=[])

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / "staticfiles"

LOGIN_URL = '/admin/login/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Voting
# Vote tokens carry an already-validated claim from the voting station to the
# cast endpoint. The signature only detects corruption; the claim is always
# re-validated server-side.
VOTE_TOKEN_SALT = env("VOTE_TOKEN_SALT", default="urna.voting.vote-token")
VOTE_TOKEN_TTL_SECONDS = env.int("VOTE_TOKEN_TTL_SECONDS", default=15 * 60)

# Bounded retries for transient storage contention on the vote insert.
VOTE_CAST_MAX_ATTEMPTS = env.int("VOTE_CAST_MAX_ATTEMPTS", default=3)

VOTE_VERIFICATION_HASHER = env(
    "VOTE_VERIFICATION_HASHER",
    default="voting.hashing.sha256_verification_hash",
)

# Callables notified after a vote commits (dashboards, websocket bridges).
VOTE_PUBLISHERS = env.list(
    "VOTE_PUBLISHERS",
    default=["voting.realtime.log_vote_cast"],
)

VOTER_DOCUMENT_MIN_LENGTH = env.int("VOTER_DOCUMENT_MIN_LENGTH", default=3)
VOTER_DOCUMENT_MAX_LENGTH = env.int("VOTER_DOCUMENT_MAX_LENGTH", default=15)

ELECTION_CENTER_REPRESENTATIVE_SLOTS = env.list(
    "ELECTION_CENTER_REPRESENTATIVE_SLOTS",
    default=["nocturna", "24_horas", "mixta", "morning", "evening"],
)

# Logging
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'filters': {
        'redact_documents': {
            '()': 'voting.logging_filters.RedactDocumentNumberFilter',
        },
    },
    'formatters': {
        'console': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'console',
            'filters': ['redact_documents'],
        },
    },
    'loggers': {
        'voting': {
            'handlers': ['console'],
            'level': 'DEBUG' if DEBUG else 'INFO',
            'propagate': False,
        },
        'django.request': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        'django.server': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
