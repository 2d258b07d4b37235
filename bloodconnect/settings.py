# bloodconnect/settings.py
"""
Django settings for the BloodConnect donor-matching service.

Every value can be overridden from the environment; the defaults are
development-friendly (SQLite, console SMS/push transports).
"""
import os
from datetime import timedelta
from pathlib import Path

from celery.schedules import crontab

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


SECRET_KEY = os.environ.get('SECRET_KEY', 'django-insecure-bloodconnect-dev-key')
DEBUG = env_bool('DEBUG', True)
ALLOWED_HOSTS = [h for h in os.environ.get('ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

# ============================================
# APPLICATIONS
# ============================================
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    'rest_framework',

    'accounts',
    'donors',
    'bloodrequests',
    'notifications',
    'donations',
    'api',
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

ROOT_URLCONF = 'bloodconnect.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

AUTH_USER_MODEL = 'accounts.CustomUser'

# ============================================
# DATABASE
# ============================================
if os.environ.get('DB_NAME'):
    DATABASES = {
        'default': {
            'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.postgresql'),
            'NAME': os.environ['DB_NAME'],
            'USER': os.environ.get('DB_USER', ''),
            'PASSWORD': os.environ.get('DB_PASSWORD', ''),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
            'ATOMIC_REQUESTS': False,
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.environ.get('TIME_ZONE', 'UTC')
USE_I18N = False
USE_TZ = True

STATIC_URL = 'static/'

# ============================================
# REST FRAMEWORK
# ============================================
REST_FRAMEWORK = {
    # JWT for mobile/external clients, session for the admin panel.
    # JWT goes first so unauthenticated calls get 401 with a Bearer challenge.
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
        'rest_framework.authentication.BasicAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'EXCEPTION_HANDLER': 'bloodconnect.exceptions.api_exception_handler',
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=env_int('JWT_ACCESS_MINUTES', 60)),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=env_int('JWT_REFRESH_DAYS', 7)),
}

# ============================================
# CELERY
# ============================================
CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', False)
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'expire-overdue-blood-requests': {
        'task': 'bloodrequests.tasks.expire_overdue_requests',
        'schedule': crontab(minute='*/15'),
    },
}

# ============================================
# MATCHING & NOTIFICATIONS
# ============================================
DONOR_DISCOVERY_LIMIT = env_int('DONOR_DISCOVERY_LIMIT', 50)
NOTIFICATION_BATCH_SIZE = env_int('NOTIFICATION_BATCH_SIZE', 10)
DONATION_COOLDOWN_DAYS = env_int('DONATION_COOLDOWN_DAYS', 56)
APPOINTMENT_MAX_DAYS_AHEAD = env_int('APPOINTMENT_MAX_DAYS_AHEAD', 30)
BLOOD_REQUEST_GRACE_HOURS = env_int('BLOOD_REQUEST_GRACE_HOURS', 24)

# Run the notification fan-out in a Celery worker instead of inside the
# request/response cycle.
NOTIFICATIONS_ASYNC = env_bool('NOTIFICATIONS_ASYNC', False)

SMS_BACKEND = os.environ.get('SMS_BACKEND', 'notifications.backends.sms.ConsoleSMSBackend')
PUSH_BACKEND = os.environ.get('PUSH_BACKEND', 'notifications.backends.push.ConsolePushBackend')

TWILIO_ACCOUNT_SID = os.environ.get('TWILIO_ACCOUNT_SID', '')
TWILIO_AUTH_TOKEN = os.environ.get('TWILIO_AUTH_TOKEN', '')
TWILIO_FROM_NUMBER = os.environ.get('TWILIO_FROM_NUMBER', '')
PUSH_WEBHOOK_URL = os.environ.get('PUSH_WEBHOOK_URL', '')
TRANSPORT_TIMEOUT_SECONDS = env_int('TRANSPORT_TIMEOUT_SECONDS', 10)

SUPPORT_CONTACT = os.environ.get('SUPPORT_CONTACT', 'admin@bloodconnect.com')

# ============================================
# LOGGING
# ============================================
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        name: {'handlers': ['console'], 'level': LOG_LEVEL, 'propagate': False}
        for name in (
            'algorithms', 'accounts', 'donors', 'bloodrequests',
            'notifications', 'donations', 'api', 'bloodconnect',
        )
    },
}
