from pathlib import Path
import os
import environ
from datetime import timedelta

BASE_DIR = Path(__file__).resolve().parent.parent
env = environ.Env()
environ.Env.read_env(os.path.join(BASE_DIR.parent, '.env'))

SECRET_KEY = env('DJANGO_SECRET_KEY', default='dev-secret')
DEBUG = env.bool('DJANGO_DEBUG', default=True)
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['*'])

INSTALLED_APPS = [
    'django.contrib.admin','django.contrib.auth','django.contrib.contenttypes',
    'django.contrib.sessions','django.contrib.messages','django.contrib.staticfiles',
    'rest_framework','corsheaders',
    'bookings','payments',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [{
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
}]

WSGI_APPLICATION = 'config.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': env('POSTGRES_DB', default='agenda'),
        'USER': env('POSTGRES_USER', default='agenda'),
        'PASSWORD': env('POSTGRES_PASSWORD', default='agenda'),
        'HOST': env('POSTGRES_HOST', default='localhost'),
        'PORT': env('POSTGRES_PORT', default='5432'),
    }
}

if env.bool('USE_SQLITE_DB', default=False):
    DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': (
        'rest_framework_simplejwt.authentication.JWTAuthentication',
    ),
    'DEFAULT_PERMISSION_CLASSES': (
        'rest_framework.permissions.IsAuthenticated',
    ),
}

SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=30),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'AUTH_HEADER_TYPES': ('Bearer',),
}

CORS_ALLOW_ALL_ORIGINS = True
CORS_ALLOWED_ORIGINS = env.list('CORS_ALLOWED_ORIGINS', default=[])

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {'format': '%(asctime)s %(levelname)s %(name)s %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'simple'},
    },
    'root': {'handlers': ['console'], 'level': 'WARNING'},
    'loggers': {
        'payments': {
            'handlers': ['console'],
            'level': env('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'bookings': {
            'handlers': ['console'],
            'level': env('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
    },
}

STRIPE_SECRET_KEY = env('STRIPE_SECRET_KEY', default='')
STRIPE_WEBHOOK_SECRET = env('STRIPE_WEBHOOK_SECRET', default='')
STRIPE_USE_STUB = env.bool('STRIPE_USE_STUB', default=True)

# Reconciliation triggers. Intervals and pauses are in seconds.
PAYMENT_HEARTBEAT_INTERVAL = env.float('PAYMENT_HEARTBEAT_INTERVAL', default=30.0)
PAYMENT_HEARTBEAT_MIN_SPACING = env.float('PAYMENT_HEARTBEAT_MIN_SPACING', default=10.0)
# A heartbeat polls for this long after the last watch request, then stops.
PAYMENT_HEARTBEAT_LEASE = env.float('PAYMENT_HEARTBEAT_LEASE', default=900.0)
PAYMENT_MAX_WATCHED_BOOKINGS = env.int('PAYMENT_MAX_WATCHED_BOOKINGS', default=200)
PAYMENT_OWNER_MONITOR_INTERVAL = env.float('PAYMENT_OWNER_MONITOR_INTERVAL', default=120.0)
PAYMENT_RECENT_WINDOW_HOURS = env.int('PAYMENT_RECENT_WINDOW_HOURS', default=24)
PAYMENT_BACKUP_GRACE_MINUTES = env.int('PAYMENT_BACKUP_GRACE_MINUTES', default=3)
PAYMENT_BACKUP_BATCH_SIZE = env.int('PAYMENT_BACKUP_BATCH_SIZE', default=20)
PAYMENT_BACKUP_PAUSE = env.float('PAYMENT_BACKUP_PAUSE', default=1.0)
PAYMENT_HEARTBEAT_BATCH_SIZE = env.int('PAYMENT_HEARTBEAT_BATCH_SIZE', default=50)
PAYMENT_HEARTBEAT_PAUSE = env.float('PAYMENT_HEARTBEAT_PAUSE', default=2.0)
RECONCILIATION_SWEEP_SECRET = env('RECONCILIATION_SWEEP_SECRET', default='')
