import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_int(name, default):
    return int(os.environ.get(name, default))


def _env_float(name, default):
    return float(os.environ.get(name, default))


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'catalog-sync-insecure-dev-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '0') == '1'
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost').split(',')

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'catalog_sync',
]

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'catalog_sync.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
        'LOCATION': 'catalog-sync',
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

# ---------------------------------------------------------------------------
# Upstream shop (GraphQL Admin API)
# ---------------------------------------------------------------------------

SHOP_STORE_NAME = os.environ.get('SHOP_STORE_NAME', 'example-store')
SHOP_API_VERSION = os.environ.get('SHOP_API_VERSION', '2023-07')
SHOP_API_URL = os.environ.get(
    'SHOP_API_URL',
    f'https://{SHOP_STORE_NAME}.myshopify.com/admin/api/{SHOP_API_VERSION}/graphql.json',
)
SHOP_ACCESS_TOKEN = os.environ.get('SHOP_ACCESS_TOKEN', '')
SHOP_STOREFRONT_URL = os.environ.get(
    'SHOP_STOREFRONT_URL', f'https://{SHOP_STORE_NAME}.myshopify.com'
)
SHOP_REQUEST_TIMEOUT = _env_float('SHOP_REQUEST_TIMEOUT', 30)
SHOP_RATE_LIMIT = _env_int('SHOP_RATE_LIMIT', 2)  # requests per second
SHOP_MAX_RETRIES = _env_int('SHOP_MAX_RETRIES', 3)

# ---------------------------------------------------------------------------
# Sync engine
# ---------------------------------------------------------------------------

SYNC_PAGE_DELAY = _env_float('SYNC_PAGE_DELAY', 1)
SYNC_COLLECTION_PAGE_DELAY = _env_float('SYNC_COLLECTION_PAGE_DELAY', 3)
SYNC_INCREMENTAL_LOOKBACK = _env_int('SYNC_INCREMENTAL_LOOKBACK', 120)
SYNC_INCREMENTAL_OVERLAP = _env_int('SYNC_INCREMENTAL_OVERLAP', 60)
SYNC_ORDER_LOOKBACK_DAYS = _env_int('SYNC_ORDER_LOOKBACK_DAYS', 1)
SYNC_LOCK_STALE_SECONDS = _env_int('SYNC_LOCK_STALE_SECONDS', 15 * 60)
SYNC_STATE_MAX_RETRIES = _env_int('SYNC_STATE_MAX_RETRIES', 3)
SYNC_STATE_RETRY_BACKOFF = _env_float('SYNC_STATE_RETRY_BACKOFF', 0.5)
# How long startup recovery waits for other workers to answer a ping.
SYNC_WORKER_PING_TIMEOUT = _env_float('SYNC_WORKER_PING_TIMEOUT', 2)

# Trigger interval in seconds per named job.
SYNC_JOB_INTERVALS = {
    'products_full': 24 * 60 * 60,
    'products_incremental': 2 * 60,
    'collections_full': 24 * 60 * 60,
    'collections_incremental': 5 * 60,
    'orders': 24 * 60 * 60,
}
SYNC_PENDING_COLLECTIONS_INTERVAL = 5 * 60

ORDER_RETENTION_DAYS = _env_int('ORDER_RETENTION_DAYS', 3 * 365)
RETENTION_SWEEP_INTERVAL = 24 * 60 * 60
PRODUCT_CLEANUP_INTERVAL = 15 * 60

# ---------------------------------------------------------------------------
# Query serving
# ---------------------------------------------------------------------------

PRODUCT_CACHE_MAX_SIZE = _env_int('PRODUCT_CACHE_MAX_SIZE', 2000)
PRODUCT_CACHE_TTL = _env_float('PRODUCT_CACHE_TTL', 60 * 60)
PRODUCT_CACHE_SWEEP_INTERVAL = _env_float('PRODUCT_CACHE_SWEEP_INTERVAL', 5 * 60)
QUERY_PATTERN_HOT_THRESHOLD = _env_int('QUERY_PATTERN_HOT_THRESHOLD', 5)

# ---------------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', CELERY_BROKER_URL)
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = TIME_ZONE

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'plain': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'plain',
        },
    },
    'loggers': {
        'catalog_sync': {
            'handlers': ['console'],
            'level': os.environ.get('SYNC_LOG_LEVEL', 'INFO'),
        },
    },
}
