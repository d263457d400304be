import json
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'catalog-sync-dev-key')
DEBUG = os.environ.get('DJANGO_DEBUG', '') == '1'
ALLOWED_HOSTS = []

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'catalog_sync',
]

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('CATALOG_SYNC_DB', str(BASE_DIR / 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'
USE_TZ = True
TIME_ZONE = 'UTC'

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_WORKER_PREFETCH_MULTIPLIER = 1

# Catalog sync
CATALOG_DATA_PATH = os.environ.get('CATALOG_DATA_PATH', str(BASE_DIR / 'catalog.json'))
# JSON object: store id -> {"platform": ..., credential fields...}
CATALOG_SYNC_STORES = json.loads(os.environ.get('CATALOG_SYNC_STORES', '{}'))
CATALOG_SYNC_CONCURRENCY = int(os.environ.get('CATALOG_SYNC_CONCURRENCY', 4))
CATALOG_SYNC_MAX_RETRIES = int(os.environ.get('CATALOG_SYNC_MAX_RETRIES', 5))
CATALOG_SYNC_BACKOFF_BASE = float(os.environ.get('CATALOG_SYNC_BACKOFF_BASE', 1.0))
CATALOG_SYNC_BACKOFF_MAX = float(os.environ.get('CATALOG_SYNC_BACKOFF_MAX', 30.0))
CATALOG_SYNC_RATE_LIMIT = int(os.environ.get('CATALOG_SYNC_RATE_LIMIT', 5))
CATALOG_SYNC_REQUEST_TIMEOUT = float(os.environ.get('CATALOG_SYNC_REQUEST_TIMEOUT', 30))
CATALOG_SYNC_MEDIA_POLL_ATTEMPTS = int(os.environ.get('CATALOG_SYNC_MEDIA_POLL_ATTEMPTS', 10))
CATALOG_SYNC_MEDIA_POLL_INTERVAL = float(os.environ.get('CATALOG_SYNC_MEDIA_POLL_INTERVAL', 1.0))
CATALOG_SYNC_LEASE_SECONDS = int(os.environ.get('CATALOG_SYNC_LEASE_SECONDS', 300))
CATALOG_SYNC_DEFAULT_CATEGORY = os.environ.get('CATALOG_SYNC_DEFAULT_CATEGORY', 'Artwork')
CATALOG_SYNC_WEIGHT_PRECISION = int(os.environ.get('CATALOG_SYNC_WEIGHT_PRECISION', 3))
if os.environ.get('CATALOG_SYNC_IMAGE_PROXY_URL'):
    CATALOG_SYNC_IMAGE_PROXY_URL = os.environ['CATALOG_SYNC_IMAGE_PROXY_URL']

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {'format': '%(asctime)s %(levelname)s %(name)s: %(message)s'},
    },
    'handlers': {
        'console': {'class': 'logging.StreamHandler', 'formatter': 'simple'},
    },
    'loggers': {
        'catalog_sync': {
            'handlers': ['console'],
            'level': os.environ.get('CATALOG_SYNC_LOG_LEVEL', 'INFO'),
        },
    },
}
