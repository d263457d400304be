from typing import Optional

from django.conf import settings

DEFAULT_IMAGE_PROXY_URL = 'https://res.cloudinary.com/demo/image/fetch/{url}.jpg'


def _get(name, default):
    return getattr(settings, name, default)


def catalog_data_path():
    return _get('CATALOG_DATA_PATH', 'catalog.json')


def stores() -> dict:
    return _get('CATALOG_SYNC_STORES', {})


def concurrency() -> int:
    return _get('CATALOG_SYNC_CONCURRENCY', 4)


def max_retries() -> int:
    return _get('CATALOG_SYNC_MAX_RETRIES', 5)


def backoff_base() -> float:
    return _get('CATALOG_SYNC_BACKOFF_BASE', 1.0)


def backoff_max() -> float:
    return _get('CATALOG_SYNC_BACKOFF_MAX', 30.0)


def rate_limit(platform: Optional[str] = None) -> int:
    """Requests per second, from CATALOG_SYNC_RATE_LIMITS[platform] when set."""
    per_platform = _get('CATALOG_SYNC_RATE_LIMITS', {})
    if platform in per_platform:
        return per_platform[platform]
    return _get('CATALOG_SYNC_RATE_LIMIT', 5)


def request_timeout() -> float:
    return _get('CATALOG_SYNC_REQUEST_TIMEOUT', 30)


def media_poll_attempts() -> int:
    return _get('CATALOG_SYNC_MEDIA_POLL_ATTEMPTS', 10)


def media_poll_interval() -> float:
    return _get('CATALOG_SYNC_MEDIA_POLL_INTERVAL', 1.0)


def lease_seconds() -> int:
    return _get('CATALOG_SYNC_LEASE_SECONDS', 300)


def default_category() -> str:
    return _get('CATALOG_SYNC_DEFAULT_CATEGORY', 'Artwork')


def image_proxy_url() -> str:
    return _get('CATALOG_SYNC_IMAGE_PROXY_URL', DEFAULT_IMAGE_PROXY_URL)


def weight_precision() -> int:
    return _get('CATALOG_SYNC_WEIGHT_PRECISION', 3)


def shopify_collections() -> bool:
    return _get('CATALOG_SYNC_SHOPIFY_COLLECTIONS', True)
