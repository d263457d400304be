import logging
import random
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Callable, Optional

import requests

from .. import conf
from ..errors import AuthExpired, PlatformUserError, RateLimited, SyncError, TransientNetworkError

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = frozenset({TransientNetworkError.kind, RateLimited.kind})


class RateLimiter:
    """
    Fixed-window rate limiter (thread-safe).

    Allows up to `rate` requests per 1-second window. The window opens on
    the first request; once its tokens are spent the caller sleeps until
    the window ends and a fresh one starts with a full bucket.
    """

    def __init__(self, rate: int):
        self._rate = rate
        self._tokens = rate
        self._window_start = None
        self._lock = Lock()

    def acquire(self):
        with self._lock:
            now = time.monotonic()

            if self._window_start is None or (now - self._window_start) >= 1.0:
                self._window_start = now
                self._tokens = self._rate

            if self._tokens > 0:
                self._tokens -= 1
            else:
                wait = 1.0 - (now - self._window_start)
                if wait > 0:
                    time.sleep(wait)
                self._window_start = time.monotonic()
                self._tokens = self._rate - 1


class RetryPolicy:
    """
    Bounded exponential backoff with jitter, keyed on error kind.

    Only kinds listed in `retryable_kinds` are retried. A RateLimited error
    carrying a retry-after hint waits exactly that long instead of backing
    off. Once `max_attempts` calls have failed the last error is re-raised.
    """

    def __init__(self, max_attempts: Optional[int] = None, base_delay: Optional[float] = None,
                 max_delay: Optional[float] = None, jitter: float = 0.1,
                 retryable_kinds=RETRYABLE_KINDS):
        self.max_attempts = max_attempts or conf.max_retries()
        self.base_delay = conf.backoff_base() if base_delay is None else base_delay
        self.max_delay = conf.backoff_max() if max_delay is None else max_delay
        self.jitter = jitter
        self.retryable_kinds = frozenset(retryable_kinds)

    def delay(self, exc: SyncError, attempt: int) -> float:
        retry_after = getattr(exc, 'retry_after', None)
        if retry_after is not None:
            return retry_after
        backoff = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        return backoff + random.uniform(0, backoff * self.jitter)

    def run(self, operation: Callable, description: str = 'request'):
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except SyncError as exc:
                if exc.kind not in self.retryable_kinds:
                    raise
                if attempt == self.max_attempts:
                    logger.error("%s failed after %d attempts: %s", description, attempt, exc)
                    raise
                wait = self.delay(exc, attempt)
                logger.warning(
                    "%s hit %s (attempt %d/%d). Waiting %.1fs before retry.",
                    description, exc.kind, attempt, self.max_attempts, wait,
                )
                time.sleep(wait)


class ApiClient:
    """
    Shared plumbing for platform clients: a pooled session, a rate limiter,
    a per-call timeout, and translation of HTTP failures into SyncErrors.
    """

    platform = 'http'

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 retry_policy: Optional[RetryPolicy] = None, rate_limit: Optional[int] = None,
                 timeout: Optional[float] = None):
        self._base_url = base_url.rstrip('/')
        self._session = session or requests.Session()
        self._rate_limiter = RateLimiter(rate_limit or conf.rate_limit(self.platform))
        self._retry = retry_policy or RetryPolicy()
        self._timeout = timeout or conf.request_timeout()

    def _request_with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        return self._retry.run(lambda: self._send(method, url, **kwargs), f"{method} {url}")

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        self._rate_limiter.acquire()
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise TransientNetworkError(f"{method} {url} failed: {exc}") from exc
        self._raise_for_status(response, method, url)
        return response

    def _raise_for_status(self, response: requests.Response, method: str, url: str):
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise RateLimited(f"{method} {url} was rate limited.", retry_after=self._parse_retry_after(response))
        if status in (401, 403):
            raise AuthExpired(f"{method} {url} was rejected with HTTP {status}; credentials need renewal.")
        if status >= 500:
            raise TransientNetworkError(f"{method} {url} failed with HTTP {status}.")
        raise PlatformUserError(self.platform, self._user_errors(response), status_code=status)

    @staticmethod
    def _user_errors(response: requests.Response) -> list[str]:
        try:
            body = response.json()
        except ValueError:
            return [f"HTTP {response.status_code}: {response.text[:200]}"]
        if isinstance(body, dict) and body.get('message'):
            code = body.get('code')
            return [f"{code}: {body['message']}" if code else body['message']]
        return [f"HTTP {response.status_code}: {body}"]

    @staticmethod
    def _parse_retry_after(response: requests.Response) -> Optional[float]:
        """Seconds to wait from a Retry-After header in either delta or HTTP-date form."""
        header = response.headers.get('Retry-After')
        if header is None:
            return None
        try:
            return max(0.0, float(header))
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
