import redis
import requests
from tenacity import retry, retry_if_exception, retry_if_exception_type, stop_after_attempt, wait_exponential

# Statuses worth another attempt; any other 4xx answers the same way every time
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def is_transient_http_error(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError):
        return exc.response is not None and exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


def http_retry(attempts: int = 3):
    """Retry outbound HTTP on transient failures.

    Only wrap calls that are safe to repeat: GETs, or POSTs carrying an
    idempotency key.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception(is_transient_http_error),
    )


def redis_retry(attempts: int = 2):
    # The rate cache is an optimization; callers fall back to the provider
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=0.5),
        retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
    )
