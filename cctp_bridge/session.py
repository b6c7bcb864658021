"""HTTP session management for the attestation service and chain nodes.

Sessions retry transient failures (429 and 5xx) with exponential backoff
and are rate limited, so one session can be shared across the threads
of parallel transfers.

Circle's Iris API allows 35 requests per second and blocks the caller
for 5 minutes when exceeded.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter
from urllib3.util.retry import Retry

from cctp_bridge.constants import IRIS_API_BASE_URL

logger = logging.getLogger(__name__)

#: Default number of retries for HTTP requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Stay under the Iris API limit of 35 requests per second
IRIS_REQUESTS_PER_SECOND = 10.0

#: Public RPC nodes throttle well below this
RPC_REQUESTS_PER_SECOND = 10.0


class APISession(Session):
    """A :py:class:`requests.Session` subclass that carries its API base URL."""

    #: API base URL, without trailing slash
    api_url: str

    def __init__(self, api_url: str):
        super().__init__()
        self.api_url = api_url.rstrip("/")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} api_url={self.api_url!r}>"


def create_session(
    api_url: str,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: float = RPC_REQUESTS_PER_SECOND,
    pool_maxsize: int = 32,
    retry_post: bool = False,
) -> APISession:
    """Create a rate limited :py:class:`APISession` with retries.

    :param api_url:
        Base URL stored on the session.

    :param retries:
        Maximum number of retry attempts for failed requests.

    :param backoff_factor:
        Backoff factor for exponential retry delays.

    :param requests_per_second:
        Maximum request rate.

    :param pool_maxsize:
        Connection pool size. Should be at least the number of parallel transfers.

    :param retry_post:
        Also retry POST. Only safe for idempotent JSON-RPC reads,
        never for transaction submission.
    """
    session = APISession(api_url)

    allowed_methods = Retry.DEFAULT_ALLOWED_METHODS
    if retry_post:
        allowed_methods = allowed_methods | frozenset(["POST"])

    # 404 is not in the list, the attestation service uses it for "not yet indexed"
    retry_policy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        allowed_methods=allowed_methods,
        raise_on_status=False,
    )

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    logger.debug("Created HTTP session for %s", session.api_url)
    return session


def create_iris_session(api_url: str = IRIS_API_BASE_URL, **kwargs) -> APISession:
    """Session for Circle's Iris attestation API."""
    kwargs.setdefault("requests_per_second", IRIS_REQUESTS_PER_SECOND)
    return create_session(api_url, **kwargs)
