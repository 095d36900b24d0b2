"""HTTP session for the Sygma APIs.

Domain configuration and transfer status polling share one session,
with retries and rate limiting. The session can be shared
across the polling threads.
"""

import logging

from requests import Session
from requests_ratelimiter import LimiterAdapter

from multichain_deploy.sygma.constants import INDEXER_URLS, Environment
from multichain_deploy.sygma.logging_retry import LoggingRetry

logger = logging.getLogger(__name__)

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Default rate limit for the indexer.
#:
#: With the default 5 second poll interval, this allows polling
#: tens of destination domains at once.
DEFAULT_REQUESTS_PER_SECOND = 10.0

#: HTTP timeout for one request, seconds
DEFAULT_REQUEST_TIMEOUT = 30.0


class SygmaSession(Session):
    """A :py:class:`requests.Session` subclass that carries the Sygma indexer URL.

    Use :py:func:`create_sygma_session` to create instances.
    """

    #: Indexer API base URL, e.g. ``https://api.buildwithsygma.com``
    indexer_url: str

    def __init__(self, indexer_url: str):
        super().__init__()
        self.indexer_url = indexer_url

    def __repr__(self) -> str:
        return f"<SygmaSession indexer_url={self.indexer_url!r}>"


def create_sygma_session(
    environment: Environment = Environment.testnet,
    indexer_url: str | None = None,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
    pool_maxsize: int = 32,
) -> SygmaSession:
    """Create a :py:class:`SygmaSession`.

    The session is configured with:

    - The indexer URL of the environment, or the given override
    - Rate limiting so that parallel polling does not get throttled
    - Retry logic for transient errors using exponential backoff

    Example::

        from multichain_deploy.sygma.constants import Environment
        from multichain_deploy.sygma.session import create_sygma_session

        session = create_sygma_session(Environment.mainnet)

    :param environment:
        Sygma environment to talk to.

    :param indexer_url:
        Override the indexer URL, e.g. for a local bridge setup.

    :param retries:
        Maximum number of retry attempts for failed requests

    :param backoff_factor:
        Backoff factor for exponential retry delays

    :param requests_per_second:
        Maximum requests per second

    :param pool_maxsize:
        Connection pool size. Should be at least the number of polling threads.
    """
    if indexer_url is None:
        assert environment in INDEXER_URLS, f"No indexer known for {environment}, pass indexer_url"
        indexer_url = INDEXER_URLS[environment]

    session = SygmaSession(indexer_url=indexer_url.rstrip("/"))

    retry_policy = LoggingRetry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        logger=logger,
    )

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
