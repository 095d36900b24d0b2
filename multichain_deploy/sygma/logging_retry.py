"""Loggable ``Retry()`` policy for the Sygma HTTP APIs."""

import logging

from urllib3 import Retry


class LoggingRetry(Retry):
    """Retry policy that tells when the indexer or the shared config bucket is flaky.

    Status polling runs for minutes in several threads. Without a log line
    a throttled indexer looks like a hung deployment.

    Mounted together with the rate limiter, as :py:func:`multichain_deploy.sygma.session.create_sygma_session` does:

    .. code-block:: python

        from requests_ratelimiter import LimiterAdapter

        retry_policy = LoggingRetry(
            total=5,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            respect_retry_after_header=True,
        )
        adapter = LimiterAdapter(per_second=10.0, max_retries=retry_policy)
        session = SygmaSession(indexer_url="https://api.buildwithsygma.com")
        session.mount("https://", adapter)
    """

    def __init__(self, *args, logger: logging.Logger | None = None, **kwargs):
        self.logger = logger or logging.getLogger(__name__)
        super().__init__(*args, **kwargs)

    def new(self, **kwargs):
        # urllib3 builds a new policy object on every attempt
        retry = super().new(**kwargs)
        retry.logger = self.logger
        return retry

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        if response is not None:
            cause = f"HTTP {response.status} {response.reason}"
        else:
            cause = repr(error)

        # Indexer URLs carry the full transaction hash, keep the line readable
        self.logger.warning("Sygma API retry %s %s: %s", method, (url or "")[0:96], cause)
        return super().increment(method, url, response, error, _pool, _stacktrace)
