"""Sygma transfer status polling.

After the deploy transaction is mined on the origin chain, each remote
destination is a separate bridge transfer. The Sygma indexer reports
them by the origin transaction hash:

``GET {indexer}/api/transfers/txHash/{txHash}``

Transfer status progresses as:

1. **404 Not Found**: the deposit is not yet indexed
2. **pending**: deposit seen, waiting for relayers to execute it
3. **executed** or **failed**: final

Example::

    from multichain_deploy.sygma.session import create_sygma_session
    from multichain_deploy.sygma.status import poll_transfers_parallel

    session = create_sygma_session(Environment.testnet)
    statuses = poll_transfers_parallel(session, "0xabc...", domain_ids=[2, 6])
    for s in statuses:
        print(f"Domain {s.to_domain_id}: {s.status}")
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable

import requests

from multichain_deploy.sygma.constants import (
    DEFAULT_POLL_INTERVAL,
    TRANSFER_STATUS_EXECUTED,
    TRANSFER_STATUS_FAILED,
    TRANSFER_STATUS_PENDING,
)
from multichain_deploy.sygma.session import DEFAULT_REQUEST_TIMEOUT, SygmaSession

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404

#: Statuses that end polling
FINAL_STATUSES = {TRANSFER_STATUS_EXECUTED, TRANSFER_STATUS_FAILED}

#: Callback invoked on every poll: ``(domain_id, status, attempt)``
PollCallback = Callable[[int, str, int], None]


class PollingCancelled(Exception):
    """Polling was stopped through the cancel event before the transfer resolved."""


@dataclass(slots=True)
class TransferStatus:
    """Status of one bridge transfer, as reported by the indexer."""

    #: ``pending``, ``executed`` or ``failed``
    status: str

    #: Destination domain id
    to_domain_id: int

    #: Origin domain id, ``None`` if not yet indexed
    from_domain_id: int | None

    #: Origin transaction hash
    transaction_hash: str

    #: Raw indexer record, ``None`` if not yet indexed
    raw: dict | None = None

    @property
    def is_executed(self) -> bool:
        return self.status == TRANSFER_STATUS_EXECUTED

    @property
    def is_failed(self) -> bool:
        return self.status == TRANSFER_STATUS_FAILED

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES


def normalise_tx_hash(transaction_hash: str) -> str:
    if not transaction_hash.startswith("0x"):
        transaction_hash = f"0x{transaction_hash}"
    return transaction_hash.lower()


def fetch_transfers(session: SygmaSession, transaction_hash: str) -> list[dict] | None:
    """One-shot fetch of all transfers of an origin transaction.

    :return:
        Indexer records, or ``None`` if the transaction is not yet indexed (HTTP 404).

    :raises requests.HTTPError:
        If the API returns a non-retryable error (not 404).
    """
    transaction_hash = normalise_tx_hash(transaction_hash)
    url = f"{session.indexer_url}/api/transfers/txHash/{transaction_hash}"

    response = session.get(url, timeout=DEFAULT_REQUEST_TIMEOUT)

    if response.status_code == HTTP_NOT_FOUND:
        return None

    response.raise_for_status()

    data = response.json()
    # A transaction with a single transfer may come back as a bare object
    if isinstance(data, dict):
        data = [data]
    return data


def fetch_transfer_status(session: SygmaSession, transaction_hash: str, domain_id: int) -> TransferStatus:
    """One-shot check of the transfer towards one destination domain.

    A transfer the indexer does not know yet is ``pending``.
    """
    transaction_hash = normalise_tx_hash(transaction_hash)
    transfers = fetch_transfers(session, transaction_hash) or []

    for transfer in transfers:
        to_domain = transfer.get("toDomainId")
        if to_domain is None:
            to_domain = (transfer.get("toDomain") or {}).get("id")
        if to_domain is not None and int(to_domain) == domain_id:
            from_domain = transfer.get("fromDomainId")
            if from_domain is None:
                from_domain = (transfer.get("fromDomain") or {}).get("id")
            return TransferStatus(
                status=transfer.get("status", TRANSFER_STATUS_PENDING),
                to_domain_id=domain_id,
                from_domain_id=int(from_domain) if from_domain is not None else None,
                transaction_hash=transaction_hash,
                raw=transfer,
            )

    return TransferStatus(
        status=TRANSFER_STATUS_PENDING,
        to_domain_id=domain_id,
        from_domain_id=None,
        transaction_hash=transaction_hash,
    )


def poll_transfer_status(
    session: SygmaSession,
    transaction_hash: str,
    domain_id: int,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    on_poll: PollCallback | None = None,
) -> TransferStatus:
    """Block until the transfer to a domain is executed or failed.

    A failed transfer is returned, not raised: the caller decides
    what a failure means.

    :param poll_interval:
        Seconds between polling attempts.

    :param timeout:
        Maximum seconds to wait. ``None`` polls until the transfer resolves.

    :param cancel_event:
        Set this event from another thread to stop polling.

    :param on_poll:
        Optional callback invoked after every poll attempt.

    :raises TimeoutError:
        If the transfer does not resolve within the timeout.

    :raises PollingCancelled:
        If the cancel event was set.
    """
    transaction_hash = normalise_tx_hash(transaction_hash)
    start_time = time.time()
    attempt = 0

    while True:
        elapsed = time.time() - start_time
        if timeout is not None and elapsed >= timeout:
            raise TimeoutError(f"Sygma transfer to domain {domain_id} not resolved after {timeout}s for tx {transaction_hash}")

        if cancel_event is not None and cancel_event.is_set():
            raise PollingCancelled(f"Polling transfer to domain {domain_id} for tx {transaction_hash} cancelled after {attempt} attempts")

        attempt += 1
        # First attempt at INFO so the user sees the poll started
        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(
            log_level,
            "Polling Sygma transfer: domain=%d, tx=%s, attempt=%d, elapsed=%.1fs",
            domain_id,
            transaction_hash,
            attempt,
            elapsed,
        )

        status = fetch_transfer_status(session, transaction_hash, domain_id)

        if on_poll is not None:
            on_poll(domain_id, status.status, attempt)

        if status.is_final:
            logger.info(
                "Transfer to domain %d %s after %d attempts (%.1fs): tx=%s",
                domain_id,
                status.status,
                attempt,
                elapsed,
                transaction_hash,
            )
            return status

        if cancel_event is not None:
            cancel_event.wait(poll_interval)
        else:
            time.sleep(poll_interval)


def poll_transfers_parallel(
    session: SygmaSession,
    transaction_hash: str,
    domain_ids: list[int],
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    on_poll: PollCallback | None = None,
    max_workers: int | None = None,
) -> list[TransferStatus]:
    """Poll transfers to several domains in parallel until all resolve.

    Each domain has its own polling loop. A loop ending, successfully or not,
    does not stop the others.

    Results are returned in the same order as ``domain_ids``.

    :raises TimeoutError:
        If any transfer does not resolve within the timeout.
        Raised after all loops have ended.

    :raises PollingCancelled:
        If the cancel event was set.
    """
    if not domain_ids:
        return []

    if max_workers is None:
        max_workers = len(domain_ids)

    logger.info("Polling %d Sygma transfers in parallel for tx %s", len(domain_ids), transaction_hash)

    def _poll(domain_id: int) -> TransferStatus:
        threading.current_thread().name = f"sygma-poll-{domain_id}"
        return poll_transfer_status(
            session,
            transaction_hash,
            domain_id,
            poll_interval=poll_interval,
            timeout=timeout,
            cancel_event=cancel_event,
            on_poll=on_poll,
        )

    results: dict[int, TransferStatus] = {}
    errors: dict[int, Exception] = {}

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sygma-poll") as executor:
        futures = {}
        for idx, domain_id in enumerate(domain_ids):
            future = executor.submit(_poll, domain_id)
            futures[future] = idx

        for future in as_completed(futures):
            idx = futures[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                logger.warning("Polling domain %d failed: %s", domain_ids[idx], e)
                errors[idx] = e

    if errors:
        # Report the first failing domain in input order
        raise errors[min(errors)]

    return [results[i] for i in range(len(domain_ids))]
