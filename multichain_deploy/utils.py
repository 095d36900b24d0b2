"""Bunch of small utilities."""

import logging
import os
import re
import secrets
from pathlib import Path
from typing import Iterable, Optional

import coloredlogs

logger = logging.getLogger(__name__)

#: ANSI colours handed out to polling threads
POLL_THREAD_COLOURS = ("cyan", "yellow", "magenta", "green", "blue", "red")

#: Thread names of :py:func:`multichain_deploy.sygma.status.poll_transfers_parallel`
POLL_THREAD_NAME = re.compile(r"sygma-poll-(\d+)")


class PollThreadFormatter(logging.Formatter):
    """Colour the thread name of transfer status polling threads.

    Each destination domain is polled in its own thread named ``sygma-poll-{domain_id}``.
    The colour is picked from the domain id, so a domain keeps its colour
    across deployments. Other threads are left as is.
    """

    def __init__(self, inner: logging.Formatter):
        super().__init__()
        self.inner = inner

    def format(self, record: logging.LogRecord) -> str:
        text = self.inner.format(record)
        match = POLL_THREAD_NAME.fullmatch(record.threadName or "")
        if match is None:
            return text
        colour = POLL_THREAD_COLOURS[int(match.group(1)) % len(POLL_THREAD_COLOURS)]
        return text.replace(record.threadName, coloredlogs.ansi_wrap(record.threadName, color=colour, bold=True), 1)


def setup_console_logging(
    default_log_level="warning",
    log_file: Optional[Path] = None,
    coloured_threads=True,
) -> logging.Logger:
    """Set up coloured log output for the deploy script.

    ``LOG_LEVEL`` environment variable overrides the given level.

    :param log_file:
        Also write the log to this file, at ``INFO`` level or more verbose.

    :param coloured_threads:
        Colour the status polling threads by destination domain.
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = logging.getLevelName(level)
    assert isinstance(numeric_level, int), f"Unknown log level: {level}"

    fmt = "%(asctime)s %(levelname)-8s %(name)-40s [%(threadName)s] %(message)s"
    date_fmt = "%H:%M:%S"
    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    root = logging.getLogger()

    if coloured_threads:
        for handler in root.handlers:
            if not isinstance(handler, logging.StreamHandler) or isinstance(handler, logging.FileHandler):
                continue
            if handler.formatter is not None and not isinstance(handler.formatter, PollThreadFormatter):
                handler.setFormatter(PollThreadFormatter(handler.formatter))

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_level = min(logging.INFO, numeric_level)
        handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(fmt))
        root.addHandler(handler)
        root.setLevel(file_level)

    # Request level chatter of the JSON-RPC and HTTP clients
    for noisy in ("web3.providers.HTTPProvider", "web3.RequestManager", "urllib3.connectionpool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root


def sum_fees(fees: Iterable[int]) -> int:
    """Total native token value to attach to a deploy transaction."""
    return sum(int(f) for f in fees)


def generate_salt() -> bytes:
    """Random 32 bytes deployment salt."""
    return secrets.token_bytes(32)


def format_name_list(names: Iterable[str]) -> str:
    """Human readable enumeration: ``a, b and c``."""
    names = list(names)
    if len(names) <= 1:
        return "".join(names)
    return f"{', '.join(names[:-1])} and {names[-1]}"
