"""Bunch of random utilities."""

import logging
import os
import threading
import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import coloredlogs

from cctp_bridge.constants import USDC_DECIMALS
from cctp_bridge.errors import InvalidAmount, PollingAborted

logger = logging.getLogger(__name__)


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: str | Path = None,
    std_out_log_level: Optional[int] = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in scripts
    - Tune down some noisy dependency library logging

    The level can be overridden with the ``LOG_LEVEL`` environment variable.

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-30s [%(threadName)s] %(message)s"
        date_fmt = "%Y-%m-%d %H:%M:%S"

    coloredlogs.install(level=std_out_log_level, fmt=fmt, datefmt=date_fmt)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # The file always gets at least INFO, env var controls only terminal output
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root = logging.getLogger()
        root.setLevel(min(logging.INFO, numeric_level))
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger()


def sleep_with_abort(seconds: float, abort: threading.Event | None = None):
    """Sleep, waking up early if ``abort`` is set.

    :raises PollingAborted:
        The abort signal was set before or during the sleep.
    """
    if abort is None:
        if seconds > 0:
            time.sleep(seconds)
        return

    if abort.wait(seconds if seconds > 0 else 0):
        raise PollingAborted("Polling aborted")


def parse_usdc_amount(value: str | Decimal) -> int:
    """Convert a human USDC amount like ``"0.1"`` to raw 6 decimal units.

    :raises InvalidAmount:
        Not a number, not positive, or more than 6 decimals.
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidAmount(f"Not a USDC amount: {value!r}") from e

    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(f"USDC amount must be positive, got {value!r}")

    raw = amount.scaleb(USDC_DECIMALS)
    if raw != raw.to_integral_value():
        raise InvalidAmount(f"USDC has {USDC_DECIMALS} decimals, got {value!r}")
    return int(raw)


def format_usdc(raw_amount: int) -> str:
    """Format raw units as a human USDC amount."""
    return f"{Decimal(raw_amount).scaleb(-USDC_DECIMALS).normalize():f}"
