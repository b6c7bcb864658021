"""Transaction confirmation monitoring.

Wait for a submitted burn or mint transaction to land, through the
chain's :py:class:`~cctp_bridge.signer.ChainRPC` collaborator.

- A transaction that lands with an error fails immediately, it will never succeed
- RPC errors while polling count as a pending answer and the attempt is spent
- Exhausting the attempts raises :py:class:`~cctp_bridge.errors.ConfirmationTimeout`

Example::

    from cctp_bridge.monitor import ConfirmationPollConfig, wait_for_confirmation

    wait_for_confirmation(solana_rpc, signature, ConfirmationPollConfig())
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

import requests

from cctp_bridge.errors import ChainSubmissionError, ConfirmationTimeout, PollingAborted, TransactionFailed
from cctp_bridge.signer import ChainRPC, TransactionStatus, TransactionStatusResult
from cctp_bridge.utils import sleep_with_abort

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConfirmationPollConfig:
    """How long to wait for a transaction to confirm."""

    #: Seconds between status queries
    poll_interval: float = 2.0

    #: Give up after this many queries
    max_attempts: int = 30

    @classmethod
    def create_test_config(cls, max_attempts: int = 30) -> "ConfirmationPollConfig":
        return cls(poll_interval=0.0, max_attempts=max_attempts)


def wait_for_confirmation(
    rpc: ChainRPC,
    tx_id: str,
    config: ConfirmationPollConfig | None = None,
    abort: threading.Event | None = None,
    on_attempt: Callable[[int, TransactionStatusResult | None], None] | None = None,
) -> TransactionStatusResult:
    """Poll until ``tx_id`` confirms.

    :param rpc:
        Chain RPC collaborator.

    :param tx_id:
        Transaction signature or hash.

    :param config:
        Polling schedule.

    :param abort:
        Set to stop waiting.

    :param on_attempt:
        Called after every query with ``(attempt, result)``, result is ``None`` when the query itself failed.

    :return:
        Successful status

    :raises TransactionFailed:
        The transaction landed with an error.

    :raises ConfirmationTimeout:
        Not confirmed within ``max_attempts`` queries.

    :raises PollingAborted:
        ``abort`` was set.
    """
    config = config or ConfirmationPollConfig()

    for attempt in range(1, config.max_attempts + 1):
        if abort is not None and abort.is_set():
            raise PollingAborted(f"Confirmation polling aborted for tx {tx_id}")

        try:
            result = rpc.get_transaction_status(tx_id)
        except (ChainSubmissionError, requests.RequestException) as e:
            logger.warning("Status query for %s failed on attempt %d: %s", tx_id, attempt, e)
            result = None

        if on_attempt is not None:
            on_attempt(attempt, result)

        if result is not None:
            if result.status == TransactionStatus.success:
                logger.info("Transaction %s confirmed after %d attempts", tx_id, attempt)
                return result

            if result.status == TransactionStatus.error:
                raise TransactionFailed(f"Transaction {tx_id} failed on chain: {result.error}")

        logger.debug("Transaction %s not confirmed yet, attempt %d/%d", tx_id, attempt, config.max_attempts)
        if attempt < config.max_attempts:
            sleep_with_abort(config.poll_interval, abort)

    raise ConfirmationTimeout(f"Transaction {tx_id} not confirmed after {config.max_attempts} attempts")
