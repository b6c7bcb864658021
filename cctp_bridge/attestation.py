"""Circle CCTP V1 attestation service client.

Poll Circle's Iris API for burn attestations needed to complete
cross-chain USDC transfers.

After the burn confirms on the source chain, Circle's attestation
service observes it and signs the message once the source chain
reaches finality. Solana burns are usually attested within a minute,
Aptos within a few minutes.

A query ends up in one of these states:

- **pending**: HTTP 404 (burn not indexed yet), an empty message list,
  ``pending_confirmations`` status or a ``"PENDING"`` attestation
- **ready**: message and attestation are both available
- **failed**: any other error answer from the service

Pending answers are retried with exponential backoff up to
:py:attr:`AttestationPollConfig.max_attempts` times.

Example::

    from cctp_bridge.attestation import AttestationPollConfig, poll_attestation
    from cctp_bridge.constants import CCTP_DOMAIN_SOLANA

    attestation = poll_attestation(
        source_domain=CCTP_DOMAIN_SOLANA,
        transaction_id="5Uy...",
        config=AttestationPollConfig(),
    )

    # Use attestation.message and attestation.attestation
    # with the destination chain's receive message builder
"""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable

import requests
from hexbytes import HexBytes

from cctp_bridge.constants import CCTP_DOMAIN_NAMES, IRIS_API_BASE_URL
from cctp_bridge.errors import AttestationServiceError, AttestationTimeout, PollingAborted
from cctp_bridge.utils import sleep_with_abort

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404

#: Attestation value the service returns until the message is signed
PENDING_SENTINEL = "PENDING"


class AttestationState(enum.Enum):
    """State of one attestation lookup."""

    #: Query sent, no answer yet
    requested = "requested"

    #: Service has not signed the burn yet
    pending = "pending"

    #: Message and attestation available
    ready = "ready"

    #: Service answered with an error
    failed = "failed"

    #: Ran out of attempts while pending
    timed_out = "timed_out"


@dataclass(slots=True)
class AttestationPollConfig:
    """Backoff schedule for attestation polling.

    The delay before attempt ``n`` is computed by :py:meth:`next_delay`.

    Example:

    .. code-block:: python

        # Production (default)
        config = AttestationPollConfig()

        # No waiting in tests
        config = AttestationPollConfig.create_test_config()
    """

    #: Give up after this many queries
    max_attempts: int = 15

    #: Delay after the first pending answer, seconds
    initial_delay: float = 10.0

    #: Growth of the delay per attempt
    backoff_multiplier: float = 2.0

    #: Delay cap, seconds
    max_delay: float = 60.0

    #: Wait one ``initial_delay`` before the first query
    wait_before_first_attempt: bool = False

    def next_delay(self, attempt: int) -> float:
        """Delay after pending ``attempt``, counted from 1.

        ``min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)``
        """
        assert attempt >= 1, f"Attempts are counted from 1, got {attempt}"
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)

    @classmethod
    def create_privacy_flow_config(cls) -> "AttestationPollConfig":
        """Schedule of the sponsored burn flow.

        Solana attestations take a while, so wait before the first query
        and grow the delay slowly.
        """
        return cls(
            initial_delay=10.0,
            backoff_multiplier=1.5,
            max_delay=30.0,
            wait_before_first_attempt=True,
        )

    @classmethod
    def create_test_config(cls, max_attempts: int = 15) -> "AttestationPollConfig":
        """Create a config with zero delays for tests."""
        return cls(
            max_attempts=max_attempts,
            initial_delay=0.0,
            backoff_multiplier=2.0,
            max_delay=0.0,
        )


@dataclass(slots=True, frozen=True)
class CCTPAttestation:
    """Attestation data for a CCTP burn event.

    Contains the message and attestation needed to call
    ``receiveMessage`` on the destination chain.
    """

    #: The CCTP message bytes to relay to the destination chain
    message: bytes

    #: The signed attestation bytes from Circle's Iris service
    attestation: bytes

    #: Nonce of the burn event as reported by the service
    event_nonce: str | None = None

    #: Status from Iris API (e.g. "complete")
    status: str = "complete"


@dataclass(slots=True, frozen=True)
class AttestationResponse:
    """Result of a single attestation query."""

    state: AttestationState

    #: Set when ``state`` is ``ready``
    attestation: CCTPAttestation | None = None

    #: Service text when ``state`` is ``failed``
    error: str | None = None

    #: HTTP status code of the answer
    status_code: int | None = None


def build_attestation_url(source_domain: int, transaction_id: str, api_base_url: str = IRIS_API_BASE_URL) -> str:
    """URL of the ``/messages/{domain}/{tx}`` lookup, also useful as a link for users."""
    return f"{api_base_url.rstrip('/')}/messages/{source_domain}/{transaction_id}"


def _is_pending_value(value: str | None) -> bool:
    return not value or value.upper() == PENDING_SENTINEL


def _decode_hex(value, field_name: str) -> bytes:
    try:
        return bytes(HexBytes(value))
    except (ValueError, TypeError) as e:
        raise AttestationServiceError(f"Circle API returned undecodable {field_name}: {value!r}") from e


def parse_messages_response(data: dict) -> AttestationResponse:
    """Interpret the JSON body of a ``/messages`` answer.

    Only the first message is used, a CCTP burn transaction emits one message.
    """
    if data.get("pending") is True:
        return AttestationResponse(AttestationState.pending)

    messages = data.get("messages") or []
    if not messages:
        return AttestationResponse(AttestationState.pending)

    msg = messages[0]
    message_hex = msg.get("message")
    attestation_hex = msg.get("attestation")
    status = msg.get("status") or "complete"

    if status == "pending_confirmations" or _is_pending_value(message_hex) or _is_pending_value(attestation_hex):
        return AttestationResponse(AttestationState.pending)

    try:
        message = _decode_hex(message_hex, "message")
        attestation = _decode_hex(attestation_hex, "attestation")
    except AttestationServiceError as e:
        return AttestationResponse(AttestationState.failed, error=str(e))

    event_nonce = msg.get("eventNonce")
    return AttestationResponse(
        AttestationState.ready,
        attestation=CCTPAttestation(
            message=message,
            attestation=attestation,
            event_nonce=str(event_nonce) if event_nonce is not None else None,
            status=status,
        ),
    )


def _interpret_response(response: requests.Response) -> AttestationResponse:
    if response.status_code == HTTP_NOT_FOUND:
        return AttestationResponse(AttestationState.pending, status_code=response.status_code)

    if response.status_code >= 400:
        return AttestationResponse(
            AttestationState.failed,
            error=f"Circle API error: {response.status_code} {response.reason}. {response.text}",
            status_code=response.status_code,
        )

    parsed = parse_messages_response(response.json())
    return AttestationResponse(parsed.state, attestation=parsed.attestation, status_code=response.status_code)


def fetch_attestation_once(
    source_domain: int,
    transaction_id: str,
    api_base_url: str = IRIS_API_BASE_URL,
    session: requests.Session | None = None,
) -> AttestationResponse:
    """One-shot attestation lookup.

    Does not retry and does not raise on service errors, see :py:class:`AttestationResponse`.

    :raises requests.RequestException:
        Network failure.
    """
    url = build_attestation_url(source_domain, transaction_id, api_base_url)
    http = session or requests
    response = http.get(url, timeout=30)
    return _interpret_response(response)


def fetch_attestation_by_message_hash(
    message_hash: bytes | str,
    api_key: str,
    api_base_url: str = IRIS_API_BASE_URL,
    session: requests.Session | None = None,
) -> AttestationResponse:
    """Look up an attestation by keccak256 of the message, with a bearer API key.

    Used when the burn transaction id is not known but the message is,
    see :py:func:`cctp_bridge.message.hash_message`.
    """
    if isinstance(message_hash, (bytes, bytearray)):
        message_hash = "0x" + bytes(message_hash).hex()

    url = f"{api_base_url.rstrip('/')}/attestations/{message_hash}"
    http = session or requests
    response = http.get(url, headers={"Authorization": f"Bearer {api_key}"}, timeout=30)

    if response.status_code == HTTP_NOT_FOUND:
        return AttestationResponse(AttestationState.pending, status_code=response.status_code)
    if response.status_code >= 400:
        return AttestationResponse(
            AttestationState.failed,
            error=f"Circle API error: {response.status_code} {response.reason}. {response.text}",
            status_code=response.status_code,
        )

    data = response.json()
    attestation_hex = data.get("attestation")
    if data.get("status") != "complete" or _is_pending_value(attestation_hex):
        return AttestationResponse(AttestationState.pending, status_code=response.status_code)

    try:
        attestation = _decode_hex(attestation_hex, "attestation")
    except AttestationServiceError as e:
        return AttestationResponse(AttestationState.failed, error=str(e), status_code=response.status_code)

    return AttestationResponse(
        AttestationState.ready,
        attestation=CCTPAttestation(message=b"", attestation=attestation, status=data["status"]),
        status_code=response.status_code,
    )


def poll_attestation(
    source_domain: int,
    transaction_id: str,
    config: AttestationPollConfig | None = None,
    api_base_url: str = IRIS_API_BASE_URL,
    session: requests.Session | None = None,
    abort: threading.Event | None = None,
    on_attempt: Callable[[int, int, AttestationState], None] | None = None,
) -> CCTPAttestation:
    """Poll the Iris API until the attestation is ready.

    :param source_domain:
        CCTP domain id of the burn chain.

    :param transaction_id:
        Burn transaction signature or hash.

    :param config:
        Backoff schedule. Defaults to :py:class:`AttestationPollConfig`.

    :param api_base_url:
        Iris API base URL. Defaults to mainnet.

    :param session:
        HTTP session, see :py:func:`cctp_bridge.session.create_iris_session`.

    :param abort:
        Set to stop polling. Checked during every wait.

    :param on_attempt:
        Called after every query with ``(attempt, max_attempts, state)``.
        Used for progress reporting.

    :return:
        Ready attestation

    :raises AttestationTimeout:
        Still pending after ``max_attempts`` queries.

    :raises AttestationServiceError:
        The service answered with an error. The message carries its text verbatim.

    :raises PollingAborted:
        ``abort`` was set.
    """
    config = config or AttestationPollConfig()
    domain_name = CCTP_DOMAIN_NAMES.get(source_domain, f"domain-{source_domain}")

    logger.info(
        "Waiting for CCTP attestation on %s: tx=%s\n  Iris API: %s",
        domain_name,
        transaction_id,
        build_attestation_url(source_domain, transaction_id, api_base_url),
    )

    if config.wait_before_first_attempt:
        sleep_with_abort(config.initial_delay, abort)

    last_error = None
    for attempt in range(1, config.max_attempts + 1):
        if abort is not None and abort.is_set():
            raise PollingAborted(f"Attestation polling aborted for tx {transaction_id}")

        # First attempt at INFO so the user sees polling started, then DEBUG
        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(log_level, "Polling CCTP attestation: %s, tx=%s, attempt=%d/%d", domain_name, transaction_id, attempt, config.max_attempts)

        try:
            response = fetch_attestation_once(source_domain, transaction_id, api_base_url, session)
        except requests.RequestException as e:
            # Network hiccup, spend an attempt and try again
            logger.warning("Attestation query failed on attempt %d: %s", attempt, e)
            last_error = str(e)
            response = AttestationResponse(AttestationState.pending)

        if on_attempt is not None:
            on_attempt(attempt, config.max_attempts, response.state)

        if response.state == AttestationState.ready:
            logger.info("Attestation ready for %s after %d attempts: tx=%s", domain_name, attempt, transaction_id)
            return response.attestation

        if response.state == AttestationState.failed:
            raise AttestationServiceError(response.error, status_code=response.status_code)

        if attempt < config.max_attempts:
            delay = config.next_delay(attempt)
            logger.debug("Attestation pending for %s, next attempt in %.1fs", domain_name, delay)
            sleep_with_abort(delay, abort)

    suffix = f", last error: {last_error}" if last_error else ""
    raise AttestationTimeout(f"Attestation not ready after {config.max_attempts} attempts for tx {transaction_id} on {domain_name}{suffix}")
