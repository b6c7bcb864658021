"""Bridge USDC between Solana and Aptos over Circle CCTP V1.

A transfer is driven through these states, each step blocking until done:

1. **Burn**: build the burn on the source chain and submit it through the
   source chain signing collaborator
2. **Confirm**: poll the source chain until the burn confirms
3. **Attest**: poll Circle's Iris API until the burn is attested
4. **Mint**: build and submit the mint on the destination chain, then confirm it

Every step is narrated in the transfer's :py:class:`~cctp_bridge.action_log.ActionLog`.
Once the burn is submitted, funds are in flight: any later failure adds an
entry linking to the manual mint view, which resumes the transfer from the
burn transaction id with :py:meth:`BridgeOrchestrator.resume_mint`.

Failures never propagate out of :py:meth:`BridgeOrchestrator.run`, they are
recorded on the transfer.

Example::

    from cctp_bridge.bridge import BridgeDirection, BridgeOrchestrator, BridgeTransfer, SolanaToAptosRoute

    orchestrator = BridgeOrchestrator(
        route=SolanaToAptosRoute(owner=keypair.pubkey()),
        source_signer=solana_signer,
        source_rpc=solana_rpc,
        dest_signer=aptos_wallet,
        dest_rpc=aptos_rpc,
    )
    transfer = BridgeTransfer(
        direction=BridgeDirection.solana_to_aptos,
        amount=100_000,  # 0.1 USDC
        recipient="0x1f6c...",
    )
    orchestrator.run(transfer)
    print(transfer.state, transfer.mint_tx_id)
"""

import enum
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import requests
from solders.pubkey import Pubkey
from tqdm_loggable.auto import tqdm

from cctp_bridge.action_log import ActionLog, ActionLogWriter, ActionStatus
from cctp_bridge.address import Chain, aptos_address_to_bytes32, bytes32_to_aptos_address, convert_chain_address
from cctp_bridge.aptos import prepare_aptos_deposit_for_burn, prepare_aptos_receive_message
from cctp_bridge.attestation import AttestationPollConfig, CCTPAttestation, build_attestation_url, poll_attestation
from cctp_bridge.constants import (
    APTOS_EXPLORER_TX_URL,
    CCTP_DOMAIN_APTOS,
    CCTP_DOMAIN_NAMES,
    CCTP_DOMAIN_SOLANA,
    IRIS_API_BASE_URL,
    SOLSCAN_TX_URL,
    USDC_APTOS_ADDRESS,
)
from cctp_bridge.errors import (
    AttestationTimeout,
    CCTPBridgeError,
    ChainSubmissionError,
    ConfirmationTimeout,
    InvalidStateTransition,
    PollingAborted,
    RecipientMismatch,
    WalletNotConnected,
)
from cctp_bridge.message import decode_message, decode_mint_recipient
from cctp_bridge.monitor import ConfirmationPollConfig, wait_for_confirmation
from cctp_bridge.pda import MAINNET_PROGRAMS, CCTPPrograms, derive_associated_token_address
from cctp_bridge.receive import TokenAccount, prepare_receive_message
from cctp_bridge.signer import ChainRPC, SigningCollaborator
from cctp_bridge.solana import create_associated_token_account_idempotent
from cctp_bridge.transfer import prepare_deposit_for_burn, validate_burn_amount
from cctp_bridge.utils import format_usdc, sleep_with_abort

logger = logging.getLogger(__name__)

#: Failure reason when the attestation never became ready
REASON_ATTESTATION_TIMEOUT = "attestation polling timeout"

#: Failure reason when a transaction never confirmed
REASON_CONFIRMATION_TIMEOUT = "confirmation timeout"


class BridgeDirection(enum.Enum):
    """Which way the USDC moves."""

    solana_to_aptos = "solana_to_aptos"
    aptos_to_solana = "aptos_to_solana"

    @property
    def source_domain(self) -> int:
        return CCTP_DOMAIN_SOLANA if self == BridgeDirection.solana_to_aptos else CCTP_DOMAIN_APTOS

    @property
    def dest_domain(self) -> int:
        return CCTP_DOMAIN_APTOS if self == BridgeDirection.solana_to_aptos else CCTP_DOMAIN_SOLANA

    @property
    def recovery_path(self) -> str:
        """Path of the manual mint view on the destination chain."""
        return "/minting-aptos" if self == BridgeDirection.solana_to_aptos else "/minting-solana"

    @classmethod
    def from_source_domain(cls, domain: int) -> "BridgeDirection":
        if domain == CCTP_DOMAIN_SOLANA:
            return cls.solana_to_aptos
        if domain == CCTP_DOMAIN_APTOS:
            return cls.aptos_to_solana
        raise ValueError(f"No bridge route from CCTP domain {domain}")


class BridgeState(enum.Enum):
    """Lifecycle of a :py:class:`BridgeTransfer`."""

    init = "init"
    burn_submitted = "burn_submitted"
    burn_confirmed = "burn_confirmed"
    attestation_pending = "attestation_pending"
    attestation_ready = "attestation_ready"
    mint_submitted = "mint_submitted"
    completed = "completed"
    failed = "failed"


#: Allowed forward transitions, ``failed`` is reachable from any non-terminal state
_TRANSITIONS: dict[BridgeState, set[BridgeState]] = {
    BridgeState.init: {BridgeState.burn_submitted},
    BridgeState.burn_submitted: {BridgeState.burn_confirmed},
    BridgeState.burn_confirmed: {BridgeState.attestation_pending},
    BridgeState.attestation_pending: {BridgeState.attestation_ready},
    BridgeState.attestation_ready: {BridgeState.mint_submitted},
    BridgeState.mint_submitted: {BridgeState.completed},
    BridgeState.completed: set(),
    BridgeState.failed: set(),
}


@dataclass(slots=True)
class BridgeTransfer:
    """One USDC transfer and everything known about it so far.

    Mutated only by :py:class:`BridgeOrchestrator`.
    """

    #: Which way the USDC moves
    direction: BridgeDirection

    #: Amount in raw units (6 decimals)
    amount: int

    #: Final recipient wallet on the destination chain, chain native form
    recipient: str

    #: Token symbol
    token: str = "USDC"

    #: Burn transaction id on the source chain
    burn_tx_id: str | None = None

    #: Attestation once received
    attestation: CCTPAttestation | None = None

    #: Mint transaction id on the destination chain
    mint_tx_id: str | None = None

    #: Current state
    state: BridgeState = BridgeState.init

    #: Why the transfer failed
    failure_reason: str | None = None

    #: Narrative of the transfer for the user
    action_log: ActionLog = field(default_factory=ActionLog, repr=False, compare=False)

    @property
    def source_domain(self) -> int:
        return self.direction.source_domain

    @property
    def dest_domain(self) -> int:
        return self.direction.dest_domain

    @property
    def is_terminal(self) -> bool:
        return self.state in (BridgeState.completed, BridgeState.failed)

    def transition(self, new_state: BridgeState):
        """Move to ``new_state``.

        :raises InvalidStateTransition:
            Not reachable from the current state.
        """
        allowed = _TRANSITIONS[self.state]
        if new_state == BridgeState.failed and not self.is_terminal:
            allowed = allowed | {BridgeState.failed}
        if new_state not in allowed:
            raise InvalidStateTransition(f"Cannot move transfer from {self.state.value} to {new_state.value}")
        logger.info("Transfer %s: %s -> %s", self.burn_tx_id or "(not burned)", self.state.value, new_state.value)
        self.state = new_state

    def fail(self, reason: str):
        self.failure_reason = reason
        self.transition(BridgeState.failed)

    def to_dict(self) -> dict:
        """Serialisable form, e.g. for a local transfer history cache."""
        return {
            "direction": self.direction.value,
            "source_domain": self.source_domain,
            "dest_domain": self.dest_domain,
            "token": self.token,
            "amount": self.amount,
            "recipient": self.recipient,
            "burn_tx_id": self.burn_tx_id,
            "mint_tx_id": self.mint_tx_id,
            "state": self.state.value,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeTransfer":
        """Validate and load :py:meth:`to_dict` output.

        :raises ValueError:
            Unknown direction or state, or domains that do not match the direction.
        """
        direction = BridgeDirection(data["direction"])
        if data.get("source_domain", direction.source_domain) != direction.source_domain or data.get("dest_domain", direction.dest_domain) != direction.dest_domain:
            raise ValueError(f"Domains {data.get('source_domain')} -> {data.get('dest_domain')} do not match direction {direction.value}")
        amount = int(data["amount"])
        if amount < 0:
            raise ValueError(f"Negative amount: {amount}")
        return cls(
            direction=direction,
            amount=amount,
            recipient=str(data["recipient"]),
            token=data.get("token", "USDC"),
            burn_tx_id=data.get("burn_tx_id"),
            mint_tx_id=data.get("mint_tx_id"),
            state=BridgeState(data.get("state", BridgeState.init.value)),
            failure_reason=data.get("failure_reason"),
        )


@dataclass(slots=True, frozen=True)
class ManualMintRequest:
    """Parameters of the manual mint view."""

    #: Burn transaction id
    signature: str

    #: CCTP domain of the burn
    source_domain: int

    #: Recipient wallet on the destination chain
    final_recipient: str

    @classmethod
    def from_query_params(cls, params: dict[str, str]) -> "ManualMintRequest":
        """Parse ``signature``, ``sourceDomain`` and ``finalRecipient`` query parameters.

        :raises ValueError:
            Missing parameter or unsupported domain.
        """
        signature = (params.get("signature") or "").strip()
        final_recipient = (params.get("finalRecipient") or "").strip()
        if not signature:
            raise ValueError("signature parameter required")
        if not final_recipient:
            raise ValueError("finalRecipient parameter required")
        try:
            source_domain = int(params.get("sourceDomain", ""))
        except ValueError as e:
            raise ValueError(f"sourceDomain must be an integer, got {params.get('sourceDomain')!r}") from e
        if source_domain not in (CCTP_DOMAIN_SOLANA, CCTP_DOMAIN_APTOS):
            raise ValueError(f"Unsupported sourceDomain: {source_domain}")
        return cls(signature=signature, source_domain=source_domain, final_recipient=final_recipient)

    def to_query_params(self) -> dict[str, str]:
        return {
            "signature": self.signature,
            "sourceDomain": str(self.source_domain),
            "finalRecipient": self.final_recipient,
        }


def build_recovery_link(burn_tx_id: str, source_domain: int, final_recipient: str, base_url: str = "") -> str:
    """Link to the manual mint view for a burned but unminted transfer."""
    direction = BridgeDirection.from_source_domain(source_domain)
    request = ManualMintRequest(signature=burn_tx_id, source_domain=source_domain, final_recipient=final_recipient)
    return f"{base_url.rstrip('/')}{direction.recovery_path}?{urlencode(request.to_query_params())}"


def get_explorer_tx_url(domain: int, tx_id: str) -> str:
    """Block explorer page of a transaction."""
    if domain == CCTP_DOMAIN_SOLANA:
        return SOLSCAN_TX_URL.format(signature=tx_id)
    if domain == CCTP_DOMAIN_APTOS:
        return APTOS_EXPLORER_TX_URL.format(tx_hash=tx_id)
    raise ValueError(f"No explorer known for domain {domain}")


@dataclass(slots=True)
class PreparedCall:
    """Chain specific instruction with what is needed to sign it."""

    #: Solana instruction(s) or Aptos entry function call
    instruction: Any

    #: Keypairs that must co-sign
    extra_signers: list = field(default_factory=list)

    #: Non-fatal problems found while preparing
    warnings: list[RecipientMismatch] = field(default_factory=list)


class BridgeRoute(ABC):
    """Chain specific half of the orchestration: what to burn and what to mint."""

    #: Direction served by this route
    direction: BridgeDirection

    @abstractmethod
    def prepare_burn(self, transfer: BridgeTransfer, source_rpc: ChainRPC) -> PreparedCall:
        """Build the burn. Must validate the amount before any network access."""

    @abstractmethod
    def prepare_mint(self, transfer: BridgeTransfer, attestation: CCTPAttestation, dest_signer: SigningCollaborator, dest_rpc: ChainRPC) -> PreparedCall:
        """Build the mint from a ready attestation."""


class SolanaToAptosRoute(BridgeRoute):
    """Burn on Solana with ``depositForBurn``, mint on Aptos with gas drop-off.

    :param owner:
        Wallet owning the USDC. Not needed when the route only mints,
        as when resuming from the manual mint view.

    :param fee_payer:
        Pays fees and rent, defaults to the owner.

    :param owner_token_account:
        Defaults to the owner's USDC associated token account.

    :param gas_amount:
        Octas of APT dropped to the recipient with the mint.
    """

    direction = BridgeDirection.solana_to_aptos

    def __init__(
        self,
        owner: Pubkey | None = None,
        fee_payer: Pubkey | None = None,
        owner_token_account: Pubkey | None = None,
        programs: CCTPPrograms = MAINNET_PROGRAMS,
        gas_amount: int = 0,
    ):
        self.owner = owner
        self.fee_payer = fee_payer or owner
        self.programs = programs
        if owner_token_account is None and owner is not None:
            owner_token_account = derive_associated_token_address(owner, programs.usdc_mint)
        self.owner_token_account = owner_token_account
        self.gas_amount = gas_amount

    def fetch_balance(self, source_rpc: ChainRPC) -> int | None:
        """USDC balance of the burned token account, ``None`` if it does not exist."""
        account = source_rpc.get_account(str(self.owner_token_account))
        if account is None:
            return None
        return TokenAccount.from_account_data(account.data).amount

    def prepare_burn(self, transfer: BridgeTransfer, source_rpc: ChainRPC) -> PreparedCall:
        validate_burn_amount(transfer.amount)
        assert self.owner is not None, "Burning needs the owner wallet"
        balance = self.fetch_balance(source_rpc)
        prepared = prepare_deposit_for_burn(
            amount=transfer.amount,
            destination_domain=transfer.dest_domain,
            owner=self.owner,
            fee_payer=self.fee_payer,
            owner_token_account=self.owner_token_account,
            mint_recipient=transfer.recipient,
            programs=self.programs,
            balance=balance if balance is not None else 0,
        )
        return PreparedCall(instruction=prepared.instruction, extra_signers=[prepared.event_data_keypair])

    def prepare_mint(self, transfer: BridgeTransfer, attestation: CCTPAttestation, dest_signer: SigningCollaborator, dest_rpc: ChainRPC) -> PreparedCall:
        warnings = []
        mint_recipient = decode_mint_recipient(attestation.message)
        if mint_recipient != aptos_address_to_bytes32(transfer.recipient):
            warning = RecipientMismatch(f"Message mints to {bytes32_to_aptos_address(mint_recipient)}, expected {transfer.recipient}")
            logger.warning("%s", warning)
            warnings.append(warning)

        call = prepare_aptos_receive_message(
            message=attestation.message,
            attestation=attestation.attestation,
            gas_drop_address=transfer.recipient,
            gas_amount=self.gas_amount,
        )
        return PreparedCall(instruction=call, warnings=warnings)


class AptosToSolanaRoute(BridgeRoute):
    """Burn on Aptos, mint on Solana with ``receiveMessage``.

    USDC is minted to the recipient's USDC associated token account,
    which the mint transaction creates if missing.

    :param owner:
        Aptos account burning the USDC, its balance is checked before the burn.
        Not needed when the route only mints.
    """

    direction = BridgeDirection.aptos_to_solana

    def __init__(self, owner: str | None = None, programs: CCTPPrograms = MAINNET_PROGRAMS):
        self.owner = owner
        self.programs = programs

    def get_recipient_token_account(self, transfer: BridgeTransfer) -> Pubkey:
        owner = Pubkey(convert_chain_address(transfer.recipient, Chain.solana))
        return derive_associated_token_address(owner, self.programs.usdc_mint)

    def fetch_balance(self, source_rpc: ChainRPC) -> int:
        """USDC balance of the burning account on Aptos."""
        return source_rpc.get_fungible_asset_balance(self.owner, USDC_APTOS_ADDRESS)

    def prepare_burn(self, transfer: BridgeTransfer, source_rpc: ChainRPC) -> PreparedCall:
        validate_burn_amount(transfer.amount)
        assert self.owner is not None, "Burning needs the owner account"
        call = prepare_aptos_deposit_for_burn(
            amount=transfer.amount,
            mint_recipient=bytes(self.get_recipient_token_account(transfer)),
            destination_domain=transfer.dest_domain,
            balance=self.fetch_balance(source_rpc),
        )
        return PreparedCall(instruction=call)

    def prepare_mint(self, transfer: BridgeTransfer, attestation: CCTPAttestation, dest_signer: SigningCollaborator, dest_rpc: ChainRPC) -> PreparedCall:
        payer = Pubkey.from_string(dest_signer.address)
        recipient_owner = Pubkey(convert_chain_address(transfer.recipient, Chain.solana))
        token_account_address = self.get_recipient_token_account(transfer)

        instructions = []
        account = dest_rpc.get_account(str(token_account_address))
        token_account = None
        if account is None:
            logger.info("Recipient token account %s does not exist, creating it with the mint", token_account_address)
            instructions.append(create_associated_token_account_idempotent(payer, recipient_owner, self.programs.usdc_mint))
        else:
            token_account = TokenAccount.from_account_data(account.data)

        prepared = prepare_receive_message(
            message=attestation.message,
            attestation=attestation.attestation,
            payer=payer,
            source_domain=transfer.source_domain,
            event_nonce=attestation.event_nonce,
            recipient_token_account=token_account_address,
            token_account=token_account,
            expected_owner=recipient_owner,
            programs=self.programs,
        )
        instructions.append(prepared.instruction)
        return PreparedCall(instruction=instructions, warnings=prepared.warnings)


@dataclass(slots=True)
class BridgeConfig:
    """Timing and retry settings of the orchestrator.

    Example:

    .. code-block:: python

        # Production (default)
        config = BridgeConfig()

        # No waiting in tests
        config = BridgeConfig.create_test_config()
    """

    #: Burn and mint confirmation polling
    confirmation: ConfirmationPollConfig = field(default_factory=ConfirmationPollConfig)

    #: Attestation polling
    attestation: AttestationPollConfig = field(default_factory=AttestationPollConfig)

    #: Circle Iris API base URL
    attestation_api_url: str = IRIS_API_BASE_URL

    #: Prefix of manual mint view links, e.g. ``https://bridge.example.com``
    recovery_base_url: str = ""

    #: Mint submissions attempted on chain submission errors
    mint_submit_attempts: int = 3

    #: Seconds between mint submission attempts
    mint_retry_delay: float = 2.0

    #: Wait for the mint to confirm before completing
    confirm_mint: bool = True

    @classmethod
    def create_test_config(cls) -> "BridgeConfig":
        return cls(
            confirmation=ConfirmationPollConfig.create_test_config(),
            attestation=AttestationPollConfig.create_test_config(),
            mint_retry_delay=0.0,
        )


class BridgeOrchestrator:
    """Drives transfers from burn to mint.

    One orchestrator serves one route and one pair of collaborators.
    Transfers are run sequentially in the calling thread, use
    :py:func:`run_bridge_transfers_parallel` to run several at once.

    :param route:
        Chain specific burn and mint builders.

    :param source_signer:
        Signs the burn.

    :param source_rpc:
        Reads the source chain.

    :param dest_signer:
        Signs the mint.

    :param dest_rpc:
        Reads the destination chain.

    :param config:
        Timing and retry settings.

    :param attestation_session:
        HTTP session for the Iris API.

    :param abort:
        Set to abort polling. The transfer then fails with a recovery link.
    """

    def __init__(
        self,
        route: BridgeRoute,
        source_signer: SigningCollaborator,
        source_rpc: ChainRPC,
        dest_signer: SigningCollaborator,
        dest_rpc: ChainRPC,
        config: BridgeConfig | None = None,
        attestation_session: requests.Session | None = None,
        abort: threading.Event | None = None,
    ):
        self.route = route
        self.source_signer = source_signer
        self.source_rpc = source_rpc
        self.dest_signer = dest_signer
        self.dest_rpc = dest_rpc
        self.config = config or BridgeConfig()
        self.attestation_session = attestation_session
        self.abort = abort

    def run(self, transfer: BridgeTransfer, writer: ActionLogWriter | None = None) -> BridgeTransfer:
        """Run a transfer to completion or failure.

        A transfer in ``burn_confirmed`` state skips the burn and resumes
        from attestation, see :py:meth:`resume_mint`.

        :return:
            The same transfer, now in ``completed`` or ``failed`` state
        """
        assert transfer.direction == self.route.direction, f"Route serves {self.route.direction.value}, transfer is {transfer.direction.value}"
        assert transfer.state in (BridgeState.init, BridgeState.burn_confirmed), f"Cannot run a transfer in state {transfer.state.value}"
        writer = writer or transfer.action_log.writer()

        try:
            if transfer.state == BridgeState.init:
                self._burn(transfer, writer)
                self._confirm_burn(transfer, writer)
            self._attest(transfer, writer)
            self._mint(transfer, writer)
        except (CCTPBridgeError, requests.RequestException) as e:
            self._fail(transfer, writer, e)
        except InvalidStateTransition:
            raise
        except Exception as e:
            # Wallet adapters and node clients may raise anything
            logger.exception("Unexpected error while bridging %s", transfer.burn_tx_id or "(not burned)")
            self._fail(transfer, writer, e)

        return transfer

    def resume_mint(self, request: ManualMintRequest, writer: ActionLogWriter | None = None) -> BridgeTransfer:
        """Finish a transfer whose burn already confirmed.

        Entry point of the manual mint view. The amount is taken from the attested message.
        """
        direction = BridgeDirection.from_source_domain(request.source_domain)
        transfer = BridgeTransfer(
            direction=direction,
            amount=0,
            recipient=request.final_recipient,
            burn_tx_id=request.signature,
            state=BridgeState.burn_confirmed,
        )
        logger.info("Resuming mint for burn %s from domain %d", request.signature, request.source_domain)
        return self.run(transfer, writer)

    def _source_name(self, transfer: BridgeTransfer) -> str:
        return CCTP_DOMAIN_NAMES[transfer.source_domain]

    def _dest_name(self, transfer: BridgeTransfer) -> str:
        return CCTP_DOMAIN_NAMES[transfer.dest_domain]

    def _burn(self, transfer: BridgeTransfer, writer: ActionLogWriter):
        writer.add(f"Preparing burn of {format_usdc(transfer.amount)} USDC on {self._source_name(transfer)}")
        prepared = self.route.prepare_burn(transfer, self.source_rpc)
        writer.update_last(f"Burn of {format_usdc(transfer.amount)} USDC prepared", ActionStatus.success)

        writer.add("Waiting for wallet signature")
        tx_id = self.source_signer.sign_and_submit(prepared.instruction, prepared.extra_signers)
        transfer.burn_tx_id = tx_id
        transfer.transition(BridgeState.burn_submitted)
        writer.update_last(
            "Burn transaction submitted",
            ActionStatus.success,
            link=get_explorer_tx_url(transfer.source_domain, tx_id),
            link_text="View on explorer",
        )

    def _confirm_burn(self, transfer: BridgeTransfer, writer: ActionLogWriter):
        explorer_url = get_explorer_tx_url(transfer.source_domain, transfer.burn_tx_id)
        writer.add("Waiting for burn confirmation", link=explorer_url, link_text="View on explorer")
        wait_for_confirmation(self.source_rpc, transfer.burn_tx_id, self.config.confirmation, self.abort)
        transfer.transition(BridgeState.burn_confirmed)
        writer.update_last("Burn confirmed", ActionStatus.success, link=explorer_url, link_text="View on explorer")

    def _attest(self, transfer: BridgeTransfer, writer: ActionLogWriter):
        transfer.transition(BridgeState.attestation_pending)
        attestation_url = build_attestation_url(transfer.source_domain, transfer.burn_tx_id, self.config.attestation_api_url)
        writer.add("Waiting for Circle attestation", link=attestation_url, link_text="View attestation")

        def _on_attempt(attempt: int, max_attempts: int, state):
            writer.update_last(
                f"Waiting for Circle attestation (attempt {attempt}/{max_attempts})",
                ActionStatus.pending,
                link=attestation_url,
                link_text="View attestation",
            )

        attestation = poll_attestation(
            transfer.source_domain,
            transfer.burn_tx_id,
            config=self.config.attestation,
            api_base_url=self.config.attestation_api_url,
            session=self.attestation_session,
            abort=self.abort,
            on_attempt=_on_attempt,
        )
        transfer.attestation = attestation
        if not transfer.amount:
            transfer.amount = decode_message(attestation.message).amount
        transfer.transition(BridgeState.attestation_ready)
        writer.update_last("Attestation received", ActionStatus.success, link=attestation_url, link_text="View attestation")

    def _ensure_dest_connected(self):
        if not self.dest_signer.is_connected():
            logger.info("Destination wallet not connected, reconnecting before mint")
            self.dest_signer.reconnect()
            if not self.dest_signer.is_connected():
                raise WalletNotConnected(f"{self.dest_signer!r} is not connected")

    def _submit_mint(self, prepared: PreparedCall) -> str:
        reconnected = False
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.dest_signer.sign_and_submit(prepared.instruction, prepared.extra_signers)
            except WalletNotConnected:
                if reconnected:
                    raise
                logger.warning("Destination wallet disconnected during mint, reconnecting and retrying once")
                self.dest_signer.reconnect()
                reconnected = True
            except ChainSubmissionError as e:
                # Receiving the same message twice is rejected by the used nonces account
                if attempt >= self.config.mint_submit_attempts:
                    raise
                logger.warning("Mint submission attempt %d failed: %s", attempt, e)
                sleep_with_abort(self.config.mint_retry_delay, self.abort)

    def _mint(self, transfer: BridgeTransfer, writer: ActionLogWriter):
        self._ensure_dest_connected()
        prepared = self.route.prepare_mint(transfer, transfer.attestation, self.dest_signer, self.dest_rpc)
        for warning in prepared.warnings:
            writer.add(str(warning), ActionStatus.warning)

        writer.add(f"Minting {format_usdc(transfer.amount)} USDC on {self._dest_name(transfer)}")
        tx_id = self._submit_mint(prepared)
        transfer.mint_tx_id = tx_id
        transfer.transition(BridgeState.mint_submitted)
        explorer_url = get_explorer_tx_url(transfer.dest_domain, tx_id)

        if self.config.confirm_mint:
            wait_for_confirmation(self.dest_rpc, tx_id, self.config.confirmation, self.abort)

        transfer.transition(BridgeState.completed)
        writer.update_last(
            f"Bridge complete, {format_usdc(transfer.amount)} USDC minted on {self._dest_name(transfer)}",
            ActionStatus.success,
            link=explorer_url,
            link_text="View on explorer",
        )

    def _fail(self, transfer: BridgeTransfer, writer: ActionLogWriter, error: Exception):
        if isinstance(error, AttestationTimeout):
            reason = REASON_ATTESTATION_TIMEOUT
        elif isinstance(error, ConfirmationTimeout):
            reason = REASON_CONFIRMATION_TIMEOUT
        elif isinstance(error, PollingAborted):
            reason = "aborted"
        else:
            reason = str(error) or error.__class__.__name__

        logger.error("Transfer %s failed in state %s: %s", transfer.burn_tx_id or "(not burned)", transfer.state.value, reason)

        last = writer.log.last
        if last is not None and last.status == ActionStatus.pending:
            writer.update_last(f"{last.message} failed: {reason}", ActionStatus.error, link=last.link, link_text=last.link_text)
        else:
            writer.add(f"Bridge failed: {reason}", ActionStatus.error)

        if not transfer.is_terminal:
            transfer.fail(reason)

        if transfer.burn_tx_id:
            writer.add(
                "USDC was burned but not minted. Finish the transfer manually with the burn transaction id.",
                ActionStatus.error,
                link=build_recovery_link(transfer.burn_tx_id, transfer.source_domain, transfer.recipient, self.config.recovery_base_url),
                link_text="Mint manually",
            )


def run_bridge_transfers_parallel(
    jobs: list[tuple[BridgeOrchestrator, BridgeTransfer]],
    max_workers: int = 4,
    progress: bool = True,
) -> list[BridgeTransfer]:
    """Run several transfers in parallel threads.

    Each transfer is independent, a failure of one does not affect the others.

    :param jobs:
        ``(orchestrator, transfer)`` pairs.

    :param max_workers:
        Thread pool size.

    :param progress:
        Show a progress bar.

    :return:
        Transfers in input order
    """
    results: list[BridgeTransfer | None] = [None] * len(jobs)
    pbar = tqdm(total=len(jobs), desc="Bridging USDC", unit="transfer") if progress else None
    pbar_lock = threading.Lock()
    counts = {"completed": 0, "failed": 0}

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(orchestrator.run, transfer): idx for idx, (orchestrator, transfer) in enumerate(jobs)}
        for future in as_completed(futures):
            idx = futures[future]
            transfer = future.result()
            results[idx] = transfer
            with pbar_lock:
                counts[transfer.state.value if transfer.is_terminal else "failed"] += 1
                if pbar is not None:
                    pbar.set_postfix(counts)
                    pbar.update(1)

    if pbar is not None:
        pbar.close()

    logger.info("Parallel bridging done: %d completed, %d failed", counts["completed"], counts["failed"])
    return results
