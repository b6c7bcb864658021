"""Gas sponsored burns from an ephemeral wallet.

In the privacy flow the user's USDC first lands in a throwaway Solana
wallet that holds no SOL. A sponsor wallet pays fees and rent while the
throwaway wallet signs as the token owner, and the whole balance is
burned towards Aptos.

Both secret keys are decoded for a single burn and held in memory only.
"""

import logging
import threading
from dataclasses import dataclass, field

import requests
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from cctp_bridge.attestation import AttestationPollConfig
from cctp_bridge.bridge import BridgeConfig, BridgeOrchestrator, BridgeTransfer, PreparedCall, SolanaToAptosRoute
from cctp_bridge.constants import CCTP_DOMAIN_APTOS, LAMPORTS_PER_SOL, MIN_FEE_PAYER_LAMPORTS, USDC_SOLANA_MINT
from cctp_bridge.errors import InsufficientFeePayerBalance, InvalidAmount, SigningRejected
from cctp_bridge.pda import MAINNET_PROGRAMS, CCTPPrograms
from cctp_bridge.receive import TokenAccount
from cctp_bridge.signer import ChainRPC, SigningCollaborator
from cctp_bridge.solana import KeypairSigner, SolanaRPCClient, load_keypair
from cctp_bridge.transfer import PreparedBurn, prepare_deposit_for_burn

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SponsoredBurnResult:
    """Outcome of a sponsored burn."""

    #: Burn transaction signature
    signature: str

    #: Burned amount in raw units, the full balance of the token account
    amount: int

    #: Ephemeral wallet that owned the USDC
    owner: Pubkey

    #: Token account the USDC was burned from
    token_account: Pubkey

    #: Sponsor that paid fees
    fee_payer: Pubkey

    #: The prepared instruction, for inspection
    prepared: PreparedBurn = field(repr=False)


def load_fee_payer(secret_key: str, expected_address: str | None = None) -> Keypair:
    """Decode the sponsor keypair and check it against its configured address.

    :raises SigningRejected:
        The key belongs to another address.
    """
    keypair = load_keypair(secret_key)
    if expected_address is not None and str(keypair.pubkey()) != expected_address:
        raise SigningRejected("Fee payer key does not match the configured fee payer address")
    return keypair


def find_usdc_token_account(rpc: SolanaRPCClient, owner: Pubkey, mint: Pubkey = USDC_SOLANA_MINT) -> tuple[Pubkey, TokenAccount]:
    """Find the owner's token account for ``mint``, preferring one with a balance.

    :raises InvalidAmount:
        The owner has no token account for the mint.
    """
    accounts = rpc.get_token_accounts_by_owner(owner, mint)
    if not accounts:
        raise InvalidAmount(f"No USDC token account found for {owner}")
    for address, account in accounts:
        if account.amount > 0:
            return address, account
    return accounts[0]


def check_fee_payer_balance(rpc: SolanaRPCClient, fee_payer: Pubkey, min_lamports: int = MIN_FEE_PAYER_LAMPORTS) -> int:
    """Ensure the sponsor can cover fees.

    :return:
        Lamport balance

    :raises InsufficientFeePayerBalance:
        Below ``min_lamports``.
    """
    balance = rpc.get_balance(fee_payer)
    if balance < min_lamports:
        raise InsufficientFeePayerBalance(
            f"Fee payer {fee_payer} has {balance / LAMPORTS_PER_SOL:.6f} SOL, needs at least {min_lamports / LAMPORTS_PER_SOL:.6f} SOL",
        )
    return balance


def prepare_sponsored_burn(
    *,
    rpc: SolanaRPCClient,
    owner: Pubkey,
    fee_payer: Pubkey,
    mint_recipient: bytes | str,
    destination_domain: int = CCTP_DOMAIN_APTOS,
    programs: CCTPPrograms = MAINNET_PROGRAMS,
) -> tuple[PreparedBurn, Pubkey]:
    """Prepare a burn of the owner's whole USDC balance, fees paid by the sponsor.

    :param rpc:
        Solana RPC client.

    :param owner:
        Ephemeral wallet holding the USDC.

    :param fee_payer:
        Sponsor paying fees and rent.

    :param mint_recipient:
        Recipient on the destination chain.

    :return:
        Prepared burn and the token account it burns from

    :raises InsufficientFeePayerBalance:
        Sponsor is out of SOL.

    :raises InvalidAmount:
        No token account or zero balance.
    """
    check_fee_payer_balance(rpc, fee_payer)

    token_account_address, token_account = find_usdc_token_account(rpc, owner, programs.usdc_mint)
    if token_account.amount <= 0:
        raise InvalidAmount(f"USDC balance of {owner} is zero")

    prepared = prepare_deposit_for_burn(
        amount=token_account.amount,
        destination_domain=destination_domain,
        owner=owner,
        fee_payer=fee_payer,
        owner_token_account=token_account_address,
        mint_recipient=mint_recipient,
        programs=programs,
        balance=token_account.amount,
    )
    return prepared, token_account_address


def execute_sponsored_burn(
    *,
    rpc: SolanaRPCClient,
    owner: Keypair,
    fee_payer: Keypair,
    mint_recipient: bytes | str,
    destination_domain: int = CCTP_DOMAIN_APTOS,
    programs: CCTPPrograms = MAINNET_PROGRAMS,
) -> SponsoredBurnResult:
    """Burn the ephemeral wallet's whole USDC balance and broadcast.

    Signed by the owner, the fee payer and the event data keypair.
    See :py:func:`prepare_sponsored_burn` for the checks made.
    """
    prepared, token_account_address = prepare_sponsored_burn(
        rpc=rpc,
        owner=owner.pubkey(),
        fee_payer=fee_payer.pubkey(),
        mint_recipient=mint_recipient,
        destination_domain=destination_domain,
        programs=programs,
    )

    signer = SponsoredBurnSigner(rpc, owner=owner, fee_payer=fee_payer)
    signature = signer.sign_and_submit(prepared.instruction, extra_signers=[prepared.event_data_keypair])

    logger.info("Sponsored burn %s: %d raw USDC from %s", signature, prepared.amount, owner.pubkey())

    return SponsoredBurnResult(
        signature=signature,
        amount=prepared.amount,
        owner=owner.pubkey(),
        token_account=token_account_address,
        fee_payer=fee_payer.pubkey(),
        prepared=prepared,
    )


class SponsoredBurnSigner(KeypairSigner):
    """Keypair signer for exactly one sponsored burn.

    The owner and fee payer keypairs are dropped as soon as the burn
    transaction has been signed, whether or not broadcasting succeeded.
    """

    def __init__(self, rpc: SolanaRPCClient, owner: Keypair, fee_payer: Keypair):
        super().__init__(rpc, owner=owner, fee_payer=fee_payer)
        self._address = str(owner.pubkey())

    def __repr__(self) -> str:
        return f"<SponsoredBurnSigner owner={self._address} released={self.released}>"

    @property
    def address(self) -> str:
        return self._address

    @property
    def released(self) -> bool:
        return self.owner is None

    def release(self):
        """Forget both keypairs."""
        self.owner = None
        self.fee_payer = None

    def sign_and_submit(self, instruction, extra_signers=()) -> str:
        if self.released:
            raise SigningRejected(f"Sponsored burn keys of {self._address} were already used and released")
        try:
            return super().sign_and_submit(instruction, extra_signers)
        finally:
            self.release()

    def sign_message(self, message: bytes) -> bytes:
        if self.released:
            raise SigningRejected(f"Sponsored burn keys of {self._address} were already used and released")
        return super().sign_message(message)


class SponsoredSolanaToAptosRoute(SolanaToAptosRoute):
    """Solana → Aptos route burning the ephemeral wallet's whole balance.

    The transfer amount is replaced with the token account balance when
    the burn is prepared, so transfers may be created with ``amount=0``.
    """

    def __init__(self, rpc: SolanaRPCClient, owner: Pubkey, fee_payer: Pubkey, programs: CCTPPrograms = MAINNET_PROGRAMS, gas_amount: int = 0):
        super().__init__(owner=owner, fee_payer=fee_payer, programs=programs, gas_amount=gas_amount)
        self.rpc = rpc

    def prepare_burn(self, transfer: BridgeTransfer, source_rpc: ChainRPC) -> PreparedCall:
        prepared, token_account_address = prepare_sponsored_burn(
            rpc=self.rpc,
            owner=self.owner,
            fee_payer=self.fee_payer,
            mint_recipient=transfer.recipient,
            destination_domain=transfer.dest_domain,
            programs=self.programs,
        )
        self.owner_token_account = token_account_address
        transfer.amount = prepared.amount
        return PreparedCall(instruction=prepared.instruction, extra_signers=[prepared.event_data_keypair])


def create_sponsored_orchestrator(
    *,
    rpc: SolanaRPCClient,
    owner: Keypair,
    fee_payer: Keypair,
    dest_signer: SigningCollaborator,
    dest_rpc: ChainRPC,
    config: BridgeConfig | None = None,
    attestation_session: requests.Session | None = None,
    abort: threading.Event | None = None,
) -> BridgeOrchestrator:
    """Orchestrator for the privacy flow.

    Uses the sponsored route and the slower attestation schedule that waits before the first query.
    The keypairs are held by a :py:class:`SponsoredBurnSigner` and released once the burn is signed,
    so the orchestrator runs a single transfer.
    """
    if config is None:
        config = BridgeConfig(attestation=AttestationPollConfig.create_privacy_flow_config())
    return BridgeOrchestrator(
        route=SponsoredSolanaToAptosRoute(rpc, owner=owner.pubkey(), fee_payer=fee_payer.pubkey()),
        source_signer=SponsoredBurnSigner(rpc, owner=owner, fee_payer=fee_payer),
        source_rpc=rpc,
        dest_signer=dest_signer,
        dest_rpc=dest_rpc,
        config=config,
        attestation_session=attestation_session,
        abort=abort,
    )
