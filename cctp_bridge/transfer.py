"""Build CCTP ``depositForBurn`` instructions on Solana.

Burning USDC on Solana is a single instruction to Circle's
TokenMessengerMinter program. It CPIs into the MessageTransmitter,
which stores the outgoing message in a fresh ``messageSentEventData``
account. That account's keypair is generated here and must co-sign
the transaction.

The owner of the burned tokens and the payer of fees and rent are
separate roles, so a sponsor can pay for a burn from a wallet that
holds no SOL.

Example::

    from cctp_bridge.transfer import prepare_deposit_for_burn

    prepared = prepare_deposit_for_burn(
        amount=100_000,  # 0.1 USDC
        destination_domain=CCTP_DOMAIN_APTOS,
        owner=wallet.pubkey(),
        mint_recipient="0x1f6c...",
    )
    signer.sign_and_submit(prepared.instruction, extra_signers=[prepared.event_data_keypair])
"""

import hashlib
import logging
import struct
from dataclasses import dataclass, field

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from cctp_bridge.address import Chain, coerce_address32
from cctp_bridge.constants import SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from cctp_bridge.errors import AddressConversionError, InvalidAmount
from cctp_bridge.pda import MAINNET_PROGRAMS, CCTPAddressDeriver, CCTPPrograms, derive_associated_token_address

logger = logging.getLogger(__name__)

#: Largest amount the instruction's u64 field can carry
MAX_BURN_AMOUNT = 2**64 - 1


def anchor_discriminator(instruction_name: str) -> bytes:
    """First 8 bytes of ``sha256("global:<name>")``, Anchor's instruction selector."""
    return hashlib.sha256(f"global:{instruction_name}".encode("utf-8")).digest()[:8]


#: Selector of TokenMessengerMinter ``deposit_for_burn``
DEPOSIT_FOR_BURN_DISCRIMINATOR = anchor_discriminator("deposit_for_burn")


@dataclass(slots=True)
class PreparedBurn:
    """A burn instruction ready for signing."""

    #: ``depositForBurn`` instruction
    instruction: Instruction

    #: Fresh keypair of the message sent event account, must co-sign
    event_data_keypair: Keypair

    #: Owner of the burned tokens
    owner: Pubkey

    #: Pays fees and event account rent
    fee_payer: Pubkey

    #: Burned amount in raw units
    amount: int

    #: CCTP domain the tokens are minted on
    destination_domain: int

    #: 32-byte mint recipient on the destination chain
    mint_recipient: bytes

    #: Every public key that must sign the transaction
    required_signers: list[Pubkey] = field(default_factory=list)


def validate_burn_amount(amount: int, balance: int | None = None) -> int:
    """Check a burn amount before doing anything else with it.

    :param amount:
        Raw token units.

    :param balance:
        Known token balance, if any.

    :raises InvalidAmount:
        Amount is not a positive integer, overflows u64 or exceeds the balance.
    """
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise InvalidAmount(f"Amount must be an integer in raw token units, got {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount > MAX_BURN_AMOUNT:
        raise InvalidAmount(f"Amount does not fit u64: {amount}")
    if balance is not None and amount > balance:
        raise InvalidAmount(f"Amount {amount} exceeds balance {balance}")
    return amount


def encode_deposit_for_burn_data(amount: int, destination_domain: int, mint_recipient: bytes) -> bytes:
    """Instruction data: discriminator, amount u64 LE, domain u32 LE, recipient."""
    return DEPOSIT_FOR_BURN_DISCRIMINATOR + struct.pack("<QI", amount, destination_domain) + mint_recipient


def prepare_deposit_for_burn(
    *,
    amount: int,
    destination_domain: int,
    owner: Pubkey,
    mint_recipient: bytes | str,
    fee_payer: Pubkey | None = None,
    owner_token_account: Pubkey | None = None,
    programs: CCTPPrograms = MAINNET_PROGRAMS,
    balance: int | None = None,
    event_data_keypair: Keypair | None = None,
) -> PreparedBurn:
    """Build a ``depositForBurn`` instruction.

    The amount is validated first, before any conversion or derivation.

    :param amount:
        Amount of USDC to burn in raw units (6 decimals).

    :param destination_domain:
        CCTP domain id of the chain where USDC is minted.

    :param owner:
        Wallet owning the burned tokens. Signs.

    :param mint_recipient:
        Recipient on the destination chain, either 32 raw bytes
        or the destination chain's native address.

    :param fee_payer:
        Pays transaction fees and event account rent. Defaults to ``owner``.

    :param owner_token_account:
        Token account the USDC is burned from. Defaults to the owner's associated token account.

    :param programs:
        CCTP program ids and local mint.

    :param balance:
        Known balance of the burned token account. When given, the amount is checked against it.

    :param event_data_keypair:
        Keypair for the message sent event account. Generated when not given.

    :raises InvalidAmount:
        Bad amount.

    :raises AddressConversionError:
        Recipient is malformed or all zeros.
    """
    validate_burn_amount(amount, balance)

    recipient32 = coerce_address32(mint_recipient, Chain.from_domain(destination_domain))
    if recipient32 == bytes(32):
        raise AddressConversionError("Mint recipient must not be the zero address")

    fee_payer = fee_payer or owner
    owner_token_account = owner_token_account or derive_associated_token_address(owner, programs.usdc_mint)
    event_data_keypair = event_data_keypair or Keypair()

    deriver = CCTPAddressDeriver(programs)

    accounts = [
        AccountMeta(owner, is_signer=True, is_writable=False),
        AccountMeta(fee_payer, is_signer=True, is_writable=True),
        AccountMeta(deriver.sender_authority().address, is_signer=False, is_writable=False),
        AccountMeta(owner_token_account, is_signer=False, is_writable=True),
        AccountMeta(deriver.message_transmitter_state().address, is_signer=False, is_writable=True),
        AccountMeta(deriver.token_messenger().address, is_signer=False, is_writable=False),
        AccountMeta(deriver.remote_token_messenger(destination_domain).address, is_signer=False, is_writable=False),
        AccountMeta(deriver.token_minter().address, is_signer=False, is_writable=False),
        AccountMeta(deriver.local_token(programs.usdc_mint).address, is_signer=False, is_writable=True),
        AccountMeta(programs.usdc_mint, is_signer=False, is_writable=True),
        AccountMeta(event_data_keypair.pubkey(), is_signer=True, is_writable=True),
        AccountMeta(programs.message_transmitter, is_signer=False, is_writable=False),
        AccountMeta(programs.token_messenger_minter, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(deriver.token_messenger_event_authority().address, is_signer=False, is_writable=False),
        AccountMeta(programs.token_messenger_minter, is_signer=False, is_writable=False),
    ]

    instruction = Instruction(
        programs.token_messenger_minter,
        encode_deposit_for_burn_data(amount, destination_domain, recipient32),
        accounts,
    )

    required_signers = [fee_payer]
    for key in (owner, event_data_keypair.pubkey()):
        if key not in required_signers:
            required_signers.append(key)

    logger.info(
        "Prepared depositForBurn: amount=%d, destination domain=%d, owner=%s, fee payer=%s",
        amount,
        destination_domain,
        owner,
        fee_payer,
    )

    return PreparedBurn(
        instruction=instruction,
        event_data_keypair=event_data_keypair,
        owner=owner,
        fee_payer=fee_payer,
        amount=amount,
        destination_domain=destination_domain,
        mint_recipient=recipient32,
        required_signers=required_signers,
    )
