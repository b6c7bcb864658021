"""Build CCTP ``receiveMessage`` instructions on Solana.

Minting on Solana calls the MessageTransmitter, which checks the
attestation, marks the message nonce as used and CPIs into the
TokenMessengerMinter to mint USDC to the message's recipient token
account. The CPI accounts are passed as remaining accounts.

Example::

    from cctp_bridge.receive import prepare_receive_message

    prepared = prepare_receive_message(
        message=attestation.message,
        attestation=attestation.attestation,
        payer=wallet.pubkey(),
        source_domain=CCTP_DOMAIN_APTOS,
    )
    for warning in prepared.warnings:
        print(warning)
"""

import logging
import struct
from dataclasses import dataclass, field

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from cctp_bridge.constants import SPL_TOKEN_ACCOUNT_SIZE, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from cctp_bridge.errors import MalformedMessage, RecipientMismatch, UnsupportedMintAsset
from cctp_bridge.message import CCTPMessage, decode_message, decode_mint_recipient
from cctp_bridge.pda import MAINNET_PROGRAMS, CCTPAddressDeriver, CCTPPrograms, DerivedAddress
from cctp_bridge.transfer import anchor_discriminator

logger = logging.getLogger(__name__)

#: Selector of MessageTransmitter ``receive_message``
RECEIVE_MESSAGE_DISCRIMINATOR = anchor_discriminator("receive_message")


@dataclass(slots=True, frozen=True)
class TokenAccount:
    """The fields of an SPL token account the bridge cares about."""

    #: Token mint
    mint: Pubkey

    #: Wallet owning the token account
    owner: Pubkey

    #: Balance in raw units
    amount: int

    @classmethod
    def from_account_data(cls, data: bytes) -> "TokenAccount":
        """Parse the SPL token account layout: mint 0..32, owner 32..64, amount u64 LE 64..72."""
        if len(data) < 72:
            raise UnsupportedMintAsset(f"Account data is {len(data)} bytes, not an SPL token account ({SPL_TOKEN_ACCOUNT_SIZE} bytes)")
        return cls(
            mint=Pubkey(bytes(data[0:32])),
            owner=Pubkey(bytes(data[32:64])),
            amount=struct.unpack_from("<Q", data, 64)[0],
        )


@dataclass(slots=True)
class PreparedReceive:
    """A mint instruction ready for signing."""

    #: ``receiveMessage`` instruction
    instruction: Instruction

    #: Decoded message being received
    message: CCTPMessage

    #: Token account receiving the minted USDC
    recipient_token_account: Pubkey

    #: Nonce bitmap account consumed by this message
    used_nonces: DerivedAddress

    #: Non-fatal problems found while preparing
    warnings: list[RecipientMismatch] = field(default_factory=list)


def encode_receive_message_data(message: bytes, attestation: bytes) -> bytes:
    """Instruction data: discriminator, then message and attestation as u32 LE length-prefixed vectors."""
    return RECEIVE_MESSAGE_DISCRIMINATOR + struct.pack("<I", len(message)) + bytes(message) + struct.pack("<I", len(attestation)) + bytes(attestation)


def verify_recipient_token_account(
    token_account: TokenAccount,
    expected_mint: Pubkey,
    expected_owner: Pubkey | None = None,
) -> list[RecipientMismatch]:
    """Check a recipient token account before minting into it.

    :raises UnsupportedMintAsset:
        Account holds another token.

    :return:
        Owner mismatch warnings. Empty when the owner matches or no owner is expected.
    """
    if token_account.mint != expected_mint:
        raise UnsupportedMintAsset(f"Recipient token account holds {token_account.mint}, expected {expected_mint}")

    warnings = []
    if expected_owner is not None and token_account.owner != expected_owner:
        warning = RecipientMismatch(f"Recipient token account is owned by {token_account.owner}, expected {expected_owner}")
        logger.warning("%s", warning)
        warnings.append(warning)
    return warnings


def prepare_receive_message(
    *,
    message: bytes,
    attestation: bytes,
    payer: Pubkey,
    source_domain: int | None = None,
    event_nonce: int | str | None = None,
    recipient_token_account: Pubkey | None = None,
    token_account: TokenAccount | None = None,
    expected_owner: Pubkey | None = None,
    programs: CCTPPrograms = MAINNET_PROGRAMS,
) -> PreparedReceive:
    """Build a ``receiveMessage`` instruction minting USDC on Solana.

    :param message:
        Raw CCTP message from the attestation service.

    :param attestation:
        Attestation signature bytes.

    :param payer:
        Pays fees and the used-nonces account rent. Also the caller.

    :param source_domain:
        Domain the burn came from. Checked against the message header when given.

    :param event_nonce:
        Nonce reported by the attestation service. Must match the header nonce.

    :param recipient_token_account:
        Account to mint into. Defaults to the message's mint recipient,
        a different value is kept and reported as a warning.

    :param token_account:
        Current on-chain contents of the recipient token account, for best effort verification.

    :param expected_owner:
        Wallet that should own the recipient token account.

    :raises MalformedMessage:
        Message is short, has a zero recipient, comes from another domain
        or disagrees with the reported event nonce.

    :raises UnsupportedMintAsset:
        Recipient token account holds another token.
    """
    decoded = decode_message(message)
    mint_recipient = Pubkey(decode_mint_recipient(message))

    if source_domain is not None and decoded.source_domain != source_domain:
        raise MalformedMessage(f"Message comes from domain {decoded.source_domain}, expected {source_domain}")

    nonce = decoded.nonce
    if event_nonce is not None:
        try:
            reported = int(event_nonce)
        except ValueError as e:
            raise MalformedMessage(f"Event nonce is not an integer: {event_nonce!r}") from e
        if reported != nonce:
            raise MalformedMessage(f"Event nonce {reported} does not match message nonce {nonce}")

    warnings = []
    if recipient_token_account is None:
        recipient_token_account = mint_recipient
    elif recipient_token_account != mint_recipient:
        warning = RecipientMismatch(f"Supplied token account {recipient_token_account} differs from the message mint recipient {mint_recipient}")
        logger.warning("%s", warning)
        warnings.append(warning)

    if token_account is not None:
        warnings += verify_recipient_token_account(token_account, programs.usdc_mint, expected_owner)

    deriver = CCTPAddressDeriver(programs)
    used_nonces = deriver.used_nonces(decoded.source_domain, nonce)

    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(payer, is_signer=True, is_writable=False),
        AccountMeta(deriver.message_transmitter_authority(programs.token_messenger_minter).address, is_signer=False, is_writable=False),
        AccountMeta(deriver.message_transmitter_state().address, is_signer=False, is_writable=True),
        AccountMeta(used_nonces.address, is_signer=False, is_writable=True),
        AccountMeta(programs.token_messenger_minter, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(deriver.message_transmitter_event_authority().address, is_signer=False, is_writable=False),
        AccountMeta(programs.message_transmitter, is_signer=False, is_writable=False),
        # Remaining accounts for the TokenMessengerMinter CPI
        AccountMeta(deriver.token_messenger().address, is_signer=False, is_writable=False),
        AccountMeta(deriver.remote_token_messenger(decoded.source_domain).address, is_signer=False, is_writable=False),
        AccountMeta(deriver.token_minter().address, is_signer=False, is_writable=True),
        AccountMeta(deriver.local_token(programs.usdc_mint).address, is_signer=False, is_writable=True),
        AccountMeta(deriver.token_pair(decoded.source_domain, decoded.burn_token).address, is_signer=False, is_writable=False),
        AccountMeta(recipient_token_account, is_signer=False, is_writable=True),
        AccountMeta(deriver.custody_token_account(programs.usdc_mint).address, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(deriver.token_messenger_event_authority().address, is_signer=False, is_writable=False),
        AccountMeta(programs.token_messenger_minter, is_signer=False, is_writable=False),
    ]

    instruction = Instruction(
        programs.message_transmitter,
        encode_receive_message_data(message, attestation),
        accounts,
    )

    logger.info(
        "Prepared receiveMessage: source domain=%d, nonce=%d, amount=%d, recipient token account=%s",
        decoded.source_domain,
        nonce,
        decoded.amount,
        recipient_token_account,
    )

    return PreparedReceive(
        instruction=instruction,
        message=decoded,
        recipient_token_account=recipient_token_account,
        used_nonces=used_nonces,
        warnings=warnings,
    )
