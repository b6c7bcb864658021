"""CCTP V1 message codec.

A CCTP message is a fixed header followed by a burn message body.
All integers are big-endian.

Header (116 bytes):

========= ====== =====================
Offset    Size   Field
========= ====== =====================
0         4      version
4         4      source domain
8         4      destination domain
12        8      nonce
20        32     sender
52        32     recipient
84        32     destination caller
========= ====== =====================

Body (132 bytes):

========= ====== =====================
Offset    Size   Field
========= ====== =====================
116       4      body version
120       32     burn token
152       32     mint recipient
184       32     amount
216       32     message sender
========= ====== =====================

The bridge reads the burn token to derive the token pair account and the
mint recipient to check where funds land.
"""

import struct
from dataclasses import dataclass

from eth_utils import keccak

from cctp_bridge.constants import CCTP_MESSAGE_BODY_VERSION, CCTP_MESSAGE_VERSION
from cctp_bridge.errors import EncodingError, MalformedMessage

#: Length of the message header
HEADER_LENGTH = 116

#: Length of the burn message body
BODY_LENGTH = 132

#: Shortest valid burn message
MESSAGE_MIN_LENGTH = HEADER_LENGTH + BODY_LENGTH

SOURCE_DOMAIN_OFFSET = 4
DESTINATION_DOMAIN_OFFSET = 8
NONCE_OFFSET = 12
BURN_TOKEN_OFFSET = 120
MINT_RECIPIENT_OFFSET = 152
AMOUNT_OFFSET = 184

_HEADER = struct.Struct(">IIIQ32s32s32s")
_BODY = struct.Struct(">I32s32s32s32s")

_ZERO_ADDRESS = bytes(32)

_MAX_UINT256 = 2**256 - 1


@dataclass(slots=True, frozen=True)
class CCTPMessage:
    """Decoded CCTP V1 burn message.

    Address fields are raw 32-byte vectors. Use
    :py:func:`cctp_bridge.address.to_native_address` for chain native forms.
    """

    #: Message format version
    version: int

    #: CCTP domain where the burn happened
    source_domain: int

    #: CCTP domain where the mint happens
    destination_domain: int

    #: Per source domain nonce assigned by the message transmitter
    nonce: int

    #: Source token messenger
    sender: bytes

    #: Destination token messenger
    recipient: bytes

    #: Who may call ``receiveMessage``, all zeros for anyone
    destination_caller: bytes

    #: Burn message body version
    body_version: int

    #: Burned token on the source chain
    burn_token: bytes

    #: Token account or address that receives the minted funds
    mint_recipient: bytes

    #: Amount in raw token units
    amount: int

    #: Account that initiated the burn
    message_sender: bytes

    def encode(self) -> bytes:
        """Serialise to wire bytes."""
        return encode_burn_message(self)

    @property
    def message_hash(self) -> bytes:
        """keccak256 of the encoded message."""
        return hash_message(self.encode())


def encode_burn_message(fields: CCTPMessage) -> bytes:
    """Encode header and burn body.

    :raises EncodingError:
        An address field is not exactly 32 bytes, or an integer overflows its width.
    """
    for name in ("sender", "recipient", "destination_caller", "burn_token", "mint_recipient", "message_sender"):
        value = getattr(fields, name)
        if not isinstance(value, (bytes, bytearray)) or len(value) != 32:
            raise EncodingError(f"Field {name} must be 32 bytes, got {value!r}")

    if not 0 <= fields.amount <= _MAX_UINT256:
        raise EncodingError(f"Amount does not fit uint256: {fields.amount}")

    try:
        header = _HEADER.pack(
            fields.version,
            fields.source_domain,
            fields.destination_domain,
            fields.nonce,
            bytes(fields.sender),
            bytes(fields.recipient),
            bytes(fields.destination_caller),
        )
        body = _BODY.pack(
            fields.body_version,
            bytes(fields.burn_token),
            bytes(fields.mint_recipient),
            fields.amount.to_bytes(32, "big"),
            bytes(fields.message_sender),
        )
    except struct.error as e:
        raise EncodingError(f"Cannot encode CCTP message: {e}") from e

    return header + body


def decode_message(data: bytes) -> CCTPMessage:
    """Decode raw CCTP message bytes.

    Bytes past the burn body are ignored.

    :raises MalformedMessage:
        The message is too short.
    """
    _check_length(data)
    version, source_domain, destination_domain, nonce, sender, recipient, destination_caller = _HEADER.unpack_from(data, 0)
    body_version, burn_token, mint_recipient, amount, message_sender = _BODY.unpack_from(data, HEADER_LENGTH)
    return CCTPMessage(
        version=version,
        source_domain=source_domain,
        destination_domain=destination_domain,
        nonce=nonce,
        sender=sender,
        recipient=recipient,
        destination_caller=destination_caller,
        body_version=body_version,
        burn_token=burn_token,
        mint_recipient=mint_recipient,
        amount=int.from_bytes(amount, "big"),
        message_sender=message_sender,
    )


def decode_mint_recipient(data: bytes) -> bytes:
    """Read the mint recipient at offset 152.

    :raises MalformedMessage:
        The message is too short or the recipient is all zeros.
    """
    _check_length(data)
    recipient = bytes(data[MINT_RECIPIENT_OFFSET : MINT_RECIPIENT_OFFSET + 32])
    if recipient == _ZERO_ADDRESS:
        raise MalformedMessage("Mint recipient is the zero address")
    return recipient


def decode_burn_token(data: bytes) -> bytes:
    """Read the burned token address at offset 120."""
    _check_length(data)
    return bytes(data[BURN_TOKEN_OFFSET : BURN_TOKEN_OFFSET + 32])


def decode_source_domain(data: bytes) -> int:
    _check_length(data)
    return struct.unpack_from(">I", data, SOURCE_DOMAIN_OFFSET)[0]


def decode_destination_domain(data: bytes) -> int:
    _check_length(data)
    return struct.unpack_from(">I", data, DESTINATION_DOMAIN_OFFSET)[0]


def decode_nonce(data: bytes) -> int:
    _check_length(data)
    return struct.unpack_from(">Q", data, NONCE_OFFSET)[0]


def hash_message(data: bytes) -> bytes:
    """keccak256 of raw message bytes.

    This is the key Circle's attestation service uses for ``/attestations/{messageHash}``.
    """
    return keccak(bytes(data))


def create_burn_message(
    *,
    source_domain: int,
    destination_domain: int,
    nonce: int,
    burn_token: bytes,
    mint_recipient: bytes,
    amount: int,
    message_sender: bytes,
    sender: bytes = _ZERO_ADDRESS,
    recipient: bytes = _ZERO_ADDRESS,
    destination_caller: bytes = _ZERO_ADDRESS,
) -> CCTPMessage:
    """Build a message with the current version numbers filled in."""
    return CCTPMessage(
        version=CCTP_MESSAGE_VERSION,
        source_domain=source_domain,
        destination_domain=destination_domain,
        nonce=nonce,
        sender=sender,
        recipient=recipient,
        destination_caller=destination_caller,
        body_version=CCTP_MESSAGE_BODY_VERSION,
        burn_token=burn_token,
        mint_recipient=mint_recipient,
        amount=amount,
        message_sender=message_sender,
    )


def _check_length(data: bytes):
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedMessage(f"CCTP message must be bytes, got {type(data).__name__}")
    if len(data) < MESSAGE_MIN_LENGTH:
        raise MalformedMessage(f"CCTP message is {len(data)} bytes, expected at least {MESSAGE_MIN_LENGTH}")
