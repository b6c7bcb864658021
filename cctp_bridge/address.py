"""Chain-agnostic 32-byte address encoding.

CCTP messages carry every address as a 32-byte vector. Each chain
has its own native text form:

- Solana: base58 of the 32 public key bytes
- Aptos: ``0x`` followed by 64 lowercase hex characters

Conversions are lossless for canonical native addresses::

    to_native_address(convert_chain_address(a, chain), chain) == a
"""

import enum
import re

import base58

from cctp_bridge.constants import CCTP_DOMAIN_APTOS, CCTP_DOMAIN_SOLANA
from cctp_bridge.errors import AddressConversionError

#: Length of a CCTP address field
ADDRESS_LENGTH = 32

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


class Chain(enum.Enum):
    """Chain families the bridge knows how to address."""

    solana = "solana"
    aptos = "aptos"

    @classmethod
    def from_domain(cls, domain: int) -> "Chain":
        """Resolve CCTP domain id to a chain family."""
        if domain == CCTP_DOMAIN_SOLANA:
            return cls.solana
        if domain == CCTP_DOMAIN_APTOS:
            return cls.aptos
        raise AddressConversionError(f"No address format known for CCTP domain {domain}")


def solana_address_to_bytes32(address: str) -> bytes:
    """Decode a base58 Solana address to its 32 raw bytes."""
    if not isinstance(address, str) or not address:
        raise AddressConversionError(f"Solana address must be a non-empty string, got {address!r}")
    try:
        raw = base58.b58decode(address)
    except ValueError as e:
        raise AddressConversionError(f"Not a base58 Solana address: {address!r}") from e
    if len(raw) != ADDRESS_LENGTH:
        raise AddressConversionError(f"Solana address {address} decodes to {len(raw)} bytes, expected {ADDRESS_LENGTH}")
    return raw


def bytes32_to_solana_address(raw: bytes) -> str:
    """Encode 32 raw bytes as a base58 Solana address."""
    _check_length(raw)
    return base58.b58encode(bytes(raw)).decode("ascii")


def aptos_address_to_bytes32(address: str) -> bytes:
    """Decode an Aptos address to its 32 raw bytes.

    Short forms such as ``0x1`` are left-padded with zeros.
    """
    if not isinstance(address, str) or not address:
        raise AddressConversionError(f"Aptos address must be a non-empty string, got {address!r}")
    hex_part = address[2:] if address.lower().startswith("0x") else address
    if not hex_part or len(hex_part) > ADDRESS_LENGTH * 2 or not _HEX_RE.match(hex_part):
        raise AddressConversionError(f"Not an Aptos address: {address!r}")
    return bytes.fromhex(hex_part.zfill(ADDRESS_LENGTH * 2))


def bytes32_to_aptos_address(raw: bytes) -> str:
    """Encode 32 raw bytes in the canonical long Aptos form."""
    _check_length(raw)
    return "0x" + bytes(raw).hex()


def convert_chain_address(native: str, chain: Chain) -> bytes:
    """Convert a chain-native address to a CCTP 32-byte address field.

    :param native:
        Address in the chain's own text form.

    :param chain:
        Which chain the address belongs to.

    :return:
        32 bytes

    :raises AddressConversionError:
        The address is not valid for the chain.
    """
    if chain == Chain.solana:
        return solana_address_to_bytes32(native)
    if chain == Chain.aptos:
        return aptos_address_to_bytes32(native)
    raise AddressConversionError(f"Unsupported chain: {chain}")


def to_native_address(raw: bytes, chain: Chain) -> str:
    """Inverse of :py:func:`convert_chain_address`.

    Aptos addresses always come back in the canonical long form:
    lowercase, ``0x`` prefixed, 64 hex digits. Short and uppercase
    inputs such as ``0x1`` therefore round-trip to their long form,
    compare with :py:func:`aptos_address_to_bytes32` rather than as strings.
    """
    if chain == Chain.solana:
        return bytes32_to_solana_address(raw)
    if chain == Chain.aptos:
        return bytes32_to_aptos_address(raw)
    raise AddressConversionError(f"Unsupported chain: {chain}")


def coerce_address32(address: bytes | str, chain: Chain) -> bytes:
    """Accept either raw 32 bytes or a native address string."""
    if isinstance(address, (bytes, bytearray)):
        _check_length(address)
        return bytes(address)
    return convert_chain_address(address, chain)


def _check_length(raw: bytes):
    if not isinstance(raw, (bytes, bytearray)) or len(raw) != ADDRESS_LENGTH:
        size = len(raw) if isinstance(raw, (bytes, bytearray)) else type(raw).__name__
        raise AddressConversionError(f"Address must be {ADDRESS_LENGTH} bytes, got {size}")
