"""Chain native address ↔ CCTP 32-byte address conversion."""

import pytest

from cctp_bridge.address import (
    Chain,
    aptos_address_to_bytes32,
    bytes32_to_aptos_address,
    coerce_address32,
    convert_chain_address,
    to_native_address,
)
from cctp_bridge.constants import USDC_APTOS_ADDRESS
from cctp_bridge.errors import AddressConversionError

USDC_SOLANA = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.mark.parametrize(
    "address, chain",
    [
        (USDC_SOLANA, Chain.solana),
        ("11111111111111111111111111111111", Chain.solana),
        (USDC_APTOS_ADDRESS, Chain.aptos),
    ],
)
def test_native_round_trip(address, chain):
    """Canonical native addresses survive conversion both ways."""
    raw = convert_chain_address(address, chain)
    assert len(raw) == 32
    assert to_native_address(raw, chain) == address


def test_aptos_short_form_padded():
    """``0x1`` is the framework address, left-padded to 32 bytes."""
    raw = aptos_address_to_bytes32("0x1")
    assert raw == bytes(31) + b"\x01"
    assert bytes32_to_aptos_address(raw) == "0x" + "0" * 63 + "1"


def test_aptos_uppercase_accepted():
    raw = aptos_address_to_bytes32(USDC_APTOS_ADDRESS.upper().replace("0X", "0x"))
    assert bytes32_to_aptos_address(raw) == USDC_APTOS_ADDRESS


@pytest.mark.parametrize(
    "address, canonical",
    [
        ("0x1", "0x" + "0" * 63 + "1"),
        ("0xA", "0x" + "0" * 63 + "a"),
        (USDC_APTOS_ADDRESS.upper().replace("0X", "0x"), USDC_APTOS_ADDRESS),
    ],
)
def test_aptos_round_trip_gives_long_form(address, canonical):
    """Short and uppercase Aptos addresses come back normalised, naming the same account."""
    raw = convert_chain_address(address, Chain.aptos)
    assert to_native_address(raw, Chain.aptos) == canonical
    assert convert_chain_address(canonical, Chain.aptos) == raw


@pytest.mark.parametrize(
    "address, chain",
    [
        ("", Chain.solana),
        ("0OIl", Chain.solana),
        ("1111", Chain.solana),
        ("0x", Chain.aptos),
        ("0xzz", Chain.aptos),
        ("0x" + "1" * 65, Chain.aptos),
    ],
)
def test_invalid_addresses(address, chain):
    with pytest.raises(AddressConversionError):
        convert_chain_address(address, chain)


def test_wrong_length_bytes():
    with pytest.raises(AddressConversionError, match="32 bytes"):
        to_native_address(b"\x01" * 20, Chain.aptos)


def test_coerce_address32():
    """Raw bytes pass through, strings are converted."""
    raw = b"\x05" * 32
    assert coerce_address32(raw, Chain.solana) == raw
    assert coerce_address32(USDC_SOLANA, Chain.solana) == convert_chain_address(USDC_SOLANA, Chain.solana)


def test_chain_from_domain():
    assert Chain.from_domain(5) == Chain.solana
    assert Chain.from_domain(9) == Chain.aptos
    with pytest.raises(AddressConversionError, match="domain 0"):
        Chain.from_domain(0)
