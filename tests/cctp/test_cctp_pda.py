"""Program derived addresses of the CCTP V1 Solana programs.

The seed scheme is checked against account addresses taken from
successful mainnet ``receiveMessage`` transactions.
"""

import pytest
from solders.pubkey import Pubkey

from cctp_bridge.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_PROGRAM_ID, USDC_APTOS_ADDRESS, USDC_SOLANA_MINT
from cctp_bridge.errors import DerivationError
from cctp_bridge.pda import (
    CCTP_V1_SEED_SCHEME,
    KNOWN_MAINNET_ADDRESSES,
    MAINNET_PROGRAMS,
    CCTPAddressDeriver,
    derive_associated_token_address,
    derive_program_address,
    find_seed_scheme_mismatches,
    first_nonce_in_bucket,
    used_nonces_delimiter,
)


@pytest.fixture()
def deriver() -> CCTPAddressDeriver:
    return CCTPAddressDeriver()


def test_seed_scheme_matches_mainnet():
    """Every known mainnet account is derived exactly."""
    assert find_seed_scheme_mismatches() == {}


def test_known_addresses_individually(deriver):
    assert str(deriver.message_transmitter_authority().address) == "CFtn7PC5NsaFAuG65LwvhcGVD2MiqSpMJ7yvpyhsgJwW"
    assert str(deriver.message_transmitter_event_authority().address) == "6mH8scevHQJsyyp1qxu8kyAapHuzEE67mtjFDJZjSbQW"
    assert str(deriver.remote_token_messenger(9).address) == "3CTbq3SF9gekPHiJwLsyivfVbuaRFAQwQ6eQgtNy8nP1"
    assert str(deriver.token_pair(9, USDC_APTOS_ADDRESS).address) == "C7XDQkHdr7omXt3Z4u3AuwQx9Za4AswzifnmKaoRhvLp"
    assert str(deriver.token_messenger_event_authority().address) == "CNfZLeeL4RUxwfPnjA3tLiQt4y43jp4V7bMpga673jf9"
    assert len(KNOWN_MAINNET_ADDRESSES) == 5


def test_broken_scheme_detected():
    """A wrong label is caught by the fixture check."""
    scheme = dict(CCTP_V1_SEED_SCHEME)
    layout = scheme["remote_token_messenger"]
    scheme["remote_token_messenger"] = type(layout)(layout.program, "remote_token_messengers", layout.params)
    mismatches = find_seed_scheme_mismatches(CCTPAddressDeriver(scheme=scheme))
    assert list(mismatches) == ["remote_token_messenger"]


def test_fixture_entries_carry_their_parameters(deriver):
    """Each fixture entry derives on its own, with the parameters stored next to it."""
    for (name, params), expected in KNOWN_MAINNET_ADDRESSES.items():
        assert str(deriver.derive(name, **dict(params)).address) == expected


def test_underivable_account_reported_as_mismatch():
    """A layout needing a parameter the fixtures do not carry is reported, not raised."""
    scheme = dict(CCTP_V1_SEED_SCHEME)
    layout = scheme["message_transmitter_event_authority"]
    scheme["message_transmitter_event_authority"] = type(layout)(layout.program, layout.label, ("mint",))
    mismatches = find_seed_scheme_mismatches(CCTPAddressDeriver(scheme=scheme))
    assert list(mismatches) == ["message_transmitter_event_authority"]
    expected, derived = mismatches["message_transmitter_event_authority"]
    assert expected == "6mH8scevHQJsyyp1qxu8kyAapHuzEE67mtjFDJZjSbQW"
    assert "Missing seed parameter: mint" in derived


@pytest.mark.parametrize(
    "nonce, first",
    [
        (1, 1),
        (6400, 1),
        (6401, 6401),
        (12800, 6401),
        (12801, 12801),
    ],
)
def test_first_nonce_in_bucket(nonce, first):
    assert first_nonce_in_bucket(nonce) == first


def test_nonce_zero_rejected():
    with pytest.raises(DerivationError, match="at least 1"):
        first_nonce_in_bucket(0)


def test_used_nonces_bucket_shared(deriver):
    """Nonces in the same bucket share one bitmap account."""
    assert deriver.used_nonces(9, 1).address == deriver.used_nonces(9, 6400).address
    assert deriver.used_nonces(9, 6400).address != deriver.used_nonces(9, 6401).address


def test_used_nonces_seeds(deriver):
    """Seeds are label, domain and first nonce as decimal strings."""
    derived = deriver.used_nonces(9, 6500)
    assert derived.seeds == (b"used_nonces", b"9", b"6401")
    assert derived.owning_program == MAINNET_PROGRAMS.message_transmitter


def test_used_nonces_delimiter(deriver):
    """Domains from 11 on get a ``-`` seed between domain and nonce."""
    assert used_nonces_delimiter(10) == b""
    assert used_nonces_delimiter(11) == b"-"
    assert deriver.used_nonces(10, 1).seeds == (b"used_nonces", b"10", b"1")
    assert deriver.used_nonces(11, 1).seeds == (b"used_nonces", b"11", b"-", b"1")


def test_derivation_deterministic(deriver):
    a = deriver.token_pair(9, USDC_APTOS_ADDRESS)
    b = CCTPAddressDeriver().token_pair(9, bytes.fromhex(USDC_APTOS_ADDRESS[2:]))
    assert a == b


def test_distinct_accounts_distinct_addresses(deriver):
    """No two account kinds collide."""
    addresses = {
        deriver.message_transmitter_state().address,
        deriver.message_transmitter_authority().address,
        deriver.message_transmitter_event_authority().address,
        deriver.token_messenger().address,
        deriver.token_minter().address,
        deriver.sender_authority().address,
        deriver.token_messenger_event_authority().address,
        deriver.remote_token_messenger(9).address,
        deriver.remote_token_messenger(0).address,
        deriver.local_token().address,
        deriver.token_pair(9, USDC_APTOS_ADDRESS).address,
        deriver.custody_token_account().address,
        deriver.used_nonces(9, 1).address,
    }
    assert len(addresses) == 13


def test_derived_addresses_off_curve(deriver):
    assert not deriver.token_messenger().address.is_on_curve()


def test_unknown_account_kind(deriver):
    with pytest.raises(DerivationError, match="Unknown CCTP account kind"):
        deriver.derive("vault")


def test_missing_seed_parameter(deriver):
    with pytest.raises(DerivationError, match="Missing seed parameter: domain"):
        deriver.derive("remote_token_messenger")


def test_seed_limits():
    with pytest.raises(DerivationError, match="longer than 32"):
        derive_program_address(MAINNET_PROGRAMS.message_transmitter, [b"x" * 33])
    with pytest.raises(DerivationError, match="At most 16"):
        derive_program_address(MAINNET_PROGRAMS.message_transmitter, [b"x"] * 17)


def test_associated_token_address():
    """ATA is derived from owner, token program and mint."""
    owner = Pubkey.from_string("CFtn7PC5NsaFAuG65LwvhcGVD2MiqSpMJ7yvpyhsgJwW")
    expected, _ = Pubkey.find_program_address([bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(USDC_SOLANA_MINT)], ASSOCIATED_TOKEN_PROGRAM_ID)
    assert derive_associated_token_address(owner) == expected
