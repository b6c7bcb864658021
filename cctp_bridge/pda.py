"""Program derived addresses for Circle's CCTP V1 Solana programs.

Every account the burn and mint instructions touch, apart from user
wallets, is a program derived address (PDA). A PDA is the first
``sha256(seeds || bump || program_id || "ProgramDerivedAddress")``
that falls off the ed25519 curve, searching bumps from 255 down.

The seeds are pinned in :py:data:`CCTP_V1_SEED_SCHEME`. The scheme is
checked against addresses observed in successful mainnet transactions,
see :py:func:`find_seed_scheme_mismatches`.

Example::

    from cctp_bridge.pda import CCTPAddressDeriver

    deriver = CCTPAddressDeriver()
    used_nonces = deriver.used_nonces(source_domain=9, nonce=123_456)
    print(used_nonces.address)
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Sequence

from solders.pubkey import Pubkey

from cctp_bridge.address import aptos_address_to_bytes32
from cctp_bridge.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    CCTP_DOMAIN_APTOS,
    MESSAGE_TRANSMITTER_PROGRAM_ID,
    TOKEN_MESSENGER_MINTER_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    USDC_APTOS_ADDRESS,
    USDC_SOLANA_MINT,
)
from cctp_bridge.errors import DerivationError

logger = logging.getLogger(__name__)

#: Solana limit on the number of seeds
MAX_SEEDS = 16

#: Solana limit on a single seed length
MAX_SEED_LENGTH = 32

#: Used nonces are tracked in bitmaps of this many nonces per account
NONCE_BUCKET_SIZE = 6400

#: Domains from this id onwards put ``"-"`` between the domain and nonce seeds,
#: so that e.g. domain 1 / nonce 11 and domain 11 / nonce 1 never collide
USED_NONCES_DELIMITER_MIN_DOMAIN = 11


class CCTPProgram(enum.Enum):
    """The two CCTP V1 programs owning derived accounts."""

    message_transmitter = "message_transmitter"
    token_messenger_minter = "token_messenger_minter"


@dataclass(slots=True, frozen=True)
class CCTPPrograms:
    """Program ids and local mint of one CCTP deployment."""

    #: MessageTransmitter program id
    message_transmitter: Pubkey = MESSAGE_TRANSMITTER_PROGRAM_ID

    #: TokenMessengerMinter program id
    token_messenger_minter: Pubkey = TOKEN_MESSENGER_MINTER_PROGRAM_ID

    #: Local USDC mint
    usdc_mint: Pubkey = USDC_SOLANA_MINT

    def get_program_id(self, program: CCTPProgram) -> Pubkey:
        if program == CCTPProgram.message_transmitter:
            return self.message_transmitter
        return self.token_messenger_minter


#: Circle mainnet deployment
MAINNET_PROGRAMS = CCTPPrograms()


@dataclass(slots=True, frozen=True)
class DerivedAddress:
    """A program derived address and the inputs that produced it."""

    #: Program the address is derived under
    owning_program: Pubkey

    #: Seeds as raw bytes, in order
    seeds: tuple[bytes, ...]

    #: Derived address
    address: Pubkey

    #: Canonical bump seed
    bump: int

    def __str__(self) -> str:
        return str(self.address)


@dataclass(slots=True, frozen=True)
class SeedLayout:
    """How one kind of account's seeds are laid out.

    ``params`` lists the inputs appended after the label, in order.
    Supported parameter kinds:

    - ``domain``: CCTP domain id as a decimal string
    - ``receiver``, ``mint``: 32-byte public key
    - ``burn_token``: 32-byte remote token address
    - ``nonce_delimiter``: ``"-"`` for domains ≥ 11, omitted otherwise
    - ``first_nonce``: first nonce of the nonce bucket as a decimal string
    """

    #: Owning program
    program: CCTPProgram

    #: Leading UTF-8 seed
    label: str

    #: Parameter names appended after the label
    params: tuple[str, ...] = field(default_factory=tuple)


#: The single seed scheme used for CCTP V1 on Solana.
CCTP_V1_SEED_SCHEME: dict[str, SeedLayout] = {
    "message_transmitter_state": SeedLayout(CCTPProgram.message_transmitter, "message_transmitter"),
    "message_transmitter_authority": SeedLayout(CCTPProgram.message_transmitter, "message_transmitter_authority", ("receiver",)),
    "message_transmitter_event_authority": SeedLayout(CCTPProgram.message_transmitter, "__event_authority"),
    "used_nonces": SeedLayout(CCTPProgram.message_transmitter, "used_nonces", ("domain", "nonce_delimiter", "first_nonce")),
    "token_messenger": SeedLayout(CCTPProgram.token_messenger_minter, "token_messenger"),
    "token_minter": SeedLayout(CCTPProgram.token_messenger_minter, "token_minter"),
    "sender_authority": SeedLayout(CCTPProgram.token_messenger_minter, "sender_authority"),
    "token_messenger_event_authority": SeedLayout(CCTPProgram.token_messenger_minter, "__event_authority"),
    "remote_token_messenger": SeedLayout(CCTPProgram.token_messenger_minter, "remote_token_messenger", ("domain",)),
    "local_token": SeedLayout(CCTPProgram.token_messenger_minter, "local_token", ("mint",)),
    "token_pair": SeedLayout(CCTPProgram.token_messenger_minter, "token_pair", ("domain", "burn_token")),
    "custody_token_account": SeedLayout(CCTPProgram.token_messenger_minter, "custody", ("mint",)),
}


def first_nonce_in_bucket(nonce: int) -> int:
    """First nonce of the used-nonces bitmap that tracks ``nonce``.

    Nonces start at 1, so nonces 1..6400 share bucket 1, 6401..12800 bucket 6401 and so on.

    :raises DerivationError:
        Nonce is below 1.
    """
    if not isinstance(nonce, int) or isinstance(nonce, bool):
        raise DerivationError(f"Nonce must be an integer, got {nonce!r}")
    if nonce < 1:
        raise DerivationError(f"Nonce must be at least 1, got {nonce}")
    return (nonce - 1) // NONCE_BUCKET_SIZE * NONCE_BUCKET_SIZE + 1


def used_nonces_delimiter(domain: int) -> bytes:
    """Seed separating domain and nonce, empty for domains below 11."""
    return b"-" if domain >= USED_NONCES_DELIMITER_MIN_DOMAIN else b""


def derive_program_address(program_id: Pubkey, seeds: Sequence[bytes | str | Pubkey]) -> DerivedAddress:
    """Find the canonical program derived address.

    Pure and deterministic, no network access.

    :param program_id:
        Owning program.

    :param seeds:
        Seeds as bytes, UTF-8 strings or public keys.

    :raises DerivationError:
        Too many seeds, a seed over 32 bytes or an unsupported seed type.
    """
    raw_seeds = tuple(_seed_bytes(s) for s in seeds)
    if len(raw_seeds) > MAX_SEEDS:
        raise DerivationError(f"At most {MAX_SEEDS} seeds allowed, got {len(raw_seeds)}")
    for seed in raw_seeds:
        if len(seed) > MAX_SEED_LENGTH:
            raise DerivationError(f"Seed longer than {MAX_SEED_LENGTH} bytes: {seed!r}")
    address, bump = Pubkey.find_program_address(list(raw_seeds), program_id)
    return DerivedAddress(owning_program=program_id, seeds=raw_seeds, address=address, bump=bump)


def derive_associated_token_address(owner: Pubkey, mint: Pubkey = USDC_SOLANA_MINT) -> Pubkey:
    """Associated token account of ``owner`` for ``mint`` under the classic SPL token program."""
    derived = derive_program_address(ASSOCIATED_TOKEN_PROGRAM_ID, [owner, TOKEN_PROGRAM_ID, mint])
    return derived.address


class CCTPAddressDeriver:
    """Derive CCTP accounts following :py:data:`CCTP_V1_SEED_SCHEME`.

    One instance serves any number of transfers. Results are not cached
    since derivation is cheap compared to a network round trip.
    """

    def __init__(
        self,
        programs: CCTPPrograms = MAINNET_PROGRAMS,
        scheme: dict[str, SeedLayout] = CCTP_V1_SEED_SCHEME,
    ):
        self.programs = programs
        self.scheme = scheme

    def derive(self, name: str, **params) -> DerivedAddress:
        """Derive an account by its name in the seed scheme.

        :param name:
            Key in the seed scheme, e.g. ``"token_pair"``.

        :param params:
            Values for the layout's parameters.
        """
        try:
            layout = self.scheme[name]
        except KeyError as e:
            raise DerivationError(f"Unknown CCTP account kind: {name}") from e

        seeds: list[bytes] = [layout.label.encode("utf-8")]
        for param in layout.params:
            seed = self._encode_param(param, params)
            if seed:
                seeds.append(seed)

        return derive_program_address(self.programs.get_program_id(layout.program), seeds)

    def _encode_param(self, param: str, values: dict) -> bytes:
        if param == "domain":
            return _domain_seed(_require(values, "domain"))
        if param == "nonce_delimiter":
            return used_nonces_delimiter(_require(values, "domain"))
        if param == "first_nonce":
            return str(first_nonce_in_bucket(_require(values, "nonce"))).encode("ascii")
        if param in ("receiver", "mint"):
            return bytes(_require(values, param))
        if param == "burn_token":
            value = _require(values, "burn_token")
            raw = bytes(value) if not isinstance(value, str) else aptos_address_to_bytes32(value)
            if len(raw) != 32:
                raise DerivationError(f"Burn token must be 32 bytes, got {len(raw)}")
            return raw
        raise DerivationError(f"Unknown seed parameter: {param}")

    def message_transmitter_state(self) -> DerivedAddress:
        return self.derive("message_transmitter_state")

    def message_transmitter_authority(self, receiver: Pubkey | None = None) -> DerivedAddress:
        """Authority the message transmitter signs the receiver CPI with."""
        return self.derive("message_transmitter_authority", receiver=receiver or self.programs.token_messenger_minter)

    def message_transmitter_event_authority(self) -> DerivedAddress:
        return self.derive("message_transmitter_event_authority")

    def used_nonces(self, source_domain: int, nonce: int) -> DerivedAddress:
        """Bitmap account that records ``nonce`` from ``source_domain`` as consumed."""
        return self.derive("used_nonces", domain=source_domain, nonce=nonce)

    def token_messenger(self) -> DerivedAddress:
        return self.derive("token_messenger")

    def token_minter(self) -> DerivedAddress:
        return self.derive("token_minter")

    def sender_authority(self) -> DerivedAddress:
        return self.derive("sender_authority")

    def token_messenger_event_authority(self) -> DerivedAddress:
        return self.derive("token_messenger_event_authority")

    def remote_token_messenger(self, domain: int) -> DerivedAddress:
        return self.derive("remote_token_messenger", domain=domain)

    def local_token(self, mint: Pubkey | None = None) -> DerivedAddress:
        return self.derive("local_token", mint=mint or self.programs.usdc_mint)

    def token_pair(self, domain: int, burn_token: bytes | str) -> DerivedAddress:
        """Link between a remote token on ``domain`` and the local mint."""
        return self.derive("token_pair", domain=domain, burn_token=burn_token)

    def custody_token_account(self, mint: Pubkey | None = None) -> DerivedAddress:
        return self.derive("custody_token_account", mint=mint or self.programs.usdc_mint)


#: Addresses from successful mainnet ``receiveMessage`` transactions bridging from Aptos.
#: Keys are ``(account kind, parameters)``.
KNOWN_MAINNET_ADDRESSES: dict[tuple[str, tuple], str] = {
    ("message_transmitter_authority", (("receiver", TOKEN_MESSENGER_MINTER_PROGRAM_ID),)): "CFtn7PC5NsaFAuG65LwvhcGVD2MiqSpMJ7yvpyhsgJwW",
    ("message_transmitter_event_authority", ()): "6mH8scevHQJsyyp1qxu8kyAapHuzEE67mtjFDJZjSbQW",
    ("remote_token_messenger", (("domain", CCTP_DOMAIN_APTOS),)): "3CTbq3SF9gekPHiJwLsyivfVbuaRFAQwQ6eQgtNy8nP1",
    ("token_pair", (("domain", CCTP_DOMAIN_APTOS), ("burn_token", USDC_APTOS_ADDRESS))): "C7XDQkHdr7omXt3Z4u3AuwQx9Za4AswzifnmKaoRhvLp",
    ("token_messenger_event_authority", ()): "CNfZLeeL4RUxwfPnjA3tLiQt4y43jp4V7bMpga673jf9",
}


def find_seed_scheme_mismatches(deriver: CCTPAddressDeriver | None = None) -> dict[str, tuple[str, str]]:
    """Compare derived addresses against :py:data:`KNOWN_MAINNET_ADDRESSES`.

    :return:
        Account kind → ``(expected, derived)`` for every mismatch. Empty when the scheme is correct.
        When the scheme cannot derive an account at all, the derivation error text takes the place of the derived address.
    """
    deriver = deriver or CCTPAddressDeriver()
    mismatches = {}
    for (name, params), expected in KNOWN_MAINNET_ADDRESSES.items():
        try:
            derived = str(deriver.derive(name, **dict(params)).address)
        except DerivationError as e:
            logger.warning("Seed scheme cannot derive %s%s: %s", name, params, e)
            mismatches[name] = (expected, f"error: {e}")
            continue
        if derived != expected:
            logger.warning("Seed scheme mismatch for %s%s: expected %s, derived %s", name, params, expected, derived)
            mismatches[name] = (expected, derived)
    return mismatches


def _domain_seed(domain: int) -> bytes:
    if not isinstance(domain, int) or isinstance(domain, bool) or domain < 0:
        raise DerivationError(f"Domain must be a non-negative integer, got {domain!r}")
    return str(domain).encode("ascii")


def _require(values: dict, name: str):
    try:
        return values[name]
    except KeyError as e:
        raise DerivationError(f"Missing seed parameter: {name}") from e


def _seed_bytes(seed: bytes | str | Pubkey) -> bytes:
    if isinstance(seed, str):
        return seed.encode("utf-8")
    if isinstance(seed, (bytes, bytearray)):
        return bytes(seed)
    if isinstance(seed, Pubkey):
        return bytes(seed)
    raise DerivationError(f"Unsupported seed type: {type(seed).__name__}")
