"""Test helpers: crafted CCTP messages and in-process fakes of the chain and Iris collaborators.

Lets the whole burn → attest → mint flow run in unit tests
without network access.
"""

import struct
from dataclasses import dataclass, field
from typing import Any, Sequence

from solders.pubkey import Pubkey

from cctp_bridge.constants import CCTP_DOMAIN_APTOS, CCTP_DOMAIN_SOLANA, SPL_TOKEN_ACCOUNT_SIZE
from cctp_bridge.message import create_burn_message
from cctp_bridge.signer import AccountInfo, ChainRPC, SigningCollaborator, TransactionStatus, TransactionStatusResult


def craft_cctp_message(
    *,
    source_domain: int = CCTP_DOMAIN_SOLANA,
    destination_domain: int = CCTP_DOMAIN_APTOS,
    nonce: int = 1,
    burn_token: bytes = b"\x01" * 32,
    mint_recipient: bytes = b"\x02" * 32,
    amount: int = 100_000,
    message_sender: bytes = b"\x03" * 32,
) -> bytes:
    """Encode a burn message the way the attestation service would return it."""
    return create_burn_message(
        source_domain=source_domain,
        destination_domain=destination_domain,
        nonce=nonce,
        burn_token=burn_token,
        mint_recipient=mint_recipient,
        amount=amount,
        message_sender=message_sender,
    ).encode()


def make_token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    """SPL token account bytes, initialised state."""
    data = bytes(mint) + bytes(owner) + struct.pack("<Q", amount)
    # delegate option (4) + delegate (32) + state (1, initialised)
    data += bytes(36) + b"\x01"
    return data.ljust(SPL_TOKEN_ACCOUNT_SIZE, b"\x00")


class FakeResponse:
    """Enough of :py:class:`requests.Response` for the clients in this package."""

    def __init__(self, status_code: int = 200, json_data: Any = None, text: str = "", reason: str = ""):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self.reason = reason or {200: "OK", 404: "Not Found", 500: "Internal Server Error"}.get(status_code, "")

    def json(self):
        return self._json


def iris_pending_response() -> FakeResponse:
    return FakeResponse(404, {"error": "Message hash not found"}, text='{"error":"Message hash not found"}')


def iris_ready_response(message: bytes, attestation: bytes = b"\xaa" * 65, event_nonce: int | None = None) -> FakeResponse:
    msg = {
        "message": "0x" + message.hex(),
        "attestation": "0x" + attestation.hex(),
        "status": "complete",
    }
    if event_nonce is not None:
        msg["eventNonce"] = str(event_nonce)
    return FakeResponse(200, {"messages": [msg]})


class FakeHTTPSession:
    """Replays scripted HTTP answers, e.g. of the Iris API or a chain node.

    The last answer repeats once the script runs out.
    """

    def __init__(self, responses: Sequence[FakeResponse]):
        assert responses, "At least one response needed"
        self.responses = list(responses)
        self.calls: list[str] = []
        self.payloads: list[Any] = []

    def _next(self, url: str) -> FakeResponse:
        self.calls.append(url)
        idx = min(len(self.calls) - 1, len(self.responses) - 1)
        return self.responses[idx]

    def get(self, url: str, headers: dict | None = None, timeout: float | None = None) -> FakeResponse:
        return self._next(url)

    def post(self, url: str, json: Any = None, data: bytes | None = None, headers: dict | None = None, timeout: float | None = None) -> FakeResponse:
        self.payloads.append(json if json is not None else data)
        return self._next(url)


class MockChainRPC(ChainRPC):
    """Chain RPC answering from in-memory state.

    Unknown transactions confirm after ``confirm_after`` queries.
    """

    def __init__(self, confirm_after: int = 1):
        self.confirm_after = confirm_after
        self.accounts: dict[str, AccountInfo] = {}
        self.statuses: dict[str, list[TransactionStatusResult]] = {}
        self.status_queries: dict[str, int] = {}
        self.fungible_balances: dict[str, int] = {}
        self.calls = 0

    def add_token_account(self, address: Pubkey, mint: Pubkey, owner: Pubkey, amount: int):
        self.accounts[str(address)] = AccountInfo(
            address=str(address),
            owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
            data=make_token_account_data(mint, owner, amount),
        )

    def get_transaction_status(self, tx_id: str) -> TransactionStatusResult:
        self.calls += 1
        count = self.status_queries.get(tx_id, 0) + 1
        self.status_queries[tx_id] = count
        scripted = self.statuses.get(tx_id)
        if scripted:
            return scripted[min(count, len(scripted)) - 1]
        if count >= self.confirm_after:
            return TransactionStatusResult(TransactionStatus.success)
        return TransactionStatusResult(TransactionStatus.pending)

    def get_account(self, address: str) -> AccountInfo | None:
        self.calls += 1
        return self.accounts.get(str(address))

    def get_fungible_asset_balance(self, owner: str, metadata: str) -> int:
        self.calls += 1
        return self.fungible_balances.get(owner, 0)


@dataclass
class MockSigner(SigningCollaborator):
    """Signing collaborator recording what it signs.

    Exceptions in ``failures`` are raised by consecutive submissions before they start succeeding.
    """

    wallet_address: str
    tx_prefix: str = "tx"
    connected: bool = True
    failures: list[Exception] = field(default_factory=list)
    submitted: list[Any] = field(default_factory=list)
    reconnect_count: int = 0

    @property
    def address(self) -> str:
        return self.wallet_address

    def sign_and_submit(self, instruction: Any, extra_signers: Sequence[Any] = ()) -> str:
        if self.failures:
            raise self.failures.pop(0)
        self.submitted.append((instruction, list(extra_signers)))
        return f"{self.tx_prefix}{len(self.submitted)}"

    def sign_message(self, message: bytes) -> bytes:
        return b"signed:" + message

    def is_connected(self) -> bool:
        return self.connected

    def reconnect(self):
        self.reconnect_count += 1
        self.connected = True
