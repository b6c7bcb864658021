"""Solana chain collaborators.

- :py:class:`SolanaRPCClient`: JSON-RPC reads and raw transaction submission
- :py:class:`KeypairSigner`: signs with in-memory keypairs, optionally with a separate fee payer

Secret keys are never logged and never part of ``repr()``.
"""

import base64
import logging
from typing import Sequence

import base58
import requests
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from cctp_bridge.constants import ASSOCIATED_TOKEN_PROGRAM_ID, SOLANA_MAINNET_RPC_URL, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID
from cctp_bridge.errors import ChainSubmissionError, EncodingError
from cctp_bridge.pda import derive_associated_token_address
from cctp_bridge.receive import TokenAccount
from cctp_bridge.session import create_session
from cctp_bridge.signer import AccountInfo, ChainRPC, SigningCollaborator, TransactionStatus, TransactionStatusResult

logger = logging.getLogger(__name__)

#: Commitment levels we accept as confirmed
CONFIRMED_COMMITMENTS = ("confirmed", "finalized")


def resolve_solana_rpc_url(rpc_url: str | None = None, api_key: str | None = None) -> str:
    """Add an ``api-key`` query parameter for providers such as Helius.

    The key is not added when the URL already carries one.
    """
    url = rpc_url or SOLANA_MAINNET_RPC_URL
    if api_key and "api-key=" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}api-key={api_key}"
    return url


def create_associated_token_account_idempotent(payer: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    """Create the owner's associated token account, doing nothing if it exists."""
    return Instruction(
        ASSOCIATED_TOKEN_PROGRAM_ID,
        bytes([1]),
        [
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(derive_associated_token_address(owner, mint), is_signer=False, is_writable=True),
            AccountMeta(owner, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def load_keypair(secret_key: str) -> Keypair:
    """Decode a base58 encoded 64 byte secret key.

    :raises EncodingError:
        Not base58 or wrong length. The key is not included in the message.
    """
    try:
        raw = base58.b58decode(secret_key.strip())
    except ValueError as e:
        raise EncodingError("Secret key is not valid base58") from e
    if len(raw) != 64:
        raise EncodingError(f"Secret key must decode to 64 bytes, got {len(raw)}")
    return Keypair.from_bytes(raw)


class SolanaRPCClient(ChainRPC):
    """Minimal Solana JSON-RPC client over :py:mod:`requests`."""

    def __init__(self, rpc_url: str = SOLANA_MAINNET_RPC_URL, session: requests.Session | None = None, commitment: str = "confirmed"):
        self.rpc_url = rpc_url
        self.session = session or create_session(rpc_url)
        self.commitment = commitment

    def __repr__(self) -> str:
        # Do not leak api-key query parameters
        return f"<SolanaRPCClient {self.rpc_url.split('?')[0]}>"

    def call(self, method: str, params: list) -> dict | list | int | str | None:
        """Make a JSON-RPC call and return its ``result``.

        :raises ChainSubmissionError:
            HTTP or JSON-RPC level error.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        response = self.session.post(self.rpc_url, json=payload, timeout=30)
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Solana RPC {method} failed: {response.status_code} {response.text}")
        data = response.json()
        if data.get("error"):
            raise ChainSubmissionError(f"Solana RPC {method} error: {data['error']}")
        return data.get("result")

    def get_transaction_status(self, tx_id: str) -> TransactionStatusResult:
        result = self.call("getSignatureStatuses", [[tx_id], {"searchTransactionHistory": True}])
        value = (result or {}).get("value") or [None]
        status = value[0]
        if status is None:
            return TransactionStatusResult(TransactionStatus.pending)
        if status.get("err") is not None:
            return TransactionStatusResult(TransactionStatus.error, error=str(status["err"]))
        if status.get("confirmationStatus") in CONFIRMED_COMMITMENTS:
            return TransactionStatusResult(TransactionStatus.success)
        return TransactionStatusResult(TransactionStatus.pending)

    def get_account(self, address: str) -> AccountInfo | None:
        result = self.call("getAccountInfo", [str(address), {"encoding": "base64", "commitment": self.commitment}])
        value = (result or {}).get("value")
        if value is None:
            return None
        return AccountInfo(
            address=str(address),
            owner=value["owner"],
            data=base64.b64decode(value["data"][0]),
            balance=value.get("lamports", 0),
        )

    def get_balance(self, address: Pubkey | str) -> int:
        """Lamports held by ``address``."""
        result = self.call("getBalance", [str(address), {"commitment": self.commitment}])
        return result["value"]

    def get_token_accounts_by_owner(self, owner: Pubkey | str, mint: Pubkey | str) -> list[tuple[Pubkey, TokenAccount]]:
        """Token accounts of ``owner`` for ``mint``."""
        result = self.call(
            "getTokenAccountsByOwner",
            [str(owner), {"mint": str(mint)}, {"encoding": "base64", "commitment": self.commitment}],
        )
        accounts = []
        for item in (result or {}).get("value", []):
            data = base64.b64decode(item["account"]["data"][0])
            accounts.append((Pubkey.from_string(item["pubkey"]), TokenAccount.from_account_data(data)))
        return accounts

    def get_latest_blockhash(self) -> Hash:
        result = self.call("getLatestBlockhash", [{"commitment": self.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    def send_raw_transaction(self, raw: bytes) -> str:
        """Broadcast a signed transaction.

        :return:
            Transaction signature
        """
        encoded = base64.b64encode(raw).decode("ascii")
        return self.call("sendTransaction", [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}])


class KeypairSigner(SigningCollaborator):
    """Signs Solana transactions with in-memory keypairs.

    :param rpc:
        Used for the recent blockhash and broadcasting.

    :param owner:
        Wallet whose address this signer represents.

    :param fee_payer:
        Pays transaction fees. Defaults to ``owner``. A separate fee payer
        lets a sponsor pay for transactions of a wallet with no SOL.
    """

    def __init__(self, rpc: SolanaRPCClient, owner: Keypair, fee_payer: Keypair | None = None):
        self.rpc = rpc
        self.owner = owner
        self.fee_payer = fee_payer or owner

    def __repr__(self) -> str:
        return f"<KeypairSigner owner={self.owner.pubkey()} fee_payer={self.fee_payer.pubkey()}>"

    @property
    def address(self) -> str:
        return str(self.owner.pubkey())

    def build_transaction(self, instructions: Sequence[Instruction], blockhash: Hash, extra_signers: Sequence[Keypair] = ()) -> Transaction:
        """Compile and sign.

        Only keypairs the message actually requires are used, so the
        owner can be passed even when only the fee payer signs.
        """
        message = Message.new_with_blockhash(list(instructions), self.fee_payer.pubkey(), blockhash)
        required = set(message.account_keys[: message.header.num_required_signatures])

        keypairs = []
        seen = set()
        for keypair in (self.fee_payer, self.owner, *extra_signers):
            pubkey = keypair.pubkey()
            if pubkey in required and pubkey not in seen:
                keypairs.append(keypair)
                seen.add(pubkey)

        return Transaction(keypairs, message, blockhash)

    def sign_and_submit(self, instruction: Instruction | Sequence[Instruction], extra_signers: Sequence[Keypair] = ()) -> str:
        instructions = [instruction] if isinstance(instruction, Instruction) else list(instruction)
        blockhash = self.rpc.get_latest_blockhash()
        tx = self.build_transaction(instructions, blockhash, extra_signers)
        signature = self.rpc.send_raw_transaction(bytes(tx))
        logger.info("Submitted Solana transaction %s, fee payer %s", signature, self.fee_payer.pubkey())
        return signature

    def sign_message(self, message: bytes) -> bytes:
        return bytes(self.owner.sign_message(message))
