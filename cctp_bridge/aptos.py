"""Aptos side of the bridge.

Burning and minting on Aptos are entry function calls to Circle's
Move packages:

- ``cctp_tools::deposit_for_burn`` burns USDC towards another domain
- ``cctp_v1_receive_with_gas_drop_off::handle_receive_message_entry`` mints
  USDC from an attested message and can drop APT for gas on the recipient

Entry function calls are described by :py:class:`AptosEntryFunctionCall`,
which serialises either to the JSON payload wallets accept or to a BCS
entry function for :py:class:`AptosServiceWallet`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import requests
from aptos_sdk.account import Account
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.authenticator import Authenticator, Ed25519Authenticator
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import EntryFunction, RawTransaction, SignedTransaction, TransactionArgument, TransactionPayload

from cctp_bridge.address import Chain, aptos_address_to_bytes32, bytes32_to_aptos_address, coerce_address32
from cctp_bridge.constants import (
    APTOS_DEPOSIT_FOR_BURN_MODULE,
    APTOS_FUNGIBLE_BALANCE_FUNCTION,
    APTOS_FUNGIBLE_METADATA_TYPE,
    APTOS_GAS_UNIT_PRICE,
    APTOS_MAINNET_NODE_URL,
    APTOS_MAX_GAS_AMOUNT,
    APTOS_RECEIVE_MESSAGE_FUNCTION,
    APTOS_RECEIVE_MESSAGE_MODULE,
    APTOS_TRANSACTION_EXPIRY_SECONDS,
    CCTP_DOMAIN_SOLANA,
    USDC_APTOS_ADDRESS,
)
from cctp_bridge.errors import AddressConversionError, ChainSubmissionError, SigningRejected
from cctp_bridge.message import decode_message, decode_mint_recipient
from cctp_bridge.session import create_session
from cctp_bridge.signer import AccountInfo, ChainRPC, SigningCollaborator, TransactionStatus, TransactionStatusResult
from cctp_bridge.transfer import validate_burn_amount

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404

#: Content type of BCS encoded signed transactions
BCS_SIGNED_TRANSACTION_CONTENT_TYPE = "application/x.aptos.signed_transaction+bcs"

#: Move argument type → BCS encoder
_ENCODERS = {
    "u32": Serializer.u32,
    "u64": Serializer.u64,
    "address": Serializer.struct,
    "object": Serializer.struct,
    "vector<u8>": Serializer.to_bytes,
}


@dataclass(slots=True, frozen=True)
class AptosEntryFunctionCall:
    """A Move entry function call with typed arguments.

    Argument values are Python ints for integer types and
    raw bytes for addresses, objects and byte vectors.
    """

    #: ``0x<package>::<module>``
    module: str

    #: Entry function name
    function: str

    #: ``(move type, value)`` pairs in call order
    arguments: tuple[tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def function_id(self) -> str:
        return f"{self.module}::{self.function}"

    def to_json_payload(self) -> dict:
        """Entry function payload in the JSON form wallets accept."""
        values = []
        for move_type, value in self.arguments:
            if move_type in ("u32", "u64"):
                values.append(str(value))
            elif move_type in ("address", "object"):
                values.append(bytes32_to_aptos_address(value))
            else:
                values.append("0x" + bytes(value).hex())
        return {
            "function": self.function_id,
            "typeArguments": [],
            "functionArguments": values,
        }

    def to_entry_function(self) -> EntryFunction:
        """BCS entry function for local signing."""
        args = []
        for move_type, value in self.arguments:
            if move_type in ("address", "object"):
                value = AccountAddress(bytes(value))
            args.append(TransactionArgument(value, _ENCODERS[move_type]))
        return EntryFunction.natural(self.module, self.function, [], args)


def prepare_aptos_deposit_for_burn(
    *,
    amount: int,
    mint_recipient: bytes | str,
    destination_domain: int = CCTP_DOMAIN_SOLANA,
    burn_token: str = USDC_APTOS_ADDRESS,
    balance: int | None = None,
) -> AptosEntryFunctionCall:
    """Build the Aptos burn call.

    :param amount:
        USDC to burn in raw units.

    :param mint_recipient:
        Recipient on the destination chain. For Solana this is the
        recipient's USDC token account, not the wallet.

    :param destination_domain:
        CCTP domain of the destination chain.

    :param burn_token:
        Fungible asset metadata object of the burned token.

    :raises InvalidAmount:
        Bad amount, checked first.
    """
    validate_burn_amount(amount, balance)

    recipient32 = coerce_address32(mint_recipient, Chain.from_domain(destination_domain))
    if recipient32 == bytes(32):
        raise AddressConversionError("Mint recipient must not be the zero address")

    module, function = APTOS_DEPOSIT_FOR_BURN_MODULE, "deposit_for_burn"
    logger.info("Prepared Aptos deposit_for_burn: amount=%d, destination domain=%d", amount, destination_domain)
    return AptosEntryFunctionCall(
        module=module,
        function=function,
        arguments=(
            ("u64", amount),
            ("u32", destination_domain),
            ("address", recipient32),
            ("object", aptos_address_to_bytes32(burn_token)),
        ),
    )


def prepare_aptos_receive_message(
    *,
    message: bytes,
    attestation: bytes,
    gas_drop_address: str,
    gas_amount: int = 0,
) -> AptosEntryFunctionCall:
    """Build the Aptos mint call.

    :param message:
        Raw CCTP message.

    :param attestation:
        Attestation bytes.

    :param gas_drop_address:
        Receives ``gas_amount`` octas of APT along with the mint.

    :param gas_amount:
        APT to drop, in octas. Zero to skip.

    :raises MalformedMessage:
        Message is short or has a zero mint recipient.
    """
    decode_mint_recipient(message)
    decoded = decode_message(message)
    logger.info("Prepared Aptos receive message: source domain=%d, nonce=%d, amount=%d", decoded.source_domain, decoded.nonce, decoded.amount)
    return AptosEntryFunctionCall(
        module=APTOS_RECEIVE_MESSAGE_MODULE,
        function=APTOS_RECEIVE_MESSAGE_FUNCTION,
        arguments=(
            ("vector<u8>", bytes(message)),
            ("vector<u8>", bytes(attestation)),
            ("address", aptos_address_to_bytes32(gas_drop_address)),
            ("u64", gas_amount),
        ),
    )


class AptosRPCClient(ChainRPC):
    """Minimal Aptos fullnode REST client over :py:mod:`requests`."""

    def __init__(self, node_url: str = APTOS_MAINNET_NODE_URL, session: requests.Session | None = None):
        self.node_url = node_url.rstrip("/")
        self.session = session or create_session(self.node_url)

    def __repr__(self) -> str:
        return f"<AptosRPCClient {self.node_url}>"

    def _get(self, path: str) -> requests.Response:
        return self.session.get(f"{self.node_url}{path}", timeout=30)

    def get_ledger_info(self) -> dict:
        """Chain id and ledger timestamp in microseconds."""
        response = self._get("")
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos ledger info failed: {response.status_code} {response.text}")
        return response.json()

    def get_sequence_number(self, address: str) -> int:
        response = self._get(f"/accounts/{address}")
        if response.status_code == HTTP_NOT_FOUND:
            return 0
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos account lookup failed: {response.status_code} {response.text}")
        return int(response.json()["sequence_number"])

    def get_account(self, address: str) -> AccountInfo | None:
        response = self._get(f"/accounts/{address}")
        if response.status_code == HTTP_NOT_FOUND:
            return None
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos account lookup failed: {response.status_code} {response.text}")
        data = response.json()
        return AccountInfo(
            address=address,
            owner=address,
            data=bytes.fromhex(data["authentication_key"].removeprefix("0x")),
        )

    def view(self, function: str, type_arguments: list[str], arguments: list[Any]) -> list:
        """Call a Move view function.

        :return:
            Return values as JSON, integers wider than 32 bits come back as strings
        """
        response = self.session.post(
            f"{self.node_url}/view",
            json={"function": function, "type_arguments": type_arguments, "arguments": arguments},
            timeout=30,
        )
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos view {function} failed: {response.status_code} {response.text}")
        return response.json()

    def get_fungible_asset_balance(self, owner: str, metadata: str = USDC_APTOS_ADDRESS) -> int:
        """Primary store balance of a fungible asset, USDC by default. Zero if the owner has no store."""
        result = self.view(APTOS_FUNGIBLE_BALANCE_FUNCTION, [APTOS_FUNGIBLE_METADATA_TYPE], [owner, metadata])
        return int(result[0])

    def get_transaction_status(self, tx_id: str) -> TransactionStatusResult:
        response = self._get(f"/transactions/by_hash/{tx_id}")
        if response.status_code == HTTP_NOT_FOUND:
            return TransactionStatusResult(TransactionStatus.pending)
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos transaction lookup failed: {response.status_code} {response.text}")
        data = response.json()
        if data.get("type") == "pending_transaction":
            return TransactionStatusResult(TransactionStatus.pending)
        if data.get("success"):
            return TransactionStatusResult(TransactionStatus.success)
        return TransactionStatusResult(TransactionStatus.error, error=data.get("vm_status"))

    def submit_bcs(self, signed_transaction: bytes) -> str:
        """Submit a BCS signed transaction.

        :return:
            Transaction hash
        """
        response = self.session.post(
            f"{self.node_url}/transactions",
            data=signed_transaction,
            headers={"Content-Type": BCS_SIGNED_TRANSACTION_CONTENT_TYPE},
            timeout=30,
        )
        if response.status_code >= 400:
            raise ChainSubmissionError(f"Aptos transaction submission failed: {response.status_code} {response.text}")
        return response.json()["hash"]


class AptosServiceWallet(SigningCollaborator):
    """Server side Aptos account paying for mint transactions.

    Transactions expire 30 minutes after the current ledger time and
    use a fixed gas budget.

    :param rpc:
        Node client.

    :param private_key:
        Hex encoded Ed25519 private key. Not logged.

    :param expected_address:
        When given, the key must belong to this address.
    """

    def __init__(self, rpc: AptosRPCClient, private_key: str, expected_address: str | None = None):
        self.rpc = rpc
        self._account = Account.load_key(private_key)
        if expected_address is not None:
            if aptos_address_to_bytes32(expected_address) != self._account.address().address:
                raise SigningRejected("Aptos payer key does not match the configured payer address")

    def __repr__(self) -> str:
        return f"<AptosServiceWallet {self.address}>"

    @property
    def address(self) -> str:
        return bytes32_to_aptos_address(self._account.address().address)

    def build_signed_transaction(self, call: AptosEntryFunctionCall) -> SignedTransaction:
        ledger = self.rpc.get_ledger_info()
        sequence_number = self.rpc.get_sequence_number(self.address)
        expiration = int(ledger["ledger_timestamp"]) // 1_000_000 + APTOS_TRANSACTION_EXPIRY_SECONDS
        raw = RawTransaction(
            self._account.address(),
            sequence_number,
            TransactionPayload(call.to_entry_function()),
            APTOS_MAX_GAS_AMOUNT,
            APTOS_GAS_UNIT_PRICE,
            expiration,
            int(ledger["chain_id"]),
        )
        signature = self._account.sign(raw.keyed())
        authenticator = Authenticator(Ed25519Authenticator(self._account.public_key(), signature))
        return SignedTransaction(raw, authenticator)

    def sign_and_submit(self, instruction: AptosEntryFunctionCall, extra_signers: Sequence[Any] = ()) -> str:
        assert not extra_signers, "Aptos entry function calls have a single signer"
        signed = self.build_signed_transaction(instruction)
        tx_hash = self.rpc.submit_bcs(signed.bytes())
        logger.info("Submitted Aptos transaction %s: %s", tx_hash, instruction.function_id)
        return tx_hash

    def sign_message(self, message: bytes) -> bytes:
        return self._account.sign(message).data()
