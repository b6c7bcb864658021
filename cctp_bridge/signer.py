"""Interfaces of the chain collaborators the bridge drives.

The bridge never holds a wallet itself. It is handed one signing
collaborator per chain and one RPC collaborator per chain for each
transfer. Browser wallets, hardware wallets and server side hot
wallets all fit behind these interfaces.

Implementations in this package:

- :py:class:`cctp_bridge.solana.KeypairSigner` and :py:class:`cctp_bridge.solana.SolanaRPCClient`
- :py:class:`cctp_bridge.aptos.AptosServiceWallet` and :py:class:`cctp_bridge.aptos.AptosRPCClient`
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Sequence


class TransactionStatus(enum.Enum):
    """Where a submitted transaction stands."""

    #: Not seen yet, or seen but not confirmed
    pending = "pending"

    #: Confirmed without error
    success = "success"

    #: Landed on chain and failed
    error = "error"


@dataclass(slots=True, frozen=True)
class TransactionStatusResult:
    """Answer to a transaction status query."""

    status: TransactionStatus

    #: Chain's error description when ``status`` is ``error``
    error: str | None = None

    @property
    def is_final(self) -> bool:
        return self.status != TransactionStatus.pending


@dataclass(slots=True, frozen=True)
class AccountInfo:
    """Raw on-chain account contents."""

    #: Account address in chain native form
    address: str

    #: Owning program or account type
    owner: str

    #: Raw account data
    data: bytes

    #: Native balance in the chain's smallest unit
    balance: int = 0


class SigningCollaborator(ABC):
    """A wallet able to sign and broadcast on one chain.

    Implementations raise :py:class:`cctp_bridge.errors.SigningRejected`
    when the user declines and :py:class:`cctp_bridge.errors.WalletNotConnected`
    when there is no active session.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Signer's address in chain native form."""

    @abstractmethod
    def sign_and_submit(self, instruction: Any, extra_signers: Sequence[Any] = ()) -> str:
        """Sign and broadcast.

        :param instruction:
            Chain specific instruction or entry function call.

        :param extra_signers:
            Additional keypairs that must co-sign, e.g. the burn event data account.

        :return:
            Transaction id
        """

    @abstractmethod
    def sign_message(self, message: bytes) -> bytes:
        """Sign arbitrary bytes off-chain."""

    def is_connected(self) -> bool:
        """Whether the signer has a usable session."""
        return True

    def reconnect(self):
        """Re-establish the session. Called at most once per mint attempt."""


class ChainRPC(ABC):
    """Read access to one chain."""

    @abstractmethod
    def get_transaction_status(self, tx_id: str) -> TransactionStatusResult:
        """Look up a submitted transaction."""

    @abstractmethod
    def get_account(self, address: str) -> AccountInfo | None:
        """Fetch raw account contents, ``None`` if the account does not exist."""
