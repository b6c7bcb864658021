"""Exceptions raised by the bridge.

Every error a transfer can run into derives from :py:class:`CCTPBridgeError`,
so the orchestrator can scope a failure to a single transfer.

- Local encoding and derivation errors are fatal and never retried
- Chain submission and attestation errors are retried within their budgets
- :py:class:`RecipientMismatch` is reported as a warning and the transfer continues
"""


class CCTPBridgeError(Exception):
    """Base class for all bridge errors."""


class EncodingError(CCTPBridgeError):
    """A field could not be encoded into a CCTP message."""


class AddressConversionError(EncodingError):
    """A chain-native address could not be converted to or from 32 bytes."""


class MalformedMessage(CCTPBridgeError):
    """Raw CCTP message bytes are too short or carry invalid fields."""


class DerivationError(CCTPBridgeError):
    """Program derived address inputs are invalid."""


class InvalidAmount(CCTPBridgeError):
    """Burn amount is zero, negative, overflows or exceeds the balance."""


class ChainSubmissionError(CCTPBridgeError):
    """Submitting to or querying a chain node failed."""


class TransactionFailed(ChainSubmissionError):
    """Transaction landed on chain but reverted."""


class ConfirmationTimeout(ChainSubmissionError):
    """Transaction did not confirm within the polling budget."""


class AttestationPending(CCTPBridgeError):
    """Attestation is not yet available. Used inside the polling loop only."""


class AttestationServiceError(CCTPBridgeError):
    """Attestation service answered with an error.

    The message carries the service's response text verbatim.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        #: HTTP status code, if the error came from an HTTP response
        self.status_code = status_code


class AttestationTimeout(CCTPBridgeError, TimeoutError):
    """Attestation polling ran out of attempts."""


class PollingAborted(CCTPBridgeError):
    """Polling was cancelled through its abort signal."""


class SigningRejected(CCTPBridgeError):
    """User or signer refused to sign."""


class WalletNotConnected(CCTPBridgeError):
    """Signing collaborator has no active session."""


class RecipientMismatch(CCTPBridgeError):
    """Recipient token account does not belong to the expected owner.

    Not fatal. Collected as a warning on the prepared mint.
    """


class UnsupportedMintAsset(CCTPBridgeError):
    """Recipient token account holds a different token than the one being minted."""


class InsufficientFeePayerBalance(CCTPBridgeError):
    """Sponsoring fee payer cannot cover transaction fees."""


class InvalidStateTransition(RuntimeError):
    """Bridge transfer was moved to a state not reachable from its current one.

    This is a programming error and is not caught by the orchestrator.
    """
