"""Deployment settings read from environment variables.

Environment variables
---------------------
- ``SOLANA_RPC_URL``: Solana JSON-RPC endpoint
- ``SOLANA_RPC_API_KEY``: appended as ``api-key`` when the URL carries none
- ``APTOS_NODE_URL``: Aptos fullnode REST endpoint, including ``/v1``
- ``CIRCLE_CCTP_ATTESTATION_URL``: Iris API base URL
- ``CIRCLE_API_KEY``: bearer key for message hash lookups
- ``SOLANA_PAYER_WALLET_PRIVATE_KEY``: base58 secret key of the sponsor paying Solana fees
- ``SOLANA_PAYER_WALLET_ADDRESS``: the sponsor's address, checked against the key
- ``APTOS_PAYER_WALLET_PRIVATE_KEY``: hex private key of the Aptos service wallet paying mint gas
- ``APTOS_PAYER_WALLET_ADDRESS``: the service wallet's address, checked against the key
- ``RECOVERY_BASE_URL``: prefix of manual mint view links
"""

import os
from dataclasses import dataclass, field

from cctp_bridge.constants import APTOS_MAINNET_NODE_URL, IRIS_API_BASE_URL, SOLANA_MAINNET_RPC_URL
from cctp_bridge.solana import resolve_solana_rpc_url


@dataclass(slots=True)
class BridgeSettings:
    """Endpoints and service wallets of one deployment.

    Secrets are excluded from ``repr()``.
    """

    #: Solana JSON-RPC endpoint, api key included
    solana_rpc_url: str = field(default=SOLANA_MAINNET_RPC_URL, repr=False)

    #: Aptos fullnode REST endpoint
    aptos_node_url: str = APTOS_MAINNET_NODE_URL

    #: Iris API base URL
    attestation_api_url: str = IRIS_API_BASE_URL

    #: Circle API key
    circle_api_key: str | None = field(default=None, repr=False)

    #: Sponsor secret key, base58
    solana_payer_private_key: str | None = field(default=None, repr=False)

    #: Sponsor address
    solana_payer_address: str | None = None

    #: Aptos service wallet private key, hex
    aptos_payer_private_key: str | None = field(default=None, repr=False)

    #: Aptos service wallet address
    aptos_payer_address: str | None = None

    #: Prefix of manual mint view links
    recovery_base_url: str = ""

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "BridgeSettings":
        """Read settings from the environment, see module docs for variable names."""
        env = os.environ if environ is None else environ
        return cls(
            solana_rpc_url=resolve_solana_rpc_url(env.get("SOLANA_RPC_URL"), env.get("SOLANA_RPC_API_KEY")),
            aptos_node_url=env.get("APTOS_NODE_URL") or APTOS_MAINNET_NODE_URL,
            attestation_api_url=env.get("CIRCLE_CCTP_ATTESTATION_URL") or IRIS_API_BASE_URL,
            circle_api_key=env.get("CIRCLE_API_KEY") or None,
            solana_payer_private_key=env.get("SOLANA_PAYER_WALLET_PRIVATE_KEY") or None,
            solana_payer_address=env.get("SOLANA_PAYER_WALLET_ADDRESS") or None,
            aptos_payer_private_key=env.get("APTOS_PAYER_WALLET_PRIVATE_KEY") or None,
            aptos_payer_address=env.get("APTOS_PAYER_WALLET_ADDRESS") or None,
            recovery_base_url=env.get("RECOVERY_BASE_URL", ""),
        )
