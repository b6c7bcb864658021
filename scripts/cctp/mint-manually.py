"""Finish a CCTP transfer whose burn succeeded but whose mint did not.

Takes the parameters of the manual mint link the bridge leaves in
its action log, fetches the attestation and mints on the destination chain.

Environment variables
---------------------
- ``SIGNATURE``: Burn transaction id (required).
- ``SOURCE_DOMAIN``: CCTP domain of the burn, ``5`` for Solana or ``9`` for Aptos (required).
- ``FINAL_RECIPIENT``: Recipient wallet on the destination chain (required).
- ``APTOS_PAYER_WALLET_PRIVATE_KEY``: Pays gas when minting on Aptos.
- ``SOLANA_PAYER_WALLET_PRIVATE_KEY``: Pays fees when minting on Solana.
- ``LOG_LEVEL``: Logging level (default: ``info``).

Usage::

    SIGNATURE=5Uy... SOURCE_DOMAIN=5 FINAL_RECIPIENT=0x1f6c... \\
        poetry run python scripts/cctp/mint-manually.py
"""

import logging
import os

from tabulate import tabulate

from cctp_bridge.aptos import AptosRPCClient, AptosServiceWallet
from cctp_bridge.bridge import AptosToSolanaRoute, BridgeConfig, BridgeOrchestrator, ManualMintRequest, SolanaToAptosRoute
from cctp_bridge.config import BridgeSettings
from cctp_bridge.constants import CCTP_DOMAIN_SOLANA
from cctp_bridge.privacy import load_fee_payer
from cctp_bridge.session import create_iris_session
from cctp_bridge.solana import KeypairSigner, SolanaRPCClient
from cctp_bridge.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    settings = BridgeSettings.from_env()

    request = ManualMintRequest.from_query_params(
        {
            "signature": os.environ.get("SIGNATURE", ""),
            "sourceDomain": os.environ.get("SOURCE_DOMAIN", ""),
            "finalRecipient": os.environ.get("FINAL_RECIPIENT", ""),
        }
    )

    solana_rpc = SolanaRPCClient(settings.solana_rpc_url)
    aptos_rpc = AptosRPCClient(settings.aptos_node_url)
    config = BridgeConfig(attestation_api_url=settings.attestation_api_url, recovery_base_url=settings.recovery_base_url)

    if request.source_domain == CCTP_DOMAIN_SOLANA:
        assert settings.aptos_payer_private_key, "APTOS_PAYER_WALLET_PRIVATE_KEY environment variable required"
        dest_signer = AptosServiceWallet(aptos_rpc, settings.aptos_payer_private_key, settings.aptos_payer_address)
        route = SolanaToAptosRoute()
        source_rpc, dest_rpc = solana_rpc, aptos_rpc
    else:
        assert settings.solana_payer_private_key, "SOLANA_PAYER_WALLET_PRIVATE_KEY environment variable required"
        payer = load_fee_payer(settings.solana_payer_private_key, settings.solana_payer_address)
        dest_signer = KeypairSigner(solana_rpc, owner=payer)
        route = AptosToSolanaRoute()
        source_rpc, dest_rpc = aptos_rpc, solana_rpc

    print(f"Burn: {request.signature} (domain {request.source_domain})")
    print(f"Recipient: {request.final_recipient}")
    print(f"Paying wallet: {dest_signer.address}")

    orchestrator = BridgeOrchestrator(
        route=route,
        source_signer=dest_signer,
        source_rpc=source_rpc,
        dest_signer=dest_signer,
        dest_rpc=dest_rpc,
        config=config,
        attestation_session=create_iris_session(settings.attestation_api_url),
    )
    transfer = orchestrator.resume_mint(request)

    rows = [[e.timestamp.strftime("%H:%M:%S"), e.status.value, e.message, e.link or ""] for e in transfer.action_log.entries()]
    print(tabulate(rows, headers=["Time", "Status", "Step", "Link"], tablefmt="fancy_grid"))

    print(f"Final state: {transfer.state.value}")
    if transfer.mint_tx_id:
        print(f"Mint transaction: {transfer.mint_tx_id}")


if __name__ == "__main__":
    main()
