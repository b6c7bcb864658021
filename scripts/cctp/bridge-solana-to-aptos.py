"""Bridge USDC from Solana to Aptos.

Burns USDC on Solana, waits for Circle's attestation and mints on Aptos
with the Aptos service wallet paying gas.

Environment variables
---------------------
- ``SOLANA_PRIVATE_KEY``: base58 secret key of the wallet holding USDC (required).
- ``APTOS_RECIPIENT``: Aptos address receiving the USDC (required).
- ``AMOUNT``: USDC amount, e.g. ``0.1`` (required unless ``SPONSORED`` is set).
- ``SPONSORED``: ``true`` to burn the whole balance with fees paid by
  ``SOLANA_PAYER_WALLET_PRIVATE_KEY``.
- ``APTOS_PAYER_WALLET_PRIVATE_KEY``: Aptos service wallet paying mint gas (required).
- ``LOG_LEVEL``: Logging level (default: ``info``).

See :py:mod:`cctp_bridge.config` for endpoint settings.

Usage::

    SOLANA_PRIVATE_KEY=... APTOS_RECIPIENT=0x1f6c... AMOUNT=0.1 \\
        poetry run python scripts/cctp/bridge-solana-to-aptos.py
"""

import logging
import os

from tabulate import tabulate

from cctp_bridge.aptos import AptosRPCClient, AptosServiceWallet
from cctp_bridge.attestation import AttestationPollConfig
from cctp_bridge.bridge import BridgeConfig, BridgeDirection, BridgeOrchestrator, BridgeTransfer, SolanaToAptosRoute
from cctp_bridge.config import BridgeSettings
from cctp_bridge.privacy import create_sponsored_orchestrator, load_fee_payer
from cctp_bridge.session import create_iris_session
from cctp_bridge.solana import KeypairSigner, SolanaRPCClient, load_keypair
from cctp_bridge.utils import parse_usdc_amount, setup_console_logging

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    settings = BridgeSettings.from_env()

    solana_private_key = os.environ.get("SOLANA_PRIVATE_KEY")
    assert solana_private_key, "SOLANA_PRIVATE_KEY environment variable required"

    recipient = os.environ.get("APTOS_RECIPIENT")
    assert recipient, "APTOS_RECIPIENT environment variable required"

    assert settings.aptos_payer_private_key, "APTOS_PAYER_WALLET_PRIVATE_KEY environment variable required"

    sponsored = os.environ.get("SPONSORED", "").lower() in ("1", "true", "yes")

    owner = load_keypair(solana_private_key)
    solana_rpc = SolanaRPCClient(settings.solana_rpc_url)
    aptos_rpc = AptosRPCClient(settings.aptos_node_url)
    aptos_wallet = AptosServiceWallet(aptos_rpc, settings.aptos_payer_private_key, settings.aptos_payer_address)

    print(f"Solana wallet: {owner.pubkey()}")
    print(f"Aptos recipient: {recipient}")
    print(f"Aptos gas payer: {aptos_wallet.address}")

    if sponsored:
        assert settings.solana_payer_private_key, "SOLANA_PAYER_WALLET_PRIVATE_KEY environment variable required for SPONSORED"
        fee_payer = load_fee_payer(settings.solana_payer_private_key, settings.solana_payer_address)
        print(f"Fee payer: {fee_payer.pubkey()}")
        orchestrator = create_sponsored_orchestrator(
            rpc=solana_rpc,
            owner=owner,
            fee_payer=fee_payer,
            dest_signer=aptos_wallet,
            dest_rpc=aptos_rpc,
            config=BridgeConfig(
                attestation=AttestationPollConfig.create_privacy_flow_config(),
                attestation_api_url=settings.attestation_api_url,
                recovery_base_url=settings.recovery_base_url,
            ),
            attestation_session=create_iris_session(settings.attestation_api_url),
        )
        amount = 0
    else:
        amount_text = os.environ.get("AMOUNT")
        assert amount_text, "AMOUNT environment variable required"
        amount = parse_usdc_amount(amount_text)
        orchestrator = BridgeOrchestrator(
            route=SolanaToAptosRoute(owner=owner.pubkey()),
            source_signer=KeypairSigner(solana_rpc, owner=owner),
            source_rpc=solana_rpc,
            dest_signer=aptos_wallet,
            dest_rpc=aptos_rpc,
            config=BridgeConfig(attestation_api_url=settings.attestation_api_url, recovery_base_url=settings.recovery_base_url),
            attestation_session=create_iris_session(settings.attestation_api_url),
        )

    transfer = BridgeTransfer(direction=BridgeDirection.solana_to_aptos, amount=amount, recipient=recipient)
    orchestrator.run(transfer)

    rows = [[e.timestamp.strftime("%H:%M:%S"), e.status.value, e.message, e.link or ""] for e in transfer.action_log.entries()]
    print(tabulate(rows, headers=["Time", "Status", "Step", "Link"], tablefmt="fancy_grid"))

    print(f"Final state: {transfer.state.value}")
    if transfer.failure_reason:
        print(f"Failure reason: {transfer.failure_reason}")


if __name__ == "__main__":
    main()
