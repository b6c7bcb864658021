"""Burn → confirm → attest → mint orchestration against in-process fakes.

No network: chain RPCs, wallets and the Iris API are replaced with
the fakes from :py:mod:`cctp_bridge.testing`.
"""

import threading
from urllib.parse import parse_qs, urlparse

import pytest
from solders.keypair import Keypair

from cctp_bridge.action_log import ActionStatus
from cctp_bridge.address import aptos_address_to_bytes32
from cctp_bridge.bridge import (
    REASON_ATTESTATION_TIMEOUT,
    AptosToSolanaRoute,
    BridgeConfig,
    BridgeDirection,
    BridgeOrchestrator,
    BridgeState,
    BridgeTransfer,
    ManualMintRequest,
    SolanaToAptosRoute,
    build_recovery_link,
    run_bridge_transfers_parallel,
)
from cctp_bridge.constants import USDC_APTOS_ADDRESS, USDC_SOLANA_MINT
from cctp_bridge.errors import ChainSubmissionError, InvalidStateTransition, WalletNotConnected
from cctp_bridge.pda import derive_associated_token_address
from cctp_bridge.signer import TransactionStatus, TransactionStatusResult
from cctp_bridge.testing import (
    FakeHTTPSession,
    FakeResponse,
    MockChainRPC,
    MockSigner,
    craft_cctp_message,
    iris_pending_response,
    iris_ready_response,
)

APTOS_RECIPIENT = "0x1f6c9a0a3b0d4e5f60718293a4b5c6d7e8f90a1b2c3d4e5f60718293a4b5c6d7"

#: Aptos account burning in the Aptos to Solana tests
APTOS_OWNER = "0x" + "ab" * 32

#: 0.1 USDC
AMOUNT = 100_000


@pytest.fixture()
def owner() -> Keypair:
    return Keypair()


@pytest.fixture()
def solana_rpc(owner) -> MockChainRPC:
    """Solana with 1 USDC in the owner's token account."""
    rpc = MockChainRPC()
    rpc.add_token_account(derive_associated_token_address(owner.pubkey()), USDC_SOLANA_MINT, owner.pubkey(), 1_000_000)
    return rpc


@pytest.fixture()
def solana_signer(owner) -> MockSigner:
    return MockSigner(str(owner.pubkey()), tx_prefix="solburn")


@pytest.fixture()
def aptos_signer() -> MockSigner:
    return MockSigner("0x" + "ab" * 32, tx_prefix="0xmint")


@pytest.fixture()
def aptos_rpc() -> MockChainRPC:
    return MockChainRPC()


@pytest.fixture()
def burn_message() -> bytes:
    return craft_cctp_message(source_domain=5, destination_domain=9, mint_recipient=aptos_address_to_bytes32(APTOS_RECIPIENT), amount=AMOUNT)


def make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris, abort=None) -> BridgeOrchestrator:
    return BridgeOrchestrator(
        route=SolanaToAptosRoute(owner=owner.pubkey()),
        source_signer=solana_signer,
        source_rpc=solana_rpc,
        dest_signer=aptos_signer,
        dest_rpc=aptos_rpc,
        config=BridgeConfig.create_test_config(),
        attestation_session=iris,
        abort=abort,
    )


def make_transfer(amount: int = AMOUNT) -> BridgeTransfer:
    return BridgeTransfer(direction=BridgeDirection.solana_to_aptos, amount=amount, recipient=APTOS_RECIPIENT)


def test_solana_to_aptos_happy_path(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """0.1 USDC goes through every state and lands on Aptos."""
    iris = FakeHTTPSession([iris_pending_response(), iris_pending_response(), iris_ready_response(burn_message)])
    orchestrator = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris)
    transfer = orchestrator.run(make_transfer())

    assert transfer.state == BridgeState.completed
    assert transfer.failure_reason is None
    assert transfer.burn_tx_id == "solburn1"
    assert transfer.mint_tx_id == "0xmint1"
    assert transfer.attestation.message == burn_message
    assert len(iris.calls) == 3
    assert iris.calls[0].endswith("/messages/5/solburn1")

    # The mint call carries the message, attestation and gas drop to the recipient
    call, extra_signers = aptos_signer.submitted[0]
    assert call.function == "handle_receive_message_entry"
    assert call.arguments[0] == ("vector<u8>", burn_message)
    assert call.arguments[2] == ("address", aptos_address_to_bytes32(APTOS_RECIPIENT))
    assert extra_signers == []

    # Burn was co-signed by the event data keypair
    _, burn_signers = solana_signer.submitted[0]
    assert len(burn_signers) == 1

    last = transfer.action_log.last
    assert last.status == ActionStatus.success
    assert last.message == "Bridge complete, 0.1 USDC minted on Aptos"
    assert "explorer.aptoslabs.com/txn/0xmint1" in last.link
    assert all(e.status == ActionStatus.success for e in transfer.action_log.entries())


def test_attestation_timeout_leaves_recovery_link(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc):
    """Never attested: the transfer fails, nothing is minted and the user gets a manual mint link."""
    iris = FakeHTTPSession([iris_pending_response()])
    orchestrator = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris)
    transfer = orchestrator.run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert transfer.failure_reason == REASON_ATTESTATION_TIMEOUT == "attestation polling timeout"
    assert len(iris.calls) == 15
    assert aptos_signer.submitted == []
    assert transfer.mint_tx_id is None

    entries = transfer.action_log.entries()
    assert entries[-2].status == ActionStatus.error
    assert "failed: attestation polling timeout" in entries[-2].message

    last = entries[-1]
    assert last.status == ActionStatus.error
    assert last.link_text == "Mint manually"
    link = urlparse(last.link)
    assert link.path == "/minting-aptos"
    assert parse_qs(link.query) == {"signature": ["solburn1"], "sourceDomain": ["5"], "finalRecipient": [APTOS_RECIPIENT]}


def test_burned_funds_always_recoverable(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """Any failure after the burn is submitted ends with a recovery link, never a silent loss."""
    solana_rpc.statuses["solburn1"] = [TransactionStatusResult(TransactionStatus.pending)] * 30
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert transfer.failure_reason == "confirmation timeout"
    assert iris.calls == []
    assert aptos_signer.submitted == []
    assert "signature=solburn1" in transfer.action_log.last.link


def test_burn_failed_on_chain(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    solana_rpc.statuses["solburn1"] = [TransactionStatusResult(TransactionStatus.error, error="InstructionError")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert "InstructionError" in transfer.failure_reason
    assert solana_rpc.status_queries["solburn1"] == 1
    assert iris.calls == []


def test_zero_amount_rejected_before_network(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """Zero amount fails locally: no RPC call, nothing signed, no recovery link."""
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer(amount=0))

    assert transfer.state == BridgeState.failed
    assert "positive" in transfer.failure_reason
    assert solana_rpc.calls == 0
    assert solana_signer.submitted == []
    assert transfer.burn_tx_id is None
    assert all(e.link_text != "Mint manually" for e in transfer.action_log.entries())


def test_amount_over_balance(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer(amount=2_000_000))
    assert transfer.state == BridgeState.failed
    assert "exceeds balance" in transfer.failure_reason
    assert solana_signer.submitted == []


def test_wallet_reconnects_once(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """A disconnected destination wallet is reconnected and the mint retried once."""
    aptos_signer.failures = [WalletNotConnected("Wallet disconnected")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.completed
    assert aptos_signer.reconnect_count == 1
    assert len(aptos_signer.submitted) == 1


def test_wallet_reconnect_not_repeated(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    aptos_signer.failures = [WalletNotConnected("Wallet disconnected"), WalletNotConnected("Wallet disconnected again")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert aptos_signer.reconnect_count == 1
    assert transfer.action_log.last.link_text == "Mint manually"


def test_disconnected_wallet_connected_before_mint(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    aptos_signer.connected = False
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())
    assert transfer.state == BridgeState.completed
    assert aptos_signer.reconnect_count == 1


def test_mint_submission_retried(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    aptos_signer.failures = [ChainSubmissionError("SEQUENCE_NUMBER_TOO_OLD")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())
    assert transfer.state == BridgeState.completed
    assert transfer.mint_tx_id == "0xmint1"


def test_recipient_mismatch_warns(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc):
    """A message minting elsewhere than expected is reported but still minted."""
    message = craft_cctp_message(source_domain=5, destination_domain=9, mint_recipient=b"\x09" * 32, amount=AMOUNT)
    iris = FakeHTTPSession([iris_ready_response(message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.completed
    warnings = [e for e in transfer.action_log.entries() if e.status == ActionStatus.warning]
    assert len(warnings) == 1
    assert "0x" + "09" * 32 in warnings[0].message


def test_abort_fails_with_recovery_link(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    abort = threading.Event()
    abort.set()
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris, abort=abort).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert transfer.failure_reason == "aborted"
    assert transfer.action_log.last.link_text == "Mint manually"


def test_undecodable_attestation_fails_with_recovery_link(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc):
    """Garbage from the attestation service still leaves the burned funds recoverable."""
    garbage = FakeResponse(200, {"messages": [{"message": "0xzz", "attestation": "0x" + "aa" * 65, "status": "complete"}]})
    iris = FakeHTTPSession([garbage])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert "undecodable message" in transfer.failure_reason
    assert aptos_signer.submitted == []
    assert transfer.action_log.last.link_text == "Mint manually"
    assert "signature=solburn1" in transfer.action_log.last.link


def test_unexpected_wallet_error_fails_with_recovery_link(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """A wallet adapter raising a foreign exception ends the transfer, it does not escape ``run()``."""
    aptos_signer.failures = [RuntimeError("wallet adapter crashed")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert transfer.failure_reason == "wallet adapter crashed"
    assert transfer.mint_tx_id is None
    last = transfer.action_log.last
    assert last.status == ActionStatus.error
    assert last.link_text == "Mint manually"
    assert parse_qs(urlparse(last.link).query)["signature"] == ["solburn1"]


def test_unexpected_error_before_burn_has_no_recovery_link(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    solana_signer.failures = [RuntimeError("wallet popup closed")]
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    transfer = make_orchestrator(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, iris).run(make_transfer())

    assert transfer.state == BridgeState.failed
    assert transfer.burn_tx_id is None
    assert all(e.link_text != "Mint manually" for e in transfer.action_log.entries())


def test_resume_mint(owner, solana_signer, solana_rpc, aptos_signer, aptos_rpc, burn_message):
    """Manual mint view: skip the burn, take the amount from the message."""
    iris = FakeHTTPSession([iris_ready_response(burn_message)])
    orchestrator = BridgeOrchestrator(
        route=SolanaToAptosRoute(),
        source_signer=solana_signer,
        source_rpc=solana_rpc,
        dest_signer=aptos_signer,
        dest_rpc=aptos_rpc,
        config=BridgeConfig.create_test_config(),
        attestation_session=iris,
    )
    request = ManualMintRequest.from_query_params({"signature": "solburn42", "sourceDomain": "5", "finalRecipient": APTOS_RECIPIENT})
    transfer = orchestrator.resume_mint(request)

    assert transfer.state == BridgeState.completed
    assert transfer.amount == AMOUNT
    assert transfer.burn_tx_id == "solburn42"
    assert solana_signer.submitted == []
    assert iris.calls[0].endswith("/messages/5/solburn42")


def test_aptos_to_solana_creates_token_account(aptos_rpc):
    """Minting to a wallet without a USDC account creates it in the same transaction."""
    recipient = Keypair().pubkey()
    payer = Keypair().pubkey()
    token_account = derive_associated_token_address(recipient)
    message = craft_cctp_message(
        source_domain=9,
        destination_domain=5,
        burn_token=aptos_address_to_bytes32(USDC_APTOS_ADDRESS),
        mint_recipient=bytes(token_account),
        amount=AMOUNT,
    )

    aptos_signer = MockSigner(APTOS_OWNER, tx_prefix="0xburn")
    aptos_rpc.fungible_balances[APTOS_OWNER] = 1_000_000
    solana_signer = MockSigner(str(payer), tx_prefix="solmint")
    solana_rpc = MockChainRPC()
    orchestrator = BridgeOrchestrator(
        route=AptosToSolanaRoute(owner=APTOS_OWNER),
        source_signer=aptos_signer,
        source_rpc=aptos_rpc,
        dest_signer=solana_signer,
        dest_rpc=solana_rpc,
        config=BridgeConfig.create_test_config(),
        attestation_session=FakeHTTPSession([iris_ready_response(message)]),
    )
    transfer = BridgeTransfer(direction=BridgeDirection.aptos_to_solana, amount=AMOUNT, recipient=str(recipient))
    orchestrator.run(transfer)

    assert transfer.state == BridgeState.completed
    assert transfer.burn_tx_id == "0xburn1"
    assert transfer.mint_tx_id == "solmint1"

    # Burn mints to the recipient's token account, not the wallet
    burn_call, _ = aptos_signer.submitted[0]
    assert burn_call.function == "deposit_for_burn"
    assert burn_call.arguments[2] == ("address", bytes(token_account))

    instructions, _ = solana_signer.submitted[0]
    assert len(instructions) == 2
    assert instructions[1].accounts[14].pubkey == token_account


def test_aptos_to_solana_existing_token_account(aptos_rpc):
    recipient = Keypair().pubkey()
    payer = Keypair().pubkey()
    token_account = derive_associated_token_address(recipient)
    message = craft_cctp_message(source_domain=9, destination_domain=5, mint_recipient=bytes(token_account), amount=AMOUNT)

    solana_rpc = MockChainRPC()
    solana_rpc.add_token_account(token_account, USDC_SOLANA_MINT, recipient, 0)
    solana_signer = MockSigner(str(payer), tx_prefix="solmint")
    aptos_rpc.fungible_balances[APTOS_OWNER] = 1_000_000
    orchestrator = BridgeOrchestrator(
        route=AptosToSolanaRoute(owner=APTOS_OWNER),
        source_signer=MockSigner(APTOS_OWNER, tx_prefix="0xburn"),
        source_rpc=aptos_rpc,
        dest_signer=solana_signer,
        dest_rpc=solana_rpc,
        config=BridgeConfig.create_test_config(),
        attestation_session=FakeHTTPSession([iris_ready_response(message)]),
    )
    transfer = orchestrator.run(BridgeTransfer(direction=BridgeDirection.aptos_to_solana, amount=AMOUNT, recipient=str(recipient)))

    assert transfer.state == BridgeState.completed
    instructions, _ = solana_signer.submitted[0]
    assert len(instructions) == 1


def test_state_transitions():
    transfer = make_transfer()
    with pytest.raises(InvalidStateTransition):
        transfer.transition(BridgeState.completed)

    transfer.fail("boom")
    assert transfer.is_terminal
    with pytest.raises(InvalidStateTransition):
        transfer.fail("again")


def test_transfer_serialisation():
    transfer = make_transfer()
    transfer.burn_tx_id = "solburn1"
    data = transfer.to_dict()
    assert data["source_domain"] == 5
    assert data["dest_domain"] == 9

    loaded = BridgeTransfer.from_dict(data)
    assert loaded == transfer

    data["dest_domain"] = 5
    with pytest.raises(ValueError, match="do not match"):
        BridgeTransfer.from_dict(data)


def test_manual_mint_request_parsing():
    request = ManualMintRequest.from_query_params({"signature": " abc ", "sourceDomain": "9", "finalRecipient": "Wallet1"})
    assert request == ManualMintRequest(signature="abc", source_domain=9, final_recipient="Wallet1")

    with pytest.raises(ValueError, match="signature"):
        ManualMintRequest.from_query_params({"sourceDomain": "9", "finalRecipient": "Wallet1"})

    with pytest.raises(ValueError, match="Unsupported sourceDomain"):
        ManualMintRequest.from_query_params({"signature": "abc", "sourceDomain": "0", "finalRecipient": "Wallet1"})

    with pytest.raises(ValueError, match="integer"):
        ManualMintRequest.from_query_params({"signature": "abc", "sourceDomain": "solana", "finalRecipient": "Wallet1"})


def test_recovery_link():
    link = build_recovery_link("0xburn", 9, "Wallet1", base_url="https://bridge.example.com/")
    assert link == "https://bridge.example.com/minting-solana?signature=0xburn&sourceDomain=9&finalRecipient=Wallet1"


def test_parallel_transfers(burn_message):
    """Independent transfers run side by side, results keep input order."""
    jobs = []
    for n in range(3):
        owner = Keypair()
        solana_rpc = MockChainRPC()
        solana_rpc.add_token_account(derive_associated_token_address(owner.pubkey()), USDC_SOLANA_MINT, owner.pubkey(), 1_000_000)
        # The second transfer never gets attested
        iris = FakeHTTPSession([iris_pending_response()] if n == 1 else [iris_ready_response(burn_message)])
        orchestrator = make_orchestrator(owner, MockSigner(str(owner.pubkey()), tx_prefix=f"burn{n}-"), solana_rpc, MockSigner("0x" + "ab" * 32), MockChainRPC(), iris)
        jobs.append((orchestrator, make_transfer()))

    results = run_bridge_transfers_parallel(jobs, max_workers=3, progress=False)
    assert [t.burn_tx_id for t in results] == ["burn0-1", "burn1-1", "burn2-1"]
    assert [t.state for t in results] == [BridgeState.completed, BridgeState.failed, BridgeState.completed]


def test_parallel_batch_survives_unexpected_error(burn_message):
    """One transfer's crashing wallet does not take down the rest of the batch."""
    jobs = []
    for n in range(2):
        owner = Keypair()
        solana_rpc = MockChainRPC()
        solana_rpc.add_token_account(derive_associated_token_address(owner.pubkey()), USDC_SOLANA_MINT, owner.pubkey(), 1_000_000)
        aptos_signer = MockSigner("0x" + "ab" * 32)
        if n == 0:
            aptos_signer.failures = [RuntimeError("wallet adapter crashed")]
        iris = FakeHTTPSession([iris_ready_response(burn_message)])
        orchestrator = make_orchestrator(owner, MockSigner(str(owner.pubkey()), tx_prefix=f"burn{n}-"), solana_rpc, aptos_signer, MockChainRPC(), iris)
        jobs.append((orchestrator, make_transfer()))

    results = run_bridge_transfers_parallel(jobs, max_workers=2, progress=False)
    assert [t.state for t in results] == [BridgeState.failed, BridgeState.completed]
    assert results[0].action_log.last.link_text == "Mint manually"


def test_aptos_burn_over_balance(aptos_rpc):
    """The Aptos USDC balance is checked before anything is signed."""
    aptos_signer = MockSigner(APTOS_OWNER, tx_prefix="0xburn")
    aptos_rpc.fungible_balances[APTOS_OWNER] = 50_000
    orchestrator = BridgeOrchestrator(
        route=AptosToSolanaRoute(owner=APTOS_OWNER),
        source_signer=aptos_signer,
        source_rpc=aptos_rpc,
        dest_signer=MockSigner(str(Keypair().pubkey())),
        dest_rpc=MockChainRPC(),
        config=BridgeConfig.create_test_config(),
        attestation_session=FakeHTTPSession([iris_pending_response()]),
    )
    transfer = orchestrator.run(BridgeTransfer(direction=BridgeDirection.aptos_to_solana, amount=AMOUNT, recipient=str(Keypair().pubkey())))

    assert transfer.state == BridgeState.failed
    assert transfer.failure_reason == "Amount 100000 exceeds balance 50000"
    assert aptos_signer.submitted == []
    assert transfer.burn_tx_id is None
