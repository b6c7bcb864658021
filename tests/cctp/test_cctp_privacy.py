"""Gas sponsored burns from an ephemeral wallet.

The Solana node is replaced with an in-memory fake, so these tests
also cover signing with a separate fee payer.
"""

import base58
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from cctp_bridge.address import aptos_address_to_bytes32
from cctp_bridge.bridge import BridgeConfig, BridgeDirection, BridgeState, BridgeTransfer
from cctp_bridge.constants import USDC_SOLANA_MINT
from cctp_bridge.errors import ChainSubmissionError, EncodingError, InsufficientFeePayerBalance, InvalidAmount, SigningRejected
from cctp_bridge.privacy import (
    SponsoredBurnSigner,
    check_fee_payer_balance,
    create_sponsored_orchestrator,
    execute_sponsored_burn,
    find_usdc_token_account,
    load_fee_payer,
    prepare_sponsored_burn,
)
from cctp_bridge.receive import TokenAccount
from cctp_bridge.solana import load_keypair
from cctp_bridge.testing import FakeHTTPSession, MockChainRPC, MockSigner, craft_cctp_message, iris_ready_response

APTOS_RECIPIENT = "0x1f6c9a0a3b0d4e5f60718293a4b5c6d7e8f90a1b2c3d4e5f60718293a4b5c6d7"


class FakeSolanaRPC(MockChainRPC):
    """Enough of :py:class:`cctp_bridge.solana.SolanaRPCClient` for sponsored burns."""

    def __init__(self, lamports: int = 10_000_000):
        super().__init__()
        self.lamports = lamports
        self.token_accounts: list[tuple[Pubkey, TokenAccount]] = []
        self.sent: list[bytes] = []

    def get_balance(self, address) -> int:
        return self.lamports

    def get_token_accounts_by_owner(self, owner, mint) -> list[tuple[Pubkey, TokenAccount]]:
        return [(a, t) for a, t in self.token_accounts if t.owner == owner and t.mint == mint]

    def get_latest_blockhash(self) -> Hash:
        return Hash.default()

    def send_raw_transaction(self, raw: bytes) -> str:
        self.sent.append(raw)
        return f"sponsored{len(self.sent)}"


@pytest.fixture()
def owner() -> Keypair:
    return Keypair()


@pytest.fixture()
def sponsor() -> Keypair:
    return Keypair()


@pytest.fixture()
def rpc(owner) -> FakeSolanaRPC:
    """Ephemeral wallet with an empty and a funded USDC account."""
    rpc = FakeSolanaRPC()
    rpc.token_accounts = [
        (Keypair().pubkey(), TokenAccount(mint=USDC_SOLANA_MINT, owner=owner.pubkey(), amount=0)),
        (Keypair().pubkey(), TokenAccount(mint=USDC_SOLANA_MINT, owner=owner.pubkey(), amount=2_500_000)),
    ]
    return rpc


def test_find_funded_token_account(rpc, owner):
    address, account = find_usdc_token_account(rpc, owner.pubkey())
    assert address == rpc.token_accounts[1][0]
    assert account.amount == 2_500_000


def test_no_token_account(owner):
    with pytest.raises(InvalidAmount, match="No USDC token account"):
        find_usdc_token_account(FakeSolanaRPC(), owner.pubkey())


def test_fee_payer_balance(sponsor):
    assert check_fee_payer_balance(FakeSolanaRPC(lamports=5_000_000), sponsor.pubkey()) == 5_000_000
    with pytest.raises(InsufficientFeePayerBalance, match="needs at least 0.001000 SOL"):
        check_fee_payer_balance(FakeSolanaRPC(lamports=999_999), sponsor.pubkey())


def test_load_fee_payer(sponsor):
    secret = base58.b58encode(bytes(sponsor)).decode()
    assert load_fee_payer(secret, str(sponsor.pubkey())).pubkey() == sponsor.pubkey()
    with pytest.raises(SigningRejected, match="does not match"):
        load_fee_payer(secret, str(Keypair().pubkey()))


def test_load_keypair_rejects_garbage():
    with pytest.raises(EncodingError, match="64 bytes"):
        load_keypair(base58.b58encode(b"\x01" * 32).decode())
    with pytest.raises(EncodingError, match="base58"):
        load_keypair("not-base58-0OIl")


def test_prepare_sponsored_burn(rpc, owner, sponsor):
    """Whole balance is burned from the funded account, sponsor pays."""
    prepared, token_account = prepare_sponsored_burn(rpc=rpc, owner=owner.pubkey(), fee_payer=sponsor.pubkey(), mint_recipient=APTOS_RECIPIENT)
    assert token_account == rpc.token_accounts[1][0]
    assert prepared.amount == 2_500_000
    assert prepared.fee_payer == sponsor.pubkey()
    assert prepared.instruction.accounts[3].pubkey == token_account
    assert prepared.required_signers[0] == sponsor.pubkey()


def test_zero_balance_rejected(owner, sponsor):
    rpc = FakeSolanaRPC()
    rpc.token_accounts = [(Keypair().pubkey(), TokenAccount(mint=USDC_SOLANA_MINT, owner=owner.pubkey(), amount=0))]
    with pytest.raises(InvalidAmount, match="is zero"):
        prepare_sponsored_burn(rpc=rpc, owner=owner.pubkey(), fee_payer=sponsor.pubkey(), mint_recipient=APTOS_RECIPIENT)


def test_broke_sponsor_rejected_before_burn(rpc, owner, sponsor):
    rpc.lamports = 0
    with pytest.raises(InsufficientFeePayerBalance):
        execute_sponsored_burn(rpc=rpc, owner=owner, fee_payer=sponsor, mint_recipient=APTOS_RECIPIENT)
    assert rpc.sent == []


def test_execute_sponsored_burn(rpc, owner, sponsor):
    """Transaction is paid by the sponsor and signed by all three keys."""
    result = execute_sponsored_burn(rpc=rpc, owner=owner, fee_payer=sponsor, mint_recipient=APTOS_RECIPIENT)
    assert result.signature == "sponsored1"
    assert result.amount == 2_500_000

    tx = Transaction.from_bytes(rpc.sent[0])
    assert tx.message.account_keys[0] == sponsor.pubkey()
    assert len(tx.signatures) == 3
    assert tx.message.header.num_required_signatures == 3


def test_sponsored_bridge_flow(rpc, owner, sponsor):
    """Privacy flow end to end: full balance burned on Solana and minted on Aptos."""
    message = craft_cctp_message(source_domain=5, destination_domain=9, mint_recipient=aptos_address_to_bytes32(APTOS_RECIPIENT), amount=2_500_000)
    aptos_signer = MockSigner("0x" + "ab" * 32, tx_prefix="0xmint")
    orchestrator = create_sponsored_orchestrator(
        rpc=rpc,
        owner=owner,
        fee_payer=sponsor,
        dest_signer=aptos_signer,
        dest_rpc=MockChainRPC(),
        config=BridgeConfig.create_test_config(),
        attestation_session=FakeHTTPSession([iris_ready_response(message)]),
    )
    transfer = orchestrator.run(BridgeTransfer(direction=BridgeDirection.solana_to_aptos, amount=0, recipient=APTOS_RECIPIENT))

    assert transfer.state == BridgeState.completed
    assert transfer.amount == 2_500_000
    assert transfer.burn_tx_id == "sponsored1"
    assert transfer.mint_tx_id == "0xmint1"
    assert transfer.action_log.last.message == "Bridge complete, 2.5 USDC minted on Aptos"

    # Both keypairs are gone once the burn is signed
    signer = orchestrator.source_signer
    assert isinstance(signer, SponsoredBurnSigner)
    assert signer.released
    assert signer.owner is None and signer.fee_payer is None
    assert signer.address == str(owner.pubkey())


def test_sponsored_signer_signs_once(rpc, owner, sponsor):
    """Keys are released after the first transaction, even when broadcasting fails."""
    prepared, _ = prepare_sponsored_burn(rpc=rpc, owner=owner.pubkey(), fee_payer=sponsor.pubkey(), mint_recipient=APTOS_RECIPIENT)
    signer = SponsoredBurnSigner(rpc, owner=owner, fee_payer=sponsor)
    assert signer.sign_and_submit(prepared.instruction, [prepared.event_data_keypair]) == "sponsored1"

    with pytest.raises(SigningRejected, match="already used and released"):
        signer.sign_and_submit(prepared.instruction, [prepared.event_data_keypair])
    with pytest.raises(SigningRejected):
        signer.sign_message(b"hello")
    assert len(rpc.sent) == 1

    class BrokenRPC(FakeSolanaRPC):
        def send_raw_transaction(self, raw: bytes) -> str:
            raise ChainSubmissionError("node unavailable")

    failing = SponsoredBurnSigner(BrokenRPC(), owner=owner, fee_payer=sponsor)
    with pytest.raises(ChainSubmissionError):
        failing.sign_and_submit(prepared.instruction, [prepared.event_data_keypair])
    assert failing.released
