"""Circle CCTP V1 constants for the Solana and Aptos deployments.

Domain ids, program ids, token addresses and service URLs used
across the bridge. These are protocol constants and are not
configurable per transfer.

See `Circle CCTP supported domains <https://developers.circle.com/stablecoins/supported-domains>`__.
"""

from solders.pubkey import Pubkey

#: CCTP domain id of Solana
CCTP_DOMAIN_SOLANA = 5

#: CCTP domain id of Aptos
CCTP_DOMAIN_APTOS = 9

#: CCTP domain id → human readable chain name
CCTP_DOMAIN_NAMES: dict[int, str] = {
    CCTP_DOMAIN_SOLANA: "Solana",
    CCTP_DOMAIN_APTOS: "Aptos",
}

#: CCTP V1 message header version
CCTP_MESSAGE_VERSION = 0

#: CCTP V1 burn message body version
CCTP_MESSAGE_BODY_VERSION = 0

#: USDC has 6 decimals on both chains
USDC_DECIMALS = 6

#: Circle Iris attestation API, mainnet
IRIS_API_BASE_URL = "https://iris-api.circle.com/v1"

#: Circle Iris attestation API, testnet
IRIS_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com/v1"

#
# Solana
#

#: Circle TokenMessengerMinter program on Solana mainnet
TOKEN_MESSENGER_MINTER_PROGRAM_ID = Pubkey.from_string("CCTPiPYPc6AsJuwueEnWgSgucamXDZwBd53dQ11YiKX3")

#: Circle MessageTransmitter program on Solana mainnet
MESSAGE_TRANSMITTER_PROGRAM_ID = Pubkey.from_string("CCTPmbSD7gX1bxKPAmg77w8oFzNFpaQiQUWD43TKaecd")

#: Native USDC mint on Solana mainnet
USDC_SOLANA_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

#: SPL Token program
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")

#: SPL Associated Token Account program
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

#: Solana system program
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

#: Lamports per SOL
LAMPORTS_PER_SOL = 1_000_000_000

#: Minimum SOL balance the sponsoring fee payer must hold (0.001 SOL)
MIN_FEE_PAYER_LAMPORTS = 1_000_000

#: Size of an SPL token account
SPL_TOKEN_ACCOUNT_SIZE = 165

#: Solscan transaction page
SOLSCAN_TX_URL = "https://solscan.io/tx/{signature}"

#: Public Solana mainnet RPC
SOLANA_MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"

#
# Aptos
#

#: Native USDC fungible asset metadata object on Aptos mainnet
USDC_APTOS_ADDRESS = "0xbae207659db88bea0cbead6da0ed00aac12edcdda169e591cd41c94180b46f3b"

#: Circle ``cctp_tools`` helper package on Aptos, exposes an entry ``deposit_for_burn``
APTOS_DEPOSIT_FOR_BURN_MODULE = "0x35e75139eea19566dc8ac00be056e9bd605e788370d76e8bacf87177aeb32dac::cctp_tools"

#: Receive-with-gas-drop-off package on Aptos, mints USDC and optionally drops APT gas
APTOS_RECEIVE_MESSAGE_MODULE = "0xdb4058f273ce5fb86fffba7ce0436c6711a6f9997c1c4eed1a0aaccd6cd4bc6c::cctp_v1_receive_with_gas_drop_off"

#: Entry function name within :py:data:`APTOS_RECEIVE_MESSAGE_MODULE`
APTOS_RECEIVE_MESSAGE_FUNCTION = "handle_receive_message_entry"

#: View function returning the primary store balance of a fungible asset
APTOS_FUNGIBLE_BALANCE_FUNCTION = "0x1::primary_fungible_store::balance"

#: Type argument of :py:data:`APTOS_FUNGIBLE_BALANCE_FUNCTION`
APTOS_FUNGIBLE_METADATA_TYPE = "0x1::fungible_asset::Metadata"

#: Aptos Labs fullnode REST API
APTOS_MAINNET_NODE_URL = "https://api.mainnet.aptoslabs.com/v1"

#: Aptos chain id of mainnet
APTOS_MAINNET_CHAIN_ID = 1

#: Max gas units for the service wallet mint transaction
APTOS_MAX_GAS_AMOUNT = 100_000

#: Gas unit price in octas for the service wallet mint transaction
APTOS_GAS_UNIT_PRICE = 100

#: Transaction expiry offset from the ledger timestamp, seconds
APTOS_TRANSACTION_EXPIRY_SECONDS = 1800

#: Aptos explorer transaction page
APTOS_EXPLORER_TX_URL = "https://explorer.aptoslabs.com/txn/{tx_hash}?network=mainnet"
