"""Bridge USDC between Solana and Aptos over Circle's Cross-Chain Transfer Protocol.

- :mod:`cctp_bridge.message` and :mod:`cctp_bridge.address`: CCTP message codec and 32-byte addresses
- :mod:`cctp_bridge.pda`: CCTP program derived addresses on Solana
- :mod:`cctp_bridge.transfer` and :mod:`cctp_bridge.receive`: Solana burn and mint instructions
- :mod:`cctp_bridge.aptos`: Aptos burn and mint entry functions, Aptos node client and service wallet
- :mod:`cctp_bridge.attestation`: Circle Iris attestation polling
- :mod:`cctp_bridge.bridge`: burn → confirm → attest → mint orchestration
- :mod:`cctp_bridge.privacy`: gas sponsored burns from an ephemeral wallet
"""
