"""
gumdrop/ledger - Remote ledger access.

Provides the narrow interface the pipeline uses to read account state and
submit transactions, plus its Solana JSON-RPC implementation.
"""

from .client import (
    AccountState,
    CheckpointReference,
    LedgerClient,
    SignatureStatus,
    SolanaLedgerClient,
)
from .layouts import (
    MintLayout,
    TokenAccountLayout,
    MasterEditionLayout,
    decode_mint,
    decode_token_account,
    decode_master_edition,
    decode_candy_authority,
)

__all__ = [
    "AccountState",
    "CheckpointReference",
    "LedgerClient",
    "SignatureStatus",
    "SolanaLedgerClient",
    "MintLayout",
    "TokenAccountLayout",
    "MasterEditionLayout",
    "decode_mint",
    "decode_token_account",
    "decode_master_edition",
    "decode_candy_authority",
]
