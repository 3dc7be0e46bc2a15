"""
gumdrop/ledger/layouts.py

Decoders for the raw account layouts the claim validators inspect.

Formats:
- SPL mint (82 bytes)
- SPL token account (165 bytes)
- Metaplex master edition v2 (key, supply, optional max supply)
- Candy machine config / candy machine (8-byte discriminator, authority)
"""

import struct
from dataclasses import dataclass
from typing import Optional

from solders.pubkey import Pubkey

from ..errors import ValidationError

MINT_FORMAT = "<I32sQBBI32s"
MINT_SIZE = struct.calcsize(MINT_FORMAT)                    # 82
TOKEN_ACCOUNT_FORMAT = "<32s32sQI32sBIQQI32s"
TOKEN_ACCOUNT_SIZE = struct.calcsize(TOKEN_ACCOUNT_FORMAT)  # 165

MASTER_EDITION_V1_KEY = 2
MASTER_EDITION_V2_KEY = 6

ANCHOR_DISCRIMINATOR_SIZE = 8


@dataclass(frozen=True)
class MintLayout:
    mint_authority: Optional[Pubkey]
    supply: int
    decimals: int
    is_initialized: bool
    freeze_authority: Optional[Pubkey]


@dataclass(frozen=True)
class TokenAccountLayout:
    mint: Pubkey
    owner: Pubkey
    amount: int
    delegate: Optional[Pubkey]
    state: int
    delegated_amount: int


@dataclass(frozen=True)
class MasterEditionLayout:
    supply: int
    max_supply: Optional[int]


def decode_mint(data: bytes) -> MintLayout:
    """Decode an SPL token mint account."""
    if len(data) < MINT_SIZE:
        raise ValidationError(f"Mint account too short: {len(data)} bytes")

    (auth_opt, auth, supply, decimals, initialized,
     freeze_opt, freeze) = struct.unpack(MINT_FORMAT, data[:MINT_SIZE])

    return MintLayout(
        mint_authority=Pubkey.from_bytes(auth) if auth_opt else None,
        supply=supply,
        decimals=decimals,
        is_initialized=bool(initialized),
        freeze_authority=Pubkey.from_bytes(freeze) if freeze_opt else None,
    )


def decode_token_account(data: bytes) -> TokenAccountLayout:
    """Decode an SPL token account."""
    if len(data) < TOKEN_ACCOUNT_SIZE:
        raise ValidationError(f"Token account too short: {len(data)} bytes")

    (mint, owner, amount, delegate_opt, delegate, state,
     _native_opt, _native, delegated_amount,
     _close_opt, _close) = struct.unpack(TOKEN_ACCOUNT_FORMAT, data[:TOKEN_ACCOUNT_SIZE])

    return TokenAccountLayout(
        mint=Pubkey.from_bytes(mint),
        owner=Pubkey.from_bytes(owner),
        amount=amount,
        delegate=Pubkey.from_bytes(delegate) if delegate_opt else None,
        state=state,
        delegated_amount=delegated_amount,
    )


def decode_master_edition(data: bytes) -> MasterEditionLayout:
    """Decode a master edition account (borsh, v1 or v2 prefix)."""
    if len(data) < 10:
        raise ValidationError(f"Master edition account too short: {len(data)} bytes")

    key = data[0]
    if key not in (MASTER_EDITION_V1_KEY, MASTER_EDITION_V2_KEY):
        raise ValidationError(f"Account is not a master edition (key {key})")

    supply, has_max = struct.unpack_from("<QB", data, 1)
    max_supply = None
    if has_max:
        if len(data) < 18:
            raise ValidationError("Master edition max supply truncated")
        (max_supply,) = struct.unpack_from("<Q", data, 10)

    return MasterEditionLayout(supply=supply, max_supply=max_supply)


def decode_candy_authority(data: bytes) -> Pubkey:
    """Authority of a candy machine config or candy machine account."""
    end = ANCHOR_DISCRIMINATOR_SIZE + 32
    if len(data) < end:
        raise ValidationError(f"Candy machine account too short: {len(data)} bytes")
    return Pubkey.from_bytes(data[ANCHOR_DISCRIMINATOR_SIZE:end])
