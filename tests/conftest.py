"""
Shared fixtures for gumdrop tests.

Provides an in-memory ledger and builders for the raw account layouts the
claim validators decode.
"""

import json
import struct
from typing import Dict, List, Optional

import pytest
import trio
from solana.rpc.commitment import Commitment
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from gumdrop.claims import derive_master_edition
from gumdrop.config import CANDY_MACHINE_ID, TOKEN_METADATA_PROGRAM_ID
from gumdrop.delivery import ClaimSender
from gumdrop.errors import ChainQueryError, DeliveryError
from gumdrop.ledger.client import (
    AccountState,
    CheckpointReference,
    LedgerClient,
    SignatureStatus,
)
from gumdrop.ledger.layouts import MINT_FORMAT, TOKEN_ACCOUNT_FORMAT


# ============================================================================
# ACCOUNT DATA BUILDERS
# ============================================================================

def mint_data(authority: Optional[Pubkey] = None, supply: int = 1_000_000, decimals: int = 0) -> bytes:
    return struct.pack(
        MINT_FORMAT,
        1 if authority else 0,
        bytes(authority) if authority else bytes(32),
        supply,
        decimals,
        1,
        0,
        bytes(32),
    )


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    return struct.pack(
        TOKEN_ACCOUNT_FORMAT,
        bytes(mint),
        bytes(owner),
        amount,
        0,
        bytes(32),
        1,
        0,
        0,
        0,
        0,
        bytes(32),
    )


def master_edition_data(supply: int, max_supply: Optional[int]) -> bytes:
    if max_supply is None:
        return bytes([6]) + struct.pack("<QB", supply, 0)
    return bytes([6]) + struct.pack("<QBQ", supply, 1, max_supply)


def candy_data(authority: Pubkey) -> bytes:
    return bytes(8) + bytes(authority) + bytes(64)


def claimants_json(identities: List[Pubkey], amounts: Optional[List[int]] = None, **extra) -> str:
    amounts = amounts or [10 * (i + 1) for i in range(len(identities))]
    rows = []
    for identity, amount in zip(identities, amounts):
        row = {"identity": str(identity), "amount": amount}
        row.update(extra)
        rows.append(row)
    return json.dumps(rows)


# ============================================================================
# FAKE LEDGER
# ============================================================================

class FakeLedger(LedgerClient):
    """
    In-memory ledger with scriptable failures.

    Only signatures that were accepted report a status. `lost_acks` are
    raised from sends that were nevertheless accepted. `height_step` is
    added to the block height on every height query.
    """

    def __init__(self):
        self.accounts: Dict[Pubkey, AccountState] = {}
        self.references: List[CheckpointReference] = []
        self.submitted = []
        self.landed = set()
        self.submit_errors: List[Exception] = []
        self.lost_acks: List[Exception] = []
        self.always_fail: Optional[Exception] = None
        self.read_errors = 0
        self.read_calls = 0
        self.block_height = 1000
        self.height_step = 0
        self.expire_references = False
        self.confirm = True
        self.slot = 4242

    def add_account(self, address: Pubkey, owner: Pubkey, data: bytes, lamports: int = 1_000_000) -> None:
        self.accounts[address] = AccountState(address=address, owner=owner, lamports=lamports, data=data)

    def fetch_checkpoint_reference(self, commitment: Commitment) -> CheckpointReference:
        last_valid = self.block_height - 1 if self.expire_references else self.block_height + 150
        reference = CheckpointReference(
            blockhash=Hash.new_unique(),
            last_valid_block_height=last_valid,
            commitment=commitment,
        )
        self.references.append(reference)
        return reference

    def submit_signed_transaction(self, tx) -> str:
        self.submitted.append(tx)
        signature = str(tx.signatures[0])
        if self.lost_acks:
            self.landed.add(signature)
            raise self.lost_acks.pop(0)
        if self.always_fail is not None:
            raise self.always_fail
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self.landed.add(signature)
        return signature

    def get_signature_status(self, signature: str, commitment: Commitment) -> Optional[SignatureStatus]:
        if not self.confirm or signature not in self.landed:
            return None
        return SignatureStatus(slot=self.slot, confirmed=True)

    def get_block_height(self, commitment: Commitment) -> int:
        self.block_height += self.height_step
        return self.block_height

    def read_account(self, address: Pubkey) -> Optional[AccountState]:
        self.read_calls += 1
        if self.read_errors > 0:
            self.read_errors -= 1
            raise ChainQueryError("connection reset")
        return self.accounts.get(address)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def wallet():
    return Keypair()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def identities():
    return [Pubkey.new_unique() for _ in range(3)]


@pytest.fixture
def transfer_ledger(ledger, wallet):
    """Ledger holding a mint and a funded source token account for the wallet."""
    mint = Pubkey.new_unique()
    ledger.add_account(mint, TOKEN_PROGRAM_ID, mint_data(wallet.pubkey(), decimals=6))
    source = get_associated_token_address(wallet.pubkey(), mint)
    ledger.add_account(source, TOKEN_PROGRAM_ID, token_account_data(mint, wallet.pubkey(), 1_000))
    ledger.mint = mint
    ledger.source = source
    return ledger


@pytest.fixture
def candy_ledger(ledger, wallet):
    config = Pubkey.new_unique()
    ledger.add_account(config, CANDY_MACHINE_ID, candy_data(wallet.pubkey()))
    ledger.config = config
    return ledger


@pytest.fixture
def edition_ledger(ledger, wallet):
    master_mint = Pubkey.new_unique()
    ledger.add_account(master_mint, TOKEN_PROGRAM_ID, mint_data(None, supply=1))
    ledger.add_account(
        derive_master_edition(master_mint),
        TOKEN_METADATA_PROGRAM_ID,
        master_edition_data(supply=2, max_supply=10),
    )
    token = get_associated_token_address(wallet.pubkey(), master_mint)
    ledger.add_account(token, TOKEN_PROGRAM_ID, token_account_data(master_mint, wallet.pubkey(), 1))
    ledger.master_mint = master_mint
    ledger.master_token = token
    return ledger


class RecordingSender(ClaimSender):
    """Records deliveries; fails for the given indices."""

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.delivered = []
        self.active = 0
        self.max_active = 0

    async def deliver(self, record, claim_info):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await trio.sleep(0.01)
            if record.index in self.fail:
                raise DeliveryError(f"bounce for {record.index}", index=record.index)
            self.delivered.append((record.index, record.pin, record.delivery_locator))
        finally:
            self.active -= 1


def counter_bytes(start: int = 1):
    """Deterministic stand-in for secrets.token_bytes."""
    state = {"next": start}

    def draw(n: int) -> bytes:
        value = state["next"]
        state["next"] += 1
        return value.to_bytes(n, "little")

    return draw
