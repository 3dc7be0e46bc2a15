"""
gumdrop/ledger/client.py

Narrow ledger interface used by the pipeline, and its Solana JSON-RPC
implementation.

Provides methods for:
- Recent blockhash queries (checkpoint references)
- Signed transaction submission
- Signature status and block height polling
- Account reads
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solana.rpc.commitment import Commitment, Confirmed, Finalized
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from ..errors import ChainQueryError, CheckpointExpired, TransactionError

logger = logging.getLogger("gumdrop.ledger.client")

DEFAULT_TIMEOUT = 30.0  # seconds

# Substrings of RPC errors that mean the blockhash is no longer usable
_EXPIRED_MARKERS = ("BlockhashNotFound", "Blockhash not found", "block height exceeded")

# Substrings of RPC errors worth retrying with a fresh transaction
_TRANSIENT_MARKERS = ("429", "Too Many Requests", "Node is behind", "timed out", "503")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class CheckpointReference:
    """Recent blockhash and the last block height it stays valid for."""
    blockhash: Hash
    last_valid_block_height: int
    commitment: Commitment = Confirmed


@dataclass(frozen=True)
class AccountState:
    """Raw on-chain account."""
    address: Pubkey
    owner: Pubkey
    lamports: int
    data: bytes


@dataclass(frozen=True)
class SignatureStatus:
    """Observed status of a submitted transaction."""
    slot: int
    confirmed: bool
    err: Optional[str] = None


# ============================================================================
# INTERFACE
# ============================================================================

class LedgerClient(ABC):
    """
    Remote ledger as seen by the pipeline.

    Implementations may fail transiently. Reads raise ChainQueryError;
    submission raises TransactionError (CheckpointExpired when the
    blockhash is gone).
    """

    @abstractmethod
    def fetch_checkpoint_reference(self, commitment: Commitment) -> CheckpointReference:
        pass

    @abstractmethod
    def submit_signed_transaction(self, tx: Transaction) -> str:
        """Submit a fully signed transaction, returning its signature."""
        pass

    @abstractmethod
    def get_signature_status(
        self,
        signature: str,
        commitment: Commitment,
    ) -> Optional[SignatureStatus]:
        """Status of a signature, or None if the ledger has not seen it."""
        pass

    @abstractmethod
    def get_block_height(self, commitment: Commitment) -> int:
        pass

    @abstractmethod
    def read_account(self, address: Pubkey) -> Optional[AccountState]:
        """Account contents, or None if the account does not exist."""
        pass


# ============================================================================
# SOLANA IMPLEMENTATION
# ============================================================================

def _classify_submit_error(message: str) -> TransactionError:
    if any(marker in message for marker in _EXPIRED_MARKERS):
        return CheckpointExpired(message)
    transient = any(marker in message for marker in _TRANSIENT_MARKERS)
    return TransactionError(message, transient=transient)


class SolanaLedgerClient(LedgerClient):
    """
    LedgerClient over the Solana JSON-RPC API.

    Example:
        ledger = SolanaLedgerClient("https://api.devnet.solana.com")
        ref = ledger.fetch_checkpoint_reference(Confirmed)
        account = ledger.read_account(mint)
    """

    def __init__(
        self,
        rpc_url: str,
        commitment: Commitment = Confirmed,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[Client] = None,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint
            commitment: Commitment used for account reads
            timeout: HTTP timeout in seconds
            client: Pre-built solana-py client (tests)
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self._client = client or Client(rpc_url, commitment=commitment, timeout=timeout)

    def fetch_checkpoint_reference(self, commitment: Commitment) -> CheckpointReference:
        try:
            resp = self._client.get_latest_blockhash(commitment)
        except (SolanaRpcException, RPCException) as e:
            raise TransactionError(f"Failed to fetch recent blockhash: {e}", transient=True)

        return CheckpointReference(
            blockhash=resp.value.blockhash,
            last_valid_block_height=resp.value.last_valid_block_height,
            commitment=commitment,
        )

    def submit_signed_transaction(self, tx: Transaction) -> str:
        try:
            resp = self._client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_preflight=False, preflight_commitment=self.commitment),
            )
        except RPCException as e:
            raise _classify_submit_error(str(e))
        except SolanaRpcException as e:
            raise TransactionError(f"Submission transport error: {e}", transient=True)

        signature = str(resp.value)
        logger.debug(f"Submitted transaction {signature}")
        return signature

    def get_signature_status(
        self,
        signature: str,
        commitment: Commitment,
    ) -> Optional[SignatureStatus]:
        try:
            resp = self._client.get_signature_statuses([Signature.from_string(signature)])
        except (SolanaRpcException, RPCException) as e:
            raise TransactionError(f"Failed to query signature status: {e}", transient=True)

        status = resp.value[0]
        if status is None:
            return None

        level = str(status.confirmation_status).lower() if status.confirmation_status else ""
        if commitment == Finalized:
            confirmed = "finalized" in level
        else:
            confirmed = "confirmed" in level or "finalized" in level

        return SignatureStatus(
            slot=status.slot,
            confirmed=confirmed,
            err=str(status.err) if status.err else None,
        )

    def get_block_height(self, commitment: Commitment) -> int:
        try:
            return self._client.get_block_height(commitment).value
        except (SolanaRpcException, RPCException) as e:
            raise TransactionError(f"Failed to query block height: {e}", transient=True)

    def read_account(self, address: Pubkey) -> Optional[AccountState]:
        try:
            resp = self._client.get_account_info(address, commitment=self.commitment)
        except (SolanaRpcException, RPCException) as e:
            raise ChainQueryError(f"Failed to read account {address}: {e}")

        account = resp.value
        if account is None:
            return None

        return AccountState(
            address=address,
            owner=account.owner,
            lamports=account.lamports,
            data=bytes(account.data),
        )
