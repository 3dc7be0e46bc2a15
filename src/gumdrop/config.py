"""
gumdrop/config.py

Configuration constants and data classes for gumdrop.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from solana.rpc.commitment import Commitment, Confirmed
from solders.pubkey import Pubkey

from .errors import ConfigurationError


# Cluster endpoints selectable by name
CLUSTER_URLS: Dict[str, str] = {
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "devnet": "https://api.devnet.solana.com",
}
DEFAULT_CLUSTER = "devnet"

# Program IDs
GUMDROP_DISTRIBUTOR_ID = Pubkey.from_string("gdrpGjVffourzkdDRrQmySw4aTHr8a3xmQzzxSwFD1a")
GUMDROP_TEMPORAL_SIGNER = Pubkey.from_string("MSv9H2sMceAzccBganUXwGq3GXgqYAstmZAbFDZYbAV")
CANDY_MACHINE_ID = Pubkey.from_string("cndyAnrLdpjq1Ssp1z8xxDsB8dxe7u4HL5Nxi2K5WXZ")
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

# PDA seeds
DISTRIBUTOR_SEED = b"MerkleDistributor"
CANDY_MACHINE_SEED = b"candy_machine"
METADATA_SEED = b"metadata"
EDITION_SEED = b"edition"

# Rent-exempt minimum for an account with no data
BASE_ACCOUNT_LAMPORTS = 890_880

# Submission retry defaults
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 15.0
CONFIRMATION_POLL_INTERVAL = 0.5     # seconds between status polls
CONFIRMATION_TIMEOUT = 90.0          # seconds before an attempt is abandoned

# Dispatcher defaults
DEFAULT_DISPATCH_CONCURRENCY = 8
PIN_BYTES = 4

DEFAULT_CLAIM_HOST = "https://lwus.github.io/gumdrop"
SES_SOURCE_ADDRESS = "santa@aws.metaplex.com"


class ClaimIntegration(Enum):
    """Redemption back-end for a distributor."""
    TRANSFER = "transfer"   # token transfer through approve-delegate
    CANDY = "candy"         # mint through a candy machine
    EDITION = "edition"     # mint prints of a master edition

    @property
    def tag(self) -> int:
        """Single-byte tag used in leaf digests and instruction data."""
        return _INTEGRATION_TAGS[self]

    @classmethod
    def parse(cls, value: str) -> "ClaimIntegration":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                "Claim integration must either be 'transfer', 'candy', or 'edition'."
            )


_INTEGRATION_TAGS = {
    ClaimIntegration.TRANSFER: 0,
    ClaimIntegration.CANDY: 1,
    ClaimIntegration.EDITION: 2,
}


class DistributionMethod(Enum):
    """Off-chain channel used to hand out claim URLs."""
    AWS = "aws"
    MANUAL = "manual"
    WALLETS = "wallets"

    @classmethod
    def parse(cls, value: str) -> "DistributionMethod":
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                "Distribution method must either be 'aws', 'manual', or 'wallets'."
            )


def resolve_temporal_signer(
    method: DistributionMethod,
    otp_auth: Optional[str] = "default",
) -> Pubkey:
    """
    Pick the co-signer that gates redemption.

    Args:
        method: Off-chain distribution method
        otp_auth: 'default' for the hosted OTP signer, 'none' to skip OTP

    Returns:
        Temporal signer public key
    """
    if method == DistributionMethod.WALLETS:
        return GUMDROP_DISTRIBUTOR_ID
    if otp_auth == "default":
        return GUMDROP_TEMPORAL_SIGNER
    if otp_auth == "none":
        return Pubkey.default()
    raise ConfigurationError(f"Unknown OTP authorization type {otp_auth}")


@dataclass
class GumdropConfig:
    """Settings threaded into each pipeline component."""
    rpc_url: str = CLUSTER_URLS[DEFAULT_CLUSTER]
    cluster: str = DEFAULT_CLUSTER
    commitment: Commitment = Confirmed
    claim_host: str = DEFAULT_CLAIM_HOST
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    confirmation_timeout: float = CONFIRMATION_TIMEOUT
    poll_interval: float = CONFIRMATION_POLL_INTERVAL
    dispatch_concurrency: int = DEFAULT_DISPATCH_CONCURRENCY
    base_account_lamports: int = BASE_ACCOUNT_LAMPORTS
    state_path: Optional[str] = None

    @classmethod
    def for_cluster(cls, cluster: str, rpc_url: Optional[str] = None, **kwargs) -> "GumdropConfig":
        if cluster not in CLUSTER_URLS:
            raise ConfigurationError(f"Unknown cluster {cluster}")
        return cls(rpc_url=rpc_url or CLUSTER_URLS[cluster], cluster=cluster, **kwargs)

    def explorer_link(self, txid: str) -> str:
        """Block explorer URL for a transaction on the configured cluster."""
        if self.cluster == "mainnet-beta":
            return f"https://explorer.solana.com/tx/{txid}"
        return f"https://explorer.solana.com/tx/{txid}?cluster={self.cluster}"
