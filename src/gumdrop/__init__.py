"""
gumdrop - Merkle-committed token claim distribution for Solana

A fixed claimant list is committed to a single merkle root, an on-chain
distributor is initialized with that root, and every claimant receives a
claim URL carrying their pin and inclusion proof.

Built on:
- solders / solana-py for instructions, signing and JSON-RPC
- trio for concurrent claim delivery
- boto3 for e-mail delivery through AWS SES

Usage:
    import trio
    from gumdrop import GumdropConfig, GumdropPipeline, SolanaLedgerClient, ManualSender
    from gumdrop import ClaimIntegration, DistributionMethod, resolve_temporal_signer

    config = GumdropConfig.for_cluster("devnet", state_path="claimants.state.json")
    ledger = SolanaLedgerClient(config.rpc_url)
    pipeline = GumdropPipeline(
        config, ledger, ManualSender(), wallet,
        resolve_temporal_signer(DistributionMethod.MANUAL, "default"),
    )
    result = trio.run(pipeline.create, text, ClaimIntegration.TRANSFER, {"mint": mint})
"""

from .claimants import ClaimantRecord, parse_claimants, dump_claimants, save_claimants, check_state_path
from .claims import (
    ClaimInfo,
    TransferClaimInfo,
    CandyClaimInfo,
    EditionClaimInfo,
    ClaimValidator,
    TransferValidator,
    CandyValidator,
    EditionValidator,
    validator_for,
)
from .config import (
    ClaimIntegration,
    DistributionMethod,
    GumdropConfig,
    resolve_temporal_signer,
    GUMDROP_DISTRIBUTOR_ID,
    GUMDROP_TEMPORAL_SIGNER,
)
from .delivery import ClaimSender, ManualSender, WalletListSender, SesSender, create_sender
from .dispatcher import ClaimDistributionDispatcher, DeliverySummary, build_claim_url
from .errors import (
    GumdropError,
    ConfigurationError,
    ValidationError,
    EmptyClaimantList,
    MissingDeliveryLocator,
    ChainQueryError,
    TransactionError,
    CheckpointExpired,
    DeliveryError,
)
from .instructions import DistributorInstructionBuilder, DistributorParams
from .ledger import LedgerClient, SolanaLedgerClient
from .merkle import MerkleTree
from .pipeline import GumdropPipeline, CreationResult
from .retry import RetryPolicy
from .submitter import TransactionSubmitter, TransactionOutcome

__version__ = "1.0.0"
__all__ = [
    # Claimants
    "ClaimantRecord",
    "parse_claimants",
    "dump_claimants",
    "save_claimants",
    "check_state_path",
    # Merkle
    "MerkleTree",
    # Claims
    "ClaimInfo",
    "TransferClaimInfo",
    "CandyClaimInfo",
    "EditionClaimInfo",
    "ClaimValidator",
    "TransferValidator",
    "CandyValidator",
    "EditionValidator",
    "validator_for",
    # Config
    "ClaimIntegration",
    "DistributionMethod",
    "GumdropConfig",
    "resolve_temporal_signer",
    "GUMDROP_DISTRIBUTOR_ID",
    "GUMDROP_TEMPORAL_SIGNER",
    # Instructions & submission
    "DistributorInstructionBuilder",
    "DistributorParams",
    "RetryPolicy",
    "TransactionSubmitter",
    "TransactionOutcome",
    # Ledger
    "LedgerClient",
    "SolanaLedgerClient",
    # Delivery
    "ClaimSender",
    "ManualSender",
    "WalletListSender",
    "SesSender",
    "create_sender",
    "ClaimDistributionDispatcher",
    "DeliverySummary",
    "build_claim_url",
    # Pipeline
    "GumdropPipeline",
    "CreationResult",
    # Errors
    "GumdropError",
    "ConfigurationError",
    "ValidationError",
    "EmptyClaimantList",
    "MissingDeliveryLocator",
    "ChainQueryError",
    "TransactionError",
    "CheckpointExpired",
    "DeliveryError",
]
