"""
gumdrop/pipeline.py

Distributor creation and resend flows.

Flow (create):
1. Parse and validate the claimant list
2. Build the merkle tree and attach proofs
3. Validate the claim integration against ledger state
4. Build the distributor instructions with a fresh base key
5. Submit and confirm
6. Assign pins and claim URLs, persist claimant state
7. Deliver claims

Any failure before step 5 leaves the ledger untouched. The state path is
checked before step 3, and step 6 only runs after confirmation was observed.

Usage:
    pipeline = GumdropPipeline(config, ledger, sender, wallet, temporal_signer)
    result = trio.run(pipeline.create, text, ClaimIntegration.TRANSFER, {"mint": mint})
"""

import functools
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import trio
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .claimants import ClaimantRecord, check_state_path, parse_claimants, save_claimants
from .claims import ClaimInfo, validator_for
from .config import ClaimIntegration, GumdropConfig
from .delivery import ClaimSender
from .dispatcher import ClaimDistributionDispatcher, DeliverySummary, check_locators
from .errors import ChainQueryError, TransactionError, ValidationError
from .instructions import DistributorInstructionBuilder, DistributorParams
from .ledger.client import LedgerClient
from .merkle import MerkleTree
from .retry import RetryPolicy
from .submitter import TransactionOutcome, TransactionSubmitter

logger = logging.getLogger("gumdrop.pipeline")


@dataclass
class CreationResult:
    """Everything produced by a successful distributor creation."""
    params: DistributorParams
    tree: MerkleTree
    claim_info: ClaimInfo
    outcome: TransactionOutcome
    records: List[ClaimantRecord]
    summary: DeliverySummary

    @property
    def distributor(self) -> Pubkey:
        return self.params.distributor

    def to_dict(self) -> dict:
        return {
            "distributor": self.params.to_dict(),
            "claim_info": self.claim_info.to_dict(),
            "outcome": self.outcome.to_dict(),
            "delivery": self.summary.to_dict(),
        }


class GumdropPipeline:
    """Wires registry, tree, validator, builder, submitter and dispatcher."""

    def __init__(
        self,
        config: GumdropConfig,
        ledger: LedgerClient,
        sender: ClaimSender,
        wallet: Keypair,
        temporal_signer: Pubkey,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize pipeline.

        Args:
            config: Pipeline settings
            ledger: Remote ledger
            sender: Delivery transport
            wallet: Creating wallet, pays fees and owns the claimed assets
            temporal_signer: Co-signer gating redemption
            random_bytes: Pin randomness source
            sleep: Sleep used for retry backoff and polling
        """
        self.config = config
        self.ledger = ledger
        self.wallet = wallet
        self.temporal_signer = temporal_signer

        self.query_policy = RetryPolicy.from_config(config, sleep=sleep)
        self.instruction_builder = DistributorInstructionBuilder(
            wallet.pubkey(),
            base_lamports=config.base_account_lamports,
        )
        self.submitter = TransactionSubmitter(
            ledger,
            policy=RetryPolicy.from_config(config, sleep=sleep),
            commitment=config.commitment,
            confirmation_timeout=config.confirmation_timeout,
            poll_interval=config.poll_interval,
            sleep=sleep,
        )
        self.dispatcher = ClaimDistributionDispatcher(sender, config, random_bytes=random_bytes)

    # ========================================================================
    # STAGES
    # ========================================================================

    def prepare(
        self,
        text: str,
        integration: ClaimIntegration,
    ) -> Tuple[List[ClaimantRecord], MerkleTree]:
        """Parse claimants, build the tree and attach each proof."""
        records = parse_claimants(text, integration)
        tree = MerkleTree.from_claimants(records, integration)
        for record in records:
            record.proof = tree.get_proof(record.index)
        return records, tree

    def validate(
        self,
        records: List[ClaimantRecord],
        integration: ClaimIntegration,
        refs: Dict[str, Any],
    ) -> ClaimInfo:
        """
        Validate the integration, retrying ledger read failures.

        Raises:
            ValidationError: On an unmet precondition, or when ledger reads
                keep failing past the retry bound
        """
        validator = validator_for(integration, self.ledger, self.wallet.pubkey())

        for attempt in range(1, self.query_policy.max_attempts + 1):
            try:
                return validator.validate(records, **refs)
            except ChainQueryError as e:
                logger.warning(
                    f"Ledger read failed during validation "
                    f"(attempt {attempt}/{self.query_policy.max_attempts}): {e}"
                )
                if not self.query_policy.has_next(attempt):
                    raise ValidationError(f"Could not read ledger state: {e}") from e
                self.query_policy.backoff(attempt)

        raise ValidationError("Validation made no attempts")

    # ========================================================================
    # FLOWS
    # ========================================================================

    async def create(
        self,
        text: str,
        integration: ClaimIntegration,
        refs: Optional[Dict[str, Any]] = None,
    ) -> CreationResult:
        """
        Create a distributor and deliver its claims.

        Args:
            text: Raw claimant list
            integration: Claim integration
            refs: Integration references (mint / config, uuid / master_mint)

        Raises:
            EmptyClaimantList: Before any network call, for an empty list
            ConfigurationError: Before any network call, if the state path
                is missing, taken or not writable
            ValidationError: Before anything is submitted
            TransactionError: If creation was not confirmed; nothing is delivered
        """
        records, tree = self.prepare(text, integration)

        already = [r.index for r in records if r.pin is not None or r.delivery_locator]
        if already:
            raise ValidationError(
                f"Claimants {already} already carry claim secrets; use resend instead"
            )
        check_state_path(self.config.state_path)

        claim_info = await trio.to_thread.run_sync(
            functools.partial(self.validate, records, integration, refs or {})
        )

        params = DistributorParams.create(
            root=tree.root,
            temporal_signer=self.temporal_signer,
            integration=integration,
            claim_count=len(records),
        )
        instructions = self.instruction_builder.build(claim_info, params)

        outcome = await trio.to_thread.run_sync(
            functools.partial(self.submitter.submit, instructions, self.wallet, [params.base])
        )
        if not outcome.confirmed:
            raise TransactionError(f"Distributor creation failed: {outcome.error}")

        logger.info(
            f"Distributor {params.distributor} created: "
            f"{self.config.explorer_link(outcome.txid)}"
        )

        self.dispatcher.assign_secrets(records, claim_info, params.distributor)
        save_claimants(records, self.config.state_path)

        summary = await self.dispatcher.dispatch(records, claim_info)
        return CreationResult(
            params=params,
            tree=tree,
            claim_info=claim_info,
            outcome=outcome,
            records=records,
            summary=summary,
        )

    async def resend(
        self,
        text: str,
        integration: ClaimIntegration,
        refs: Optional[Dict[str, Any]] = None,
    ) -> DeliverySummary:
        """
        Deliver previously persisted claims again.

        The distributor already exists, so its balances and supplies are not
        checked again; claim info comes from the references alone.

        Raises:
            MissingDeliveryLocator: If any claimant lacks a claim URL
        """
        records = parse_claimants(text, integration)
        check_locators(records)
        validator = validator_for(integration, self.ledger, self.wallet.pubkey())
        claim_info = validator.describe(records, **(refs or {}))
        return await self.dispatcher.resend(records, claim_info)
