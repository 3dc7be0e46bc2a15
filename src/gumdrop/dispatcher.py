"""
gumdrop/dispatcher.py

Claim secret generation and off-chain delivery.

On creation every claimant gets a fresh random pin, the integration seed
and a claim URL, then one delivery. On resend the previously persisted
pins and URLs are delivered again; nothing is regenerated, since new pins
would invalidate links already handed out.

Deliveries run concurrently with a bounded fan-out. A failed delivery is
recorded in the summary and does not stop the rest of the batch.
"""

import logging
import secrets
import struct
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urlencode

import base58
import trio
from solders.pubkey import Pubkey

from .claimants import ClaimantRecord
from .claims import CandyClaimInfo, ClaimInfo, EditionClaimInfo, TransferClaimInfo
from .config import DEFAULT_DISPATCH_CONCURRENCY, PIN_BYTES, GumdropConfig
from .delivery import ClaimSender
from .errors import DeliveryError, MissingDeliveryLocator, ValidationError

logger = logging.getLogger("gumdrop.dispatcher")

# Redraws allowed per claimant before giving up on a unique pin
MAX_PIN_DRAWS = 16


@dataclass
class DeliverySummary:
    """Outcome of one delivery batch."""
    attempted: int = 0
    delivered: List[int] = field(default_factory=list)
    failures: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "delivered": sorted(self.delivered),
            "failures": dict(sorted(self.failures.items())),
        }


def encode_proof(proof: Sequence[bytes]) -> str:
    """Comma-separated base58 digests, as used in claim URLs."""
    return ",".join(base58.b58encode(p).decode() for p in proof)


def build_claim_url(
    host: str,
    distributor: Pubkey,
    record: ClaimantRecord,
    claim_info: ClaimInfo,
) -> str:
    """
    Claim URL carrying everything the claim page needs.

    Args:
        host: Claim site base URL
        distributor: Distributor account address
        record: Claimant with pin and proof attached
        claim_info: Integration descriptor

    Returns:
        URL string
    """
    if record.pin is None or record.proof is None:
        raise ValidationError(f"Claimant {record.index} needs a pin and proof before a URL")

    params = {
        "distributor": str(distributor),
        "handle": record.handle or str(record.identity),
        "claimant": str(record.identity),
        "amount": record.amount,
        "index": record.index,
        "pin": record.pin,
        "proof": encode_proof(record.proof),
    }
    if isinstance(claim_info, TransferClaimInfo):
        params["tokenAcc"] = str(claim_info.source)
    elif isinstance(claim_info, CandyClaimInfo):
        params["config"] = str(claim_info.config)
        if claim_info.uuid:
            params["uuid"] = claim_info.uuid
    elif isinstance(claim_info, EditionClaimInfo):
        params["master"] = str(claim_info.master_mint)
        params["edition"] = record.edition

    return f"{host.rstrip('/')}/claim?{urlencode(params)}"


def check_locators(records: Sequence[ClaimantRecord]) -> None:
    """Raise MissingDeliveryLocator unless every claimant has a claim URL."""
    missing = [r.index for r in records if not r.delivery_locator]
    if missing:
        raise MissingDeliveryLocator(missing)


class ClaimDistributionDispatcher:
    """
    Generates claim secrets and drives delivery.

    The random source is injected so tests can make pins deterministic.
    """

    def __init__(
        self,
        sender: ClaimSender,
        config: Optional[GumdropConfig] = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ):
        """
        Initialize dispatcher.

        Args:
            sender: Delivery transport
            config: Claim host and fan-out settings
            random_bytes: Cryptographically secure byte source
        """
        self.sender = sender
        self.config = config or GumdropConfig()
        self._random_bytes = random_bytes

    def _draw_pin(self, taken: set) -> int:
        for _ in range(MAX_PIN_DRAWS):
            (pin,) = struct.unpack("<I", self._random_bytes(PIN_BYTES))
            if pin not in taken:
                return pin
        raise ValidationError("Could not draw a unique pin")

    def assign_secrets(
        self,
        records: Sequence[ClaimantRecord],
        claim_info: ClaimInfo,
        distributor: Pubkey,
    ) -> None:
        """
        Attach pin, seed and claim URL to every claimant.

        Called once per successful creation. Records that already carry a
        pin are rejected rather than overwritten.
        """
        taken = set()
        for record in records:
            pin = self._draw_pin(taken)
            taken.add(pin)
            record.attach_secret(pin, claim_info.seed)
            record.attach_locator(
                build_claim_url(self.config.claim_host, distributor, record, claim_info)
            )
        logger.info(f"Assigned claim secrets to {len(records)} claimants")

    async def dispatch(
        self,
        records: Sequence[ClaimantRecord],
        claim_info: ClaimInfo,
    ) -> DeliverySummary:
        """
        Deliver every claimant once, concurrently.

        Returns:
            Summary of delivered and failed claimants
        """
        summary = DeliverySummary(attempted=len(records))
        limiter = trio.CapacityLimiter(
            max(1, self.config.dispatch_concurrency or DEFAULT_DISPATCH_CONCURRENCY)
        )

        async with trio.open_nursery() as nursery:
            for record in records:
                nursery.start_soon(self._deliver_one, record, claim_info, limiter, summary)

        if summary.failures:
            logger.warning(
                f"Delivered {len(summary.delivered)}/{summary.attempted} claims, "
                f"failed: {sorted(summary.failures)}"
            )
        else:
            logger.info(f"Delivered all {summary.attempted} claims")
        return summary

    async def resend(
        self,
        records: Sequence[ClaimantRecord],
        claim_info: ClaimInfo,
    ) -> DeliverySummary:
        """
        Re-deliver previously assigned claims.

        Raises:
            MissingDeliveryLocator: If any claimant has no URL; nothing is sent
        """
        check_locators(records)
        logger.info(f"Resending {len(records)} claims")
        return await self.dispatch(records, claim_info)

    async def _deliver_one(
        self,
        record: ClaimantRecord,
        claim_info: ClaimInfo,
        limiter: trio.CapacityLimiter,
        summary: DeliverySummary,
    ) -> None:
        async with limiter:
            try:
                await self.sender.deliver(record, claim_info)
            except DeliveryError as e:
                summary.failures[record.index] = str(e)
                logger.warning(f"Delivery to claimant {record.index} failed: {e}")
                return
            except Exception as e:
                # Any other failure stays scoped to this claimant
                summary.failures[record.index] = f"{type(e).__name__}: {e}"
                logger.exception(f"Unexpected error delivering to claimant {record.index}")
                return
        summary.delivered.append(record.index)
