"""
gumdrop/delivery.py

Off-chain claim delivery transports.

Architecture:
    ClaimSender (abstract)
    ├── ManualSender (log claim URLs, collect them for hand-off)
    ├── WalletListSender (pre-shared list keyed by wallet address)
    └── SesSender (e-mail through AWS SES)

The dispatcher never inspects which transport is in use. A transport
reports a failed send for one claimant by raising DeliveryError.
"""

import functools
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TYPE_CHECKING

import boto3
import trio
from botocore.exceptions import BotoCoreError, ClientError

from .config import SES_SOURCE_ADDRESS, DistributionMethod
from .errors import ConfigurationError, DeliveryError

if TYPE_CHECKING:
    from .claimants import ClaimantRecord
    from .claims import ClaimInfo

logger = logging.getLogger("gumdrop.delivery")


class ClaimSender(ABC):
    """Abstract transport for one claimant's claim URL."""

    @abstractmethod
    async def deliver(self, record: "ClaimantRecord", claim_info: "ClaimInfo") -> None:
        """
        Deliver a claim.

        Args:
            record: Claimant with pin and delivery locator attached
            claim_info: Integration descriptor (read-only)

        Raises:
            DeliveryError: If this claimant could not be reached
        """
        pass


def _require_locator(record: "ClaimantRecord") -> str:
    if not record.delivery_locator:
        raise DeliveryError(f"Claimant {record.index} has no claim URL", index=record.index)
    return record.delivery_locator


class ManualSender(ClaimSender):
    """Logs claim URLs and keeps them for manual hand-off."""

    def __init__(self):
        self.urls: Dict[str, str] = {}

    async def deliver(self, record: "ClaimantRecord", claim_info: "ClaimInfo") -> None:
        url = _require_locator(record)
        key = record.handle or str(record.identity)
        self.urls[key] = url
        logger.info(f"Claim URL for {key}: {url}")

    def dump(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.urls, f, indent=2)


class WalletListSender(ClaimSender):
    """Builds the claim list published for wallet-connected claiming."""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Any]] = {}

    async def deliver(self, record: "ClaimantRecord", claim_info: "ClaimInfo") -> None:
        url = _require_locator(record)
        entry = {
            "index": record.index,
            "amount": record.amount,
            "url": url,
        }
        if record.edition is not None:
            entry["edition"] = record.edition
        self.entries[str(record.identity)] = entry

    def dump(self, path: str) -> None:
        with open(path, "w") as f:
            json.dump(self.entries, f, indent=2)
        logger.info(f"Wrote wallet list with {len(self.entries)} entries to {path}")


class SesSender(ClaimSender):
    """
    E-mails claim URLs through AWS SES.

    boto3 is synchronous, so each send runs on a trio worker thread.
    """

    SUBJECT = "Gumdrop token claim"

    def __init__(
        self,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        source: str = SES_SOURCE_ADDRESS,
        region: str = "us-east-2",
        client: Any = None,
    ):
        """
        Initialize SesSender.

        Args:
            access_key_id: AWS access key id (default credential chain if None)
            secret_access_key: AWS secret access key
            source: From address
            region: SES region
            client: Pre-built SES client (tests)
        """
        self.source = source
        self._client = client or boto3.client(
            "ses",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def _body(self, record: "ClaimantRecord", claim_info: "ClaimInfo") -> str:
        return (
            f"You have a {claim_info.integration.value} claim of {record.amount} waiting.\n\n"
            f"Claim it here: {record.delivery_locator}\n"
        )

    async def deliver(self, record: "ClaimantRecord", claim_info: "ClaimInfo") -> None:
        _require_locator(record)
        if not record.handle:
            raise DeliveryError(f"Claimant {record.index} has no e-mail handle", index=record.index)

        send = functools.partial(
            self._client.send_email,
            Source=self.source,
            Destination={"ToAddresses": [record.handle]},
            Message={
                "Subject": {"Data": self.SUBJECT, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": self._body(record, claim_info), "Charset": "UTF-8"}},
            },
        )
        try:
            response = await trio.to_thread.run_sync(send)
        except (BotoCoreError, ClientError) as e:
            raise DeliveryError(f"SES send to {record.handle} failed: {e}", index=record.index)

        logger.debug(f"SES message {response.get('MessageId')} sent for claimant {record.index}")


def create_sender(method: DistributionMethod, **options: Any) -> ClaimSender:
    """Sender for a distribution method."""
    if method == DistributionMethod.MANUAL:
        return ManualSender()
    if method == DistributionMethod.WALLETS:
        return WalletListSender()
    if method == DistributionMethod.AWS:
        return SesSender(
            access_key_id=options.get("access_key_id"),
            secret_access_key=options.get("secret_access_key"),
        )
    raise ConfigurationError(f"Unsupported distribution method {method}")
