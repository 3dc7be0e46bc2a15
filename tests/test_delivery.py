"""
Tests for gumdrop/delivery.py

Tests the manual, wallet-list and SES claim transports.
"""

import json
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError
from solders.pubkey import Pubkey

from gumdrop.claimants import ClaimantRecord
from gumdrop.claims import TransferClaimInfo
from gumdrop.config import DistributionMethod
from gumdrop.delivery import ManualSender, SesSender, WalletListSender, create_sender
from gumdrop.errors import DeliveryError


def make_record(index=0, handle="alice@example.com", url="https://example.com/claim?index=0", edition=None):
    return ClaimantRecord(
        index=index,
        identity=Pubkey(bytes([index + 1]) * 32),
        amount=5,
        edition=edition,
        handle=handle,
        delivery_locator=url,
        pin=1234,
    )


CLAIM_INFO = TransferClaimInfo(
    mint=Pubkey.new_unique(),
    source=Pubkey.new_unique(),
    owner=Pubkey.new_unique(),
    decimals=0,
    total=5,
)


# ============================================================================
# MANUAL TESTS
# ============================================================================

class TestManualSender:

    @pytest.mark.trio
    async def test_collects_urls(self, tmp_path):
        sender = ManualSender()
        await sender.deliver(make_record(), CLAIM_INFO)
        await sender.deliver(make_record(index=1, handle=None, url="https://example.com/claim?index=1"), CLAIM_INFO)

        assert sender.urls["alice@example.com"] == "https://example.com/claim?index=0"
        assert sender.urls[str(Pubkey(bytes([2]) * 32))] == "https://example.com/claim?index=1"

        path = tmp_path / "urls.json"
        sender.dump(str(path))
        assert json.loads(path.read_text()) == sender.urls

    @pytest.mark.trio
    async def test_missing_url(self):
        with pytest.raises(DeliveryError) as exc_info:
            await ManualSender().deliver(make_record(url=None), CLAIM_INFO)
        assert exc_info.value.index == 0


# ============================================================================
# WALLET LIST TESTS
# ============================================================================

class TestWalletListSender:

    @pytest.mark.trio
    async def test_entries_keyed_by_identity(self, tmp_path):
        sender = WalletListSender()
        record = make_record(edition=4)
        await sender.deliver(record, CLAIM_INFO)

        entry = sender.entries[str(record.identity)]
        assert entry == {
            "index": 0,
            "amount": 5,
            "url": record.delivery_locator,
            "edition": 4,
        }

        path = tmp_path / "wallets.json"
        sender.dump(str(path))
        assert json.loads(path.read_text()) == sender.entries


# ============================================================================
# SES TESTS
# ============================================================================

class TestSesSender:

    @pytest.mark.trio
    async def test_sends_email(self):
        client = Mock()
        client.send_email.return_value = {"MessageId": "abc"}
        sender = SesSender(client=client, source="drops@example.com")

        await sender.deliver(make_record(), CLAIM_INFO)

        kwargs = client.send_email.call_args.kwargs
        assert kwargs["Source"] == "drops@example.com"
        assert kwargs["Destination"] == {"ToAddresses": ["alice@example.com"]}
        assert "https://example.com/claim?index=0" in kwargs["Message"]["Body"]["Text"]["Data"]

    @pytest.mark.trio
    async def test_client_error_becomes_delivery_error(self):
        client = Mock()
        client.send_email.side_effect = ClientError(
            {"Error": {"Code": "MessageRejected", "Message": "Email address is not verified"}},
            "SendEmail",
        )
        sender = SesSender(client=client)

        with pytest.raises(DeliveryError) as exc_info:
            await sender.deliver(make_record(index=2), CLAIM_INFO)
        assert exc_info.value.index == 2

    @pytest.mark.trio
    async def test_missing_handle(self):
        client = Mock()
        sender = SesSender(client=client)
        with pytest.raises(DeliveryError, match="handle"):
            await sender.deliver(make_record(handle=None), CLAIM_INFO)
        client.send_email.assert_not_called()


# ============================================================================
# FACTORY TESTS
# ============================================================================

class TestCreateSender:

    def test_manual(self):
        assert isinstance(create_sender(DistributionMethod.MANUAL), ManualSender)

    def test_wallets(self):
        assert isinstance(create_sender(DistributionMethod.WALLETS), WalletListSender)

    def test_aws_builds_ses_client(self):
        with patch("gumdrop.delivery.boto3") as mock_boto3:
            sender = create_sender(
                DistributionMethod.AWS,
                access_key_id="AKIA",
                secret_access_key="secret",
            )
        assert isinstance(sender, SesSender)
        mock_boto3.client.assert_called_once_with(
            "ses",
            region_name="us-east-2",
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret",
        )
