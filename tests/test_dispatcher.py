"""
Tests for gumdrop/dispatcher.py

Tests pin assignment, claim URL construction, resend idempotency and
bounded concurrent delivery.
"""

from urllib.parse import parse_qs, urlparse

import base58
import pytest
from solders.pubkey import Pubkey

from gumdrop.claimants import ClaimantRecord
from gumdrop.claims import CandyClaimInfo, EditionClaimInfo, TransferClaimInfo
from gumdrop.config import GumdropConfig
from gumdrop.dispatcher import (
    ClaimDistributionDispatcher,
    DeliverySummary,
    build_claim_url,
    check_locators,
    encode_proof,
)
from gumdrop.errors import MissingDeliveryLocator, ValidationError

from conftest import RecordingSender, counter_bytes


DISTRIBUTOR = Pubkey.new_unique()

TRANSFER_INFO = TransferClaimInfo(
    mint=Pubkey.new_unique(),
    source=Pubkey.new_unique(),
    owner=Pubkey.new_unique(),
    decimals=0,
    total=15,
)


def make_records(count=3, **kwargs):
    return [
        ClaimantRecord(
            index=i,
            identity=Pubkey(bytes([i + 1]) * 32),
            amount=5,
            handle=f"user{i}@example.com",
            proof=[bytes([i]) * 32, bytes([0xFF]) * 32],
            **kwargs,
        )
        for i in range(count)
    ]


def make_dispatcher(sender, random_bytes=None, **config):
    return ClaimDistributionDispatcher(
        sender,
        GumdropConfig(claim_host="https://claim.example.com", **config),
        random_bytes=random_bytes or counter_bytes(),
    )


# ============================================================================
# CLAIM URL TESTS
# ============================================================================

class TestBuildClaimUrl:
    """Tests for claim URL construction."""

    def test_transfer_url(self):
        record = make_records(1)[0]
        record.pin = 4242
        url = build_claim_url("https://claim.example.com/", DISTRIBUTOR, record, TRANSFER_INFO)

        parsed = urlparse(url)
        assert parsed.netloc == "claim.example.com"
        assert parsed.path == "/claim"
        query = parse_qs(parsed.query)
        assert query["distributor"] == [str(DISTRIBUTOR)]
        assert query["handle"] == ["user0@example.com"]
        assert query["pin"] == ["4242"]
        assert query["index"] == ["0"]
        assert query["tokenAcc"] == [str(TRANSFER_INFO.source)]
        proof = [base58.b58decode(p) for p in query["proof"][0].split(",")]
        assert proof == record.proof

    def test_candy_url(self):
        record = make_records(1)[0]
        record.pin = 1
        info = CandyClaimInfo(config=Pubkey.new_unique(), authority=Pubkey.new_unique(), total=1, uuid="abcdef")
        query = parse_qs(urlparse(build_claim_url("https://h", DISTRIBUTOR, record, info)).query)
        assert query["config"] == [str(info.config)]
        assert query["uuid"] == ["abcdef"]

    def test_edition_url(self):
        record = make_records(1)[0]
        record.pin = 1
        record.edition = 9
        info = EditionClaimInfo(
            master_mint=Pubkey.new_unique(),
            master_edition=Pubkey.new_unique(),
            master_token_account=Pubkey.new_unique(),
            owner=Pubkey.new_unique(),
            total=1,
        )
        query = parse_qs(urlparse(build_claim_url("https://h", DISTRIBUTOR, record, info)).query)
        assert query["master"] == [str(info.master_mint)]
        assert query["edition"] == ["9"]

    def test_requires_pin(self):
        with pytest.raises(ValidationError):
            build_claim_url("https://h", DISTRIBUTOR, make_records(1)[0], TRANSFER_INFO)

    def test_encode_proof_empty(self):
        assert encode_proof([]) == ""


# ============================================================================
# SECRET ASSIGNMENT TESTS
# ============================================================================

class TestAssignSecrets:
    """Tests for pin and URL assignment."""

    def test_assigns_all(self):
        records = make_records(3)
        make_dispatcher(RecordingSender()).assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

        assert [r.pin for r in records] == [1, 2, 3]
        assert all(r.seed == TRANSFER_INFO.mint for r in records)
        assert all(r.delivery_locator.startswith("https://claim.example.com/claim?") for r in records)

    def test_pins_unique_despite_collisions(self):
        draws = iter([b"\x07\x00\x00\x00", b"\x07\x00\x00\x00", b"\x08\x00\x00\x00"])
        records = make_records(2)
        dispatcher = make_dispatcher(RecordingSender(), random_bytes=lambda n: next(draws))
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)
        assert [r.pin for r in records] == [7, 8]

    def test_gives_up_on_constant_source(self):
        records = make_records(2)
        dispatcher = make_dispatcher(RecordingSender(), random_bytes=lambda n: bytes(n))
        with pytest.raises(ValidationError, match="unique pin"):
            dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

    def test_refuses_to_overwrite(self):
        records = make_records(2)
        records[1].pin = 99
        with pytest.raises(ValidationError):
            make_dispatcher(RecordingSender()).assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)
        assert records[1].pin == 99


# ============================================================================
# DISPATCH TESTS
# ============================================================================

class TestDispatch:
    """Tests for concurrent delivery."""

    @pytest.mark.trio
    async def test_delivers_each_once(self):
        sender = RecordingSender()
        dispatcher = make_dispatcher(sender)
        records = make_records(3)
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

        summary = await dispatcher.dispatch(records, TRANSFER_INFO)

        assert summary.ok
        assert summary.attempted == 3
        assert sorted(summary.delivered) == [0, 1, 2]
        assert sorted(i for i, _, _ in sender.delivered) == [0, 1, 2]

    @pytest.mark.trio
    async def test_partial_failure_recorded(self):
        sender = RecordingSender(fail={1})
        dispatcher = make_dispatcher(sender)
        records = make_records(4)
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

        summary = await dispatcher.dispatch(records, TRANSFER_INFO)

        assert not summary.ok
        assert sorted(summary.delivered) == [0, 2, 3]
        assert list(summary.failures) == [1]
        assert "bounce" in summary.failures[1]

    @pytest.mark.trio
    async def test_unexpected_sender_error_contained(self):
        """A sender crash on one claimant is recorded; the others still go out."""

        class CrashingSender(RecordingSender):
            async def deliver(self, record, claim_info):
                if record.index == 2:
                    raise RuntimeError("template missing")
                await super().deliver(record, claim_info)

        sender = CrashingSender()
        dispatcher = make_dispatcher(sender)
        records = make_records(4)
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

        summary = await dispatcher.dispatch(records, TRANSFER_INFO)

        assert sorted(summary.delivered) == [0, 1, 3]
        assert summary.failures == {2: "RuntimeError: template missing"}
        assert sorted(i for i, _, _ in sender.delivered) == [0, 1, 3]

    @pytest.mark.trio
    async def test_bounded_fan_out(self):
        sender = RecordingSender()
        dispatcher = make_dispatcher(sender, dispatch_concurrency=2)
        records = make_records(6)
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)

        await dispatcher.dispatch(records, TRANSFER_INFO)

        assert sender.max_active == 2
        assert len(sender.delivered) == 6


# ============================================================================
# RESEND TESTS
# ============================================================================

class TestResend:
    """Tests for resending persisted claims."""

    @pytest.mark.trio
    async def test_resend_reuses_pins_and_urls(self):
        dispatcher = make_dispatcher(RecordingSender())
        records = make_records(3)
        dispatcher.assign_secrets(records, TRANSFER_INFO, DISTRIBUTOR)
        before = [(r.pin, r.delivery_locator) for r in records]

        sender = RecordingSender()
        resender = make_dispatcher(sender, random_bytes=counter_bytes(1000))
        first = await resender.resend(records, TRANSFER_INFO)
        second = await resender.resend(records, TRANSFER_INFO)

        assert first.ok and second.ok
        assert [(r.pin, r.delivery_locator) for r in records] == before
        assert sorted((i, p, u) for i, p, u in sender.delivered) == sorted(
            [(r.index, r.pin, r.delivery_locator) for r in records] * 2
        )

    @pytest.mark.trio
    async def test_missing_locator_sends_nothing(self):
        records = make_records(3, delivery_locator="https://claim.example.com/claim?x=1")
        records[0].delivery_locator = None
        records[2].delivery_locator = None
        sender = RecordingSender()

        with pytest.raises(MissingDeliveryLocator) as exc_info:
            await make_dispatcher(sender).resend(records, TRANSFER_INFO)

        assert exc_info.value.indices == [0, 2]
        assert sender.delivered == []

    def test_check_locators_passes(self):
        check_locators(make_records(2, delivery_locator="https://x"))


# ============================================================================
# SUMMARY TESTS
# ============================================================================

class TestDeliverySummary:

    def test_to_dict_sorted(self):
        summary = DeliverySummary(attempted=3, delivered=[2, 0], failures={1: "bounce"})
        assert summary.to_dict() == {
            "attempted": 3,
            "delivered": [0, 2],
            "failures": {1: "bounce"},
        }
        assert not summary.ok
