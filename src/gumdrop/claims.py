"""
gumdrop/claims.py

Integration-specific claim validation.

Architecture:
    ClaimValidator (abstract)
    ├── TransferValidator (approve-delegate token transfers)
    ├── CandyValidator (mint through a candy machine)
    └── EditionValidator (print editions of a master edition)

Each validator reads remote state through LedgerClient.read_account and
either returns an immutable ClaimInfo or raises ValidationError naming the
unmet invariant. Nothing on-chain is touched.

describe() rebuilds the same ClaimInfo from the references alone, without
any reads, for resending claims of a distributor that already exists.

Usage:
    validator = validator_for(ClaimIntegration.TRANSFER, ledger, wallet.pubkey())
    claim_info = validator.validate(records, mint=mint)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from .claimants import ClaimantRecord, total_allocation
from .config import (
    CANDY_MACHINE_ID,
    CANDY_MACHINE_SEED,
    EDITION_SEED,
    METADATA_SEED,
    TOKEN_METADATA_PROGRAM_ID,
    ClaimIntegration,
)
from .errors import ValidationError
from .ledger.client import AccountState, LedgerClient
from .ledger.layouts import (
    decode_candy_authority,
    decode_master_edition,
    decode_mint,
    decode_token_account,
)

logger = logging.getLogger("gumdrop.claims")


# ============================================================================
# CLAIM INFO
# ============================================================================

@dataclass(frozen=True)
class TransferClaimInfo:
    """Transfer claims: tokens approved from the wallet's token account."""
    mint: Pubkey
    source: Pubkey
    owner: Pubkey
    total: int
    decimals: Optional[int] = None

    integration = ClaimIntegration.TRANSFER

    @property
    def seed(self) -> Pubkey:
        return self.mint

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration": self.integration.value,
            "mint": str(self.mint),
            "source": str(self.source),
            "owner": str(self.owner),
            "decimals": self.decimals,
            "total": self.total,
        }


@dataclass(frozen=True)
class CandyClaimInfo:
    """Candy claims: mints through a candy machine the wallet controls."""
    config: Pubkey
    authority: Pubkey
    total: int
    uuid: Optional[str] = None
    candy_machine: Optional[Pubkey] = None

    integration = ClaimIntegration.CANDY

    @property
    def seed(self) -> Pubkey:
        return self.config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration": self.integration.value,
            "config": str(self.config),
            "authority": str(self.authority),
            "uuid": self.uuid,
            "candy_machine": str(self.candy_machine) if self.candy_machine else None,
            "total": self.total,
        }


@dataclass(frozen=True)
class EditionClaimInfo:
    """Edition claims: prints of a master edition held by the wallet."""
    master_mint: Pubkey
    master_edition: Pubkey
    master_token_account: Pubkey
    owner: Pubkey
    total: int

    integration = ClaimIntegration.EDITION

    @property
    def seed(self) -> Pubkey:
        return self.master_mint

    def to_dict(self) -> Dict[str, Any]:
        return {
            "integration": self.integration.value,
            "master_mint": str(self.master_mint),
            "master_edition": str(self.master_edition),
            "master_token_account": str(self.master_token_account),
            "owner": str(self.owner),
            "total": self.total,
        }


ClaimInfo = Union[TransferClaimInfo, CandyClaimInfo, EditionClaimInfo]


# ============================================================================
# PDA HELPERS
# ============================================================================

def derive_candy_machine(config: Pubkey, uuid: str) -> Pubkey:
    """Candy machine address for a config and its 6-character uuid."""
    address, _ = Pubkey.find_program_address(
        [CANDY_MACHINE_SEED, bytes(config), uuid[:6].encode()],
        CANDY_MACHINE_ID,
    )
    return address


def derive_master_edition(mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [METADATA_SEED, bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint), EDITION_SEED],
        TOKEN_METADATA_PROGRAM_ID,
    )
    return address


def parse_pubkey(value: Union[str, Pubkey, None], name: str) -> Pubkey:
    """Accept a Pubkey or base58 string, raising ValidationError otherwise."""
    if value is None:
        raise ValidationError(f"Missing {name}")
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except Exception:
        raise ValidationError(f"Invalid {name}: {value!r}")


# ============================================================================
# VALIDATORS
# ============================================================================

class ClaimValidator(ABC):
    """
    Abstract base class for claim integration checks.

    Subclass this per integration; validate() must not mutate remote state.
    """

    integration: ClaimIntegration

    def __init__(self, ledger: LedgerClient, wallet: Pubkey):
        """
        Initialize validator.

        Args:
            ledger: Ledger used for account reads
            wallet: Creating wallet (fee payer and authority)
        """
        self.ledger = ledger
        self.wallet = wallet

    @abstractmethod
    def validate(self, records: List[ClaimantRecord], **refs: Any) -> ClaimInfo:
        pass

    @abstractmethod
    def describe(self, records: List[ClaimantRecord], **refs: Any) -> ClaimInfo:
        """ClaimInfo derived from the references only; reads nothing."""
        pass

    def _require_account(self, address: Pubkey, what: str) -> AccountState:
        account = self.ledger.read_account(address)
        if account is None:
            raise ValidationError(f"{what} {address} does not exist")
        return account

    def _require_owner(self, account: AccountState, program: Pubkey, what: str) -> None:
        if account.owner != program:
            raise ValidationError(
                f"{what} {account.address} is owned by {account.owner}, expected {program}"
            )


class TransferValidator(ClaimValidator):
    """Wallet must hold enough of the mint to cover every allocation."""

    integration = ClaimIntegration.TRANSFER

    def validate(self, records: List[ClaimantRecord], **refs: Any) -> TransferClaimInfo:
        mint = parse_pubkey(refs.get("mint"), "transfer mint")
        total = total_allocation(records)

        mint_account = self._require_account(mint, "Mint")
        self._require_owner(mint_account, TOKEN_PROGRAM_ID, "Mint")
        mint_info = decode_mint(mint_account.data)
        if not mint_info.is_initialized:
            raise ValidationError(f"Mint {mint} is not initialized")

        source = get_associated_token_address(self.wallet, mint)
        source_account = self._require_account(source, "Source token account")
        self._require_owner(source_account, TOKEN_PROGRAM_ID, "Source token account")
        token = decode_token_account(source_account.data)

        if token.mint != mint:
            raise ValidationError(f"Source token account {source} holds {token.mint}, not {mint}")
        if token.owner != self.wallet:
            raise ValidationError(f"Source token account {source} is not owned by {self.wallet}")
        if token.amount < total:
            raise ValidationError(
                f"Insufficient balance in {source}: have {token.amount}, need {total}"
            )

        logger.info(f"Transfer claims validated: {total} of {mint} from {source}")
        return TransferClaimInfo(
            mint=mint,
            source=source,
            owner=self.wallet,
            decimals=mint_info.decimals,
            total=total,
        )

    def describe(self, records: List[ClaimantRecord], **refs: Any) -> TransferClaimInfo:
        mint = parse_pubkey(refs.get("mint"), "transfer mint")
        return TransferClaimInfo(
            mint=mint,
            source=get_associated_token_address(self.wallet, mint),
            owner=self.wallet,
            total=total_allocation(records),
        )


class CandyValidator(ClaimValidator):
    """Candy machine config must exist and be controlled by the wallet."""

    integration = ClaimIntegration.CANDY

    def validate(self, records: List[ClaimantRecord], **refs: Any) -> CandyClaimInfo:
        config = parse_pubkey(refs.get("config"), "candy config")
        uuid: Optional[str] = refs.get("uuid")

        config_account = self._require_account(config, "Candy config")
        self._require_owner(config_account, CANDY_MACHINE_ID, "Candy config")
        authority = decode_candy_authority(config_account.data)
        if authority != self.wallet:
            raise ValidationError(
                f"Candy config {config} authority is {authority}, not {self.wallet}"
            )

        candy_machine = None
        if uuid:
            candy_machine = derive_candy_machine(config, uuid)
            machine_account = self._require_account(candy_machine, "Candy machine")
            self._require_owner(machine_account, CANDY_MACHINE_ID, "Candy machine")
            if decode_candy_authority(machine_account.data) != self.wallet:
                raise ValidationError(f"Candy machine {candy_machine} is not controlled by {self.wallet}")

        total = total_allocation(records)
        logger.info(f"Candy claims validated: {total} mints through {config}")
        return CandyClaimInfo(
            config=config,
            authority=authority,
            total=total,
            uuid=uuid,
            candy_machine=candy_machine,
        )

    def describe(self, records: List[ClaimantRecord], **refs: Any) -> CandyClaimInfo:
        config = parse_pubkey(refs.get("config"), "candy config")
        uuid: Optional[str] = refs.get("uuid")
        return CandyClaimInfo(
            config=config,
            authority=self.wallet,
            total=total_allocation(records),
            uuid=uuid,
            candy_machine=derive_candy_machine(config, uuid) if uuid else None,
        )


class EditionValidator(ClaimValidator):
    """Master edition must exist, have room, and be held by the wallet."""

    integration = ClaimIntegration.EDITION

    def validate(self, records: List[ClaimantRecord], **refs: Any) -> EditionClaimInfo:
        master_mint = parse_pubkey(refs.get("master_mint"), "edition mint")

        editions = [r.edition for r in records]
        if len(set(editions)) != len(editions):
            raise ValidationError("Edition numbers must be unique across claimants")

        mint_account = self._require_account(master_mint, "Master mint")
        self._require_owner(mint_account, TOKEN_PROGRAM_ID, "Master mint")

        master_edition = derive_master_edition(master_mint)
        edition_account = self._require_account(master_edition, "Master edition")
        self._require_owner(edition_account, TOKEN_METADATA_PROGRAM_ID, "Master edition")
        edition_info = decode_master_edition(edition_account.data)

        count = len(records)
        if edition_info.max_supply is not None:
            if edition_info.supply + count > edition_info.max_supply:
                raise ValidationError(
                    f"Master edition {master_edition} has {edition_info.max_supply - edition_info.supply} "
                    f"editions left, need {count}"
                )
            highest = max(editions)
            if highest > edition_info.max_supply:
                raise ValidationError(
                    f"Edition {highest} exceeds max supply {edition_info.max_supply}"
                )

        token_address = get_associated_token_address(self.wallet, master_mint)
        token_account = self._require_account(token_address, "Master token account")
        token = decode_token_account(token_account.data)
        if token.owner != self.wallet or token.mint != master_mint or token.amount != 1:
            raise ValidationError(
                f"Wallet {self.wallet} does not hold the master token for {master_mint}"
            )

        logger.info(f"Edition claims validated: {count} prints of {master_mint}")
        return EditionClaimInfo(
            master_mint=master_mint,
            master_edition=master_edition,
            master_token_account=token_address,
            owner=self.wallet,
            total=total_allocation(records),
        )

    def describe(self, records: List[ClaimantRecord], **refs: Any) -> EditionClaimInfo:
        master_mint = parse_pubkey(refs.get("master_mint"), "edition mint")
        return EditionClaimInfo(
            master_mint=master_mint,
            master_edition=derive_master_edition(master_mint),
            master_token_account=get_associated_token_address(self.wallet, master_mint),
            owner=self.wallet,
            total=total_allocation(records),
        )


VALIDATORS = {
    ClaimIntegration.TRANSFER: TransferValidator,
    ClaimIntegration.CANDY: CandyValidator,
    ClaimIntegration.EDITION: EditionValidator,
}


def validator_for(
    integration: ClaimIntegration,
    ledger: LedgerClient,
    wallet: Pubkey,
) -> ClaimValidator:
    """Validator instance for an integration."""
    return VALIDATORS[integration](ledger, wallet)
