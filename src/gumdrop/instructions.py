"""
gumdrop/instructions.py

Distributor instruction builder.

Builds the ordered instruction list that creates a distributor:
1. Fund the distributor base account
2. Initialize the distributor with the merkle root and parameters
3. Integration fragment (approve-delegate for transfer and edition claims)

Later instructions reference accounts created by earlier ones, so the
order is fixed. Building is pure: no network calls.

Example:
    params = DistributorParams.create(tree.root, temporal_signer,
                                      ClaimIntegration.TRANSFER, len(tree))
    builder = DistributorInstructionBuilder(wallet.pubkey())
    instructions = builder.build(claim_info, params)
"""

import hashlib
import logging
import struct
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import CreateAccountParams, create_account
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import ApproveParams, approve

from .claims import CandyClaimInfo, ClaimInfo, EditionClaimInfo, TransferClaimInfo
from .config import (
    BASE_ACCOUNT_LAMPORTS,
    DISTRIBUTOR_SEED,
    GUMDROP_DISTRIBUTOR_ID,
    ClaimIntegration,
)
from .errors import ValidationError

logger = logging.getLogger("gumdrop.instructions")

NEW_DISTRIBUTOR_DISCRIMINATOR = hashlib.sha256(b"global:new_distributor").digest()[:8]


# ============================================================================
# DATA STRUCTURES
# ============================================================================

def derive_distributor(base: Pubkey) -> Tuple[Pubkey, int]:
    """Distributor account address and bump for a base key."""
    return Pubkey.find_program_address([DISTRIBUTOR_SEED, bytes(base)], GUMDROP_DISTRIBUTOR_ID)


@dataclass(frozen=True)
class DistributorParams:
    """
    Parameters of one distributor creation attempt.

    The base keypair seeds the distributor address. It is generated per
    attempt and must not be reused once an attempt is abandoned.
    """
    root: bytes
    base: Keypair = field(repr=False)
    temporal_signer: Pubkey
    integration: ClaimIntegration
    claim_count: int

    @classmethod
    def create(
        cls,
        root: bytes,
        temporal_signer: Pubkey,
        integration: ClaimIntegration,
        claim_count: int,
    ) -> "DistributorParams":
        """Params with a freshly generated base key."""
        if len(root) != 32:
            raise ValidationError(f"Merkle root must be 32 bytes, got {len(root)}")
        base = Keypair()
        logger.info(f"Generated distributor base {base.pubkey()}")
        return cls(
            root=root,
            base=base,
            temporal_signer=temporal_signer,
            integration=integration,
            claim_count=claim_count,
        )

    @property
    def distributor(self) -> Pubkey:
        return derive_distributor(self.base.pubkey())[0]

    @property
    def bump(self) -> int:
        return derive_distributor(self.base.pubkey())[1]

    def to_dict(self) -> dict:
        return {
            "root": self.root.hex(),
            "base": str(self.base.pubkey()),
            "distributor": str(self.distributor),
            "temporal_signer": str(self.temporal_signer),
            "integration": self.integration.value,
            "claim_count": self.claim_count,
        }


# ============================================================================
# INSTRUCTION BUILDER
# ============================================================================

class DistributorInstructionBuilder:
    """
    Builds the instructions that create a distributor.

    Deterministic given (ClaimInfo, DistributorParams), so it is testable
    without a live ledger.
    """

    def __init__(
        self,
        payer: Pubkey,
        base_lamports: int = BASE_ACCOUNT_LAMPORTS,
    ):
        """
        Initialize instruction builder.

        Args:
            payer: Fee payer and owner of the claimed assets
            base_lamports: Lamports funding the base account
        """
        self.payer = payer
        self.base_lamports = base_lamports
        self._fragments: Dict[ClaimIntegration, Callable[..., List[Instruction]]] = {
            ClaimIntegration.TRANSFER: self._transfer_fragment,
            ClaimIntegration.CANDY: self._candy_fragment,
            ClaimIntegration.EDITION: self._edition_fragment,
        }

    def build(self, claim_info: ClaimInfo, params: DistributorParams) -> List[Instruction]:
        """
        Build the ordered instruction list.

        Args:
            claim_info: Validated integration descriptor
            params: Distributor parameters for this attempt

        Returns:
            [create base, initialize distributor, *integration fragment]
        """
        if claim_info.integration != params.integration:
            raise ValidationError(
                f"Claim info is for {claim_info.integration.value}, "
                f"params are for {params.integration.value}"
            )

        instructions = [
            self.create_base_instruction(params),
            self.new_distributor_instruction(claim_info, params),
        ]
        instructions.extend(self._fragments[params.integration](claim_info, params))

        logger.info(
            f"Built {len(instructions)} instructions for {params.integration.value} "
            f"distributor {params.distributor}"
        )
        return instructions

    def create_base_instruction(self, params: DistributorParams) -> Instruction:
        return create_account(
            CreateAccountParams(
                from_pubkey=self.payer,
                to_pubkey=params.base.pubkey(),
                lamports=self.base_lamports,
                space=0,
                owner=SYSTEM_PROGRAM_ID,
            )
        )

    def new_distributor_instruction(
        self,
        claim_info: ClaimInfo,
        params: DistributorParams,
    ) -> Instruction:
        data = encode_new_distributor(
            bump=params.bump,
            root=params.root,
            temporal_signer=params.temporal_signer,
            integration=params.integration,
            claim_count=params.claim_count,
            seed=claim_info.seed,
        )
        accounts = [
            AccountMeta(pubkey=params.base.pubkey(), is_signer=True, is_writable=False),
            AccountMeta(pubkey=params.distributor, is_signer=False, is_writable=True),
            AccountMeta(pubkey=self.payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        return Instruction(GUMDROP_DISTRIBUTOR_ID, data, accounts)

    def _transfer_fragment(
        self,
        claim_info: TransferClaimInfo,
        params: DistributorParams,
    ) -> List[Instruction]:
        # Funds stay with the owner until claimed
        return [
            approve(
                ApproveParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=claim_info.source,
                    delegate=params.distributor,
                    owner=self.payer,
                    amount=claim_info.total,
                    signers=[],
                )
            )
        ]

    def _candy_fragment(
        self,
        claim_info: CandyClaimInfo,
        params: DistributorParams,
    ) -> List[Instruction]:
        return []

    def _edition_fragment(
        self,
        claim_info: EditionClaimInfo,
        params: DistributorParams,
    ) -> List[Instruction]:
        return [
            approve(
                ApproveParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=claim_info.master_token_account,
                    delegate=params.distributor,
                    owner=self.payer,
                    amount=1,
                    signers=[],
                )
            )
        ]


# ============================================================================
# ENCODING
# ============================================================================

def encode_new_distributor(
    bump: int,
    root: bytes,
    temporal_signer: Pubkey,
    integration: ClaimIntegration,
    claim_count: int,
    seed: Pubkey,
) -> bytes:
    """
    Encode new_distributor instruction data.

    Format (110 bytes):
    - 8 bytes:  Instruction discriminator
    - 1 byte:   PDA bump
    - 32 bytes: Merkle root
    - 32 bytes: Temporal signer
    - 1 byte:   Integration tag
    - 4 bytes:  Claim count
    - 32 bytes: Integration seed (mint, config or master mint)
    """
    return NEW_DISTRIBUTOR_DISCRIMINATOR + struct.pack(
        "<B32s32sBI32s",
        bump,
        root,
        bytes(temporal_signer),
        integration.tag,
        claim_count,
        bytes(seed),
    )


def decode_new_distributor(data: bytes) -> dict:
    """Decode new_distributor instruction data back into its fields."""
    if len(data) != 110 or data[:8] != NEW_DISTRIBUTOR_DISCRIMINATOR:
        raise ValueError(f"Not a new_distributor instruction ({len(data)} bytes)")

    bump, root, temporal, tag, count, seed = struct.unpack("<B32s32sBI32s", data[8:])
    return {
        "bump": bump,
        "root": root,
        "temporal_signer": Pubkey.from_bytes(temporal),
        "integration_tag": tag,
        "claim_count": count,
        "seed": Pubkey.from_bytes(seed),
    }
