"""
gumdrop/merkle.py

Merkle commitment over the claimant list.

Leaves and internal nodes are SHA-256 digests with distinct one-byte
prefixes so a leaf can never be mistaken for an internal node. Pairing is
positional: the even-positioned node is always the left operand. A level
with an odd count pairs its last node with itself.

Usage:
    from gumdrop.merkle import MerkleTree

    tree = MerkleTree.from_claimants(records, ClaimIntegration.TRANSFER)
    proof = tree.get_proof(2)
    assert MerkleTree.verify_proof(tree.root, tree.leaves[2], 2, proof)
"""

import hashlib
import logging
import struct
from typing import List, Sequence, Tuple, TYPE_CHECKING

from .errors import EmptyClaimantList

if TYPE_CHECKING:
    from .claimants import ClaimantRecord
    from .config import ClaimIntegration

logger = logging.getLogger("gumdrop.merkle")

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"
DIGEST_SIZE = 32


def hash_node(left: bytes, right: bytes) -> bytes:
    """Digest of an internal node."""
    return hashlib.sha256(NODE_PREFIX + left + right).digest()


class MerkleTree:
    """
    Build and verify merkle trees over claimant records.

    The tree is a pure function of the ordered leaves. It is never mutated;
    a changed claimant list means a new tree.
    """

    def __init__(self, leaves: Sequence[bytes]):
        """
        Initialize MerkleTree.

        Args:
            leaves: Leaf digests, index aligned

        Raises:
            EmptyClaimantList: If there are no leaves
        """
        if not leaves:
            raise EmptyClaimantList()
        for leaf in leaves:
            if len(leaf) != DIGEST_SIZE:
                raise ValueError(f"Leaf digest must be {DIGEST_SIZE} bytes, got {len(leaf)}")

        self.leaves: Tuple[bytes, ...] = tuple(leaves)
        self.levels: List[List[bytes]] = []
        self.root: bytes = b""
        self._build()

    @classmethod
    def from_claimants(
        cls,
        records: Sequence["ClaimantRecord"],
        integration: "ClaimIntegration",
    ) -> "MerkleTree":
        """Build the tree over records ordered by index."""
        ordered = sorted(records, key=lambda r: r.index)
        tree = cls([cls.hash_claimant(r, integration) for r in ordered])
        logger.info(
            f"Built merkle tree over {len(ordered)} claimants, "
            f"depth {tree.depth}, root {tree.root_hex}"
        )
        return tree

    def _build(self) -> None:
        """Build the merkle tree bottom-up from leaves."""
        current_level = list(self.leaves)
        self.levels = [current_level]

        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                left = current_level[i]
                # If odd number, duplicate last element
                right = current_level[i + 1] if i + 1 < len(current_level) else left
                next_level.append(hash_node(left, right))
            self.levels.append(next_level)
            current_level = next_level

        self.root = current_level[0]

    @property
    def root_hex(self) -> str:
        return self.root.hex()

    @property
    def depth(self) -> int:
        """Number of hashing levels above the leaves (proof length)."""
        return len(self.levels) - 1

    def __len__(self) -> int:
        return len(self.leaves)

    def get_proof(self, leaf_index: int) -> List[bytes]:
        """
        Get merkle proof for a leaf.

        Args:
            leaf_index: Index of leaf in leaves list

        Returns:
            Sibling digests ordered from the leaf level up to the root
        """
        return [sibling for _, sibling in self.get_proof_steps(leaf_index)]

    def get_proof_steps(self, leaf_index: int) -> List[Tuple[str, bytes]]:
        """
        Get merkle proof with the side of each sibling.

        Args:
            leaf_index: Index of leaf in leaves list

        Returns:
            List of (direction, sibling_hash) tuples, direction being the
            side the sibling sits on ('left' or 'right')
        """
        if not 0 <= leaf_index < len(self.leaves):
            raise IndexError(f"Leaf index {leaf_index} out of range for {len(self.leaves)} leaves")

        proof = []
        idx = leaf_index
        for level in self.levels[:-1]:
            if idx % 2 == 0:
                # We're on the left, sibling is on the right
                sibling_idx = idx + 1
                direction = "right"
            else:
                sibling_idx = idx - 1
                direction = "left"

            if sibling_idx < len(level):
                proof.append((direction, level[sibling_idx]))
            else:
                # Odd case: paired with ourselves
                proof.append((direction, level[idx]))
            idx //= 2

        return proof

    @staticmethod
    def verify_proof(
        merkle_root: bytes,
        leaf_hash: bytes,
        leaf_index: int,
        proof: Sequence[bytes],
    ) -> bool:
        """
        Verify a merkle proof.

        The side of each sibling comes from the bits of leaf_index, so a
        proof only verifies at the position it was issued for.

        Args:
            merkle_root: Expected root hash
            leaf_hash: Hash of the leaf being verified
            leaf_index: Position of the leaf
            proof: Sibling digests from leaf to root

        Returns:
            True if proof is valid
        """
        if leaf_index < 0:
            return False

        current_hash = leaf_hash
        idx = leaf_index
        for sibling_hash in proof:
            if idx % 2 == 0:
                current_hash = hash_node(current_hash, sibling_hash)
            else:
                current_hash = hash_node(sibling_hash, current_hash)
            idx //= 2

        # Leftover bits mean the index lies outside a tree of this depth
        return idx == 0 and current_hash == merkle_root

    @staticmethod
    def hash_claimant(record: "ClaimantRecord", integration: "ClaimIntegration") -> bytes:
        """Create deterministic leaf digest for a claimant."""
        leaf_data = (
            LEAF_PREFIX
            + struct.pack("<I", record.index)
            + bytes(record.identity)
            + struct.pack("<Q", record.amount)
            + struct.pack("<Q", record.edition or 0)
            + struct.pack("<B", integration.tag)
        )
        return hashlib.sha256(leaf_data).digest()
