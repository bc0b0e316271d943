"""RFC 6962 Merkle tree hashing and inclusion proof verification."""

import hashlib
from typing import Sequence

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"


class InvalidInclusionProofError(Exception):
    """Raised when an inclusion proof does not reproduce the expected root."""
    pass


def hash_leaf(data: bytes) -> bytes:
    """Hash a log entry body as a Merkle leaf."""
    return hashlib.sha256(LEAF_PREFIX + data).digest()


def hash_children(left: bytes, right: bytes) -> bytes:
    """Hash two child nodes into their parent."""
    return hashlib.sha256(NODE_PREFIX + left + right).digest()


def root_from_inclusion_proof(
    leaf_hash: bytes, index: int, tree_size: int, proof: Sequence[bytes]
) -> bytes:
    """
    Recompute the tree root from a leaf hash and its audit path.

    Args:
        leaf_hash: Hash of the leaf (see hash_leaf)
        index: Zero-based leaf index
        tree_size: Number of leaves in the tree the proof was made for
        proof: Sibling hashes from the leaf upwards

    Returns:
        Computed root hash

    Raises:
        InvalidInclusionProofError: If the proof has the wrong shape
    """
    if tree_size <= 0 or index < 0 or index >= tree_size:
        raise InvalidInclusionProofError(
            f"leaf index {index} out of range for tree size {tree_size}"
        )

    fn = index
    sn = tree_size - 1
    result = leaf_hash

    for sibling in proof:
        if sn == 0:
            raise InvalidInclusionProofError("inclusion proof has too many hashes")

        if fn & 1 or fn == sn:
            result = hash_children(sibling, result)
            if not fn & 1:
                while not (fn & 1) and fn != 0:
                    fn >>= 1
                    sn >>= 1
        else:
            result = hash_children(result, sibling)

        fn >>= 1
        sn >>= 1

    if sn != 0:
        raise InvalidInclusionProofError("inclusion proof has too few hashes")

    return result


def verify_inclusion(
    leaf_hash: bytes,
    index: int,
    tree_size: int,
    proof: Sequence[bytes],
    root_hash: bytes,
) -> None:
    """
    Verify that a leaf is included in a tree with the given root.

    Raises:
        InvalidInclusionProofError: If the proof is malformed or the roots differ
    """
    computed = root_from_inclusion_proof(leaf_hash, index, tree_size, proof)
    if computed != root_hash:
        raise InvalidInclusionProofError(
            f"computed root {computed.hex()} does not match expected {root_hash.hex()}"
        )
