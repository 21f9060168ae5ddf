"""Pseudonym PRF over G2.

    PRF(k, epoch) = k * H(epoch)

where H is RFC 9380 hash-to-G2 with a dedicated domain separation tag and
the epoch is encoded as 8 little-endian bytes. The output is deterministic
in (k, epoch), and without k pseudonyms of different epochs cannot be
linked to each other or to a credential (DDH in G2).
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from py_ecc.optimized_bls12_381 import Z2

from spirit_trace._primitives import (
    G2_SIZE,
    Point,
    g2_from_bytes,
    g2_to_bytes,
    hash_to_g2,
    linear_combination,
)

PRF_DST = b"SPIRIT-PRF-V1-BLS12381G2_XMD:SHA-256_SSWU_RO_"

_MAX_EPOCH = 2**64


@dataclass(frozen=True)
class Pseudonym:
    """A broadcast pseudonym (ElID): a compressed G2 element."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != G2_SIZE:
            raise ValueError(f"Pseudonym must be {G2_SIZE} bytes, got {len(self.value)}")

    def point(self) -> Point:
        return g2_from_bytes(self.value)

    def to_hex(self) -> str:
        return self.value.hex()

    @classmethod
    def from_hex(cls, data: str) -> Pseudonym:
        return cls(value=bytes.fromhex(data))

    def __repr__(self) -> str:
        return f"Pseudonym({self.value[:8].hex()}...)"


def _check_epoch(epoch: int) -> None:
    if isinstance(epoch, bool) or not isinstance(epoch, int):
        raise TypeError(f"Epoch must be an int, got {type(epoch).__name__}")
    if not 0 <= epoch < _MAX_EPOCH:
        raise ValueError(f"Epoch must be in [0, 2**64), got {epoch}")


@lru_cache(maxsize=4096)
def epoch_base(epoch: int) -> Point:
    """H(epoch): the G2 base every user's pseudonym for `epoch` is built on."""
    _check_epoch(epoch)
    return hash_to_g2(epoch.to_bytes(8, "little"), PRF_DST)


def evaluate(secret: int, epoch: int) -> Pseudonym:
    """Compute the pseudonym for (secret, epoch)."""
    _check_epoch(epoch)
    return Pseudonym(value=g2_to_bytes(linear_combination([(epoch_base(epoch), secret)], Z2)))
