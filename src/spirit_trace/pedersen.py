"""Pedersen commitments and the two-statement disclosure proof.

A user's credential attributes are hidden in a Pedersen vector commitment
over G1:

    cm = o*H0 + m_0*H1 + ... + m_k*H(k+1)

where the bases are nothing-up-my-sleeve points (hash-to-G1 of fixed
labels) and `o` is the opening. Attribute 0 is always the user's PRF key.

The disclosure proof is a non-interactive Sigma protocol (Fiat-Shamir) for
two statements sharing one witness:

    A. knowledge of (o, m_0, ..., m_k) opening cm
    B. for every disclosed pseudonym: element_i = m_0 * base_i  (in G2)

Because the response for m_0 is shared, a valid proof shows that the key
behind the committed credential also generated every disclosed pseudonym,
without revealing the key or any other attribute.

Example:
    >>> params = pedersen_parameters(2)
    >>> cm = commit(params, [prv, identity], opening)
    >>> proof = prove_disclosure(params, cm, [prv, identity], opening, statements, b"ctx")
    >>> assert verify_disclosure(cm, proof, statements, b"ctx")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from py_ecc.optimized_bls12_381 import Z1, Z2, eq

from spirit_trace._primitives import (
    CURVE_ORDER,
    G1_SIZE,
    Point,
    challenge,
    g1_from_bytes,
    g1_to_bytes,
    g2_to_bytes,
    hash_to_g1,
    linear_combination,
    random_scalar,
)

# Upper bound on committed attributes accepted from untrusted proofs
MAX_ATTRIBUTES = 16

_LABEL_BASE = b"spirit-pedersen-base-v1"
_LABEL_DISCLOSURE = b"spirit-disclosure-v1"

# A statement pairs a G2 base with the claimed multiple of attribute 0
Statement = tuple[Point, Point]


# =============================================================================
# Exceptions
# =============================================================================


class DisclosureError(Exception):
    """Raised when a disclosure proof cannot be built from the given witnesses."""

    pass


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class PedersenParameters:
    """Bases for a Pedersen vector commitment.

    Attributes:
        opening_base: H0, multiplied by the opening
        attribute_bases: H1..H(k+1), one per attribute
    """

    opening_base: Point
    attribute_bases: tuple[Point, ...]

    @property
    def num_attributes(self) -> int:
        return len(self.attribute_bases)


@dataclass(frozen=True)
class Commitment:
    """A Pedersen commitment, stored as its compressed G1 encoding."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != G1_SIZE:
            raise ValueError(f"Commitment must be {G1_SIZE} bytes, got {len(self.value)}")

    def point(self) -> Point:
        return g1_from_bytes(self.value)

    def hex(self) -> str:
        return self.value.hex()


@dataclass(frozen=True)
class DisclosureProof:
    """Fiat-Shamir proof for the two-statement disclosure relation.

    Attributes:
        challenge: The challenge scalar c
        responses: (r_o, r_m0, ..., r_mk) with r = w - c * witness
    """

    challenge: int
    responses: tuple[int, ...]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "challenge": hex(self.challenge),
            "responses": [hex(r) for r in self.responses],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DisclosureProof:
        """Create from dictionary."""
        return cls(
            challenge=int(data["challenge"], 16),
            responses=tuple(int(r, 16) for r in data["responses"]),
        )


# =============================================================================
# Commitments
# =============================================================================


@lru_cache(maxsize=None)
def pedersen_parameters(num_attributes: int) -> PedersenParameters:
    """Deterministic commitment bases for `num_attributes` attributes."""
    if not 1 <= num_attributes <= MAX_ATTRIBUTES:
        raise ValueError(f"num_attributes must be in [1, {MAX_ATTRIBUTES}], got {num_attributes}")
    bases = tuple(hash_to_g1(f"H{i}".encode(), _LABEL_BASE) for i in range(num_attributes + 1))
    return PedersenParameters(opening_base=bases[0], attribute_bases=bases[1:])


def _commit_point(params: PedersenParameters, attributes: Sequence[int], opening: int) -> Point:
    if len(attributes) != params.num_attributes:
        raise ValueError(f"Expected {params.num_attributes} attributes, got {len(attributes)}")
    pairs = [(params.opening_base, opening)]
    pairs.extend(zip(params.attribute_bases, attributes))
    return linear_combination(pairs, Z1)


def commit(params: PedersenParameters, attributes: Sequence[int], opening: int | None = None) -> Commitment:
    """Commit to `attributes` with `opening` (fresh random when omitted)."""
    if opening is None:
        opening = random_scalar()
    return Commitment(value=g1_to_bytes(_commit_point(params, attributes, opening)))


def opens(params: PedersenParameters, commitment: Commitment, attributes: Sequence[int], opening: int) -> bool:
    """Check that (attributes, opening) opens `commitment`."""
    if len(attributes) != params.num_attributes:
        return False
    return g1_to_bytes(_commit_point(params, attributes, opening)) == commitment.value


# =============================================================================
# Disclosure proof
# =============================================================================


def _transcript(
    commitment: Commitment,
    statements: Sequence[Statement],
    context: bytes,
    opening_witness: Point,
    element_witnesses: Sequence[Point],
) -> int:
    parts = [context, commitment.value, g1_to_bytes(opening_witness)]
    for (base, element), witness in zip(statements, element_witnesses):
        parts.extend((g2_to_bytes(base), g2_to_bytes(element), g2_to_bytes(witness)))
    return challenge(_LABEL_DISCLOSURE, *parts)


def prove_disclosure(
    params: PedersenParameters,
    commitment: Commitment,
    attributes: Sequence[int],
    opening: int,
    statements: Sequence[Statement],
    context: bytes = b"",
) -> DisclosureProof:
    """Prove knowledge of the opening of `commitment` and that attribute 0
    generated every element in `statements`.

    Args:
        params: Commitment bases
        commitment: The public commitment
        attributes: Committed attributes; attributes[0] is the shared witness
        opening: Commitment opening
        statements: (base, element) pairs in G2 with element = attributes[0] * base
        context: Public bytes bound into the challenge

    Returns:
        A DisclosureProof

    Raises:
        DisclosureError: If the witnesses do not satisfy the statements
    """
    if not statements:
        raise DisclosureError("At least one statement is required")
    if not opens(params, commitment, attributes, opening):
        raise DisclosureError("Witnesses do not open the commitment")
    key = attributes[0]
    for base, element in statements:
        if not eq(linear_combination([(base, key)], Z2), element):
            raise DisclosureError("Element was not generated by the committed key")

    w_opening = random_scalar()
    w_attributes = [random_scalar() for _ in attributes]

    opening_witness = _commit_point(params, w_attributes, w_opening)
    element_witnesses = [linear_combination([(base, w_attributes[0])], Z2) for base, _ in statements]

    c = _transcript(commitment, statements, context, opening_witness, element_witnesses)

    responses = [(w_opening - c * opening) % CURVE_ORDER]
    responses.extend((w - c * m) % CURVE_ORDER for w, m in zip(w_attributes, attributes))
    return DisclosureProof(challenge=c, responses=tuple(responses))


def verify_disclosure(
    commitment: Commitment,
    proof: DisclosureProof,
    statements: Sequence[Statement],
    context: bytes = b"",
) -> bool:
    """Verify a disclosure proof.

    The number of committed attributes is read from the proof. Malformed
    input yields False rather than an exception.
    """
    num_attributes = len(proof.responses) - 1
    if not statements or not 1 <= num_attributes <= MAX_ATTRIBUTES:
        return False
    try:
        params = pedersen_parameters(num_attributes)
        cm_point = commitment.point()
    except ValueError:
        return False

    # Scalars must be canonical so each proof has a single encoding
    for value in (proof.challenge, *proof.responses):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < CURVE_ORDER:
            return False

    c = proof.challenge
    r_opening, *r_attributes = proof.responses

    pairs = [(cm_point, c), (params.opening_base, r_opening)]
    pairs.extend(zip(params.attribute_bases, r_attributes))
    opening_witness = linear_combination(pairs, Z1)

    element_witnesses = [
        linear_combination([(element, c), (base, r_attributes[0])], Z2) for base, element in statements
    ]

    return _transcript(commitment, statements, context, opening_witness, element_witnesses) == c
