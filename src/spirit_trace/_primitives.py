"""Shared cryptographic primitives for the protocol and credential backends.

Thin wrappers around py_ecc's optimized BLS12-381 arithmetic and the
`cryptography` library's HKDF/SHA-256, giving consistent interfaces for
scalar sampling, hash-to-field, hash-to-group, point encoding and the
multi-pairing check used by credential verification.

Points are py_ecc optimized (projective) tuples. Anything that crosses a
trust boundary is carried as compressed bytes (48 bytes in G1, 96 bytes in
G2) and decoded with subgroup checks.
"""

from __future__ import annotations

import hashlib
import secrets as crypto_secrets
from collections.abc import Iterable, Sequence
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from py_ecc.bls.g2_primitives import G1_to_pubkey, G2_to_signature, pubkey_to_G1, signature_to_G2
from py_ecc.bls.hash_to_curve import hash_to_G2
from py_ecc.optimized_bls12_381 import (
    FQ,
    FQ12,
    G1,
    G2,
    add,
    b,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    pairing,
)

# Encoded sizes
G1_SIZE = 48
G2_SIZE = 96
SCALAR_SIZE = 32

# Order of the scalar field (r)
CURVE_ORDER = curve_order

# G1 cofactor for BLS12-381
_G1_COFACTOR = 0x396C8C005555E1568C00AAAB0000AAAB
# Wide reduction: 64 bytes keeps the bias below 2^-128
_WIDE_HASH_LEN = 64
_LABEL_CHALLENGE = b"spirit-fs-challenge-v1"

G1_GENERATOR = G1
G2_GENERATOR = G2

Point = Any


def hkdf_derive(ikm: bytes, info: bytes, length: int = 32, salt: bytes | None = None) -> bytes:
    """Derive key material using HKDF (extract-then-expand).

    Args:
        ikm: Input keying material
        info: Context and application specific information
        length: Length of output keying material in bytes
        salt: Optional salt value (a non-secret random value)

    Returns:
        Derived key material of the specified length
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(ikm)


def secure_hash(data: bytes, label: bytes = b"") -> bytes:
    """Compute a labeled SHA-256 hash.

    Args:
        data: Data to hash
        label: Optional domain separation label

    Returns:
        32-byte hash
    """
    h = hashes.Hash(hashes.SHA256())
    if label:
        h.update(label)
        h.update(b"\x00")  # separator
    h.update(data)
    return h.finalize()


# =============================================================================
# Scalars
# =============================================================================


def random_scalar() -> int:
    """Sample a uniformly random non-zero scalar from a CSPRNG."""
    return crypto_secrets.randbelow(CURVE_ORDER - 1) + 1


def hash_to_scalar(data: bytes, label: bytes) -> int:
    """Hash bytes to a scalar with HKDF-SHA256 and wide modular reduction."""
    okm = hkdf_derive(data, label, length=_WIDE_HASH_LEN)
    return int.from_bytes(okm, "big") % CURVE_ORDER


def scalar_to_bytes(value: int) -> bytes:
    return (value % CURVE_ORDER).to_bytes(SCALAR_SIZE, "big")


def scalar_from_bytes(data: bytes) -> int:
    """Decode a 32-byte big-endian scalar.

    Raises:
        ValueError: If the encoding has the wrong length or is not reduced
    """
    if len(data) != SCALAR_SIZE:
        raise ValueError(f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}")
    value = int.from_bytes(data, "big")
    if value >= CURVE_ORDER:
        raise ValueError("Scalar encoding is not reduced")
    return value


def lagrange_coefficient(index: int, indices: Sequence[int]) -> int:
    """Lagrange basis coefficient at x = 0 for `index` over `indices`."""
    numerator = 1
    denominator = 1
    for other in indices:
        if other == index:
            continue
        numerator = (numerator * other) % CURVE_ORDER
        denominator = (denominator * (other - index)) % CURVE_ORDER
    return (numerator * pow(denominator, -1, CURVE_ORDER)) % CURVE_ORDER


def evaluate_polynomial(coefficients: Sequence[int], x: int) -> int:
    """Evaluate a polynomial (lowest degree first) at x over the scalar field."""
    result = 0
    for coefficient in reversed(coefficients):
        result = (result * x + coefficient) % CURVE_ORDER
    return result


# =============================================================================
# Group arithmetic
# =============================================================================


def mul(point: Point, scalar: int) -> Point:
    """Scalar multiplication, reducing the scalar into [0, r)."""
    return multiply(point, scalar % CURVE_ORDER)


def add_all(points: Iterable[Point], zero: Point) -> Point:
    total = zero
    for point in points:
        total = add(total, point)
    return total


def linear_combination(pairs: Iterable[tuple[Point, int]], zero: Point) -> Point:
    """Compute sum(scalar * point) for (point, scalar) pairs."""
    return add_all((mul(point, scalar) for point, scalar in pairs), zero)


def hash_to_g1(data: bytes, label: bytes) -> Point:
    """Hash bytes to a G1 point of unknown discrete logarithm.

    Try-and-increment: derive a candidate x coordinate, accept it when
    x^3 + 4 is a square in Fp (p = 3 mod 4, so the root is a single
    exponentiation), then clear the cofactor.
    """
    counter = 0
    while True:
        digest = hkdf_derive(data + counter.to_bytes(4, "big"), label, length=_WIDE_HASH_LEN)
        x = FQ(int.from_bytes(digest, "big") % field_modulus)
        rhs = x**3 + b
        y = rhs ** ((field_modulus + 1) // 4)
        if y * y == rhs:
            point = multiply((x, y, FQ.one()), _G1_COFACTOR)
            if not is_inf(point):
                return point
        counter += 1


def hash_to_g2(data: bytes, dst: bytes) -> Point:
    """RFC 9380 hash-to-curve into G2 (SSWU, XMD:SHA-256)."""
    return hash_to_G2(data, dst, hashlib.sha256)


def in_subgroup(point: Point) -> bool:
    return is_inf(multiply(point, CURVE_ORDER))


def g1_to_bytes(point: Point) -> bytes:
    return bytes(G1_to_pubkey(point))


def g2_to_bytes(point: Point) -> bytes:
    return bytes(G2_to_signature(point))


def g1_from_bytes(data: bytes) -> Point:
    """Decode a compressed G1 point.

    Raises:
        ValueError: If the encoding is not a point of the prime-order subgroup
    """
    if len(data) != G1_SIZE:
        raise ValueError(f"G1 element must be {G1_SIZE} bytes, got {len(data)}")
    point = pubkey_to_G1(data)
    if not is_inf(point) and not (is_on_curve(point, b) and in_subgroup(point)):
        raise ValueError("Not a G1 subgroup element")
    return point


def g2_from_bytes(data: bytes) -> Point:
    """Decode a compressed G2 point.

    Raises:
        ValueError: If the encoding is not a point of the prime-order subgroup
    """
    if len(data) != G2_SIZE:
        raise ValueError(f"G2 element must be {G2_SIZE} bytes, got {len(data)}")
    point = signature_to_G2(data)
    if not is_inf(point) and not in_subgroup(point):
        raise ValueError("Not a G2 subgroup element")
    return point


def pairing_product_is_one(pairs: Iterable[tuple[Point, Point]]) -> bool:
    """Check prod e(P_i, Q_i) == 1 for (G1, G2) pairs.

    Miller loops are multiplied together and a single final exponentiation
    is applied to the product.
    """
    product = FQ12.one()
    for p1, q2 in pairs:
        product = product * pairing(q2, p1, final_exponentiate=False)
    return final_exponentiate(product) == FQ12.one()


def negate(point: Point) -> Point:
    return neg(point)


# =============================================================================
# Fiat-Shamir and packing
# =============================================================================


def challenge(label: bytes, *parts: bytes) -> int:
    """Fiat-Shamir challenge over length-prefixed transcript parts."""
    h = hashes.Hash(hashes.SHA256())
    h.update(label)
    for part in parts:
        h.update(len(part).to_bytes(4, "big"))
        h.update(part)
    return hash_to_scalar(h.finalize(), _LABEL_CHALLENGE)


def pack(chunks: Iterable[bytes]) -> bytes:
    return b"".join(chunks)


def unpack(data: bytes, sizes: Sequence[int]) -> list[bytes]:
    """Split `data` into chunks of the given sizes.

    Raises:
        ValueError: If the sizes do not add up to len(data)
    """
    if sum(sizes) != len(data):
        raise ValueError(f"Expected {sum(sizes)} bytes, got {len(data)}")
    chunks = []
    offset = 0
    for size in sizes:
        chunks.append(data[offset : offset + size])
        offset += size
    return chunks
