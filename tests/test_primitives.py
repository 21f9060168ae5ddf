"""Tests for shared cryptographic primitives.

Includes RFC 5869 HKDF test vectors for validation.
"""

import pytest
from py_ecc.optimized_bls12_381 import b, eq, is_on_curve

from spirit_trace._primitives import (
    CURVE_ORDER,
    G1_GENERATOR,
    G1_SIZE,
    G2_GENERATOR,
    G2_SIZE,
    SCALAR_SIZE,
    challenge,
    evaluate_polynomial,
    g1_from_bytes,
    g1_to_bytes,
    g2_from_bytes,
    g2_to_bytes,
    hash_to_g1,
    hash_to_g2,
    hash_to_scalar,
    hkdf_derive,
    in_subgroup,
    lagrange_coefficient,
    mul,
    negate,
    pack,
    pairing_product_is_one,
    random_scalar,
    scalar_from_bytes,
    scalar_to_bytes,
    secure_hash,
    unpack,
)


class TestHKDF:
    """Tests for HKDF derivation including RFC 5869 test vectors."""

    def test_hkdf_derive_rfc5869_test_case_1(self) -> None:
        """RFC 5869 Test Case 1: Basic extract-then-expand."""
        ikm = bytes.fromhex("0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b")
        salt = bytes.fromhex("000102030405060708090a0b0c")
        info = bytes.fromhex("f0f1f2f3f4f5f6f7f8f9")
        expected_okm = bytes.fromhex(
            "3cb25f25faacd57a90434f64d0362f2a2d2d0a90cf1a5a4c5db02d56ecc4c5bf34007208d5b887185865"
        )

        assert hkdf_derive(ikm, info, length=42, salt=salt) == expected_okm

    def test_hkdf_derive_rfc5869_test_case_3(self) -> None:
        """RFC 5869 Test Case 3: No salt, no info."""
        ikm = bytes.fromhex("0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b0b")
        expected_okm = bytes.fromhex(
            "8da4e775a563c18f715f802a063c5a31b8a11f5c5ee1879ec3454e5f3c738d2d9d201395faa4b61a96c8"
        )

        assert hkdf_derive(ikm, b"", length=42) == expected_okm

    def test_hkdf_derive_different_info_different_output(self) -> None:
        """Different info produces different output."""
        assert hkdf_derive(b"same input", b"context-a") != hkdf_derive(b"same input", b"context-b")


class TestHashing:
    """Tests for labeled hashing and hash-to-field."""

    def test_secure_hash_length(self) -> None:
        """secure_hash produces 32 bytes."""
        assert len(secure_hash(b"data")) == 32

    def test_secure_hash_label_separates_domains(self) -> None:
        """Different labels give different digests."""
        assert secure_hash(b"data", b"a") != secure_hash(b"data", b"b")
        assert secure_hash(b"data", b"a") != secure_hash(b"data")

    def test_hash_to_scalar_deterministic_and_reduced(self) -> None:
        """hash_to_scalar is deterministic and lands in the scalar field."""
        s1 = hash_to_scalar(b"identity", b"label")
        s2 = hash_to_scalar(b"identity", b"label")
        assert s1 == s2
        assert 0 <= s1 < CURVE_ORDER

    def test_hash_to_scalar_label_matters(self) -> None:
        """The label is bound into the output."""
        assert hash_to_scalar(b"x", b"label-1") != hash_to_scalar(b"x", b"label-2")

    def test_challenge_is_length_prefixed(self) -> None:
        """Moving bytes between transcript parts changes the challenge."""
        assert challenge(b"fs", b"ab", b"c") != challenge(b"fs", b"a", b"bc")


class TestScalars:
    """Tests for scalar sampling, encoding and polynomial helpers."""

    def test_random_scalar_range(self) -> None:
        """Random scalars are non-zero and reduced."""
        for _ in range(50):
            s = random_scalar()
            assert 1 <= s < CURVE_ORDER

    def test_random_scalar_unique(self) -> None:
        """Random scalars do not repeat."""
        assert len({random_scalar() for _ in range(50)}) == 50

    def test_scalar_encoding_roundtrip(self) -> None:
        """Encoding then decoding preserves the scalar."""
        s = random_scalar()
        encoded = scalar_to_bytes(s)
        assert len(encoded) == SCALAR_SIZE
        assert scalar_from_bytes(encoded) == s

    def test_scalar_to_bytes_reduces(self) -> None:
        """Out-of-range values are reduced before encoding."""
        assert scalar_to_bytes(CURVE_ORDER + 5) == scalar_to_bytes(5)

    def test_scalar_from_bytes_rejects_wrong_length(self) -> None:
        """Wrong-length encodings are rejected."""
        with pytest.raises(ValueError, match="32 bytes"):
            scalar_from_bytes(b"\x01" * 31)

    def test_scalar_from_bytes_rejects_unreduced(self) -> None:
        """Encodings >= r are rejected."""
        with pytest.raises(ValueError, match="not reduced"):
            scalar_from_bytes(b"\xff" * SCALAR_SIZE)

    def test_evaluate_polynomial(self) -> None:
        """Polynomial evaluation uses lowest-degree-first coefficients."""
        # 3 + 2x + x^2 at x = 4
        assert evaluate_polynomial([3, 2, 1], 4) == 27

    def test_lagrange_recovers_secret_from_any_subset(self) -> None:
        """Any threshold-sized subset interpolates the constant term."""
        coefficients = [random_scalar() for _ in range(3)]
        shares = {i: evaluate_polynomial(coefficients, i) for i in range(1, 6)}

        for subset in ([1, 2, 3], [2, 4, 5], [5, 3, 1]):
            recovered = sum(lagrange_coefficient(i, subset) * shares[i] for i in subset) % CURVE_ORDER
            assert recovered == coefficients[0]

    def test_lagrange_below_threshold_fails(self) -> None:
        """Too few shares interpolate the wrong constant term."""
        coefficients = [random_scalar() for _ in range(3)]
        subset = [1, 2]
        recovered = sum(lagrange_coefficient(i, subset) * evaluate_polynomial(coefficients, i) for i in subset)
        assert recovered % CURVE_ORDER != coefficients[0]


class TestGroupEncoding:
    """Tests for point encoding and hash-to-group."""

    def test_g1_roundtrip(self) -> None:
        """Compressed G1 encoding roundtrips."""
        point = mul(G1_GENERATOR, random_scalar())
        encoded = g1_to_bytes(point)
        assert len(encoded) == G1_SIZE
        assert eq(g1_from_bytes(encoded), point)

    def test_g2_roundtrip(self) -> None:
        """Compressed G2 encoding roundtrips."""
        point = mul(G2_GENERATOR, random_scalar())
        encoded = g2_to_bytes(point)
        assert len(encoded) == G2_SIZE
        assert eq(g2_from_bytes(encoded), point)

    def test_g1_from_bytes_rejects_wrong_length(self) -> None:
        """Wrong-length G1 encodings are rejected."""
        with pytest.raises(ValueError, match="48 bytes"):
            g1_from_bytes(b"\x00" * 47)

    def test_g2_from_bytes_rejects_wrong_length(self) -> None:
        """Wrong-length G2 encodings are rejected."""
        with pytest.raises(ValueError, match="96 bytes"):
            g2_from_bytes(b"\x00" * 48)

    def test_hash_to_g1_in_subgroup(self) -> None:
        """hash_to_g1 lands on the curve in the prime-order subgroup."""
        point = hash_to_g1(b"data", b"label")
        assert is_on_curve(point, b)
        assert in_subgroup(point)

    def test_hash_to_g1_deterministic(self) -> None:
        """hash_to_g1 is deterministic and label-separated."""
        assert g1_to_bytes(hash_to_g1(b"data", b"label")) == g1_to_bytes(hash_to_g1(b"data", b"label"))
        assert g1_to_bytes(hash_to_g1(b"data", b"label")) != g1_to_bytes(hash_to_g1(b"data", b"other"))

    def test_hash_to_g2_deterministic(self) -> None:
        """hash_to_g2 is deterministic for a fixed DST."""
        dst = b"TEST-DST-BLS12381G2_XMD:SHA-256_SSWU_RO_"
        assert g2_to_bytes(hash_to_g2(b"epoch", dst)) == g2_to_bytes(hash_to_g2(b"epoch", dst))
        assert g2_to_bytes(hash_to_g2(b"epoch", dst)) != g2_to_bytes(hash_to_g2(b"other", dst))


class TestPairing:
    """Tests for the multi-pairing check."""

    def test_bilinearity(self) -> None:
        """e(a*P, Q) * e(-P, a*Q) == 1."""
        a = random_scalar()
        pairs = [
            (mul(G1_GENERATOR, a), G2_GENERATOR),
            (negate(G1_GENERATOR), mul(G2_GENERATOR, a)),
        ]
        assert pairing_product_is_one(pairs)

    def test_unbalanced_product_fails(self) -> None:
        """A mismatched scalar breaks the product."""
        a = random_scalar()
        pairs = [
            (mul(G1_GENERATOR, a), G2_GENERATOR),
            (negate(G1_GENERATOR), mul(G2_GENERATOR, a + 1)),
        ]
        assert not pairing_product_is_one(pairs)


class TestPacking:
    """Tests for fixed-size packing."""

    def test_pack_unpack(self) -> None:
        """Chunks are split back by size."""
        data = pack([b"ab", b"cde", b"f"])
        assert unpack(data, [2, 3, 1]) == [b"ab", b"cde", b"f"]

    def test_unpack_size_mismatch(self) -> None:
        """Sizes that do not add up are rejected."""
        with pytest.raises(ValueError, match="Expected 5 bytes"):
            unpack(b"abcd", [2, 3])
