"""Tests for the pseudonym PRF."""

import pytest

from spirit_trace._primitives import G2_SIZE, random_scalar
from spirit_trace.prf import Pseudonym, epoch_base, evaluate


class TestEvaluate:
    """Tests for PRF evaluation."""

    def test_deterministic(self) -> None:
        """Same key and epoch give the same pseudonym."""
        key = random_scalar()
        assert evaluate(key, 10) == evaluate(key, 10)

    def test_epochs_unlinkable_by_value(self) -> None:
        """Different epochs give different pseudonyms."""
        key = random_scalar()
        assert evaluate(key, 10) != evaluate(key, 11)

    def test_keys_differ(self) -> None:
        """Different keys give different pseudonyms for one epoch."""
        assert evaluate(random_scalar(), 10) != evaluate(random_scalar(), 10)

    def test_output_size(self) -> None:
        """Pseudonyms are compressed G2 elements."""
        assert len(evaluate(random_scalar(), 0).value) == G2_SIZE

    def test_epoch_bounds(self) -> None:
        """The full unsigned 64-bit range is accepted."""
        key = random_scalar()
        evaluate(key, 0)
        evaluate(key, 2**64 - 1)
        with pytest.raises(ValueError):
            evaluate(key, -1)
        with pytest.raises(ValueError):
            evaluate(key, 2**64)

    def test_epoch_type(self) -> None:
        """Non-integer epochs are rejected."""
        with pytest.raises(TypeError):
            evaluate(random_scalar(), "5")
        with pytest.raises(TypeError):
            evaluate(random_scalar(), True)

    def test_epoch_base_is_shared(self) -> None:
        """Every user's pseudonym for an epoch uses the same base."""
        assert epoch_base(3) is epoch_base(3)


class TestPseudonym:
    """Tests for the Pseudonym value type."""

    def test_hex_roundtrip(self) -> None:
        """to_hex / from_hex roundtrip."""
        pseudonym = evaluate(random_scalar(), 1)
        assert Pseudonym.from_hex(pseudonym.to_hex()) == pseudonym

    def test_hashable(self) -> None:
        """Pseudonyms work as set members."""
        key = random_scalar()
        assert len({evaluate(key, 1), evaluate(key, 1), evaluate(key, 2)}) == 2

    def test_length_checked(self) -> None:
        """Wrong-length values are rejected."""
        with pytest.raises(ValueError, match="96 bytes"):
            Pseudonym(value=b"\x00" * 48)

    def test_repr_is_short(self) -> None:
        """repr shows only a prefix."""
        pseudonym = evaluate(random_scalar(), 1)
        assert pseudonym.to_hex() not in repr(pseudonym)
