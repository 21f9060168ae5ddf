"""Tests for registry, exposure table and confirmed-set state."""

import threading

import pytest

from spirit_trace._primitives import G1_GENERATOR, g1_to_bytes, mul, random_scalar
from spirit_trace.credential import Signature
from spirit_trace.pedersen import Commitment
from spirit_trace.prf import evaluate
from spirit_trace.state import ConfirmedSet, ExposureTable, Token, TokenRegistry


def _token() -> Token:
    commitment = Commitment(value=g1_to_bytes(mul(G1_GENERATOR, random_scalar())))
    return Token(commitment=commitment, signature=Signature(value=b"\x01" * 32))


@pytest.fixture
def key() -> int:
    return random_scalar()


class TestToken:
    """Tests for the Token value type."""

    def test_structural_equality(self) -> None:
        """Tokens with equal bytes are equal and hash alike."""
        token = _token()
        copy = Token(commitment=Commitment(value=token.commitment.value), signature=Signature(value=b"\x01" * 32))
        assert token == copy
        assert hash(token) == hash(copy)

    def test_dict_roundtrip(self) -> None:
        """to_dict / from_dict roundtrip."""
        token = _token()
        assert Token.from_dict(token.to_dict()) == token

    def test_to_bytes(self) -> None:
        """to_bytes concatenates commitment and signature."""
        token = _token()
        assert token.to_bytes() == token.commitment.value + token.signature.value


class TestTokenRegistry:
    """Tests for the append-only registry."""

    def test_add_and_contains(self) -> None:
        """Added tokens are members."""
        registry = TokenRegistry()
        token = _token()

        assert registry.add(token)
        assert token in registry
        assert len(registry) == 1
        assert registry.version == 1

    def test_duplicate_add(self) -> None:
        """Re-adding a token is a no-op."""
        registry = TokenRegistry()
        token = _token()
        registry.add(token)

        assert not registry.add(token)
        assert len(registry) == 1
        assert registry.version == 1

    def test_snapshot_is_immutable(self) -> None:
        """Snapshots do not change after later insertions."""
        registry = TokenRegistry()
        registry.add(_token())
        snapshot = registry.snapshot()
        registry.add(_token())

        assert isinstance(snapshot, frozenset)
        assert len(snapshot) == 1
        assert len(registry) == 2

    def test_no_removal_api(self) -> None:
        """The registry exposes no way to remove tokens."""
        registry = TokenRegistry()
        for name in ("remove", "discard", "pop", "clear"):
            assert not hasattr(registry, name)

    def test_from_tokens(self) -> None:
        """A registry reloads from an unordered token collection."""
        tokens = {_token(), _token(), _token()}
        registry = TokenRegistry.from_tokens(tokens)
        assert registry.snapshot() == frozenset(tokens)

    def test_concurrent_adds(self) -> None:
        """Concurrent writers never lose insertions."""
        registry = TokenRegistry()
        tokens = [_token() for _ in range(40)]

        def worker(chunk):
            for token in chunk:
                registry.add(token)

        threads = [threading.Thread(target=worker, args=(tokens[i::4],)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 40
        assert registry.version == 40


class TestExposureTable:
    """Tests for the per-user exposure table."""

    def test_record(self, key: int) -> None:
        """Recorded pseudonyms map to their salt."""
        table = ExposureTable()
        pseudonym = evaluate(key, 1)
        table.record(pseudonym, 99)

        assert table[pseudonym] == 99
        assert pseudonym in table
        assert len(table) == 1

    def test_rerecord_replaces_salt(self, key: int) -> None:
        """Recording the same pseudonym keeps one entry."""
        table = ExposureTable()
        pseudonym = evaluate(key, 1)
        table.record(pseudonym, 1)
        table.record(pseudonym, 2)

        assert len(table) == 1
        assert table[pseudonym] == 2


class TestConfirmedSet:
    """Tests for the immutable confirmed set."""

    def test_with_added_returns_new_set(self, key: int) -> None:
        """Adding returns a new, larger set and leaves the original intact."""
        original = ConfirmedSet()
        pseudonym = evaluate(key, 1)
        updated = original.with_added([pseudonym])

        assert pseudonym in updated
        assert pseudonym not in original
        assert updated.version == original.version + 1

    def test_with_added_nothing_new(self, key: int) -> None:
        """Adding known pseudonyms returns the same set."""
        confirmed = ConfirmedSet.from_pseudonyms([evaluate(key, 1)])
        assert confirmed.with_added([evaluate(key, 1)]) is confirmed

    def test_monotone(self, key: int) -> None:
        """Existing members survive every update."""
        first = ConfirmedSet.from_pseudonyms([evaluate(key, 1)])
        second = first.with_added([evaluate(key, 2)])
        assert first.pseudonyms <= second.pseudonyms

    def test_dict_roundtrip(self, key: int) -> None:
        """to_dict / from_dict roundtrip."""
        confirmed = ConfirmedSet().with_added([evaluate(key, 1), evaluate(key, 2)])
        assert ConfirmedSet.from_dict(confirmed.to_dict()) == confirmed
