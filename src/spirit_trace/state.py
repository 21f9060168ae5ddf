"""Protocol state: the public token registry, a user's exposure table and
the verifier's confirmed-exposed pseudonym set.

Discipline:
- TokenRegistry is append-only. Writers serialize on a lock; readers take
  immutable snapshots. There is no removal API.
- ConfirmedSet is an immutable, versioned value. Updates return a new set,
  so concurrent readers never observe a partial write.
- ExposureTable is owned by a single user and never shared.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from spirit_trace.credential import Signature
from spirit_trace.pedersen import Commitment
from spirit_trace.prf import Pseudonym


@dataclass(frozen=True)
class Token:
    """The public anonymous credential: (commitment, signature).

    Equality and hashing are structural over the encoded bytes, which makes
    a Token usable as a registry key.
    """

    commitment: Commitment
    signature: Signature

    def to_bytes(self) -> bytes:
        return self.commitment.value + self.signature.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "commitment": self.commitment.hex(),
            "signature": self.signature.hex(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        """Create from dictionary."""
        return cls(
            commitment=Commitment(value=bytes.fromhex(data["commitment"])),
            signature=Signature(value=bytes.fromhex(data["signature"])),
        )


class TokenRegistry:
    """Append-only registry of legitimately issued Tokens."""

    def __init__(self) -> None:
        self._tokens: set[Token] = set()
        self._version = 0
        self._lock = threading.Lock()

    @classmethod
    def from_tokens(cls, tokens: Iterable[Token]) -> TokenRegistry:
        """Reload a registry from persisted tokens (order is irrelevant)."""
        registry = cls()
        for token in tokens:
            registry.add(token)
        return registry

    def add(self, token: Token) -> bool:
        """Insert a token. Returns False if it was already registered."""
        with self._lock:
            if token in self._tokens:
                return False
            self._tokens.add(token)
            self._version += 1
            return True

    def snapshot(self) -> frozenset[Token]:
        with self._lock:
            return frozenset(self._tokens)

    @property
    def version(self) -> int:
        """Number of successful insertions so far."""
        return self._version

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)

    def __iter__(self) -> Iterator[Token]:
        return iter(self.snapshot())

    def __repr__(self) -> str:
        return f"TokenRegistry(size={len(self)}, version={self._version})"


class ExposureTable(Mapping[Pseudonym, int]):
    """A user's local broadcast history: pseudonym -> salt.

    One entry per broadcast epoch. Recording the same pseudonym again
    replaces its salt.
    """

    def __init__(self, entries: Mapping[Pseudonym, int] | None = None) -> None:
        self._entries: dict[Pseudonym, int] = dict(entries or {})

    def record(self, pseudonym: Pseudonym, salt: int) -> None:
        self._entries[pseudonym] = salt

    def __getitem__(self, pseudonym: Pseudonym) -> int:
        return self._entries[pseudonym]

    def __iter__(self) -> Iterator[Pseudonym]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ExposureTable(size={len(self)})"


@dataclass(frozen=True)
class ConfirmedSet:
    """Immutable, versioned set of confirmed-exposed pseudonyms.

    Attributes:
        pseudonyms: The confirmed pseudonyms
        version: Incremented on every update that adds pseudonyms
    """

    pseudonyms: frozenset[Pseudonym] = field(default_factory=frozenset)
    version: int = 0

    @classmethod
    def from_pseudonyms(cls, pseudonyms: Iterable[Pseudonym]) -> ConfirmedSet:
        return cls(pseudonyms=frozenset(pseudonyms))

    def with_added(self, pseudonyms: Iterable[Pseudonym]) -> ConfirmedSet:
        """Return a new set with `pseudonyms` added (self if nothing is new)."""
        added = frozenset(pseudonyms) - self.pseudonyms
        if not added:
            return self
        return ConfirmedSet(pseudonyms=self.pseudonyms | added, version=self.version + 1)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "pseudonyms": sorted(p.to_hex() for p in self.pseudonyms),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfirmedSet:
        """Create from dictionary."""
        return cls(
            pseudonyms=frozenset(Pseudonym.from_hex(p) for p in data["pseudonyms"]),
            version=data.get("version", 0),
        )

    def __contains__(self, pseudonym: object) -> bool:
        return pseudonym in self.pseudonyms

    def __len__(self) -> int:
        return len(self.pseudonyms)

    def __iter__(self) -> Iterator[Pseudonym]:
        return iter(self.pseudonyms)
