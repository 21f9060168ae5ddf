"""Threshold Anonymous Credential Abstraction Layer.

A credential is only valid once at least `t` of `n` issuers have each
signed a blinded request over a hidden commitment to the user's
attributes. No single issuer can mint a credential, and issuers never see
the attributes they sign.

Attributes are always laid out as:
    - attribute 0: the user's PRF key (UserSecret)
    - attributes 1..k: identity-derived values (UserIdentity)

Issuance flow (one user, t issuers):
    1. register:          attributes -> (UserState, Commitment)
    2. token_request:     (UserState, Commitment) -> (BlindRequest, Randomizer)
    3. issue:             BlindRequest x Issuer -> PartialToken   (per issuer)
    4. aggregate_unblind: [PartialToken] x Randomizer -> Credential
    5. prove / verify:    well-formedness of the Credential against the request

Backends:
- MockCredentialScheme: For testing (scalar-field simulation, no security)
- CoconutCredentialScheme: Threshold blind PS signatures over BLS12-381
  (see credential_real)

Example:
    >>> scheme = create_credential_scheme("mock")
    >>> pp, issuers = scheme.setup(5, 5, 3, 2, 1)
    >>> state, cm = scheme.register(7, pp)
    >>> request, randomizer = scheme.token_request(state, cm, pp)
    >>> partials = [scheme.issue(request, issuer, pp) for issuer in issuers[:3]]
    >>> credential = scheme.aggregate_unblind(partials, randomizer, pp)
    >>> proof = scheme.prove(credential, randomizer, pp)
    >>> assert scheme.verify(credential, proof, request, pp).valid
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

import structlog

from spirit_trace._primitives import (
    CURVE_ORDER,
    SCALAR_SIZE,
    evaluate_polynomial,
    hash_to_scalar,
    lagrange_coefficient,
    random_scalar,
    scalar_from_bytes,
    scalar_to_bytes,
    secure_hash,
    unpack,
)
from spirit_trace.pedersen import Commitment, PedersenParameters, commit, opens, pedersen_parameters

logger = structlog.get_logger(__name__)

_LABEL_IDENTITY = b"spirit-identity-v1"

IdentityValue = Union[int, bytes, str]
Identity = Union[IdentityValue, Sequence[IdentityValue]]

# =============================================================================
# Exceptions
# =============================================================================


class CredentialError(Exception):
    """Base exception for credential operations."""

    pass


class ConfigurationError(CredentialError):
    """Raised when threshold parameters are inconsistent."""

    pass


class IssuanceError(CredentialError):
    """Raised when a blind request is malformed or an issuer refuses it."""

    pass


class AggregationError(CredentialError):
    """Raised when partial tokens cannot be combined into a credential."""

    pass


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class PublicParameters:
    """Public parameters of a threshold credential deployment.

    Attributes:
        backend: Name of the scheme that produced these parameters
        threshold: Number of partial tokens needed for a credential (t)
        num_shares: Number of key shares dealt (n)
        num_attributes: Hidden attributes per credential (PRF key + identity)
        verification_key: Backend-specific encoded aggregate verification key
    """

    backend: str
    threshold: int
    num_shares: int
    num_attributes: int
    verification_key: tuple[bytes, ...]

    @property
    def pedersen(self) -> PedersenParameters:
        return pedersen_parameters(self.num_attributes)


class Issuer:
    """One of the n credential issuers.

    Holds a Shamir share of the issuing key. The share is only read by the
    backend inside `CredentialScheme.issue` and is never rendered.
    """

    __slots__ = ("_index", "_share", "_backend")

    def __init__(self, index: int, share: Sequence[int], backend: str) -> None:
        if index < 1:
            raise ValueError(f"Issuer index must be >= 1, got {index}")
        self._index = index
        self._share = tuple(share)
        self._backend = backend

    @property
    def index(self) -> int:
        """Evaluation point of this issuer's share (1-based)."""
        return self._index

    @property
    def backend(self) -> str:
        return self._backend

    def __repr__(self) -> str:
        return f"Issuer(index={self._index}, backend={self._backend!r})"


@dataclass(frozen=True)
class UserState:
    """Per-user registration state: the hidden attributes and the opening."""

    attributes: tuple[int, ...]
    opening: int = field(repr=False)

    @property
    def secret(self) -> int:
        return self.attributes[0]

    def __repr__(self) -> str:
        return f"UserState(num_attributes={len(self.attributes)})"


@dataclass(frozen=True)
class BlindRequest:
    """A blinded issuance request.

    Attributes:
        commitment: Commitment to the user's attributes
        request_data: Backend-specific packed payload
    """

    commitment: Commitment
    request_data: bytes


@dataclass(frozen=True)
class Randomizer:
    """User-side blinding material for one request (never sent)."""

    state: UserState
    commitment: Commitment
    blinding: int = field(repr=False)


@dataclass(frozen=True)
class PartialToken:
    """One issuer's blinded partial signature."""

    issuer_index: int
    token_data: bytes


@dataclass(frozen=True)
class Signature:
    """Aggregated credential signature, backend-specific encoding."""

    value: bytes

    def hex(self) -> str:
        return self.value.hex()


@dataclass(frozen=True)
class Credential:
    """An unblinded, aggregated credential held by the user."""

    commitment: Commitment
    signature: Signature
    state: UserState


@dataclass(frozen=True)
class TokenProof:
    """Proof that a credential is well-formed relative to its request."""

    proof_data: bytes


@dataclass
class VerificationResult:
    """Result of credential verification.

    Attributes:
        valid: Whether the credential and proof verified
        verified_at: When verification was performed
        error_message: Error message if verification failed
        verification_time_ms: Time taken to verify in milliseconds
    """

    valid: bool
    verified_at: datetime = field(default_factory=datetime.now)
    error_message: str | None = None
    verification_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "valid": self.valid,
            "verified_at": self.verified_at.isoformat(),
            "error_message": self.error_message,
            "verification_time_ms": self.verification_time_ms,
        }


# =============================================================================
# Utility Functions
# =============================================================================


def _identity_scalar(value: IdentityValue) -> int:
    if isinstance(value, bool):
        raise IssuanceError("Identity values must be int, bytes or str")
    if isinstance(value, int):
        return value % CURVE_ORDER
    if isinstance(value, str):
        value = value.encode("utf-8")
    if isinstance(value, bytes):
        return hash_to_scalar(value, _LABEL_IDENTITY)
    raise IssuanceError("Identity values must be int, bytes or str")


def identity_attributes(identity: Identity, count: int) -> tuple[int, ...]:
    """Map a user identity onto `count` scalar attributes.

    Ints are used as scalars directly; bytes and str are hashed.

    Raises:
        IssuanceError: If the identity does not supply `count` values
    """
    values = list(identity) if isinstance(identity, (list, tuple)) else [identity]
    if len(values) != count:
        raise IssuanceError(f"Identity must supply {count} attribute(s), got {len(values)}")
    return tuple(_identity_scalar(v) for v in values)


def validate_threshold(
    num_issuers: int,
    num_shares: int,
    threshold: int,
    degree: int,
    num_identity_attributes: int,
) -> None:
    """Check threshold parameters for consistency.

    Raises:
        ConfigurationError: If the parameters cannot describe a t-of-n deployment
    """
    if threshold < 1:
        raise ConfigurationError(f"Threshold must be >= 1, got {threshold}")
    if threshold > num_shares:
        raise ConfigurationError(f"Threshold {threshold} exceeds number of shares {num_shares}")
    if num_issuers < threshold:
        raise ConfigurationError(f"{num_issuers} issuer(s) cannot reach threshold {threshold}")
    if num_issuers > num_shares:
        raise ConfigurationError(f"{num_issuers} issuer(s) but only {num_shares} shares")
    if degree != threshold - 1:
        raise ConfigurationError(f"Polynomial degree must be threshold - 1 = {threshold - 1}, got {degree}")
    if num_identity_attributes < 1:
        raise ConfigurationError(f"At least one identity attribute is required, got {num_identity_attributes}")


def deal_shares(num_secrets: int, degree: int, num_shares: int) -> tuple[list[int], dict[int, list[int]]]:
    """Shamir-share `num_secrets` random scalars with polynomials of `degree`.

    Returns:
        Tuple of (master secrets, shares) where shares maps each index in
        1..num_shares to its evaluations, one per secret.
    """
    polynomials = [[random_scalar() for _ in range(degree + 1)] for _ in range(num_secrets)]
    masters = [poly[0] for poly in polynomials]
    shares = {i: [evaluate_polynomial(poly, i) for poly in polynomials] for i in range(1, num_shares + 1)}
    return masters, shares


def check_partials(partials: Sequence[PartialToken], pp: PublicParameters) -> list[int]:
    """Validate a set of partial tokens and return their issuer indices.

    Raises:
        AggregationError: On fewer than t partials, duplicates or bad indices
    """
    indices = [p.issuer_index for p in partials]
    if len(indices) < pp.threshold:
        raise AggregationError(f"Need {pp.threshold} partial tokens, got {len(indices)}")
    if len(set(indices)) != len(indices):
        raise AggregationError("Partial tokens must come from distinct issuers")
    for index in indices:
        if not 1 <= index <= pp.num_shares:
            raise AggregationError(f"Issuer index {index} out of range 1..{pp.num_shares}")
    return indices


# =============================================================================
# Abstract Interface
# =============================================================================


class CredentialScheme(ABC):
    """Abstract threshold anonymous-credential scheme.

    Backends are stateless: all key material lives in PublicParameters and
    Issuer objects, so one scheme instance can serve concurrent sessions.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name recorded in PublicParameters."""
        pass

    @abstractmethod
    def setup(
        self,
        num_issuers: int,
        num_shares: int,
        threshold: int,
        degree: int,
        num_identity_attributes: int,
    ) -> tuple[PublicParameters, list[Issuer]]:
        """Deal issuing keys for a t-of-n deployment.

        Args:
            num_issuers: Issuers to materialize (the first shares)
            num_shares: Total shares dealt (n)
            threshold: Partial tokens required (t)
            degree: Sharing polynomial degree (must be t - 1)
            num_identity_attributes: Identity attributes besides the PRF key

        Returns:
            Tuple of (public parameters, issuers)

        Raises:
            ConfigurationError: If the parameters are inconsistent
        """
        pass

    def register(
        self,
        identity: Identity,
        pp: PublicParameters,
        secret: int | None = None,
    ) -> tuple[UserState, Commitment]:
        """Derive registration state and commit to it.

        Args:
            identity: The user's identity input
            pp: Public parameters
            secret: PRF key to certify; sampled when omitted

        Returns:
            Tuple of (UserState, Commitment)

        Raises:
            IssuanceError: If the identity is malformed
        """
        if secret is None:
            secret = random_scalar()
        attributes = (secret % CURVE_ORDER,) + identity_attributes(identity, pp.num_attributes - 1)
        opening = random_scalar()
        commitment = commit(pp.pedersen, attributes, opening)
        return UserState(attributes=attributes, opening=opening), commitment

    @abstractmethod
    def token_request(
        self,
        state: UserState,
        commitment: Commitment,
        pp: PublicParameters,
    ) -> tuple[BlindRequest, Randomizer]:
        """Blind the committed attributes for issuance.

        Raises:
            IssuanceError: If the state does not match the commitment
        """
        pass

    @abstractmethod
    def issue(self, request: BlindRequest, issuer: Issuer, pp: PublicParameters) -> PartialToken:
        """Produce one issuer's partial blind token.

        Raises:
            IssuanceError: If the request is malformed or fails its proof
        """
        pass

    @abstractmethod
    def aggregate_unblind(
        self,
        partials: Sequence[PartialToken],
        randomizer: Randomizer,
        pp: PublicParameters,
    ) -> Credential:
        """Unblind and combine at least t partial tokens.

        Raises:
            AggregationError: If the partials cannot be combined
        """
        pass

    @abstractmethod
    def prove(self, credential: Credential, randomizer: Randomizer, pp: PublicParameters) -> TokenProof:
        """Prove the credential is well-formed."""
        pass

    @abstractmethod
    def verify(
        self,
        credential: Credential,
        proof: TokenProof,
        request: BlindRequest,
        pp: PublicParameters,
    ) -> VerificationResult:
        """Verify a credential against the request it was issued for."""
        pass

    def _check_backend(self, pp: PublicParameters, issuer: Issuer | None = None) -> None:
        if pp.backend != self.name:
            raise CredentialError(f"Parameters belong to backend {pp.backend!r}, not {self.name!r}")
        if issuer is not None and issuer.backend != self.name:
            raise IssuanceError(f"Issuer belongs to backend {issuer.backend!r}, not {self.name!r}")


# =============================================================================
# Mock Implementation
# =============================================================================

_LABEL_MOCK_MESSAGE = b"spirit-mock-message-v1"
_LABEL_MOCK_REQUEST = b"spirit-mock-request-v1"
_LABEL_MOCK_PROOF = b"spirit-mock-proof-v1"


class MockCredentialScheme(CredentialScheme):
    """Mock credential scheme for testing.

    Simulates threshold issuance in the scalar field: the issuing key x is
    Shamir-shared, a request is the blinded message H(cm) * r, each issuer
    returns x_i * H(cm) * r and the user unblinds and Lagrange-combines to
    x * H(cm). Threshold behaviour is real (fewer than t shares give a wrong
    signature), but the master key sits in the public parameters, so it
    provides NO security - use only for testing.
    """

    @property
    def name(self) -> str:
        return "mock"

    def setup(
        self,
        num_issuers: int,
        num_shares: int,
        threshold: int,
        degree: int,
        num_identity_attributes: int,
    ) -> tuple[PublicParameters, list[Issuer]]:
        """Deal a single Shamir-shared MAC key."""
        validate_threshold(num_issuers, num_shares, threshold, degree, num_identity_attributes)
        masters, shares = deal_shares(1, degree, num_shares)
        pp = PublicParameters(
            backend=self.name,
            threshold=threshold,
            num_shares=num_shares,
            num_attributes=1 + num_identity_attributes,
            verification_key=(scalar_to_bytes(masters[0]),),
        )
        issuers = [Issuer(i, shares[i], self.name) for i in range(1, num_issuers + 1)]
        return pp, issuers

    def token_request(
        self,
        state: UserState,
        commitment: Commitment,
        pp: PublicParameters,
    ) -> tuple[BlindRequest, Randomizer]:
        self._check_backend(pp)
        if not opens(pp.pedersen, commitment, state.attributes, state.opening):
            raise IssuanceError("Registration state does not open the commitment")
        blinding = random_scalar()
        message = hash_to_scalar(commitment.value, _LABEL_MOCK_MESSAGE)
        blinded = scalar_to_bytes(message * blinding)
        binding = secure_hash(blinded + commitment.value, _LABEL_MOCK_REQUEST)
        request = BlindRequest(commitment=commitment, request_data=blinded + binding)
        return request, Randomizer(state=state, commitment=commitment, blinding=blinding)

    def issue(self, request: BlindRequest, issuer: Issuer, pp: PublicParameters) -> PartialToken:
        self._check_backend(pp, issuer)
        try:
            blinded_bytes, binding = unpack(request.request_data, [SCALAR_SIZE, 32])
            blinded = scalar_from_bytes(blinded_bytes)
        except ValueError as e:
            raise IssuanceError(f"Malformed blind request: {e}") from e
        if binding != secure_hash(blinded_bytes + request.commitment.value, _LABEL_MOCK_REQUEST):
            logger.info("blind_request_rejected", issuer_index=issuer.index)
            raise IssuanceError("Blind request binding check failed")
        (x_i,) = issuer._share
        return PartialToken(issuer_index=issuer.index, token_data=scalar_to_bytes(x_i * blinded))

    def aggregate_unblind(
        self,
        partials: Sequence[PartialToken],
        randomizer: Randomizer,
        pp: PublicParameters,
    ) -> Credential:
        self._check_backend(pp)
        indices = check_partials(partials, pp)
        unblind = pow(randomizer.blinding, -1, CURVE_ORDER)
        total = 0
        for partial in partials:
            try:
                value = scalar_from_bytes(partial.token_data)
            except ValueError as e:
                raise AggregationError(f"Malformed partial token: {e}") from e
            total += lagrange_coefficient(partial.issuer_index, indices) * value
        signature = Signature(value=scalar_to_bytes(total * unblind))
        return Credential(commitment=randomizer.commitment, signature=signature, state=randomizer.state)

    def prove(self, credential: Credential, randomizer: Randomizer, pp: PublicParameters) -> TokenProof:
        self._check_backend(pp)
        digest = secure_hash(credential.signature.value + credential.commitment.value, _LABEL_MOCK_PROOF)
        return TokenProof(proof_data=digest)

    def verify(
        self,
        credential: Credential,
        proof: TokenProof,
        request: BlindRequest,
        pp: PublicParameters,
    ) -> VerificationResult:
        """Check the signature against the master key and the request."""
        start_time = time.time()
        error = None
        x = scalar_from_bytes(pp.verification_key[0])
        expected = scalar_to_bytes(x * hash_to_scalar(request.commitment.value, _LABEL_MOCK_MESSAGE))

        if credential.commitment != request.commitment:
            error = "Credential commitment does not match request"
        elif not opens(pp.pedersen, credential.commitment, credential.state.attributes, credential.state.opening):
            error = "Credential state does not open the commitment"
        elif credential.signature.value != expected:
            error = "Signature verification failed"
        elif proof.proof_data != secure_hash(
            credential.signature.value + credential.commitment.value, _LABEL_MOCK_PROOF
        ):
            error = "Token proof mismatch"

        return VerificationResult(
            valid=error is None,
            error_message=error,
            verification_time_ms=(time.time() - start_time) * 1000,
        )


# =============================================================================
# Factory
# =============================================================================


def create_credential_scheme(backend: str = "coconut") -> CredentialScheme:
    """Create a credential scheme.

    Args:
        backend: "mock" for testing, "coconut" for real crypto

    Returns:
        CredentialScheme instance
    """
    if backend == "mock":
        return MockCredentialScheme()
    elif backend == "coconut":
        from spirit_trace.credential_real import CoconutCredentialScheme

        return CoconutCredentialScheme()
    else:
        raise ValueError(f"Unknown credential backend: {backend!r}. Use 'mock' or 'coconut'.")
