"""SPIRIT contact-tracing protocol.

Six phases built on the credential, commitment and PRF modules:

    setup          -> public parameters, t-of-n issuers, empty registry
    register       -> a Token published to the registry, private Holding kept
    broadcast      -> per-epoch pseudonym recorded in the user's ExposureTable
    diagnose       -> TraceReport disclosing the pseudonyms of chosen epochs
    verify_report  -> accepted pseudonyms merged into the ConfirmedSet
    trace          -> overlap between ConfirmedSet and ExposureTable

Registration requires t distinct issuers to sign a blinded request, so one
identity cannot cheaply mint many tokens (Sybil resistance), and a report
is only accepted when its token is registered and its proof ties every
disclosed pseudonym to the token's hidden PRF key.

Example:
    >>> result = setup(3, 5, 5, backend="mock")
    >>> reg = register("alice", result.issuers, result.parameters, result.registry)
    >>> table = ExposureTable()
    >>> table = broadcast(42, reg.holding.secret, table)
    >>> report = diagnose(reg.holding, reg.holding.secret, [42])
    >>> confirmed, accepted = verify_report(report, result.registry, ConfirmedSet())
    >>> trace(confirmed, table, 1).alarm
    True
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, NamedTuple

import structlog

from spirit_trace import prf
from spirit_trace._primitives import G2_GENERATOR, g2_to_bytes, mul, random_scalar
from spirit_trace.config import SpiritSettings, get_settings
from spirit_trace.credential import (
    CredentialError,
    Identity,
    Issuer,
    PublicParameters,
    create_credential_scheme,
)
from spirit_trace.pedersen import (
    DisclosureError,
    DisclosureProof,
    pedersen_parameters,
    prove_disclosure,
    verify_disclosure,
)
from spirit_trace.prf import Pseudonym
from spirit_trace.state import ConfirmedSet, ExposureTable, Token, TokenRegistry

logger = structlog.get_logger(__name__)

NUM_IDENTITY_ATTRIBUTES = 1

# =============================================================================
# Types
# =============================================================================


class SetupResult(NamedTuple):
    """Everything produced by system setup."""

    parameters: PublicParameters
    issuers: list[Issuer]
    generator: bytes
    scalar: int
    registry: TokenRegistry


@dataclass(frozen=True, repr=False)
class Holding:
    """A user's private registration material. Never published.

    Attributes:
        token: The registered public token
        identity: The identity the credential was issued over
        attributes: Committed attributes (PRF key first)
        opening: Commitment opening
    """

    token: Token
    identity: Identity
    attributes: tuple[int, ...]
    opening: int

    @property
    def secret(self) -> int:
        """The PRF key certified by the token."""
        return self.attributes[0]

    def __repr__(self) -> str:
        return f"Holding(commitment={self.token.commitment.hex()[:16]}...)"


class Registration(NamedTuple):
    """Successful registration output."""

    token: Token
    holding: Holding
    registry_snapshot: frozenset[Token]


@dataclass(frozen=True)
class Disclosure:
    """One disclosed (epoch, pseudonym) pair."""

    epoch: int
    pseudonym: Pseudonym


@dataclass(frozen=True)
class TraceReport:
    """A diagnosed user's upload.

    Attributes:
        token: The reporter's registered token
        proof: Proof binding every pseudonym to the token's commitment
        disclosures: Disclosed epochs with their pseudonyms, epoch-ordered
    """

    token: Token
    proof: DisclosureProof
    disclosures: tuple[Disclosure, ...]

    @property
    def pseudonyms(self) -> frozenset[Pseudonym]:
        return frozenset(d.pseudonym for d in self.disclosures)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "token": self.token.to_dict(),
            "proof": self.proof.to_dict(),
            "disclosures": [{"epoch": d.epoch, "pseudonym": d.pseudonym.to_hex()} for d in self.disclosures],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TraceReport:
        """Create from dictionary."""
        return cls(
            token=Token.from_dict(data["token"]),
            proof=DisclosureProof.from_dict(data["proof"]),
            disclosures=tuple(
                Disclosure(epoch=d["epoch"], pseudonym=Pseudonym.from_hex(d["pseudonym"]))
                for d in data["disclosures"]
            ),
        )


class TraceResult(NamedTuple):
    """Outcome of a local exposure check."""

    match_count: int
    alarm: bool


# =============================================================================
# Setup
# =============================================================================


def setup(threshold: int, num_shares: int, num_issuers: int, *, backend: str = "coconut") -> SetupResult:
    """Create public parameters and t-of-n issuers.

    Args:
        threshold: Partial tokens needed for a credential (t)
        num_shares: Key shares dealt (n)
        num_issuers: Issuers to materialize, between t and n
        backend: Credential backend name

    Returns:
        SetupResult with an empty registry

    Raises:
        ConfigurationError: If the threshold parameters are inconsistent
    """
    scheme = create_credential_scheme(backend)
    parameters, issuers = scheme.setup(num_issuers, num_shares, threshold, threshold - 1, NUM_IDENTITY_ATTRIBUTES)
    generator = g2_to_bytes(mul(G2_GENERATOR, random_scalar()))
    logger.info(
        "system_setup_complete",
        backend=backend,
        threshold=threshold,
        num_shares=num_shares,
        num_issuers=num_issuers,
    )
    return SetupResult(
        parameters=parameters,
        issuers=issuers,
        generator=generator,
        scalar=random_scalar(),
        registry=TokenRegistry(),
    )


def setup_from_settings(settings: SpiritSettings) -> SetupResult:
    return setup(
        settings.threshold,
        settings.num_shares,
        settings.num_issuers,
        backend=settings.credential_backend,
    )


# =============================================================================
# Registration
# =============================================================================


def generate_user_secret() -> int:
    """Sample a fresh PRF key."""
    return random_scalar()


def register(
    identity: Identity,
    issuers: Sequence[Issuer],
    pp: PublicParameters,
    registry: TokenRegistry,
    *,
    secret: int | None = None,
) -> Registration | None:
    """Obtain a threshold credential and publish its token.

    Exactly the first t issuers are asked, in order. The first refusal aborts
    the attempt; no other issuer is substituted.

    Args:
        identity: The user's identity
        issuers: Issuers to contact
        pp: Public parameters
        registry: Registry to publish the token into
        secret: PRF key to certify; sampled when omitted

    Returns:
        Registration on success, None if any step failed (registry unchanged)
    """
    scheme = create_credential_scheme(pp.backend)
    if secret is None:
        secret = generate_user_secret()

    try:
        state, commitment = scheme.register(identity, pp, secret)
        request, randomizer = scheme.token_request(state, commitment, pp)
        partials = [scheme.issue(request, issuer, pp) for issuer in issuers[: pp.threshold]]
        credential = scheme.aggregate_unblind(partials, randomizer, pp)
        proof = scheme.prove(credential, randomizer, pp)
        result = scheme.verify(credential, proof, request, pp)
    except CredentialError as e:
        logger.info("registration_failed", error_type=type(e).__name__)
        return None

    if not result.valid:
        logger.info("registration_failed", error_type="VerificationFailed")
        return None

    token = Token(commitment=credential.commitment, signature=credential.signature)
    registry.add(token)
    holding = Holding(token=token, identity=identity, attributes=state.attributes, opening=state.opening)
    logger.info("token_registered", registry_version=registry.version)
    return Registration(token=token, holding=holding, registry_snapshot=registry.snapshot())


def register_with_retry(
    identity: Identity,
    issuers: Sequence[Issuer],
    pp: PublicParameters,
    registry: TokenRegistry,
    *,
    attempts: int | None = None,
    secret: int | None = None,
) -> Registration | None:
    """Repeat registration from scratch, rotating the issuer list by one each time.

    The same PRF key is certified across attempts. `attempts` defaults to
    the `registration_attempts` setting.
    """
    if attempts is None:
        attempts = get_settings().registration_attempts
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    if secret is None:
        secret = generate_user_secret()

    issuers = list(issuers)
    for attempt in range(attempts):
        shift = attempt % len(issuers) if issuers else 0
        rotated = issuers[shift:] + issuers[:shift]
        registration = register(identity, rotated, pp, registry, secret=secret)
        if registration is not None:
            return registration
        logger.debug("registration_retry", attempt=attempt + 1, attempts=attempts)
    return None


# =============================================================================
# Broadcast
# =============================================================================


def broadcast(epoch: int, prv: int, table: ExposureTable) -> ExposureTable:
    """Record this epoch's pseudonym with a fresh salt.

    Raises:
        TypeError: If epoch is not an int
        ValueError: If epoch is outside [0, 2**64)
    """
    pseudonym = prf.evaluate(prv, epoch)
    table.record(pseudonym, random_scalar())
    return table


# =============================================================================
# Diagnosis
# =============================================================================


def diagnose(holding: Holding, prv: int, contact_epochs: Iterable[int]) -> TraceReport | None:
    """Build a report disclosing the pseudonyms of `contact_epochs`.

    Returns:
        TraceReport, or None if no epochs were given or the local state
        cannot produce a valid proof
    """
    try:
        epochs = sorted(set(contact_epochs))
        if not epochs:
            return None
        disclosures = tuple(Disclosure(epoch=e, pseudonym=prf.evaluate(prv, e)) for e in epochs)
    except (TypeError, ValueError) as e:
        logger.info("diagnosis_failed", error_type=type(e).__name__)
        return None

    statements = [(prf.epoch_base(d.epoch), d.pseudonym.point()) for d in disclosures]
    token = holding.token
    try:
        proof = prove_disclosure(
            pedersen_parameters(len(holding.attributes)),
            token.commitment,
            holding.attributes,
            holding.opening,
            statements,
            context=token.to_bytes(),
        )
    except DisclosureError as e:
        logger.info("diagnosis_failed", error_type=type(e).__name__)
        return None

    logger.info("trace_report_created", disclosures=len(disclosures))
    return TraceReport(token=token, proof=proof, disclosures=disclosures)


# =============================================================================
# Verification
# =============================================================================


def _check_proof(report: TraceReport) -> bool:
    try:
        statements = [(prf.epoch_base(d.epoch), d.pseudonym.point()) for d in report.disclosures]
        return verify_disclosure(report.token.commitment, report.proof, statements, context=report.token.to_bytes())
    except (TypeError, ValueError):
        return False


def verify_report(
    report: TraceReport,
    registry: TokenRegistry | frozenset[Token],
    confirmed: ConfirmedSet,
) -> tuple[ConfirmedSet, bool]:
    """Accept a report iff its token is registered and its proof verifies.

    Both checks always run. On acceptance every disclosed pseudonym is
    added; on rejection `confirmed` is returned unchanged.

    Returns:
        Tuple of (updated ConfirmedSet, accepted)
    """
    registered = report.token in registry
    proof_valid = _check_proof(report)
    accepted = registered and proof_valid

    logger.info("trace_report_checked", accepted=accepted)
    if not accepted:
        return confirmed, False
    return confirmed.with_added(report.pseudonyms), True


class ReportVerifier:
    """Health-authority verifier: a registry plus the current ConfirmedSet.

    Submissions serialize on a lock; readers get the immutable current set.
    """

    def __init__(self, registry: TokenRegistry, confirmed: ConfirmedSet | None = None) -> None:
        self._registry = registry
        self._confirmed = confirmed if confirmed is not None else ConfirmedSet()
        self._lock = threading.Lock()

    @property
    def confirmed(self) -> ConfirmedSet:
        return self._confirmed

    def submit(self, report: TraceReport) -> bool:
        """Verify a report and merge its pseudonyms if accepted."""
        with self._lock:
            self._confirmed, accepted = verify_report(report, self._registry, self._confirmed)
        return accepted


# =============================================================================
# Tracing
# =============================================================================


def trace(
    confirmed: ConfirmedSet | Iterable[Pseudonym],
    table: ExposureTable,
    exposure_limit: int | None = None,
) -> TraceResult:
    """Count the user's own pseudonyms that were confirmed exposed.

    `exposure_limit` defaults to the `exposure_limit` setting.

    Raises:
        ValueError: If exposure_limit is negative
    """
    if exposure_limit is None:
        exposure_limit = get_settings().exposure_limit
    if exposure_limit < 0:
        raise ValueError(f"exposure_limit must be >= 0, got {exposure_limit}")
    confirmed_pseudonyms = confirmed.pseudonyms if isinstance(confirmed, ConfirmedSet) else frozenset(confirmed)
    match_count = sum(1 for pseudonym in table if pseudonym in confirmed_pseudonyms)
    return TraceResult(match_count=match_count, alarm=match_count >= exposure_limit)
