"""spirit-trace -- Sybil-resistant, privacy-preserving contact tracing.

This package provides:
- Threshold anonymous credentials (t-of-n blind issuance) for registration
- Per-epoch pseudonyms derived from a certified PRF key
- Batched disclosure proofs binding reported pseudonyms to a registered token
- The protocol phases: setup, register, broadcast, diagnose, verify, trace

The credential scheme has a mock backend (for testing) and a real backend
(Coconut-style threshold blind signatures over BLS12-381 via `py_ecc`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

from spirit_trace.config import SpiritSettings, get_settings
from spirit_trace.credential import (
    AggregationError,
    ConfigurationError,
    # Abstract interface
    CredentialScheme,
    # Exceptions
    CredentialError,
    IssuanceError,
    Issuer,
    # Mock implementation
    MockCredentialScheme,
    # Types
    PublicParameters,
    Signature,
    VerificationResult,
    # Factory
    create_credential_scheme,
)
from spirit_trace.observability import configure_from_settings, configure_logging
from spirit_trace.pedersen import Commitment, DisclosureError, DisclosureProof
from spirit_trace.prf import Pseudonym
from spirit_trace.protocol import (
    Disclosure,
    Holding,
    Registration,
    ReportVerifier,
    SetupResult,
    TraceReport,
    TraceResult,
    broadcast,
    diagnose,
    generate_user_secret,
    register,
    register_with_retry,
    setup,
    setup_from_settings,
    trace,
    verify_report,
)
from spirit_trace.state import ConfirmedSet, ExposureTable, Token, TokenRegistry

if TYPE_CHECKING:
    from spirit_trace.credential_real import CoconutCredentialScheme as CoconutCredentialScheme


__all__ = [
    # Protocol
    "setup",
    "setup_from_settings",
    "generate_user_secret",
    "register",
    "register_with_retry",
    "broadcast",
    "diagnose",
    "verify_report",
    "trace",
    "ReportVerifier",
    # Protocol types
    "SetupResult",
    "Holding",
    "Registration",
    "Disclosure",
    "TraceReport",
    "TraceResult",
    # State
    "Token",
    "TokenRegistry",
    "ExposureTable",
    "ConfirmedSet",
    # Primitives
    "Commitment",
    "DisclosureProof",
    "Pseudonym",
    # Credential
    "CredentialScheme",
    "MockCredentialScheme",
    "PublicParameters",
    "Issuer",
    "Signature",
    "VerificationResult",
    "create_credential_scheme",
    # Exceptions
    "CredentialError",
    "ConfigurationError",
    "IssuanceError",
    "AggregationError",
    "DisclosureError",
    # Configuration
    "SpiritSettings",
    "get_settings",
    "configure_logging",
    "configure_from_settings",
]
