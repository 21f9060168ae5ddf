"""Public interface for spirit-trace.

This module re-exports the primary public API: protocol phases, state
types, the credential interface with its mock and real backends,
exceptions and configuration.

Usage:
    from spirit_trace.interface import setup, register, broadcast, diagnose
    from spirit_trace.interface import ReportVerifier, trace
    from spirit_trace.interface import MockCredentialScheme, CoconutCredentialScheme
"""

from spirit_trace.config import SpiritSettings, get_settings
from spirit_trace.credential import (
    AggregationError,
    ConfigurationError,
    CredentialError,
    CredentialScheme,
    IssuanceError,
    Issuer,
    MockCredentialScheme,
    PublicParameters,
    Signature,
    VerificationResult,
    create_credential_scheme,
)
from spirit_trace.credential_real import CoconutCredentialScheme
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
    # Credential backends
    "CredentialScheme",
    "MockCredentialScheme",
    "CoconutCredentialScheme",
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
