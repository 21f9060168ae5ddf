"""Shared test fixtures for spirit-trace."""

import pytest

from spirit_trace.credential import CredentialScheme, create_credential_scheme
from spirit_trace.protocol import SetupResult, setup


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: End-to-end protocol tests")
    config.addinivalue_line("markers", "slow: Slow tests (>5s)")


# =============================================================================
# Parameterized backend fixtures (mock vs real)
# =============================================================================


@pytest.fixture(params=["mock", "coconut"], ids=["credential-mock", "credential-coconut"])
def backend(request: pytest.FixtureRequest) -> str:
    """Parameterized credential backend name (mock and real)."""
    return request.param


@pytest.fixture
def scheme(backend: str) -> CredentialScheme:
    """Credential scheme for the parameterized backend."""
    return create_credential_scheme(backend)


@pytest.fixture
def deployment(backend: str) -> SetupResult:
    """A 3-of-5 deployment with all five issuers."""
    return setup(3, 5, 5, backend=backend)


@pytest.fixture
def mock_deployment() -> SetupResult:
    """A 3-of-5 deployment on the mock backend."""
    return setup(3, 5, 5, backend="mock")
