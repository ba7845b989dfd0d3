"""
Pytest configuration: integration marker, command-line options and shared fixtures.
"""

from datetime import date, datetime, timedelta, timezone
import pytest
from src.services.registry.acra_client import RegistryClient
from src.services.registry.cache import VerificationCache
from src.services.registry.uen_verifier import EntityVerifier
from src.services.storage.invoices import InMemoryInvoiceStore
from src.services.validation.gst_validator import ComplianceValidator

TODAY = date(2024, 3, 1)


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against real Azure resources"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring real Azure resources"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeClock:
    """Manually advanced UTC clock for cache and registry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryInvoiceStore()


@pytest.fixture
def verifier(clock, store):
    """Verifier backed by the reference registry only (no live ACRA)."""
    return EntityVerifier(
        cache=VerificationCache(clock=clock),
        registry_client=RegistryClient(base_url="", api_key=""),
        store=store,
    )


@pytest.fixture
def validator(verifier):
    return ComplianceValidator(verifier=verifier, tolerance=0.01, today=lambda: TODAY)
