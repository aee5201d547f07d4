import sys
from pathlib import Path

import pytest


# Ensure local src/ package imports work without editable install.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
for entry in (SRC, ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

from goalstake.core.config import GoalstakeConfig, TreeConfig, reset_config  # noqa: E402
from goalstake.core.container import build_test_container  # noqa: E402
from tests.mocks import FakePaymentGateway  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires external services)"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow-running (use pytest -m 'not slow' to skip)"
    )


def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires a running Redis)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration", default=False):
        return
    skip_integration = pytest.mark.skip(reason="Integration test skipped. Use --run-integration to run.")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def clean_config():
    """Reset global config singleton between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def app_config():
    return GoalstakeConfig(tree=TreeConfig(max_concurrency=4))


@pytest.fixture
def container(app_config, gateway):
    return build_test_container(app_config, gateway=gateway)


@pytest.fixture
def store(container):
    return container.store


@pytest.fixture
def repository(container):
    return container.repository


@pytest.fixture
def ratio_engine(container):
    return container.ratio_engine


@pytest.fixture
def settlement(container):
    return container.settlement


@pytest.fixture
def codec(container):
    return container.codec

