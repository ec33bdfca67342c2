import os
import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import cargoflow`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from cargoflow.config import CargoFlowConfig, get_config_manager  # noqa: E402
from cargoflow.fhe import LocalConfidentialService  # noqa: E402
from cargoflow.identity import Account  # noqa: E402
from cargoflow.ledger import ManualClock  # noqa: E402
from cargoflow.tracker import CargoTracker  # noqa: E402


DAY = 24 * 3600
HOUR = 3600
GENESIS = 1_700_000_000


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless CARGOFLOW_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('CARGOFLOW_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set CARGOFLOW_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """No CARGOFLOW_* overrides leak in from the environment; the global config starts fresh."""
    for key in list(os.environ):
        if key.startswith("CARGOFLOW_") and key != "CARGOFLOW_RUN_SLOW":
            monkeypatch.delenv(key, raising=False)
    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture
def clock():
    return ManualClock(GENESIS)


@pytest.fixture
def config():
    return CargoFlowConfig()


@pytest.fixture
def service(clock):
    return LocalConfidentialService(clock=clock.now)


@pytest.fixture
def tracker(clock, service, config):
    return CargoTracker(clock=clock, service=service, config=config)


@pytest.fixture
def alice():
    return Account.from_seed(b"alice", label="alice")


@pytest.fixture
def bob():
    return Account.from_seed(b"bob", label="bob")


@pytest.fixture
def shipment_id(tracker, clock, alice):
    """A created shipment owned by alice, delivery due in seven days."""
    tracker.create_shipment("CARGO-001", "Shanghai", "LA", clock.now() + 7 * DAY, alice)
    return "CARGO-001"
