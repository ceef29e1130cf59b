import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import ocistatus`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from ocistatus.config import get_config_manager  # noqa: E402
from ocistatus.observability import correlation_id_var  # noqa: E402
from ocistatus.store import InMemoryAttestationStore  # noqa: E402
from ocistatus.testing import FakeSigstore  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "network: talks to real sigstore/registry infrastructure (skipped unless OCISTATUS_RUN_NETWORK=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_network = _env_flag('OCISTATUS_RUN_NETWORK')

    for item in items:
        if 'network' in item.keywords and not run_network:
            item.add_marker(pytest.mark.skip(reason='network tests skipped; set OCISTATUS_RUN_NETWORK=1 to enable'))


@pytest.fixture(autouse=True)
def _reset_config(monkeypatch):
    for key in list(os.environ):
        if key.startswith("OCISTATUS_"):
            monkeypatch.delenv(key, raising=False)
    get_config_manager().reset()
    token = correlation_id_var.set("")
    yield
    correlation_id_var.reset(token)
    get_config_manager().reset()
    package_logger = logging.getLogger("ocistatus")
    for h in list(package_logger.handlers):
        if getattr(h, "_ocistatus", False):
            package_logger.removeHandler(h)
    package_logger.setLevel(logging.NOTSET)


@pytest.fixture
def sigstore() -> FakeSigstore:
    return FakeSigstore()


@pytest.fixture
def store() -> InMemoryAttestationStore:
    return InMemoryAttestationStore()


@pytest.fixture
def subject_ref() -> str:
    return "ghcr.io/example/app@sha256:" + "a" * 64
