# tests/conftest.py
"""
Pytest configuration and fixtures.
Adds src/ to sys.path so `import iqps` works without installing.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

from iqps.application.services.lifecycle_coordinator import LifecycleCoordinator  # noqa: E402
from iqps.infrastructure.storage.file_storage import LocalFileStorage  # noqa: E402
from iqps.infrastructure.storage.paths import Paths  # noqa: E402
from iqps.infrastructure.stores.catalog_store import CatalogStore  # noqa: E402
from iqps.utils.logging_config import Logger  # noqa: E402

STATIC_URL = "https://static.example.org"


@pytest.fixture(autouse=True)
def _isolated_logs(tmp_path, monkeypatch):
    """Send log files to the test's temp dir instead of ./logs."""
    Logger.close()
    monkeypatch.setenv("IQPS_LOG_DIR", str(tmp_path / "logs"))
    yield
    Logger.close()


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    root = tmp_path / "static"
    (root / "iqps" / "uploaded").mkdir(parents=True)
    (root / "peqp" / "qp").mkdir(parents=True)
    return root


@pytest.fixture
def paths(storage_root: Path) -> Paths:
    return Paths(STATIC_URL, storage_root, "/iqps/uploaded", "/peqp/qp")


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'catalog.db'}"


@pytest.fixture
def store(db_url: str):
    catalog = CatalogStore(db_url)
    yield catalog
    catalog.close()


@pytest.fixture
def coordinator(store: CatalogStore, paths: Paths) -> LifecycleCoordinator:
    return LifecycleCoordinator(store, paths, LocalFileStorage())
