from __future__ import annotations

import os

import pytest

# Keep the module-level engine off the developer database during tests.
os.environ.setdefault("APPHARBOR_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("APPHARBOR_ENVIRONMENT", "test")


def _db_enabled() -> bool:
    flag = os.getenv("APPHARBOR_PYTEST_DB") or os.getenv("PYTEST_DB")
    if flag:
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return False


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "requires_db: marks tests that need a configured Postgres database "
        "(enable with APPHARBOR_PYTEST_DB=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items) -> None:
    if _db_enabled():
        return
    skip_db = pytest.mark.skip(reason="set APPHARBOR_PYTEST_DB=1 to run database tests")
    for item in items:
        if "requires_db" in item.keywords:
            item.add_marker(skip_db)
