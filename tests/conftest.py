import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TESTS = Path(__file__).resolve().parent
if str(TESTS) not in sys.path:
    sys.path.insert(0, str(TESTS))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    # Keep a developer's shell settings out of the tests
    for name in ("SCATTER_APP_NAME", "SCATTER_ENDPOINTS", "SCATTER_CONNECT_TIMEOUT",
                 "SCATTER_REQUEST_TIMEOUT", "SCATTER_STORAGE", "SCATTER_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
