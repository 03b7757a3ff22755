from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before importing modules that read settings or create the SQLAlchemy engine.
RUNTIME_DIR = Path(tempfile.mkdtemp(prefix="relay-tests-"))
os.environ["OPENAI_API_KEY"] = "sk-test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{(RUNTIME_DIR / 'calls_test.db').as_posix()}"
os.environ["DATA_DIR"] = str(RUNTIME_DIR)
os.environ["AUTO_CREATE_DB_SCHEMA"] = "true"
os.environ["SESSION_UPDATE_DELAY_MS"] = "0"
os.environ.pop("OUTCOME_WEBHOOK_URL", None)
os.environ.pop("OUTCOME_EXPORT_DIR", None)
os.environ.pop("PUBLIC_BASE_URL", None)


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
