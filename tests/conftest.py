import os
import sys
import tempfile

import pytest

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Must be set before threshold_compass.config is imported
os.environ["COMPASS_DATA_DIR"] = tempfile.mkdtemp(prefix="compass-test-")
os.environ.pop("COMPASS_API_KEY", None)

from threshold_compass.core import database  # noqa: E402

TABLES = ("correction_logs", "threshold_ranges", "check_ins", "dose_logs", "batches")


@pytest.fixture
def db():
    database.init_db()
    yield database
    with database.db_cursor() as cur:
        for table in TABLES:
            cur.execute(f"DELETE FROM {table}")


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from threshold_compass.main import app

    with TestClient(app) as c:
        yield c
