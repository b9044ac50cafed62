import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `geo.*`, `engine.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


@pytest.fixture
def service():
    from engine.config import TilingSettings
    from engine.service import TileService

    svc = TileService(TilingSettings(max_workers=2, max_queue=8))
    yield svc
    svc.close()
