import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from .pki import get_pki  # noqa: E402


@pytest.fixture(scope="session")
def pki():
    return get_pki()
