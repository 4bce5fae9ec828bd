import sys
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop the cached Settings so one test's environment never leaks into the next."""
    import tweetops.settings

    yield
    tweetops.settings._SETTINGS = None
