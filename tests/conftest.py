from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest


@pytest.fixture(autouse=True)
def _without_adrlens_env():
    # Editor and CI shells may export overrides; tests resolve config from scratch.
    previous = {key: value for key, value in os.environ.items() if key.startswith("ADRLENS_")}
    for key in previous:
        os.environ.pop(key, None)
    yield
    os.environ.update(previous)
