from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "nftgate" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    # Keep a developer's shell exports and .env out of test runs.
    for name in list(os.environ):
        if name.startswith("NFTGATE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NFTGATE_DOTENV_PATH", str(ROOT / "tests" / ".env.missing"))

    from nftgate.metrics import reset

    reset()
    yield
