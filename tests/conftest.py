"""Test configuration for taudiag unit tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure the project root is importable when running the ``pytest`` console script.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def slab_kappa() -> float:
    """Electron scattering extinction coefficient (cm^-1) of the test slabs."""
    return 0.05
