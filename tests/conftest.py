"""
Pytest configuration.

Ensures the src directory is on the path for imports and provides
controllers that skip pacing so runs finish immediately.
"""

import sys
from pathlib import Path

import pytest

# Add src to path so imports work
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from tier_governor.runner import RunController
from tier_governor.sources import MockTokenSource


@pytest.fixture
def mock_source():
    return MockTokenSource(n_chunks=60)


@pytest.fixture
def make_controller():
    """Factory for unpaced controllers. Cancels anything left running."""
    created = []

    def factory(source=None, **kwargs):
        kwargs.setdefault("time_scale", 0.0)
        kwargs.setdefault("seed", 7)
        controller = RunController(source or MockTokenSource(n_chunks=60), **kwargs)
        created.append(controller)
        return controller

    yield factory

    for controller in created:
        controller.cancel()
        controller.wait(5.0)
