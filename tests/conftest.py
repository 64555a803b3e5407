"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and ensures proper test environment setup.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from guardedAgent.config.settings import (  # noqa: E402
    CircuitBreakerSettings,
    GovernanceSettings,
    PersistenceSettings,
    Settings,
)
from guardedAgent.tools.approval_queue import ApprovalQueue  # noqa: E402
from tests.fakes import COMBAT_SOURCE, SHOP_SOURCE, CountingBackend, ManualClock  # noqa: E402


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings():
    """Settings isolated from any persisted knowledge database."""
    return Settings(
        persistence=PersistenceSettings(db_path=""),
        governance=GovernanceSettings(max_iterations=10),
        circuit=CircuitBreakerSettings(failure_threshold=5, cooldown_seconds=30, warning_threshold=3),
    )


@pytest.fixture
def backend():
    """Workspace seeded with a small project."""
    workspace = CountingBackend(ApprovalQueue())
    workspace.add_script("ServerScriptService.ShopHandler", SHOP_SOURCE)
    workspace.add_script("ServerScriptService.Combat", COMBAT_SOURCE)
    workspace.add_instance("Workspace.Baseplate", "Part", {"Anchored": True})
    workspace.add_instance("StarterGui.ShopGui", "ScreenGui")
    return workspace
