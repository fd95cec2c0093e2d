"""
Pytest configuration and shared fixtures for test suite.
"""
from pathlib import Path

import pytest

from fakes import Workspace


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path)


@pytest.fixture
def sample_workspace(workspace: Workspace) -> Workspace:
    """
    Small realistic workspace:
    - V1 holds USDC and ETH, V2 holds ETH and an unpriced token, V3 holds dust
    - one plan row already completed
    """
    workspace.write_inventory([
        ("1", "Alpha", "USDC", 100, 100),
        ("1", "Alpha", "ETH", 2, 2),
        ("2", "Beta", "ETH", 0.5, 0.5),
        ("2", "Beta", "MYSTERY", 10, 10),
        ("3", "Gamma", "ETH", 0, 0.000001),
        ("4", "Empty", "ETH", 0, 0),
    ])
    workspace.write_plan([
        ("1", "USDC", 50, "99", False, "", False),
        ("1", "ETH", 2, "99", True, "ETH", True),
        ("2", "ETH", 0.5, "99", True, "ETH", False),
        ("2", "MYSTERY", 10, "99", False, "", False),
        ("3", "ETH", 0.000001, "99", False, "", False),
        ("9", "ETH", 1, "99", False, "", False),
    ])
    workspace.write_ledger("completed_ready.txt", ["9|ETH|99"])
    workspace.write_json("last_prices_usd.json", {"ETH": 2000})
    return workspace
