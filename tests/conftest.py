"""
pytest configuration for private-dns tests

This file ensures tests can find the private_dns package and the shared
test helpers regardless of environment
"""

import sys
from pathlib import Path

import pytest

# Add repository root and tests directory to path
repo_root = Path(__file__).parent.parent
tests_dir = Path(__file__).parent
for path in (repo_root, tests_dir):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from test_utils import FakeUDPReactor  # noqa: E402


@pytest.fixture
def fake_reactor():
    """Clock-driven reactor with in-memory UDP ports"""
    return FakeUDPReactor()


@pytest.fixture
def domains_file(tmp_path):
    """Path to a not-yet-existing allowlist file"""
    return str(tmp_path / "allowed-domains.json")
