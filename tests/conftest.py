"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

from hydra_mcp.config import StdioServerConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixture_script():
    """Resolve a helper server script under tests/fixtures."""

    def resolve(name: str) -> str:
        return str(FIXTURES_DIR / name)

    return resolve


@pytest.fixture
def python_server(fixture_script):
    """Build a stdio config running a fixture script with this interpreter."""

    def build(name: str, **overrides) -> StdioServerConfig:
        return StdioServerConfig(
            command=sys.executable,
            args=["-u", fixture_script(name)],
            **overrides,
        )

    return build
