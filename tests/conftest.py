"""Shared fixtures for the interface_mcp test-suite."""

from pathlib import Path

import pytest

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture
def calculator_path() -> Path:
    return FIXTURES / "calculator.py"


@pytest.fixture
def cities_path() -> Path:
    return FIXTURES / "cities.py"
