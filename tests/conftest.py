"""
Pytest configuration and fixtures for tabformula tests.
"""

import pytest

from tabformula.core.config import FormulaSettings, NullMode
from tabformula.formula.composition import ChainValidator
from tabformula.formula.engine import FormulaEngine
from tabformula.formula.parser import FormulaParser


@pytest.fixture
def test_settings() -> FormulaSettings:
    """Settings isolated from the environment and any .env file."""
    return FormulaSettings(_env_file=None, null_mode=NullMode.CODD, parse_cache_size=100)


@pytest.fixture
def legacy_engine(test_settings: FormulaSettings) -> FormulaEngine:
    """Engine using zero-coercion NULL handling."""
    return FormulaEngine(null_mode=NullMode.LEGACY, settings=test_settings)


@pytest.fixture
def codd_engine(test_settings: FormulaSettings) -> FormulaEngine:
    """Engine using three-valued NULL handling."""
    return FormulaEngine(null_mode=NullMode.CODD, settings=test_settings)


@pytest.fixture
def parser() -> FormulaParser:
    return FormulaParser(cache_size=100)


@pytest.fixture
def validator() -> ChainValidator:
    return ChainValidator()
