"""Shared fixtures for the test suite."""

import copy
from typing import Any

import pytest

from tests.fakes import SELECTORS, FakePage


@pytest.fixture
def selectors() -> dict[str, Any]:
    return copy.deepcopy(SELECTORS)


@pytest.fixture
def page() -> FakePage:
    return FakePage()
