"""Pytest configuration — ensures the project root is importable."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from deed_shield.synthetic import SyntheticRegistry, create_synthetic_registry  # noqa: E402


@pytest.fixture(autouse=True)
def _no_llm_calls(monkeypatch):
    """Keep the OpenAI key out of every test so no real LLM call can happen."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield


@pytest.fixture(scope="session")
def synthetic() -> SyntheticRegistry:
    """Five active notaries (NOTARY-1 is in CA, NOTARY-2 in NY), RON-1 active, RON-2 suspended."""
    return create_synthetic_registry()
