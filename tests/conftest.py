from __future__ import annotations

import pytest

from marginalia.llm_client import LLMClient


@pytest.fixture
def unconfigured_llm() -> LLMClient:
    return LLMClient(None, default_model="gpt-4o-mini")
