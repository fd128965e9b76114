"""
Shared fixtures.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_session_agent.agent import HistoryFormatter, SessionStore, TurnOrchestrator
from chat_session_agent.llm.base import LLMResponse
from chat_session_agent.storage import DurableBackend, EphemeralBackend


@pytest.fixture
def memory_backend():
    return EphemeralBackend()


@pytest.fixture
async def durable_backend(tmp_path):
    backend = await DurableBackend.from_url(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    yield backend
    await backend.close()


@pytest.fixture(params=["memory", "database"])
async def any_backend(request, tmp_path):
    if request.param == "memory":
        yield EphemeralBackend()
    else:
        backend = await DurableBackend.from_url(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
        yield backend
        await backend.close()


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.provider_name = "mock"
    llm.model = "test-model"
    llm.generate = AsyncMock(return_value=LLMResponse(
        content="Hello! How can I help you?",
        input_tokens=10,
        output_tokens=20,
    ))
    return llm


@pytest.fixture
def store(memory_backend):
    return SessionStore(memory_backend, retention_limit=10, default_system_instruction="Be terse.")


@pytest.fixture
def orchestrator(store, mock_llm):
    return TurnOrchestrator(
        store=store,
        formatter=HistoryFormatter("inline"),
        llm=mock_llm,
        fallback_message="Sorry, I encountered an error while processing your request.",
    )
