"""
Integration tests for LLMClient against OpenRouter.

Usage:
    pytest tests/integration/test_llm_connection.py -v -m integration
"""

import pytest

from querygen.config import get_settings
from querygen.domain.errors import LLMError, OperationCancelledError
from querygen.infrastructure.llm_client import LLMClient
from querygen.utils.cancellation import AbortSignal


@pytest.fixture
def llm_config():
    """Get LLM configuration from settings."""
    return get_settings().llm


@pytest.fixture
async def llm_client(llm_config):
    """Create and connect the cheap-model client."""
    client = LLMClient(llm_config, model=llm_config.cheap_model)
    await client.connect()
    yield client
    if client.is_connected():
        await client.close()


@pytest.mark.integration
class TestLLMConnection:
    """Connectivity checks."""

    @pytest.mark.asyncio
    async def test_basic_connection(self, llm_config):
        """Connect and disconnect."""
        client = LLMClient(llm_config)
        await client.connect()
        assert client.is_connected()

        await client.close()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_generate_verdict_line(self, llm_client):
        """A classification-style prompt is answered on its last line."""
        response = await llm_client.generate(
            "Is 'SELECT 1' valid SQL? Answer with a final line containing only YES or NO."
        )
        assert "YES" in response.upper()

    @pytest.mark.asyncio
    async def test_system_prompt(self, llm_client):
        """A system prompt is accepted."""
        response = await llm_client.generate(
            "Name the SQL keyword that removes duplicate rows.",
            system_prompt="Answer with a single word.",
        )
        assert "distinct" in response.lower()


@pytest.mark.integration
class TestLLMGuards:
    """Limits and cancellation."""

    @pytest.mark.asyncio
    async def test_input_too_large(self, llm_client, llm_config):
        """Oversized prompts are refused before the provider call."""
        with pytest.raises(LLMError):
            await llm_client.generate("x" * (llm_config.max_input_chars + 1))

    @pytest.mark.asyncio
    async def test_aborted_signal(self, llm_client):
        """An already fired signal cancels the call."""
        signal = AbortSignal()
        signal.abort("test")
        with pytest.raises(OperationCancelledError):
            await llm_client.generate("Say hello", abort=signal)
