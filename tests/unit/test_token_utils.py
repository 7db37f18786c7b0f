"""Unit tests for the character-limit checks run before LLM and embedding calls."""

import pytest
from querygen.config import EmbeddingConfig, LLMConfig
from querygen.utils.token_utils import InputValidator

_llm_config = LLMConfig(openrouter_api_key="test-key")
_embedding_config = EmbeddingConfig(openrouter_api_key="test-key")


class TestCharLimit:
    """validate_char_limit on a single text."""

    def test_within_limit(self):
        """Text at the limit is accepted."""
        InputValidator.validate_char_limit("q" * 20, max_chars=20)

    def test_over_limit(self):
        """Text over the limit reports both sizes."""
        with pytest.raises(ValueError) as exc_info:
            InputValidator.validate_char_limit("q" * 21, max_chars=20)

        assert "21 characters" in str(exc_info.value)
        assert "maximum allowed: 20" in str(exc_info.value)

    def test_custom_message(self):
        """A custom message replaces the default one."""
        with pytest.raises(ValueError) as exc_info:
            InputValidator.validate_char_limit("q" * 21, max_chars=20, error_message="Prompt too long")

        assert str(exc_info.value) == "Prompt too long"


class TestTotalChars:
    """validate_total_chars on prompt plus system prompt."""

    def test_prompt_with_system_prompt(self):
        """Prompt and system prompt are counted together."""
        with pytest.raises(ValueError) as exc_info:
            InputValidator.validate_total_chars(prompt="p" * 30, system_prompt="s" * 30, max_chars=50)

        assert "60 characters" in str(exc_info.value)

    def test_without_system_prompt(self):
        """A missing system prompt counts as zero."""
        InputValidator.validate_total_chars(prompt="p" * 50, max_chars=50)

    def test_default_llm_limit_fits_schema_prompt(self):
        """A typical generation prompt stays under the configured LLM limit."""
        InputValidator.validate_total_chars(prompt="x" * 20000, max_chars=_llm_config.max_input_chars)


class TestBatchChars:
    """validate_batch_chars on embedding batches."""

    def test_all_within_limit(self):
        """A batch of short texts is accepted."""
        InputValidator.validate_batch_chars(["employees: staff", "currencies: codes"], max_chars_per_text=100)

    def test_reports_offending_index(self):
        """The first text over the limit is named by index."""
        with pytest.raises(ValueError) as exc_info:
            InputValidator.validate_batch_chars(
                ["ok", "ok", "t" * (_embedding_config.max_input_chars + 1)],
                max_chars_per_text=_embedding_config.max_input_chars,
            )

        assert "index 2" in str(exc_info.value)
