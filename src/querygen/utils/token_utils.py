"""
Character-limit checks applied before outbound LLM and embedding calls.

Limits are plain character counts rather than tokenizer counts; they only
guard against prompts that would obviously overflow a context window.
"""

from typing import List, Optional


class InputValidator:
    """Static character-limit checks. Each raises ValueError when a limit is exceeded."""

    @staticmethod
    def validate_char_limit(
        text: str,
        max_chars: int,
        error_message: Optional[str] = None
    ) -> None:
        """Reject a single text longer than max_chars."""
        if len(text) > max_chars:
            raise ValueError(
                error_message
                or f"Input too large: {len(text)} characters, maximum allowed: {max_chars}"
            )

    @staticmethod
    def validate_total_chars(
        prompt: str,
        system_prompt: Optional[str] = None,
        max_chars: int = 0
    ) -> None:
        """
        Reject an LLM request whose prompt plus system prompt exceeds max_chars.

        Example:
            >>> InputValidator.validate_total_chars("Hello", system_prompt="Hi", max_chars=1000)
        """
        total_chars = len(prompt) + (len(system_prompt) if system_prompt else 0)
        if total_chars > max_chars:
            raise ValueError(
                f"Total input too large: {total_chars} characters, "
                f"maximum allowed: {max_chars}"
            )

    @staticmethod
    def validate_batch_chars(texts: List[str], max_chars_per_text: int) -> None:
        """Reject a batch when any member exceeds max_chars_per_text."""
        for index, text in enumerate(texts):
            if len(text) > max_chars_per_text:
                raise ValueError(
                    f"Text in batch at index {index} too large: "
                    f"{len(text)} characters, maximum allowed: {max_chars_per_text}"
                )
