"""
LLM client for OpenRouter using LangChain.

Every workflow call sends one fully rendered prompt and expects free text
back; there is no structured-output or tool-calling mode.
"""

from typing import List, Optional
from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage, BaseMessage
from pydantic import SecretStr

from ..config import LLMConfig
from ..utils.cancellation import AbortSignal, guarded
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.token_utils import InputValidator
from ..domain.errors import LLMError, OperationCancelledError


logger = get_module_logger()


class LLMClient:
    """
    LLM client using LangChain's ChatOpenAI with OpenRouter.

    Two instances are usually built from the same LLMConfig: one on
    `default_model` for SQL generation and one on `cheap_model` for the
    short classification prompts.

    Usage:
        client = LLMClient(config, model=config.cheap_model)
        await client.connect()
        text = await client.generate(prompt, abort=signal)
        await client.close()
    """

    def __init__(self, config: LLMConfig, model: Optional[str] = None):
        """
        Args:
            config: LLM configuration
            model: Model id; defaults to config.default_model
        """
        self.config = config
        self.model = model or config.default_model
        self._llm: Optional[ChatOpenAI] = None
        self._is_connected = False

        logger.info(
            "LLMClient initialized",
            model=self.model,
            base_url=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens
        )

    async def connect(self) -> None:
        """
        Build the LangChain ChatOpenAI client.

        No API call is made here; credentials are validated on first use.

        Raises:
            LLMError: If initialization fails
        """
        if self._is_connected:
            logger.warning("LLM client already connected", model=self.model)
            return

        trace_id = current_trace_id()

        try:
            self._llm = ChatOpenAI(
                model=self.model,
                api_key=SecretStr(self.config.openrouter_api_key),
                base_url=self.config.base_url,
                temperature=self.config.temperature,
                max_completion_tokens=self.config.max_tokens,
                top_p=self.config.top_p,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries
            )

            self._is_connected = True
            logger.info("LLM client initialized successfully", model=self.model, trace_id=trace_id)

        except Exception as e:
            error_msg = f"Failed to initialize LLM client: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise LLMError(error_msg) from e

    async def close(self) -> None:
        """Release the client. LangChain needs no explicit cleanup."""
        self._is_connected = False
        self._llm = None
        logger.info("LLM client closed", model=self.model, trace_id=current_trace_id())

    def is_connected(self) -> bool:
        """Check if LLM client is connected."""
        return self._is_connected and self._llm is not None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        abort: Optional[AbortSignal] = None,
    ) -> str:
        """
        Generate a free-text response.

        Args:
            prompt: Fully rendered prompt
            system_prompt: Optional system prompt
            abort: Optional abort signal; interrupts the call in flight

        Returns:
            Raw response text (thinking tokens are stripped by callers)

        Raises:
            LLMError: If generation fails or input exceeds the character limit
            OperationCancelledError: If the abort signal fires
        """
        if not self.is_connected() or self._llm is None:
            raise LLMError("LLM client is not connected")

        try:
            InputValidator.validate_total_chars(
                prompt=prompt,
                system_prompt=system_prompt,
                max_chars=self.config.max_input_chars
            )
        except ValueError as e:
            raise LLMError(str(e)) from e

        trace_id = current_trace_id()

        logger.info(
            "Generating LLM response",
            model=self.model,
            prompt_length=len(prompt),
            has_system_prompt=system_prompt is not None,
            trace_id=trace_id
        )
        logger.debug("LLM prompt", prompt=prompt, trace_id=trace_id)

        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=prompt))

        try:
            response = await guarded(self._llm.ainvoke(messages), abort)
        except OperationCancelledError:
            logger.info("LLM call cancelled", model=self.model, trace_id=trace_id)
            raise
        except Exception as e:
            error_msg = f"LLM generation failed: {e}"
            logger.error(
                error_msg,
                error_type=type(e).__name__,
                model=self.model,
                prompt_length=len(prompt),
                trace_id=trace_id
            )
            raise LLMError(error_msg) from e

        if not response or not response.content:
            raise LLMError("LLM returned empty response")

        content = str(response.content)
        logger.info(
            "LLM response generated successfully",
            model=self.model,
            response_length=len(content),
            trace_id=trace_id
        )
        logger.debug("LLM response", response=content, trace_id=trace_id)
        return content
