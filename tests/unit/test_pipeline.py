"""Unit tests for the pipeline state and the abort signal."""

import asyncio

import pytest

from querygen.domain.base_enums import PipelineStatus
from querygen.domain.errors import OperationCancelledError
from querygen.domain.pipeline import PipelineState
from querygen.domain.schema import DatabaseSchema
from querygen.utils.cancellation import AbortSignal, guarded


class TestPipelineState:
    """Immutable state with append-only feedback."""

    def _state(self) -> PipelineState:
        return PipelineState(prompt="salaries", schema=DatabaseSchema())

    def test_evolve_returns_copy(self):
        """evolve() leaves the original untouched."""
        state = self._state()
        changed = state.evolve(sql="SELECT 1", status=PipelineStatus.PASS)

        assert state.sql is None
        assert changed.sql == "SELECT 1"
        assert changed.prompt == "salaries"

    def test_feedback_appends(self):
        """with_feedback() grows the feedback tuple and the attempt count."""
        state = self._state().with_feedback("one").with_feedback("two", status=PipelineStatus.QUERY_ERROR)

        assert state.feedbacks == ("one", "two")
        assert state.attempts == 2
        assert state.last_feedback == "two"
        assert state.status == PipelineStatus.QUERY_ERROR

    def test_feedbacks_cannot_be_replaced(self):
        """Feedbacks are append-only."""
        state = self._state().with_feedback("one")
        with pytest.raises(ValueError):
            state.evolve(feedbacks=())

    def test_frozen(self):
        """Attributes cannot be assigned."""
        state = self._state()
        with pytest.raises(AttributeError):
            state.sql = "SELECT 1"  # type: ignore[misc]


class TestAbortSignal:
    """Cancellation of in-flight calls."""

    @pytest.mark.asyncio
    async def test_guard_returns_result(self):
        """Without abort the awaited result is returned."""
        signal = AbortSignal()

        async def work():
            return 42

        assert await signal.guard(work()) == 42

    @pytest.mark.asyncio
    async def test_abort_interrupts_call(self):
        """Aborting while a call is in flight raises OperationCancelledError."""
        signal = AbortSignal()

        async def slow():
            await asyncio.sleep(10)

        async def abort_soon():
            await asyncio.sleep(0.01)
            signal.abort("client disconnected")

        asyncio.ensure_future(abort_soon())
        with pytest.raises(OperationCancelledError) as exc_info:
            await signal.guard(slow())
        assert exc_info.value.details["reason"] == "client disconnected"

    @pytest.mark.asyncio
    async def test_already_aborted(self):
        """A fired signal refuses new calls."""
        signal = AbortSignal()
        signal.abort()

        async def work():
            return 1

        with pytest.raises(OperationCancelledError):
            await guarded(work(), signal)

    @pytest.mark.asyncio
    async def test_guarded_without_signal(self):
        """guarded() awaits directly when no signal is given."""
        async def work():
            return "done"

        assert await guarded(work(), None) == "done"
