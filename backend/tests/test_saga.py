"""Tests for the compensating-action saga."""

import logging

import pytest

from lotflow.services.saga import Saga


@pytest.mark.unit
@pytest.mark.asyncio
class TestSaga:

    async def test_undo_runs_newest_first_and_error_propagates(self):
        undone = []

        async def undo(label):
            undone.append(label)

        with pytest.raises(RuntimeError, match="step three"):
            async with Saga("test") as saga:
                saga.on_undo("one", lambda: undo("one"))
                saga.on_undo("two", lambda: undo("two"))
                raise RuntimeError("step three")

        assert undone == ["two", "one"]

    async def test_no_undo_on_success(self):
        undone = []

        async def undo():
            undone.append("x")

        async with Saga("test") as saga:
            saga.on_undo("x", undo)

        assert undone == []

    async def test_failing_undo_is_logged_and_does_not_mask_error(self, caplog):
        undone = []

        async def broken():
            raise ValueError("undo broke")

        async def fine():
            undone.append("fine")

        with caplog.at_level(logging.ERROR, logger="lotflow.services.saga"):
            with pytest.raises(KeyError):
                async with Saga("test") as saga:
                    saga.on_undo("fine", fine)
                    saga.on_undo("broken", broken)
                    raise KeyError("original")

        assert undone == ["fine"]
        assert "compensating action 'broken' failed" in caplog.text
