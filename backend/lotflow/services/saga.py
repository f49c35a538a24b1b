"""Compensating actions for multi-record writes.

The store offers no cross-record transaction, so an operation such as
"insert run, insert its steps, mark the batch processing" is a chain of
independent writes.  Register an undo after each write lands; if a
later step raises, the undos run newest-first and the original error
propagates.

    async with Saga("ensure_run") as saga:
        run = await store.insert(LotRun(...))
        saga.on_undo("delete lot run", lambda: store.delete(LotRun, run.id))
        ...

A failing undo is logged and the remaining undos still run; it never
replaces the error that triggered the rollback.
"""

import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Undo = Callable[[], Awaitable[None]]


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._undo: list[tuple[str, Undo]] = []

    def on_undo(self, label: str, action: Undo) -> None:
        self._undo.append((label, action))

    async def compensate(self) -> None:
        while self._undo:
            label, action = self._undo.pop()
            try:
                await action()
            except Exception:
                logger.exception(
                    "Saga %s: compensating action '%s' failed", self.name, label,
                )

    async def __aenter__(self) -> "Saga":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning(
                "Saga %s failed (%s); undoing %d write(s)",
                self.name, exc_type.__name__, len(self._undo),
            )
            await self.compensate()
        else:
            self._undo.clear()
        return False
