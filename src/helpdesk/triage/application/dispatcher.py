"""
Triage Dispatcher
=================

Hands newly created tickets to the triage pipeline as background tasks so
ticket creation never waits on triage.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from helpdesk.core import ConflictException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.domain import Ticket, TriageOutcome

logger = get_logger(__name__)

ProcessFunc = Callable[[Ticket], Awaitable[TriageOutcome]]
TicketExistsFunc = Callable[[str], Awaitable[bool]]
ResultFunc = Callable[[Ticket, TriageOutcome], Awaitable[None]]


class TriageDispatcher:
    """
    One asyncio task per ticket.

    - A second dispatch for a ticket that is still in flight is ignored.
    - If ``ticket_exists`` reports the ticket gone when triage finishes, the
      outcome is dropped instead of being applied.
    - ``on_result`` receives every other outcome; the caller applies the
      status transition there.
    """

    def __init__(
        self,
        process: ProcessFunc,
        ticket_exists: Optional[TicketExistsFunc] = None,
        on_result: Optional[ResultFunc] = None
    ):
        self._process = process
        self._ticket_exists = ticket_exists
        self._on_result = on_result
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    def dispatch(self, ticket: Ticket) -> Optional[asyncio.Task]:
        """
        Schedule triage for a ticket and return immediately.

        Must be called from within a running event loop.

        Returns:
            The scheduled task, or None when the ticket is already in flight
        """
        if ticket.id in self._tasks:
            logger.info("Triage already in flight; ignoring dispatch", extra={"ticket_id": ticket.id})
            return None

        task = asyncio.create_task(self._run(ticket), name=f"triage-{ticket.id}")
        self._tasks[ticket.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(ticket.id, None))
        return task

    async def _run(self, ticket: Ticket) -> Optional[TriageOutcome]:
        try:
            outcome = await self._process(ticket)

            if self._ticket_exists is not None and not await self._ticket_exists(ticket.id):
                logger.info(
                    "Ticket deleted during triage; dropping result",
                    extra={"ticket_id": ticket.id, "trace_id": outcome.trace_id}
                )
                return None

            if self._on_result is not None:
                await self._on_result(ticket, outcome)
            return outcome

        except ConflictException as e:
            logger.info("Triage rejected", extra={"ticket_id": ticket.id, "reason": e.message})
        except Exception:
            logger.exception("Background triage task failed", extra={"ticket_id": ticket.id})
        return None

    async def drain(self) -> None:
        """Wait for every in-flight triage task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Drain in-flight tasks, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Cancelling unfinished triage tasks", extra={"pending": len(self._tasks)})
            for task in list(self._tasks.values()):
                task.cancel()
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
