"""Time-bounded polling of the command queue.

Each :meth:`QueuePoller.poll` call waits at most ``timeout`` seconds for the
outstanding receive request. A receive that overruns the budget is left
running and picked up by the next call, so no response is ever dropped and
there is never more than one receive in flight.

Received messages are deleted before they are handed on. Deletion runs in
the background under the same budget and its failures are only logged: a
message whose delete failed may be redelivered, which the rest of the
pipeline tolerates.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from .core import QueueMessage, QueueTransport

LOGGER = logging.getLogger(__name__)


class QueuePoller:
    """Fetches at most one message per call from a queue transport."""

    def __init__(
        self,
        transport: QueueTransport,
        queue_url: str,
        *,
        timeout: float = 0.125,
    ) -> None:
        self._transport = transport
        self._queue_url = queue_url
        self._timeout = timeout
        self._pending_receive: Optional[asyncio.Task[Optional[QueueMessage]]] = None
        self._pending_deletes: set[asyncio.Task[None]] = set()
        self._failure_streak = 0

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def receive_in_flight(self) -> bool:
        return self._pending_receive is not None

    @property
    def failure_streak(self) -> int:
        return self._failure_streak

    @property
    def pending_deletes(self) -> int:
        return len(self._pending_deletes)

    async def poll(self) -> Optional[QueueMessage]:
        """Return the next message, or None if nothing arrived within the budget."""

        task = self._pending_receive
        if task is None:
            task = asyncio.create_task(
                self._transport.receive_message(self._queue_url)
            )
            self._pending_receive = task

        done, _ = await asyncio.wait({task}, timeout=self._timeout)
        if not done:
            LOGGER.debug(
                "Receive still in flight after %.3fs; checking again on next poll",
                self._timeout,
            )
            return None

        self._pending_receive = None
        try:
            message = task.result()
        except asyncio.CancelledError:
            return None
        except Exception as exc:
            self._record_failure(exc)
            return None

        if self._failure_streak:
            LOGGER.info(
                "Queue receive recovered after %d failed attempt(s)",
                self._failure_streak,
            )
            self._failure_streak = 0

        if message is None:
            return None

        self._schedule_delete(message)
        return message

    async def aclose(self) -> None:
        """Cancel any in-flight receive and give pending deletes one budget to finish."""

        task = self._pending_receive
        self._pending_receive = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task

        if self._pending_deletes:
            await asyncio.wait(set(self._pending_deletes), timeout=self._timeout)

    def _record_failure(self, exc: Exception) -> None:
        self._failure_streak += 1
        if self._failure_streak == 1:
            LOGGER.warning("Queue receive failed: %s", exc)
        else:
            LOGGER.debug(
                "Queue receive failed (%d consecutive): %s", self._failure_streak, exc
            )

    def _schedule_delete(self, message: QueueMessage) -> None:
        task = asyncio.create_task(self._delete(message))
        self._pending_deletes.add(task)
        task.add_done_callback(self._pending_deletes.discard)

    async def _delete(self, message: QueueMessage) -> None:
        try:
            await asyncio.wait_for(
                self._transport.delete_message(
                    self._queue_url, message.receipt_handle
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            LOGGER.debug(
                "Delete of message %s not confirmed within %.3fs",
                message.message_id or message.receipt_handle,
                self._timeout,
            )
        except Exception as exc:
            LOGGER.warning(
                "Failed to delete message %s; it may be redelivered: %s",
                message.message_id or message.receipt_handle,
                exc,
            )
