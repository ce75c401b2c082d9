"""Protocol definitions for the queue transport and actuator gateway."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import ActuationPlan, QueueMessage


class QueueTransport(Protocol):
    """Minimal contract for the external message channel."""

    async def receive_message(self, queue_url: str) -> Optional[QueueMessage]:
        """Fetch at most one message, returning None when the queue is empty."""
        ...

    async def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Acknowledge a received message so it is not redelivered."""
        ...


class ActuatorGateway(Protocol):
    """Contract for components that drive the motors."""

    async def connect(self) -> None:
        """Open the device connection.

        Raises:
            ActuatorConnectionError: If the device cannot be reached.
        """
        ...

    async def execute(self, plan: ActuationPlan) -> None:
        """Issue the plan as a single batch and wait for the device acknowledgment."""
        ...

    async def aclose(self) -> None:
        """Close any underlying resources."""
        ...
