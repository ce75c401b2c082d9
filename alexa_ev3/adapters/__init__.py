"""Adapter modules for external integrations."""

from .ev3 import (
    ActuatorConnectionError,
    ActuatorError,
    Brick,
    BrickChangedEvent,
    OutputPort,
    SerialCommunication,
)
from .sqs import QueueTransportError, SqsTransport, create_sqs_client

__all__ = [
    "ActuatorConnectionError",
    "ActuatorError",
    "Brick",
    "BrickChangedEvent",
    "OutputPort",
    "QueueTransportError",
    "SerialCommunication",
    "SqsTransport",
    "create_sqs_client",
]
