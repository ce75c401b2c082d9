"""Core primitives for alexa-ev3."""

from .models import (
    Action,
    ActuationPlan,
    Command,
    DriveMode,
    Polarity,
    QueueMessage,
)
from .protocols import ActuatorGateway, QueueTransport

__all__ = [
    "Action",
    "ActuationPlan",
    "ActuatorGateway",
    "Command",
    "DriveMode",
    "Polarity",
    "QueueMessage",
    "QueueTransport",
]
