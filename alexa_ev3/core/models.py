"""Domain models for queued commands and actuation plans."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Action(str, Enum):
    FORWARD = "forward"
    BACKWARD = "backward"
    TURN_LEFT = "left"
    TURN_RIGHT = "right"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "Action":
        """Map a wire-level action name onto the vocabulary; case-sensitive."""
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class Polarity(int, Enum):
    FORWARD = 1
    BACKWARD = -1


class DriveMode(str, Enum):
    """How step targets are issued: regulated speed for moves, raw power for turns."""

    SPEED = "speed"
    POWER = "power"


@dataclass(slots=True, frozen=True)
class Command:
    """Validated intent decoded from a queue message."""

    action: Action
    magnitude: Optional[int] = None


@dataclass(slots=True, frozen=True)
class ActuationPlan:
    """Device-ready instructions for both drive motors."""

    left_polarity: Polarity
    right_polarity: Polarity
    left_steps: int
    right_steps: int
    drive: DriveMode
    output: int = 100


@dataclass(slots=True, frozen=True)
class QueueMessage:
    body: str
    receipt_handle: str
    message_id: Optional[str] = None
