"""Resolution of commands into actuation plans."""

from __future__ import annotations

import logging
from typing import Optional

from .core import Action, ActuationPlan, Command, DriveMode, Polarity

LOGGER = logging.getLogger(__name__)

DEFAULT_DISTANCE_CM = 30
STEPS_PER_CM = 100
DEFAULT_TURN_DEGREES = 90

_TRANSLATIONS = {
    Action.FORWARD: Polarity.FORWARD,
    Action.BACKWARD: Polarity.BACKWARD,
}

# (left, right) polarities for an in-place pivot.
_PIVOTS = {
    Action.TURN_LEFT: (Polarity.BACKWARD, Polarity.FORWARD),
    Action.TURN_RIGHT: (Polarity.FORWARD, Polarity.BACKWARD),
}


class ActuationPlanner:
    """Maps commands onto fixed two-motor plans.

    Translations scale centimetres by :data:`STEPS_PER_CM`; turns scale
    degrees by the configured steps-per-degree factor and round to the
    nearest step (halves go to the even neighbour).
    """

    def __init__(
        self,
        steps_per_degree: float,
        *,
        drive_speed: int = 100,
        turn_power: int = 100,
    ) -> None:
        if steps_per_degree <= 0:
            raise ValueError("steps_per_degree must be positive")
        self.steps_per_degree = steps_per_degree
        self.drive_speed = drive_speed
        self.turn_power = turn_power

    def plan(self, command: Command) -> Optional[ActuationPlan]:
        """Return the plan for ``command``, or None when it needs no actuation."""

        polarity = _TRANSLATIONS.get(command.action)
        if polarity is not None:
            distance = (
                command.magnitude
                if command.magnitude is not None
                else DEFAULT_DISTANCE_CM
            )
            steps = distance * STEPS_PER_CM
            return ActuationPlan(
                left_polarity=polarity,
                right_polarity=polarity,
                left_steps=steps,
                right_steps=steps,
                drive=DriveMode.SPEED,
                output=self.drive_speed,
            )

        pivot = _PIVOTS.get(command.action)
        if pivot is not None:
            degrees = (
                command.magnitude
                if command.magnitude is not None
                else DEFAULT_TURN_DEGREES
            )
            steps = self.turn_steps(degrees)
            left, right = pivot
            return ActuationPlan(
                left_polarity=left,
                right_polarity=right,
                left_steps=steps,
                right_steps=steps,
                drive=DriveMode.POWER,
                output=self.turn_power,
            )

        LOGGER.debug("No plan for action %s", command.action.value)
        return None

    def turn_steps(self, degrees: int) -> int:
        return int(round(degrees * self.steps_per_degree))
