"""Actuator gateway issuing actuation plans as single EV3 batches."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .adapters.ev3 import (
    ActuatorConnectionError,
    ActuatorError,
    Brick,
    CommandType,
    OutputPort,
    SerialCommunication,
)
from .config import Ev3Config
from .core import ActuationPlan, DriveMode

LOGGER = logging.getLogger(__name__)

CONNECT_TONE_VOLUME = 0x50
CONNECT_TONE_FREQUENCY = 5000
CONNECT_TONE_DURATION_MS = 500


class Ev3Gateway:
    """Drives the left/right motors of one brick.

    Every plan becomes exactly one batch: initialise, set both polarities,
    set both step targets, send. :meth:`execute` returns once the brick has
    taken the batch, which is what keeps consecutive commands from
    overlapping on the device.
    """

    def __init__(
        self,
        brick: Brick,
        *,
        left_port: OutputPort = OutputPort.B,
        right_port: OutputPort = OutputPort.C,
        ack_timeout: Optional[float] = None,
    ) -> None:
        self._brick = brick
        self.left_port = left_port
        self.right_port = right_port
        self._ack_timeout = ack_timeout if ack_timeout else None

    @classmethod
    def from_config(cls, config: Ev3Config) -> "Ev3Gateway":
        communication = SerialCommunication(
            config.port,
            baudrate=config.baudrate,
            timeout=config.reply_timeout_seconds,
        )
        brick = Brick(communication, sensor_poll_seconds=config.sensor_poll_seconds)
        return cls(
            brick,
            left_port=OutputPort[config.left_motor],
            right_port=OutputPort[config.right_motor],
            ack_timeout=config.batch_ack_timeout_seconds,
        )

    @property
    def brick(self) -> Brick:
        return self._brick

    async def connect(self) -> None:
        """Open the link and confirm the brick answers by playing a tone."""

        LOGGER.info("Connecting to EV3 on %s", self._brick.communication.port)
        await self._brick.connect()
        try:
            await self._brick.direct_command.play_tone(
                CONNECT_TONE_VOLUME, CONNECT_TONE_FREQUENCY, CONNECT_TONE_DURATION_MS
            )
        except ActuatorError as exc:
            await self._brick.disconnect()
            raise ActuatorConnectionError(
                f"EV3 on {self._brick.communication.port} did not respond: {exc}"
            ) from exc
        LOGGER.info("Connected to EV3 on %s", self._brick.communication.port)

    async def execute(self, plan: ActuationPlan) -> None:
        batch = self._brick.batch_command
        try:
            batch.initialize(CommandType.DIRECT_NO_REPLY)
            batch.set_motor_polarity(self.left_port, plan.left_polarity)
            batch.set_motor_polarity(self.right_port, plan.right_polarity)
            if plan.drive is DriveMode.SPEED:
                batch.step_motor_at_speed(self.left_port, plan.output, plan.left_steps)
                batch.step_motor_at_speed(self.right_port, plan.output, plan.right_steps)
            else:
                batch.step_motor_at_power(self.left_port, plan.output, plan.left_steps)
                batch.step_motor_at_power(self.right_port, plan.output, plan.right_steps)
        except ValueError as exc:
            batch.reset()
            raise ActuatorError(f"Plan cannot be encoded: {exc}") from exc

        LOGGER.debug(
            "Sending batch: left=%s/%d right=%s/%d drive=%s output=%d",
            plan.left_polarity.name,
            plan.left_steps,
            plan.right_polarity.name,
            plan.right_steps,
            plan.drive.value,
            plan.output,
        )

        if self._ack_timeout is None:
            await batch.send()
            return

        try:
            await asyncio.wait_for(batch.send(), timeout=self._ack_timeout)
        except asyncio.TimeoutError as exc:
            raise ActuatorError(
                f"Batch not acknowledged within {self._ack_timeout:.1f}s"
            ) from exc

    async def aclose(self) -> None:
        await self._brick.disconnect()
