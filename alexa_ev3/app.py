"""Main application entry-point for alexa-ev3."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .adapters import SqsTransport
from .adapters.ev3 import ActuatorConnectionError, ActuatorError, BrickChangedEvent
from .config import AppConfig, ConfigurationError, load_config
from .core import ActuatorGateway, Command, QueueTransport
from .decoder import decode
from .gateway import Ev3Gateway
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .planner import ActuationPlanner
from .poller import QueuePoller

LOGGER = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Collaborators built once at startup and shared by reference."""

    config: AppConfig
    transport: QueueTransport
    gateway: ActuatorGateway


class DispatchState(str, Enum):
    IDLE = "idle"
    EXECUTING = "executing"


class DispatchOutcome(str, Enum):
    EMPTY = "empty"
    NOOP = "noop"
    EXECUTED = "executed"
    FAILED = "failed"


def _describe(command: Command) -> str:
    if command.magnitude is None:
        return command.action.value
    return f"{command.action.value} {command.magnitude}"


class AlexaEv3App:
    """Connects to the brick and runs the dispatch loop.

    One message is handled at a time: poll, decode, plan, then execute and
    wait for the brick to take the batch before polling again. A bad message
    or a failed batch is logged and the loop carries on; only a brick that
    cannot be reached at startup stops the service.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        transport: Optional[QueueTransport] = None,
        gateway: Optional[ActuatorGateway] = None,
        health: Optional[HealthReporter] = None,
    ) -> None:
        self._config = config or load_config()
        self._context = AppContext(
            config=self._config,
            transport=transport or SqsTransport.from_config(self._config.queue),
            gateway=gateway or Ev3Gateway.from_config(self._config.ev3),
        )
        self._planner = ActuationPlanner(
            self._config.ev3.steps_per_degree_turn,
            drive_speed=self._config.ev3.drive_speed,
            turn_power=self._config.ev3.turn_power,
        )
        self._poller = QueuePoller(
            self._context.transport,
            self._config.queue.aws_sqs_address,
            timeout=self._config.queue.poll_timeout_seconds,
        )
        self._health = health or HealthReporter()
        self._health_server: Optional[HealthServer] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._state = DispatchState.IDLE
        self._queue_healthy: Optional[bool] = None

    @property
    def context(self) -> AppContext:
        return self._context

    @property
    def state(self) -> DispatchState:
        return self._state

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        """Connect to the brick and dispatch commands until :meth:`stop` is called.

        Raises:
            ConfigurationError: If no queue address is configured.
            ActuatorConnectionError: If the brick cannot be reached.
        """

        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        queue_url = self._config.queue.aws_sqs_address
        if not queue_url:
            raise ConfigurationError(
                "aws_sqs_address is not set; add it to the [queue] section"
            )

        LOGGER.info("alexa-ev3 starting with config: %s", self._config.path)
        await self._start_health_server()
        await self._health.set_dispatch_state(self._state.value)
        await self._health.update("actuator", False, "connecting")

        gateway = self._context.gateway
        try:
            await gateway.connect()
        except ActuatorConnectionError as exc:
            await self._health.update("actuator", False, str(exc))
            await self._stop_health_server()
            raise

        await self._health.update("actuator", True, None)
        brick = getattr(gateway, "brick", None)
        if brick is not None:
            brick.add_changed_listener(self._on_brick_changed)

        LOGGER.info("Connected; waiting for commands on %s", queue_url)
        try:
            await self._dispatch_loop()
        except asyncio.CancelledError:
            LOGGER.info("alexa-ev3 received shutdown signal")
            raise
        finally:
            if brick is not None:
                brick.remove_changed_listener(self._on_brick_changed)
            await self._stop_services()

    def stop(self) -> None:
        """Ask the dispatch loop to exit after the current iteration."""

        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        self._stop_event.set()

    async def dispatch_once(self) -> DispatchOutcome:
        """Run a single poll -> decode -> plan -> execute iteration."""

        message = await self._poller.poll()
        await self._update_queue_health()
        if message is None:
            return DispatchOutcome.EMPTY

        LOGGER.info(
            "Message %s received: %s", message.message_id or "-", message.body
        )
        command = decode(message.body)
        plan = self._planner.plan(command)
        if plan is None:
            LOGGER.info(
                "No actuation for action %r; waiting for next command",
                command.action.value,
            )
            await self._health.record_outcome(DispatchOutcome.NOOP.value, _describe(command))
            return DispatchOutcome.NOOP

        await self._transition_state(DispatchState.EXECUTING, detail=_describe(command))
        outcome = DispatchOutcome.EXECUTED
        try:
            await self._context.gateway.execute(plan)
        except ActuatorError as exc:
            outcome = DispatchOutcome.FAILED
            LOGGER.error(
                "Command %s failed on the actuator: %s",
                _describe(command),
                exc,
                exc_info=True,
            )
            await self._health.update("actuator", False, str(exc))
        else:
            LOGGER.info("Command executed: %s", _describe(command))
            await self._health.update("actuator", True, None)
        finally:
            await self._transition_state(DispatchState.IDLE)

        await self._health.record_outcome(outcome.value, _describe(command))
        return outcome

    @classmethod
    def start(cls, config: Optional[AppConfig] = None) -> int:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("alexa-ev3 received shutdown signal")
        except ConfigurationError as exc:
            LOGGER.error("Invalid configuration: %s", exc)
            return 1
        except ActuatorConnectionError as exc:
            LOGGER.error("Cannot reach the EV3 brick: %s", exc)
            return 1
        return 0

    async def _dispatch_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.dispatch_once()
            except Exception:
                LOGGER.exception("Dispatch iteration failed; waiting for next command")
                await self._transition_state(DispatchState.IDLE)
                await self._health.record_outcome(DispatchOutcome.FAILED.value)
                # Back off for one poll budget so a repeating fault cannot spin.
                await asyncio.sleep(self._poller.timeout)

    async def _transition_state(
        self, state: DispatchState, *, detail: Optional[str] = None
    ) -> None:
        if state == self._state:
            return
        previous = self._state
        self._state = state
        LOGGER.debug(
            "Dispatch state %s -> %s (%s)",
            previous.value,
            state.value,
            detail or state.value,
        )
        await self._health.set_dispatch_state(state.value)

    async def _update_queue_health(self) -> None:
        healthy = self._poller.failure_streak == 0
        if healthy == self._queue_healthy:
            return
        self._queue_healthy = healthy
        detail = None if healthy else f"{self._poller.failure_streak} failed receive(s)"
        await self._health.update("queue", healthy, detail)

    async def _on_brick_changed(self, event: BrickChangedEvent) -> None:
        values = {f"port{port.value + 1}": value for port, value in event.ports.items()}
        for name, value in values.items():
            LOGGER.info("Input %s SI value: %s", name, value)
        await self._health.record_sensors(values)

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)

    async def _stop_health_server(self) -> None:
        if self._health_server is None:
            return
        await self._health_server.stop()
        self._health_server = None

    async def _stop_services(self) -> None:
        await self._poller.aclose()
        try:
            await self._context.gateway.aclose()
        except ActuatorError as exc:
            LOGGER.warning("Error while closing the EV3 link: %s", exc)
        await self._stop_health_server()
