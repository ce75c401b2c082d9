"""Configuration loader for alexa-ev3."""

from __future__ import annotations

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from . import constants


_MOTOR_PORTS = ("A", "B", "C", "D")


class ConfigurationError(RuntimeError):
    """Raised when the configuration cannot support the requested operation."""


@dataclass(slots=True)
class Ev3Config:
    port: str = constants.DEFAULT_EV3_PORT
    baudrate: int = constants.DEFAULT_BAUDRATE
    left_motor: str = "B"
    right_motor: str = "C"
    steps_per_degree_turn: float = constants.DEFAULT_STEPS_PER_DEGREE_TURN
    drive_speed: int = 100
    turn_power: int = 100
    batch_ack_timeout_seconds: float = 0.0  # 0 waits for the acknowledgment indefinitely
    sensor_poll_seconds: float = 1.0  # 0 disables input port telemetry
    reply_timeout_seconds: float = 2.0


@dataclass(slots=True)
class QueueConfig:
    aws_sqs_address: str = ""
    region: str = constants.DEFAULT_SQS_REGION
    poll_timeout_ms: int = constants.DEFAULT_POLL_TIMEOUT_MS
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    @property
    def poll_timeout_seconds(self) -> float:
        return self.poll_timeout_ms / 1000.0


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class AppConfig:
    ev3: Ev3Config
    queue: QueueConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def load_config(
    path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None
) -> AppConfig:
    """Load configuration from disk, applying defaults where necessary.

    AWS credentials are taken from ``AWS_ACCESS_KEY`` / ``AWS_SECRET_KEY`` in
    ``environ`` (the process environment by default), never from the file.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    parser = ConfigParser()
    parser.read_dict(
        {
            "ev3": {
                "ev3_port": constants.DEFAULT_EV3_PORT,
                "baudrate": str(constants.DEFAULT_BAUDRATE),
                "left_motor": "B",
                "right_motor": "C",
                "steps_per_degree_turn": str(constants.DEFAULT_STEPS_PER_DEGREE_TURN),
                "drive_speed": "100",
                "turn_power": "100",
                "batch_ack_timeout_seconds": "0",
                "sensor_poll_seconds": "1.0",
                "reply_timeout_seconds": "2.0",
            },
            "queue": {
                "aws_sqs_address": "",
                "region": constants.DEFAULT_SQS_REGION,
                "poll_timeout_ms": str(constants.DEFAULT_POLL_TIMEOUT_MS),
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    defaults = Ev3Config()
    try:
        steps_per_degree = parser.getfloat(
            "ev3", "steps_per_degree_turn", fallback=defaults.steps_per_degree_turn
        )
    except ValueError as exc:
        raise ConfigurationError(
            f"steps_per_degree_turn must be a number: {exc}"
        ) from exc
    if steps_per_degree <= 0:
        raise ConfigurationError(
            f"steps_per_degree_turn must be positive (got {steps_per_degree})"
        )

    left_motor = parser.get("ev3", "left_motor").strip().upper()
    right_motor = parser.get("ev3", "right_motor").strip().upper()
    for name, value in (("left_motor", left_motor), ("right_motor", right_motor)):
        if value not in _MOTOR_PORTS:
            raise ConfigurationError(f"{name} must be one of A, B, C, D (got {value!r})")
    if left_motor == right_motor:
        raise ConfigurationError("left_motor and right_motor must differ")

    ev3 = Ev3Config(
        port=parser.get("ev3", "ev3_port").strip() or constants.DEFAULT_EV3_PORT,
        baudrate=parser.getint("ev3", "baudrate", fallback=defaults.baudrate),
        left_motor=left_motor,
        right_motor=right_motor,
        steps_per_degree_turn=steps_per_degree,
        drive_speed=max(-100, min(100, parser.getint("ev3", "drive_speed", fallback=100))),
        turn_power=max(-100, min(100, parser.getint("ev3", "turn_power", fallback=100))),
        batch_ack_timeout_seconds=max(
            0.0, parser.getfloat("ev3", "batch_ack_timeout_seconds", fallback=0.0)
        ),
        sensor_poll_seconds=max(
            0.0, parser.getfloat("ev3", "sensor_poll_seconds", fallback=1.0)
        ),
        reply_timeout_seconds=max(
            0.1, parser.getfloat("ev3", "reply_timeout_seconds", fallback=2.0)
        ),
    )

    queue = QueueConfig(
        aws_sqs_address=parser.get("queue", "aws_sqs_address").strip(),
        region=parser.get("queue", "region").strip() or constants.DEFAULT_SQS_REGION,
        poll_timeout_ms=max(
            1,
            parser.getint(
                "queue", "poll_timeout_ms", fallback=constants.DEFAULT_POLL_TIMEOUT_MS
            ),
        ),
        access_key=env.get(constants.ACCESS_KEY_ENV_NAME) or None,
        secret_key=env.get(constants.SECRET_KEY_ENV_NAME) or None,
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return AppConfig(
        ev3=ev3,
        queue=queue,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )
