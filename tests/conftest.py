from configparser import ConfigParser
from pathlib import Path

import pytest

from alexa_ev3.config import (
    AppConfig,
    Ev3Config,
    HealthConfig,
    LoggingConfig,
    QueueConfig,
)

QUEUE_URL = "https://sqs.eu-west-1.amazonaws.com/123456789012/alexa-ev3"


@pytest.fixture
def queue_url() -> str:
    return QUEUE_URL


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        ev3=Ev3Config(sensor_poll_seconds=0.0),
        queue=QueueConfig(aws_sqs_address=QUEUE_URL, poll_timeout_ms=50),
        logging=LoggingConfig(),
        health=HealthConfig(),
        raw=ConfigParser(),
        path=Path("alexa-ev3.cfg"),
    )
