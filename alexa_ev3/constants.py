"""Constants used across the alexa-ev3 package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "alexa-ev3"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / f".{APP_NAME}" / DEFAULT_CONFIG_FILENAME

DEFAULT_EV3_PORT = "COM3"
DEFAULT_BAUDRATE = 115200
DEFAULT_STEPS_PER_DEGREE_TURN = 3.5

DEFAULT_SQS_REGION = "eu-west-1"
# Per network round trip against the queue.
DEFAULT_POLL_TIMEOUT_MS = 125

ACCESS_KEY_ENV_NAME = "AWS_ACCESS_KEY"
SECRET_KEY_ENV_NAME = "AWS_SECRET_KEY"
