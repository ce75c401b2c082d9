from pathlib import Path

import pytest

from alexa_ev3 import constants
from alexa_ev3.config import ConfigurationError, load_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "alexa-ev3.cfg", environ={})

    assert config.ev3.port == "COM3"
    assert config.ev3.steps_per_degree_turn == 3.5
    assert config.ev3.left_motor == "B"
    assert config.ev3.right_motor == "C"
    assert config.ev3.batch_ack_timeout_seconds == 0.0
    assert config.queue.aws_sqs_address == ""
    assert config.queue.region == constants.DEFAULT_SQS_REGION
    assert config.queue.poll_timeout_ms == 125
    assert config.queue.poll_timeout_seconds == pytest.approx(0.125)
    assert config.queue.access_key is None
    assert config.logging.path is None
    assert config.health.enabled is False


def test_load_config_overrides_defaults(tmp_path: Path) -> None:
    config_file = tmp_path / "alexa-ev3.cfg"
    config_file.write_text(
        """
[ev3]
ev3_port = /dev/rfcomm0
steps_per_degree_turn = 2.75
left_motor = c
right_motor = b
batch_ack_timeout_seconds = 5

[queue]
aws_sqs_address = https://sqs.eu-west-1.amazonaws.com/1/robot
poll_timeout_ms = 250

[logging]
level = DEBUG
path = ~/logs/alexa-ev3.log

[health]
enabled = true
port = 8089
""",
        encoding="utf-8",
    )

    config = load_config(config_file, environ={})

    assert config.ev3.port == "/dev/rfcomm0"
    assert config.ev3.steps_per_degree_turn == 2.75
    assert config.ev3.left_motor == "C"
    assert config.ev3.right_motor == "B"
    assert config.ev3.batch_ack_timeout_seconds == 5.0
    assert config.queue.aws_sqs_address.endswith("/robot")
    assert config.queue.poll_timeout_ms == 250
    assert config.logging.level == "DEBUG"
    assert config.logging.path == Path("~/logs/alexa-ev3.log").expanduser()
    assert config.health.enabled is True
    assert config.health.port == 8089


def test_load_config_reads_credentials_from_environment(tmp_path: Path) -> None:
    config = load_config(
        tmp_path / "missing.cfg",
        environ={"AWS_ACCESS_KEY": "AKIDEXAMPLE", "AWS_SECRET_KEY": "secret"},
    )

    assert config.queue.access_key == "AKIDEXAMPLE"
    assert config.queue.secret_key == "secret"


@pytest.mark.parametrize(
    "section",
    [
        "[ev3]\nsteps_per_degree_turn = 0\n",
        "[ev3]\nsteps_per_degree_turn = fast\n",
        "[ev3]\nleft_motor = E\n",
        "[ev3]\nleft_motor = C\nright_motor = C\n",
    ],
)
def test_load_config_rejects_invalid_ev3_settings(tmp_path: Path, section: str) -> None:
    config_file = tmp_path / "alexa-ev3.cfg"
    config_file.write_text(section, encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_config(config_file, environ={})
