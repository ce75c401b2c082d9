"""Tests for the EV3 direct-command adapter."""

import asyncio
import struct
from typing import Optional

import pytest
import serial

from alexa_ev3.adapters.ev3 import (
    ActuatorConnectionError,
    ActuatorError,
    Brick,
    BrickChangedEvent,
    CommandFrame,
    CommandType,
    InputPort,
    OutputPort,
    SerialCommunication,
    encode_constant,
    encode_global,
    parse_reply,
)
from alexa_ev3.core import Polarity


class FakeSerial:
    """Stands in for a paired brick: records writes and answers reply commands."""

    def __init__(self, *, si_value: float = 0.0, reply_type: int = 0x02) -> None:
        self.writes: list[bytes] = []
        self.si_value = si_value
        self.reply_type = reply_type
        self.silent = False
        self.closed = False
        self._inbox = bytearray()

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        size, sequence, command_type, variables = struct.unpack_from("<HHBH", data)
        if command_type == CommandType.DIRECT_REPLY and not self.silent:
            global_size = variables & 0x3FF
            payload = struct.pack("<f", self.si_value)[:global_size].ljust(
                global_size, b"\x00"
            )
            body = struct.pack("<HB", sequence, self.reply_type) + payload
            self._inbox.extend(struct.pack("<H", len(body)) + body)
        return len(data)

    def flush(self) -> None:
        pass

    def read(self, size: int) -> bytes:
        chunk = bytes(self._inbox[:size])
        del self._inbox[:size]
        return chunk

    def queue_raw(self, data: bytes) -> None:
        self._inbox.extend(data)

    def close(self) -> None:
        self.closed = True


def _communication(fake: FakeSerial) -> SerialCommunication:
    return SerialCommunication("COM3", serial_factory=lambda **_: fake)


@pytest.mark.parametrize(
    ("value", "encoded"),
    [
        (0, b"\x00"),
        (1, b"\x01"),
        (-1, b"\x3f"),
        (31, b"\x1f"),
        (100, b"\x81\x64"),
        (-100, b"\x81\x9c"),
        (3000, b"\x82\xb8\x0b"),
        (40000, b"\x83\x40\x9c\x00\x00"),
    ],
)
def test_encode_constant(value: int, encoded: bytes) -> None:
    assert encode_constant(value) == encoded


def test_encode_constant_rejects_oversized_values() -> None:
    with pytest.raises(ValueError):
        encode_constant(2**31)


def test_encode_global() -> None:
    assert encode_global(0) == b"\x60"
    assert encode_global(40) == b"\xe1\x28"


def test_command_frame_layout() -> None:
    frame = CommandFrame(CommandType.DIRECT_REPLY, sequence=0x0102, global_size=4)
    frame.append_opcode(0x01)

    assert frame.to_bytes() == bytes.fromhex("0600" "0201" "00" "0400" "01")


def test_parse_reply_rejects_size_mismatch() -> None:
    with pytest.raises(ActuatorError):
        parse_reply(bytes.fromhex("0500" "0100" "02"))


@pytest.mark.asyncio
async def test_batch_encodes_forward_move() -> None:
    fake = FakeSerial()
    brick = Brick(_communication(fake))
    await brick.connect()

    batch = brick.batch_command
    batch.initialize(CommandType.DIRECT_NO_REPLY)
    batch.set_motor_polarity(OutputPort.B, Polarity.FORWARD)
    batch.set_motor_polarity(OutputPort.C, Polarity.FORWARD)
    batch.step_motor_at_speed(OutputPort.B, 100, 3000)
    batch.step_motor_at_speed(OutputPort.C, 100, 3000)
    reply = await batch.send()

    assert reply is None
    assert fake.writes == [
        bytes.fromhex(
            "2300" "0100" "80" "0000"
            "a7000201"
            "a7000401"
            "ae000281640082b80b0000"
            "ae000481640082b80b0000"
        )
    ]
    assert not batch.pending


@pytest.mark.asyncio
async def test_batch_encodes_power_steps_and_reverse_polarity() -> None:
    fake = FakeSerial()
    brick = Brick(_communication(fake))
    await brick.connect()

    batch = brick.batch_command
    batch.initialize()
    batch.set_motor_polarity(OutputPort.B, Polarity.BACKWARD)
    batch.step_motor_at_power(OutputPort.B, 100, 315, brake=True)
    await batch.send()

    (frame,) = fake.writes
    assert frame[7:] == bytes.fromhex("a700023f" "ac0002816400823b010001")


@pytest.mark.asyncio
async def test_batch_rejects_out_of_range_values() -> None:
    brick = Brick(_communication(FakeSerial()))
    batch = brick.batch_command
    batch.initialize()

    with pytest.raises(ValueError):
        batch.step_motor_at_speed(OutputPort.B, 101, 10)
    with pytest.raises(ValueError):
        batch.step_motor_at_power(OutputPort.B, 100, -1)


@pytest.mark.asyncio
async def test_batch_requires_initialize() -> None:
    brick = Brick(_communication(FakeSerial()))

    with pytest.raises(RuntimeError):
        brick.batch_command.set_motor_polarity(OutputPort.B, Polarity.FORWARD)


@pytest.mark.asyncio
async def test_play_tone_waits_for_reply() -> None:
    fake = FakeSerial()
    brick = Brick(_communication(fake))
    await brick.connect()

    await brick.direct_command.play_tone(0x50, 5000, 500)

    assert fake.writes == [
        bytes.fromhex("0f00" "0100" "00" "0000" "9401815082881382f401")
    ]


@pytest.mark.asyncio
async def test_reply_error_raises() -> None:
    fake = FakeSerial(reply_type=0x04)
    brick = Brick(_communication(fake))
    await brick.connect()

    with pytest.raises(ActuatorError):
        await brick.direct_command.play_tone(0x50, 5000, 500)


@pytest.mark.asyncio
async def test_missing_reply_raises() -> None:
    fake = FakeSerial()
    fake.silent = True
    brick = Brick(_communication(fake))
    await brick.connect()

    with pytest.raises(ActuatorError):
        await brick.direct_command.play_tone(0x50, 5000, 500)


@pytest.mark.asyncio
async def test_stale_replies_are_skipped() -> None:
    fake = FakeSerial(si_value=12.5)
    fake.queue_raw(bytes.fromhex("0700" "6300" "02" "00000000"))
    brick = Brick(_communication(fake))
    await brick.connect()

    value = await brick.direct_command.read_si_value(InputPort.ONE)

    assert value == 12.5
    assert fake.writes[0][7:] == bytes.fromhex("99" "1d" "00" "00" "00" "3f" "01" "60")


@pytest.mark.asyncio
async def test_open_failure_raises_connection_error() -> None:
    def _fail(**_):
        raise serial.SerialException("could not open port COM3")

    communication = SerialCommunication("COM3", serial_factory=_fail)

    with pytest.raises(ActuatorConnectionError):
        await communication.open()


@pytest.mark.asyncio
async def test_write_before_open_raises() -> None:
    communication = SerialCommunication("COM3", serial_factory=lambda **_: FakeSerial())

    with pytest.raises(ActuatorError):
        await communication.write(b"\x00")


@pytest.mark.asyncio
async def test_brick_changed_listeners_receive_sensor_updates() -> None:
    fake = FakeSerial(si_value=3.0)
    brick = Brick(_communication(fake), sensor_poll_seconds=0.01)
    events: list[BrickChangedEvent] = []
    received = asyncio.Event()

    def _listener(event: BrickChangedEvent) -> None:
        events.append(event)
        received.set()

    brick.add_changed_listener(_listener)
    await brick.connect()
    try:
        await asyncio.wait_for(received.wait(), timeout=1.0)
    finally:
        await brick.disconnect()

    assert events[0].ports == {InputPort.ONE: 3.0}
    assert fake.closed


@pytest.mark.asyncio
async def test_brick_changed_only_fires_on_change() -> None:
    fake = FakeSerial(si_value=1.0)
    brick = Brick(_communication(fake), sensor_poll_seconds=0.005)
    events: list[BrickChangedEvent] = []
    brick.add_changed_listener(events.append)

    await brick.connect()
    await asyncio.sleep(0.05)
    await brick.disconnect()

    assert len(events) == 1
    assert len(fake.writes) > 1


def test_add_changed_listener_rejects_duplicates() -> None:
    brick = Brick(_communication(FakeSerial()))

    def _listener(event: BrickChangedEvent) -> Optional[None]:
        return None

    brick.add_changed_listener(_listener)
    with pytest.raises(ValueError):
        brick.add_changed_listener(_listener)
