"""LEGO EV3 adapter speaking direct commands over a Bluetooth serial link.

Frame layout (all integers little-endian)::

    size:u16 | sequence:u16 | command type:u8 | variables:u16 | byte codes...

``size`` counts every byte after itself. The variables word packs the
global reservation in its low 10 bits and the local reservation above them.
Replies echo the sequence number followed by a reply type and the global
variables.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum, IntFlag
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

import serial

from ..core import Polarity

LOGGER = logging.getLogger(__name__)

MAX_STEPS = 2**31 - 1


class ActuatorError(RuntimeError):
    """Raised when the brick rejects a command or the link fails."""


class ActuatorConnectionError(ActuatorError):
    """Raised when the brick cannot be reached."""


class CommandType(IntEnum):
    DIRECT_REPLY = 0x00
    DIRECT_NO_REPLY = 0x80


class ReplyType(IntEnum):
    DIRECT_REPLY = 0x02
    DIRECT_REPLY_ERROR = 0x04


class OutputPort(IntFlag):
    A = 0x01
    B = 0x02
    C = 0x04
    D = 0x08


class InputPort(IntEnum):
    ONE = 0
    TWO = 1
    THREE = 2
    FOUR = 3


class Opcode(IntEnum):
    SOUND = 0x94
    INPUT_DEVICE = 0x99
    OUTPUT_POLARITY = 0xA7
    OUTPUT_STEP_POWER = 0xAC
    OUTPUT_STEP_SPEED = 0xAE


SOUND_TONE = 0x01
INPUT_READY_SI = 0x1D


def encode_constant(value: int) -> bytes:
    """Encode an integer parameter using the smallest local constant format."""

    if -31 <= value <= 31:
        return bytes([value & 0x3F])
    if -0x80 <= value <= 0x7F:
        return b"\x81" + struct.pack("<b", value)
    if -0x8000 <= value <= 0x7FFF:
        return b"\x82" + struct.pack("<h", value)
    if -0x80000000 <= value <= 0x7FFFFFFF:
        return b"\x83" + struct.pack("<i", value)
    raise ValueError(f"Parameter {value} does not fit in 32 bits")


def encode_global(index: int) -> bytes:
    if 0 <= index <= 31:
        return bytes([0x60 | index])
    if 0 <= index <= 0xFF:
        return bytes([0xE1, index])
    raise ValueError(f"Global variable index {index} out of range")


class CommandFrame:
    """Byte-code buffer for one direct command."""

    def __init__(
        self,
        command_type: CommandType,
        *,
        sequence: int,
        global_size: int = 0,
        local_size: int = 0,
    ) -> None:
        if not 0 <= global_size <= 1023 or not 0 <= local_size <= 63:
            raise ValueError("Variable reservation out of range")
        self.command_type = command_type
        self.sequence = sequence & 0xFFFF
        self.global_size = global_size
        self.local_size = local_size
        self._codes = bytearray()

    def __len__(self) -> int:
        return len(self._codes)

    def append_opcode(self, opcode: int, *parameters: bytes) -> None:
        self._codes.append(opcode)
        for parameter in parameters:
            self._codes.extend(parameter)

    def to_bytes(self) -> bytes:
        variables = (self.local_size << 10) | self.global_size
        body = (
            struct.pack("<HBH", self.sequence, self.command_type, variables)
            + bytes(self._codes)
        )
        return struct.pack("<H", len(body)) + body


@dataclass(slots=True, frozen=True)
class Reply:
    sequence: int
    reply_type: ReplyType
    payload: bytes


def parse_reply(frame: bytes) -> Reply:
    """Parse a reply frame (including its size prefix)."""

    if len(frame) < 5:
        raise ActuatorError(f"Reply frame too short ({len(frame)} bytes)")
    size, sequence, raw_type = struct.unpack_from("<HHB", frame)
    if size != len(frame) - 2:
        raise ActuatorError(
            f"Reply size mismatch: header says {size}, got {len(frame) - 2}"
        )
    try:
        reply_type = ReplyType(raw_type)
    except ValueError as exc:
        raise ActuatorError(f"Unexpected reply type 0x{raw_type:02x}") from exc
    return Reply(sequence=sequence, reply_type=reply_type, payload=bytes(frame[5:]))


SerialFactory = Callable[..., Any]


class SerialCommunication:
    """Blocking pyserial port driven from worker threads."""

    def __init__(
        self,
        port: str,
        *,
        baudrate: int = 115200,
        timeout: float = 2.0,
        serial_factory: SerialFactory = serial.Serial,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self._serial_factory = serial_factory
        self._serial: Optional[Any] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None

    async def open(self) -> None:
        if self._serial is not None:
            return
        LOGGER.info("Opening EV3 serial port %s", self.port)
        try:
            self._serial = await asyncio.to_thread(
                self._serial_factory,
                port=self.port,
                baudrate=self.baudrate,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise ActuatorConnectionError(
                f"Unable to open EV3 port {self.port}: {exc}"
            ) from exc

    async def close(self) -> None:
        handle = self._serial
        self._serial = None
        if handle is not None:
            await asyncio.to_thread(handle.close)

    async def write(self, data: bytes) -> None:
        handle = self._require_open()
        try:
            await self._run_to_completion(self._write_all, handle, data)
        except (serial.SerialException, OSError) as exc:
            raise ActuatorError(f"Write to {self.port} failed: {exc}") from exc

    async def read_frame(self) -> bytes:
        handle = self._require_open()
        try:
            return await self._run_to_completion(self._read_frame, handle)
        except (serial.SerialException, OSError) as exc:
            raise ActuatorError(f"Read from {self.port} failed: {exc}") from exc

    @staticmethod
    async def _run_to_completion(func: Callable[..., Any], *args: Any) -> Any:
        """Run ``func`` in a worker thread that outlives caller cancellation.

        A cancelled caller still waits for the thread to finish, so whoever
        holds the brick's lock keeps it until the port is idle again.
        """

        pending = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            with contextlib.suppress(Exception):
                await pending
            raise

    def _require_open(self) -> Any:
        if self._serial is None:
            raise ActuatorError("EV3 serial port is not open")
        return self._serial

    @staticmethod
    def _write_all(handle: Any, data: bytes) -> None:
        handle.write(data)
        handle.flush()

    def _read_frame(self, handle: Any) -> bytes:
        header = handle.read(2)
        if len(header) < 2:
            raise ActuatorError(f"Timed out waiting for reply on {self.port}")
        (size,) = struct.unpack("<H", header)
        body = handle.read(size)
        if len(body) < size:
            raise ActuatorError(
                f"Truncated reply on {self.port}: expected {size} bytes, got {len(body)}"
            )
        return bytes(header) + bytes(body)


@dataclass(slots=True, frozen=True)
class BrickChangedEvent:
    """Snapshot of input port SI values polled from the brick."""

    ports: Mapping[InputPort, float]
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


BrickChangedListener = Callable[[BrickChangedEvent], Awaitable[None] | None]


class Brick:
    """Owns the link to one EV3 brick and serialises frames over it."""

    def __init__(
        self,
        communication: SerialCommunication,
        *,
        sensor_poll_seconds: float = 0.0,
        sensor_ports: Sequence[InputPort] = (InputPort.ONE,),
    ) -> None:
        self.communication = communication
        self.sensor_poll_seconds = sensor_poll_seconds
        self.sensor_ports = tuple(sensor_ports)
        self.batch_command = BatchCommand(self)
        self.direct_command = DirectCommand(self)

        self._lock = asyncio.Lock()
        self._sequence = 0
        self._listeners: list[BrickChangedListener] = []
        self._monitor_task: Optional[asyncio.Task[None]] = None
        self._last_snapshot: Optional[dict[InputPort, float]] = None

    async def connect(self) -> None:
        await self.communication.open()
        if self.sensor_poll_seconds > 0 and self._monitor_task is None:
            self._monitor_task = asyncio.create_task(self._monitor_loop())

    async def disconnect(self) -> None:
        task = self._monitor_task
        self._monitor_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.communication.close()

    def add_changed_listener(self, listener: BrickChangedListener) -> None:
        if listener in self._listeners:
            raise ValueError("Listener already registered")
        self._listeners.append(listener)

    def remove_changed_listener(self, listener: BrickChangedListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def next_sequence(self) -> int:
        self._sequence = (self._sequence + 1) & 0xFFFF
        return self._sequence

    async def send_frame(self, frame: CommandFrame) -> Optional[Reply]:
        """Write ``frame`` and, for reply commands, wait for the matching reply."""

        data = frame.to_bytes()
        async with self._lock:
            await self.communication.write(data)
            if frame.command_type == CommandType.DIRECT_NO_REPLY:
                return None
            while True:
                reply = parse_reply(await self.communication.read_frame())
                if reply.sequence == frame.sequence:
                    break
                LOGGER.debug(
                    "Discarding stale reply %d while waiting for %d",
                    reply.sequence,
                    frame.sequence,
                )

        if reply.reply_type == ReplyType.DIRECT_REPLY_ERROR:
            raise ActuatorError(f"Brick rejected command {frame.sequence}")
        return reply

    async def _monitor_loop(self) -> None:
        while True:
            try:
                snapshot = {
                    port: await self.direct_command.read_si_value(port)
                    for port in self.sensor_ports
                }
            except ActuatorError as exc:
                LOGGER.debug("Sensor poll failed: %s", exc)
            else:
                if snapshot != self._last_snapshot:
                    self._last_snapshot = snapshot
                    await self._emit(BrickChangedEvent(ports=snapshot))
            await asyncio.sleep(self.sensor_poll_seconds)

    async def _emit(self, event: BrickChangedEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("BrickChanged listener failed")


class BatchCommand:
    """Accumulates per-motor instructions and sends them as one frame."""

    def __init__(self, brick: Brick) -> None:
        self._brick = brick
        self._frame: Optional[CommandFrame] = None

    @property
    def pending(self) -> bool:
        return self._frame is not None

    def initialize(
        self,
        command_type: CommandType = CommandType.DIRECT_NO_REPLY,
        *,
        global_size: int = 0,
        local_size: int = 0,
    ) -> None:
        self._frame = CommandFrame(
            command_type,
            sequence=self._brick.next_sequence(),
            global_size=global_size,
            local_size=local_size,
        )

    def reset(self) -> None:
        self._frame = None

    def set_motor_polarity(self, ports: OutputPort, polarity: Polarity) -> None:
        self._require_frame().append_opcode(
            Opcode.OUTPUT_POLARITY,
            encode_constant(0),
            encode_constant(int(ports)),
            encode_constant(int(polarity)),
        )

    def step_motor_at_speed(
        self, ports: OutputPort, speed: int, steps: int, brake: bool = False
    ) -> None:
        self._step(Opcode.OUTPUT_STEP_SPEED, ports, speed, steps, brake)

    def step_motor_at_power(
        self, ports: OutputPort, power: int, steps: int, brake: bool = False
    ) -> None:
        self._step(Opcode.OUTPUT_STEP_POWER, ports, power, steps, brake)

    async def send(self) -> Optional[Reply]:
        frame = self._require_frame()
        self._frame = None
        if not len(frame):
            raise ActuatorError("Refusing to send an empty batch")
        return await self._brick.send_frame(frame)

    def _step(
        self, opcode: Opcode, ports: OutputPort, output: int, steps: int, brake: bool
    ) -> None:
        if not -100 <= output <= 100:
            raise ValueError(f"Output {output} outside -100..100")
        if not 0 <= steps <= MAX_STEPS:
            raise ValueError(f"Step count {steps} outside 0..{MAX_STEPS}")
        # Ramp-up and ramp-down are zero: the whole step count runs at full output.
        self._require_frame().append_opcode(
            opcode,
            encode_constant(0),
            encode_constant(int(ports)),
            encode_constant(output),
            encode_constant(0),
            encode_constant(steps),
            encode_constant(0),
            encode_constant(1 if brake else 0),
        )

    def _require_frame(self) -> CommandFrame:
        if self._frame is None:
            raise RuntimeError("Batch not initialised; call initialize() first")
        return self._frame


class DirectCommand:
    """Single-shot commands that expect a reply from the brick."""

    def __init__(self, brick: Brick) -> None:
        self._brick = brick

    async def play_tone(self, volume: int, frequency: int, duration_ms: int) -> None:
        frame = CommandFrame(
            CommandType.DIRECT_REPLY, sequence=self._brick.next_sequence()
        )
        frame.append_opcode(
            Opcode.SOUND,
            encode_constant(SOUND_TONE),
            encode_constant(volume),
            encode_constant(frequency),
            encode_constant(duration_ms),
        )
        await self._brick.send_frame(frame)

    async def read_si_value(self, port: InputPort) -> float:
        frame = CommandFrame(
            CommandType.DIRECT_REPLY,
            sequence=self._brick.next_sequence(),
            global_size=4,
        )
        frame.append_opcode(
            Opcode.INPUT_DEVICE,
            encode_constant(INPUT_READY_SI),
            encode_constant(0),
            encode_constant(int(port)),
            encode_constant(0),
            encode_constant(-1),
            encode_constant(1),
            encode_global(0),
        )
        reply = await self._brick.send_frame(frame)
        assert reply is not None
        if len(reply.payload) < 4:
            raise ActuatorError("SI reply missing value")
        (value,) = struct.unpack_from("<f", reply.payload)
        return value
