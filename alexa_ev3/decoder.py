"""Decoding of queue message bodies into validated commands.

Message bodies arrive as an SNS-style envelope whose ``Message`` field is
itself a JSON document::

    {"Message": "{\\"device\\": \\"robot\\", \\"action\\": \\"left\\", \\"value\\": \\"45\\"}"}

Decoding never fails: anything that cannot be read is treated as absent and
ends up as an ``UNKNOWN`` command.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from .core import Action, Command

LOGGER = logging.getLogger(__name__)

MAX_MAGNITUDE = 2**32 - 1

_MAGNITUDE_PATTERN = re.compile(r"\s*\+?([0-9]+)\s*")


@dataclass(slots=True, frozen=True)
class CommandFields:
    """Wire-level fields of the inner message; wrong types collapse to None."""

    device: Optional[str] = None
    action: Optional[str] = None
    option: Optional[str] = None
    value: Optional[str] = None


def _load_object(text: Any) -> Optional[dict[str, Any]]:
    if not isinstance(text, str):
        return None
    try:
        document = json.loads(text)
    except (ValueError, RecursionError):
        # Nesting deeper than the interpreter's recursion limit counts as unreadable.
        return None
    return document if isinstance(document, dict) else None


def _string_field(document: dict[str, Any], key: str) -> Optional[str]:
    value = document.get(key)
    return value if isinstance(value, str) else None


def parse_fields(raw: str) -> CommandFields:
    """Extract the inner message fields from a raw body."""

    envelope = _load_object(raw)
    if envelope is None:
        return CommandFields()

    content = _load_object(envelope.get("Message"))
    if content is None:
        return CommandFields()

    return CommandFields(
        device=_string_field(content, "device"),
        action=_string_field(content, "action"),
        option=_string_field(content, "option"),
        value=_string_field(content, "value"),
    )


def parse_magnitude(value: Optional[str]) -> Optional[int]:
    """Return the unsigned integer in ``value`` or None when it is not one."""

    if value is None:
        return None
    match = _MAGNITUDE_PATTERN.fullmatch(value)
    if match is None:
        return None
    digits = match.group(1).lstrip("0") or "0"
    if len(digits) > len(str(MAX_MAGNITUDE)):
        return None
    magnitude = int(digits)
    if magnitude > MAX_MAGNITUDE:
        return None
    return magnitude


def decode(raw: str) -> Command:
    """Decode a raw queue message body into a :class:`Command`."""

    fields = parse_fields(raw)

    if fields == CommandFields():
        LOGGER.warning("Message body carried no readable command fields")
    else:
        LOGGER.info(
            "Message content: device=%r action=%r option=%r value=%r",
            fields.device,
            fields.action,
            fields.option,
            fields.value,
        )

    command = Command(
        action=Action.from_wire(fields.action),
        magnitude=parse_magnitude(fields.value),
    )

    if fields.value is not None and command.magnitude is None:
        LOGGER.info("Ignoring non-numeric value %r; default magnitude applies", fields.value)

    return command
