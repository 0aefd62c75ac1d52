"""
Queue engine wire protocol.

Input (one command per line):

    v1  ADD,<id>,<items>,<prepTime>,<isExpress>
        VIP,<id>,<items>,<prepTime>,<isExpress>
        CANCEL,<id>
        COMPLETE

    v2  {"v": 2, "type": "ADD", "id": 7, "items": "burger", "prepTime": 10, "isExpress": true}

Output: free-form diagnostic lines, ERROR:<CODE> lines, a single READY
sentinel at startup, and full-queue snapshots as a JSON array.

v1 has no escaping, so encode() rejects any field carrying the delimiter or
a line break. v2 is JSON and carries any text.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from core.exceptions import ProtocolDecodeError, ProtocolEncodeError

logger = logging.getLogger(__name__)

READY_SENTINEL = "READY"
LIST_START = "["
ERROR_PREFIX = "ERROR:"
DELIMITER = ","


# =============================================================================
# Commands
# =============================================================================

@dataclass(frozen=True)
class AddCommand:
    verb: ClassVar[str] = "ADD"
    order_id: int
    items: str
    prep_time: int
    is_express: bool = False


@dataclass(frozen=True)
class VipCommand:
    verb: ClassVar[str] = "VIP"
    order_id: int
    items: str
    prep_time: int
    is_express: bool = False


@dataclass(frozen=True)
class CancelCommand:
    verb: ClassVar[str] = "CANCEL"
    order_id: int


@dataclass(frozen=True)
class CompleteCommand:
    """Always targets the engine's current head element."""
    verb: ClassVar[str] = "COMPLETE"


Command = Union[AddCommand, VipCommand, CancelCommand, CompleteCommand]

_ENQUEUE_TYPES = {"ADD": AddCommand, "VIP": VipCommand}


def command_for_order(order: Any) -> Union[AddCommand, VipCommand]:
    """Build the enqueue command for an order record (VIP or normal)."""
    cls = VipCommand if getattr(order, "is_vip", False) else AddCommand
    return cls(
        order_id=int(order.id),
        items=str(order.items),
        prep_time=int(order.prep_time),
        is_express=bool(getattr(order, "is_express", False) or False),
    )


# =============================================================================
# Codecs
# =============================================================================

class LineCodec(Protocol):
    version: str

    def encode(self, command: Command) -> str: ...

    def decode(self, line: str) -> Command: ...


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def _parse_bool(text: str) -> bool:
    return text.strip().lower() == "true"


class CsvLineCodec:
    """Comma-joined positional fields, no escaping (engine protocol v1)."""

    version = "v1"

    def _check_field(self, name: str, value: str) -> str:
        if DELIMITER in value or "\n" in value or "\r" in value:
            raise ProtocolEncodeError(
                f"Field '{name}' may not contain ',' or line breaks",
                context={"field": name},
            )
        return value

    def encode(self, command: Command) -> str:
        if isinstance(command, (AddCommand, VipCommand)):
            parts = [
                command.verb,
                str(int(command.order_id)),
                self._check_field("items", command.items),
                str(int(command.prep_time)),
                _format_bool(command.is_express),
            ]
        elif isinstance(command, CancelCommand):
            parts = [command.verb, str(int(command.order_id))]
        elif isinstance(command, CompleteCommand):
            parts = [command.verb]
        else:
            raise ProtocolEncodeError(f"Unknown command type: {type(command).__name__}")
        return DELIMITER.join(parts) + "\n"

    def decode(self, line: str) -> Command:
        parts = line.strip().split(DELIMITER)
        verb = parts[0].upper()
        try:
            if verb in _ENQUEUE_TYPES:
                if len(parts) < 4:
                    raise ProtocolDecodeError(f"Invalid {verb} format", context={"line": line.strip()})
                return _ENQUEUE_TYPES[verb](
                    order_id=int(parts[1]),
                    items=parts[2],
                    prep_time=int(parts[3]),
                    is_express=len(parts) >= 5 and _parse_bool(parts[4]),
                )
            if verb == "CANCEL":
                if len(parts) < 2:
                    raise ProtocolDecodeError("Invalid CANCEL format", context={"line": line.strip()})
                return CancelCommand(order_id=int(parts[1]))
            if verb == "COMPLETE":
                return CompleteCommand()
        except ValueError as e:
            raise ProtocolDecodeError(f"Invalid number in command: {e}", context={"line": line.strip()}, cause=e) from e
        raise ProtocolDecodeError(f"Unknown command: {verb}", context={"line": line.strip()})


class JsonLineCodec:
    """Tagged, versioned JSON object per line (engine protocol v2)."""

    version = "v2"
    wire_version = 2

    def encode(self, command: Command) -> str:
        payload: Dict[str, Any] = {"v": self.wire_version, "type": command.verb}
        if isinstance(command, (AddCommand, VipCommand)):
            payload.update({
                "id": int(command.order_id),
                "items": command.items,
                "prepTime": int(command.prep_time),
                "isExpress": bool(command.is_express),
            })
        elif isinstance(command, CancelCommand):
            payload["id"] = int(command.order_id)
        elif not isinstance(command, CompleteCommand):
            raise ProtocolEncodeError(f"Unknown command type: {type(command).__name__}")
        # json.dumps escapes control characters, so the line stays single
        return json.dumps(payload, separators=(",", ":")) + "\n"

    def decode(self, line: str) -> Command:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            raise ProtocolDecodeError(f"Invalid JSON command: {e}", cause=e) from e
        if not isinstance(payload, dict) or payload.get("v") != self.wire_version:
            raise ProtocolDecodeError("Unsupported command envelope", context={"line": line.strip()})
        verb = str(payload.get("type", "")).upper()
        try:
            if verb in _ENQUEUE_TYPES:
                return _ENQUEUE_TYPES[verb](
                    order_id=int(payload["id"]),
                    items=str(payload["items"]),
                    prep_time=int(payload["prepTime"]),
                    is_express=bool(payload.get("isExpress", False)),
                )
            if verb == "CANCEL":
                return CancelCommand(order_id=int(payload["id"]))
            if verb == "COMPLETE":
                return CompleteCommand()
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolDecodeError(f"Malformed {verb} command: {e}", cause=e) from e
        raise ProtocolDecodeError(f"Unknown command: {verb}", context={"line": line.strip()})


_CODECS = {
    "v1": CsvLineCodec,
    "v2": JsonLineCodec,
}


def get_codec(version: str = "v1") -> LineCodec:
    try:
        return _CODECS[version]()
    except KeyError:
        raise ValueError(f"Unknown protocol version: {version}") from None


# =============================================================================
# Output framing
# =============================================================================

class LineFramer:
    """
    Reassembles complete lines from arbitrary stdout chunks.

    Bytes are buffered until a newline; a chunk may hold several lines or
    a fraction of one. Lines over max_line_bytes are discarded whole.
    """

    def __init__(self, max_line_bytes: int = 1024 * 1024, encoding: str = "utf-8"):
        self.max_line_bytes = max_line_bytes
        self.encoding = encoding
        self._buffer = bytearray()
        self._discarding = False
        self.oversized_lines = 0

    def feed(self, chunk: bytes) -> List[str]:
        lines: List[str] = []
        if not chunk:
            return lines
        self._buffer.extend(chunk)
        while True:
            idx = self._buffer.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buffer[:idx])
            del self._buffer[:idx + 1]
            if self._discarding:
                # Tail of an oversized line
                self._discarding = False
                continue
            if len(raw) > self.max_line_bytes:
                self._drop_oversized(len(raw))
                continue
            lines.append(raw.decode(self.encoding, errors="replace").rstrip("\r"))
        if len(self._buffer) > self.max_line_bytes:
            self._drop_oversized(len(self._buffer))
            self._buffer.clear()
            self._discarding = True
        return lines

    def _drop_oversized(self, size: int) -> None:
        self.oversized_lines += 1
        logger.warning(f"Discarding engine output line over {self.max_line_bytes} bytes ({size} buffered)")

    def flush(self) -> Optional[str]:
        """Return any unterminated trailing text (used at EOF)."""
        if self._discarding or not self._buffer:
            self._buffer.clear()
            self._discarding = False
            return None
        text = bytes(self._buffer).decode(self.encoding, errors="replace").rstrip("\r")
        self._buffer.clear()
        return text

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)


# =============================================================================
# Queue snapshot decoding
# =============================================================================

@dataclass(frozen=True)
class QueueEntry:
    """One order-like record from an engine queue listing."""
    id: int
    items: str = ""
    prep_time: int = 0
    is_vip: bool = False
    is_express: bool = False
    extra: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "QueueEntry":
        known = {"id", "items", "prepTime", "isVip", "isExpress"}
        raw_id = data["id"]
        if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
            raise TypeError(f"id must be an integer, got {raw_id!r}")
        return cls(
            id=int(raw_id),
            items=str(data.get("items", "")),
            prep_time=int(data.get("prepTime", 0)),
            is_vip=bool(data.get("isVip", False)),
            is_express=bool(data.get("isExpress", False)),
            extra=tuple((k, v) for k, v in data.items() if k not in known),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "items": self.items,
            "prepTime": self.prep_time,
            "isVip": self.is_vip,
            "isExpress": self.is_express,
        }
        out.update(dict(self.extra))
        return out


def is_queue_listing(line: str) -> bool:
    return line.strip().startswith(LIST_START)


def decode_queue(line: str) -> Tuple[QueueEntry, ...]:
    """
    Decode a full-queue listing.

    Raises:
        ProtocolDecodeError: if the line is not a JSON array of records
    """
    text = line.strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"Malformed queue listing: {e.msg}", context={"line": text[:200]}, cause=e) from e
    if not isinstance(payload, list):
        raise ProtocolDecodeError("Queue listing is not an array", context={"line": text[:200]})
    entries = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ProtocolDecodeError("Queue entry is not an object", context={"position": position})
        try:
            entries.append(QueueEntry.from_mapping(item))
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolDecodeError(f"Bad queue entry: {e}", context={"position": position}, cause=e) from e
    return tuple(entries)
