"""
Command channel: the single serialized writer to the engine's stdin.

Delivery is at-most-once. There is no acknowledgment from the engine; its
effect is observed later through the queue snapshot.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from core.exceptions import ProcessUnavailableError
from core.structured_log import jlog
from kitchen.protocol import Command, CsvLineCodec, LineCodec

logger = logging.getLogger(__name__)


class CommandChannel:
    """
    Encodes commands and writes them to the supervised engine.

    send() returns False when the engine is not writable and the command is
    dropped; send(strict=True) raises ProcessUnavailableError instead.
    """

    def __init__(self, supervisor: Any, codec: Optional[LineCodec] = None):
        self.supervisor = supervisor
        self.codec = codec or CsvLineCodec()
        self._lock = threading.Lock()
        self.sent = 0
        self.dropped = 0

    def validate(self, command: Command) -> str:
        """Encode without sending. Raises ProtocolEncodeError on a bad field."""
        return self.codec.encode(command)

    def send(self, command: Command, strict: bool = False) -> bool:
        """
        Encode and write one command line.

        Returns:
            True if the line was written, False if it was dropped

        Raises:
            ProtocolEncodeError: a field cannot be represented on the wire
            ProcessUnavailableError: engine unavailable and strict=True
        """
        line = self.codec.encode(command)
        with self._lock:
            try:
                self.supervisor.write_line(line)
            except ProcessUnavailableError as e:
                self.dropped += 1
                logger.warning(f"Engine unavailable, dropped {command.verb}: {e.message}")
                jlog(
                    "engine_command_dropped",
                    level="WARNING",
                    verb=command.verb,
                    order_id=getattr(command, "order_id", None),
                    reason=e.message,
                )
                if strict:
                    raise
                return False
            self.sent += 1
        logger.debug(f"Sent {line.rstrip()}")
        return True

    def stats(self) -> Dict[str, Any]:
        return {
            "protocol": self.codec.version,
            "sent": self.sent,
            "dropped": self.dropped,
        }
