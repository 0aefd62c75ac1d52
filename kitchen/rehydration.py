"""
Startup rehydration: replay store PENDING orders into a fresh engine.

The engine keeps no state across processes, so after every handshake the
durable store is read and each PENDING order is re-sent in creation order.
Running this twice against the same engine process duplicates the queue.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from core.exceptions import ProtocolEncodeError
from core.structured_log import jlog
from kitchen.channel import CommandChannel
from kitchen.protocol import command_for_order
from oms.order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass
class RehydrationReport:
    """Outcome of one rehydration pass."""
    total: int = 0
    dispatched: int = 0
    dropped: int = 0
    unencodable: int = 0
    order_ids: List[int] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def complete(self) -> bool:
        return self.dropped == 0 and self.unencodable == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "dispatched": self.dispatched,
            "dropped": self.dropped,
            "unencodable": self.unencodable,
            "order_ids": list(self.order_ids),
            "duration_ms": round(self.duration_ms, 2),
        }


class RehydrationCoordinator:
    """Reads the store's PENDING orders and re-enqueues them via the channel."""

    def __init__(self, store: OrderStore, channel: CommandChannel):
        self.store = store
        self.channel = channel
        self.runs = 0

    def rehydrate(self) -> RehydrationReport:
        """
        Send one VIP or ADD command per PENDING order, oldest first.

        Raises:
            TransportError: if the store cannot be read
        """
        started = time.monotonic()
        pending = self.store.query_pending_ordered()
        report = RehydrationReport(total=len(pending))

        for order in pending:
            try:
                sent = self.channel.send(command_for_order(order))
            except ProtocolEncodeError as e:
                # Stored under a codec that could carry the field
                report.unencodable += 1
                logger.error(f"Order {order.id} cannot be encoded, not rehydrated: {e.message}")
                continue
            if sent:
                report.dispatched += 1
            else:
                report.dropped += 1
            report.order_ids.append(order.id)

        report.duration_ms = (time.monotonic() - started) * 1000
        self.runs += 1

        if report.dropped:
            logger.warning(f"Rehydration dropped {report.dropped}/{report.total} orders; engine not writable")
        logger.info(f"Rehydrated {report.dispatched} pending orders into the engine")
        jlog("rehydration_complete", **report.to_dict())
        return report
