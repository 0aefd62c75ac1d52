from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


# Timestamp column stamped by each terminal transition
TIMESTAMP_FIELDS = {
    OrderStatus.COMPLETED: "completedAt",
    OrderStatus.CANCELLED: "cancelledAt",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """
    Validate a status transition.

    Returns:
        True if the transition changes state, False if it is a no-op
        (the order is already in the target status)

    Raises:
        InvalidTransitionError: for any other move out of a terminal status
    """
    if current == target:
        return False
    if current is OrderStatus.PENDING and target.is_terminal:
        return True
    raise InvalidTransitionError(
        f"Cannot move order from {current.value} to {target.value}",
        context={"from": current.value, "to": target.value},
    )


@dataclass
class Order:
    id: int
    items: str
    prep_time: int
    is_vip: bool = False
    is_express: bool = False
    status: OrderStatus = OrderStatus.PENDING
    timestamp: datetime = field(default_factory=utcnow)
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire/JSON shape used by the request surface."""
        return {
            "id": self.id,
            "items": self.items,
            "isVip": self.is_vip,
            "isExpress": self.is_express,
            "prepTime": self.prep_time,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "cancelledAt": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }
