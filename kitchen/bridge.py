"""
Kitchen bridge: the coordination facade between the request surface, the
durable order store, and the queue engine process.

Every mutating operation follows the same path under one dispatch lock:

    validate -> journal.begin -> store write -> channel.send -> journal.commit

Reads (live queue) come from the observer's snapshot and never block on the
engine.

Usage:
    bridge = build_bridge(load_validated_settings())
    bridge.start()                  # handshake, journal replay, rehydration
    bridge.submit_order({"id": 7, "items": "burger", "prepTime": 10})
    bridge.live_queue()
    bridge.shutdown()
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from analytics.order_stats import period_start, summarize_orders
from core.exceptions import (
    ChefFlowError,
    DuplicateOrderError,
    EmptyQueueError,
    EngineLaunchError,
    InvalidTransitionError,
    NotFoundError,
    StaleSnapshotError,
    TransportError,
    ValidationError,
)
from core.journal import DispatchJournal
from core.restart_backoff import RestartBackoff, RestartBackoffConfig
from core.structured_log import jlog
from kitchen.channel import CommandChannel
from kitchen.observer import QueueSnapshot, StateObserver
from kitchen.protocol import CancelCommand, CompleteCommand, command_for_order, get_codec
from kitchen.rehydration import RehydrationCoordinator, RehydrationReport
from oms.order_state import TIMESTAMP_FIELDS, OrderStatus, utcnow
from oms.order_store import OrderStore, SqliteOrderStore
from ops.engine_supervisor import EngineSupervisor

logger = logging.getLogger(__name__)

RESTART_POLICIES = ("none", "restart")

# Lower bound for history queries
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Request models
# =============================================================================

class OrderRequest(BaseModel):
    """New order as submitted by the front end."""
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(gt=0)
    items: str = Field(min_length=1)
    prep_time: int = Field(alias="prepTime", ge=0)
    is_vip: bool = Field(default=False, alias="isVip")
    is_express: bool = Field(default=False, alias="isExpress")

    @field_validator("items")
    @classmethod
    def _items_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("items must not be blank")
        return value

    @field_validator("is_vip", "is_express", mode="before")
    @classmethod
    def _none_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    def store_fields(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "prepTime": self.prep_time,
            "isVip": self.is_vip,
            "isExpress": self.is_express,
        }


class OrderIdRequest(BaseModel):
    """Body of cancel / complete-selected requests."""
    id: int = Field(gt=0)


def _validate(model: type, data: Any) -> Any:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Missing or invalid fields", context={"errors": errors}, cause=e) from e


def parse_order_request(data: Union[OrderRequest, Mapping[str, Any]]) -> OrderRequest:
    return _validate(OrderRequest, data)


def parse_order_id(value: Union[int, str, Mapping[str, Any]]) -> int:
    data = value if isinstance(value, Mapping) else {"id": value}
    return _validate(OrderIdRequest, data).id


@dataclass
class DispatchResult:
    """Outcome of a mutating bridge operation."""
    order_id: int
    status: OrderStatus
    dispatched: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "orderId": self.order_id,
            "status": self.status.value,
            "dispatched": self.dispatched,
        }


# =============================================================================
# Bridge
# =============================================================================

class KitchenBridge:
    """
    Owns the engine supervisor, command channel, state observer and store.

    The re-entrant dispatch lock spans each store write plus its command
    send, and also spans restart plus rehydration, so live commands never
    interleave with a replay.
    """

    def __init__(
        self,
        supervisor: EngineSupervisor,
        store: OrderStore,
        channel: Optional[CommandChannel] = None,
        observer: Optional[StateObserver] = None,
        journal: Optional[DispatchJournal] = None,
        restart_policy: str = "none",
        backoff: Optional[RestartBackoff] = None,
        history_limit: int = 100,
    ):
        if restart_policy not in RESTART_POLICIES:
            raise ValueError(f"restart_policy must be one of {RESTART_POLICIES}, got {restart_policy!r}")
        self.supervisor = supervisor
        self.store = store
        self.channel = channel or CommandChannel(supervisor)
        self.observer = observer or StateObserver(max_line_bytes=supervisor.max_line_bytes)
        self.rehydrator = RehydrationCoordinator(store, self.channel)
        self.journal = journal
        self.restart_policy = restart_policy
        self.backoff = backoff or RestartBackoff()
        self.history_limit = history_limit

        self._lock = threading.RLock()
        self._ready = threading.Event()
        self._closed = threading.Event()
        self._restart_thread: Optional[threading.Thread] = None
        self.last_rehydration: Optional[RehydrationReport] = None

        # Ids whose removal was sent but still show in the snapshot
        self._removals: Set[int] = set()
        self._removals_lock = threading.Lock()

        supervisor.add_line_listener(self.observer.handle_line)
        supervisor.add_exit_listener(self._on_engine_exit)
        self.observer.add_listener(self._on_snapshot)

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Launch the engine, replay unfinished journal entries, rehydrate.

        Raises:
            EngineLaunchError: engine could not be launched or never became READY
        """
        with self._lock:
            self._closed.clear()
            self.supervisor.start()
            self._reset_snapshot()
            self._replay_journal()
            self._rehydrate()
            self._ready.set()
        jlog("bridge_started", pid=self.supervisor.pid, restart_policy=self.restart_policy)

    def shutdown(self) -> None:
        """Stop the engine synchronously. Safe to call more than once."""
        self._closed.set()
        self._ready.clear()
        with self._lock:
            self.supervisor.shutdown()
            self._ready.clear()
            if self.journal is not None:
                self.journal.compact()

        t = self._restart_thread
        if t is not None and t is not threading.current_thread() and t.is_alive():
            t.join(timeout=self.supervisor.startup_timeout + self.supervisor.shutdown_timeout)
        jlog("bridge_stopped")

    def restart_engine(self) -> Optional[RehydrationReport]:
        """
        Replace the engine process and rebuild its queue from the store.

        Raises:
            EngineLaunchError: the new engine could not be started
        """
        with self._lock:
            self._ready.clear()
            self.supervisor.restart()
            self._reset_snapshot()
            report = self._rehydrate()
            self._ready.set()
        jlog("engine_restarted", pid=self.supervisor.pid)
        return report

    def _reset_snapshot(self) -> None:
        # Fresh engine process: nothing queued, nothing awaiting removal
        self.observer.cell.reset()
        with self._removals_lock:
            self._removals.clear()

    def _on_snapshot(self, snapshot: QueueSnapshot) -> None:
        # Runs on the supervisor's stdout reader thread
        with self._removals_lock:
            self._removals.intersection_update(snapshot.ids())

    def _mark_removal(self, order_id: int) -> None:
        with self._removals_lock:
            self._removals.add(order_id)

    def _removal_pending(self, order_id: int) -> bool:
        with self._removals_lock:
            return order_id in self._removals

    def _rehydrate(self) -> Optional[RehydrationReport]:
        try:
            report = self.rehydrator.rehydrate()
        except TransportError as e:
            logger.error(f"Rehydration skipped, order store unreachable: {e}")
            jlog("rehydration_failed", level="ERROR", error=e.to_dict())
            self.last_rehydration = None
            return None
        self.last_rehydration = report
        return report

    def _replay_journal(self) -> int:
        """Re-apply store effects of intents a crash left uncommitted."""
        if self.journal is None:
            return 0
        entries = self.journal.incomplete()
        if not entries:
            return 0

        logger.warning(f"Replaying {len(entries)} unfinished dispatch journal entries")
        replayed = 0
        for entry in entries:
            try:
                if entry.op == "submit":
                    try:
                        self.store.write_order(entry.order_id, entry.payload)
                    except DuplicateOrderError:
                        pass  # the write had landed
                else:
                    status = OrderStatus.CANCELLED if entry.op == "cancel" else OrderStatus.COMPLETED
                    self.store.update_status(entry.order_id, status, TIMESTAMP_FIELDS[status])
            except TransportError:
                logger.error("Order store unreachable, journal replay stopped")
                break
            except (NotFoundError, InvalidTransitionError, ValidationError) as e:
                logger.warning(f"Journal entry {entry.entry_id} ({entry.op} {entry.order_id}) not applied: {e}")
            self.journal.commit(entry.entry_id, dispatched=False)
            replayed += 1

        self.journal.compact()
        jlog("journal_replayed", entries=len(entries), replayed=replayed)
        return replayed

    def _on_engine_exit(self, exit_code: Optional[int]) -> None:
        # Runs on the supervisor's stdout reader thread
        self._ready.clear()
        if self._closed.is_set():
            return
        if self.restart_policy != "restart":
            logger.error(
                f"Queue engine exited (code {exit_code}); restart policy is 'none', "
                "commands are dropped until a manual restart"
            )
            return
        self._restart_thread = threading.Thread(
            target=self._restart_after_exit, name="engine-restart", daemon=True
        )
        self._restart_thread.start()

    def _restart_after_exit(self) -> None:
        while not self._closed.is_set():
            allowed, delay, reason = self.backoff.should_restart()
            if not allowed:
                logger.error(f"Engine restart blocked: {reason}")
                jlog("engine_restart_blocked", level="CRITICAL", reason=reason)
                return
            logger.info(f"Restarting queue engine in {delay:.1f}s ({reason})")
            if self._closed.wait(delay):
                return
            try:
                self.restart_engine()
            except EngineLaunchError as e:
                self.backoff.record_restart(success=False, error=str(e))
                logger.error(f"Engine restart failed: {e}")
                continue
            self.backoff.record_restart(success=True)
            return

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    def _begin(self, op: str, order_id: int, payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if self.journal is None:
            return None
        return self.journal.begin(op, order_id, payload)

    def _commit(self, entry_id: Optional[str], dispatched: bool) -> None:
        if entry_id is not None:
            self.journal.commit(entry_id, dispatched)

    def submit_order(self, request: Union[OrderRequest, Mapping[str, Any]]) -> DispatchResult:
        """
        Persist a new PENDING order and enqueue it in the engine.

        Raises:
            ValidationError: missing/invalid fields (nothing written or sent)
            DuplicateOrderError: id already exists
            TransportError / WriteError: store failure (nothing sent)
        """
        req = parse_order_request(request)
        command = command_for_order(req)
        self.channel.validate(command)

        fields = req.store_fields()
        fields["timestamp"] = utcnow()

        with self._lock:
            entry_id = self._begin("submit", req.id, {**fields, "timestamp": fields["timestamp"].isoformat()})
            try:
                order = self.store.write_order(req.id, fields)
            except ChefFlowError:
                self._commit(entry_id, False)
                raise
            dispatched = self.channel.send(command)
            self._commit(entry_id, dispatched)

        jlog(
            "order_submitted",
            order_id=order.id,
            verb=command.verb,
            is_express=order.is_express,
            dispatched=dispatched,
        )
        return DispatchResult(order.id, order.status, dispatched)

    def _finish_order(self, order_id: Any, status: OrderStatus, op: str) -> DispatchResult:
        oid = parse_order_id(order_id)
        with self._lock:
            entry_id = self._begin(op, oid)
            try:
                order = self.store.update_status(oid, status, TIMESTAMP_FIELDS[status])
            except ChefFlowError:
                self._commit(entry_id, False)
                raise
            # The engine removes by id for both cancel and complete-by-id
            self._mark_removal(oid)
            dispatched = self.channel.send(CancelCommand(oid))
            self._commit(entry_id, dispatched)

        jlog(f"order_{status.value.lower()}", order_id=oid, dispatched=dispatched)
        return DispatchResult(order.id, order.status, dispatched)

    def cancel_order(self, order_id: Any) -> DispatchResult:
        """Mark an order CANCELLED and remove it from the engine queue."""
        return self._finish_order(order_id, OrderStatus.CANCELLED, "cancel")

    def complete_order(self, order_id: Any) -> DispatchResult:
        """Mark a selected order COMPLETED and remove it from the engine queue."""
        return self._finish_order(order_id, OrderStatus.COMPLETED, "complete")

    def complete_head(self) -> DispatchResult:
        """
        Complete whatever order currently heads the snapshot.

        Raises:
            EmptyQueueError: the snapshot is empty (no store write, no command)
            StaleSnapshotError: the head was already removed and the engine
                has not published a newer listing yet (no store write, no command)
        """
        with self._lock:
            snapshot = self.observer.snapshot()
            head = snapshot.head
            if head is None:
                raise EmptyQueueError("No orders in queue")
            if self._removal_pending(head.id):
                raise StaleSnapshotError(
                    f"Order {head.id} was already removed from the queue; waiting for the engine's next listing",
                    context={"order_id": head.id, "snapshot_version": snapshot.version},
                )
            entry_id = self._begin("complete", head.id)
            try:
                order = self.store.update_status(head.id, OrderStatus.COMPLETED, TIMESTAMP_FIELDS[OrderStatus.COMPLETED])
            except ChefFlowError:
                self._commit(entry_id, False)
                raise
            self._mark_removal(head.id)
            dispatched = self.channel.send(CompleteCommand())
            self._commit(entry_id, dispatched)

        jlog("order_completed", order_id=head.id, head=True, dispatched=dispatched)
        return DispatchResult(order.id, order.status, dispatched)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> QueueSnapshot:
        return self.observer.snapshot()

    def live_queue(self) -> List[Dict[str, Any]]:
        """Current engine queue, head first. May be stale if the engine stalls."""
        return self.observer.snapshot().to_list()

    def analytics(self, period: str = "today", now: Optional[datetime] = None) -> Dict[str, Any]:
        """Orders created in the period (newest first) and their summary stats."""
        start = period_start(period, now)
        orders = self.store.query_range(start)
        return {
            "period": period,
            "start": start.isoformat(),
            "orders": [o.to_dict() for o in orders],
            "stats": summarize_orders(orders),
        }

    def recent_orders(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent orders of any status, newest first."""
        if limit is None:
            limit = self.history_limit
        return [o.to_dict() for o in self.store.query_range(EPOCH, limit=limit)]

    def status(self) -> Dict[str, Any]:
        return {
            "ready": self.ready,
            "restart_policy": self.restart_policy,
            "engine": self.supervisor.status(),
            "observer": self.observer.stats(),
            "channel": self.channel.stats(),
            "backoff": self.backoff.get_status(),
            "last_rehydration": self.last_rehydration.to_dict() if self.last_rehydration else None,
            "journal_pending": self.journal.pending if self.journal is not None else None,
        }


def build_bridge(settings: Any) -> KitchenBridge:
    """Wire a KitchenBridge from validated Settings."""
    eng = settings.engine
    supervisor = EngineSupervisor(
        command=eng.command,
        cwd=eng.cwd,
        ready_sentinel=eng.ready_sentinel,
        startup_timeout=eng.startup_timeout_seconds,
        shutdown_timeout=eng.shutdown_timeout_seconds,
        max_line_bytes=eng.max_line_bytes,
    )
    store = SqliteOrderStore(settings.store.path, timeout=settings.store.timeout_seconds)
    journal = None
    if settings.journal.enabled:
        journal = DispatchJournal(
            settings.journal.path,
            fsync=settings.journal.fsync,
            compact_every=settings.journal.compact_every,
        )
    backoff = RestartBackoff(
        RestartBackoffConfig(
            base_delay_seconds=settings.restart.base_delay_seconds,
            max_delay_seconds=settings.restart.max_delay_seconds,
            backoff_multiplier=settings.restart.backoff_multiplier,
            max_attempts_per_hour=settings.restart.max_attempts_per_hour,
        )
    )
    return KitchenBridge(
        supervisor,
        store,
        channel=CommandChannel(supervisor, get_codec(eng.protocol)),
        journal=journal,
        restart_policy=eng.restart_policy,
        backoff=backoff,
        history_limit=settings.web.history_limit,
    )
