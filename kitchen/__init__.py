"""
Kitchen coordination layer.

Binds the request surface, the durable order store and the external queue
engine process:
- protocol: command codecs, line framing, queue listing decode
- channel: serialized, at-most-once command writer
- observer: engine output -> immutable queue snapshot
- rehydration: replay of store PENDING orders into a fresh engine
- bridge: the facade the request surface talks to (import kitchen.bridge)
"""

from .protocol import (
    AddCommand,
    CancelCommand,
    CompleteCommand,
    CsvLineCodec,
    JsonLineCodec,
    LineFramer,
    QueueEntry,
    VipCommand,
    decode_queue,
    get_codec,
)
from .channel import CommandChannel
from .observer import QueueSnapshot, SnapshotCell, StateObserver
from .rehydration import RehydrationCoordinator, RehydrationReport

__all__ = [
    # Protocol
    'AddCommand',
    'VipCommand',
    'CancelCommand',
    'CompleteCommand',
    'CsvLineCodec',
    'JsonLineCodec',
    'LineFramer',
    'QueueEntry',
    'decode_queue',
    'get_codec',
    # Coordination
    'CommandChannel',
    'QueueSnapshot',
    'SnapshotCell',
    'StateObserver',
    'RehydrationCoordinator',
    'RehydrationReport',
]
