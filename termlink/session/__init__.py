"""Terminal session multiplexing: registry, input coalescing, output draining."""

from .input import InputCoalescer
from .output import OutputDrainPipeline
from .registry import CloseResult, SessionRegistry, SinkFactory
from .types import (
    ConnectionState,
    ConnectionStatus,
    HostSession,
    TabKey,
    TerminalTabSession,
)

__all__ = [
    "CloseResult",
    "ConnectionState",
    "ConnectionStatus",
    "HostSession",
    "InputCoalescer",
    "OutputDrainPipeline",
    "SessionRegistry",
    "SinkFactory",
    "TabKey",
    "TerminalTabSession",
]
