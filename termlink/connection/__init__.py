"""Connection lifecycle: state machine, state sources, credential prompts."""

from .credentials import CredentialBroker
from .interactions import PendingInteractions
from .machine import ConnectionStateMachine
from .state_source import PollingStateSource, StateSource

__all__ = [
    "ConnectionStateMachine",
    "CredentialBroker",
    "PendingInteractions",
    "PollingStateSource",
    "StateSource",
]
