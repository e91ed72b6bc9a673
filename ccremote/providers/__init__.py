from ccremote.providers.base import (
    AssistantError,
    AssistantProvider,
    AssistantResponse,
    CancelToken,
    ProcessFailed,
    SpawnError,
    TurnCancelled,
    TurnTimeout,
)

__all__ = [
    "AssistantError",
    "AssistantProvider",
    "AssistantResponse",
    "CancelToken",
    "ProcessFailed",
    "SpawnError",
    "TurnCancelled",
    "TurnTimeout",
]
