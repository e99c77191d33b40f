"""Models for log retrieval: data types, contexts and params."""

from nvisy_logs.models.contexts import (
    EventPage,
    GroupPage,
    SearchResult,
    SearchStatus,
    SourcePage,
)
from nvisy_logs.models.datatypes import (
    JsonValue,
    LogGroup,
    LogRecord,
    SourceDescriptor,
    SourceEvent,
    Window,
)
from nvisy_logs.models.params import ClientParams, DriverKind, MergeParams, QueryParams

__all__ = [
    # Contexts (runtime state)
    "EventPage",
    "GroupPage",
    "SearchResult",
    "SearchStatus",
    "SourcePage",
    # Params (configuration)
    "ClientParams",
    "DriverKind",
    "MergeParams",
    "QueryParams",
    # Data types
    "JsonValue",
    "LogGroup",
    "LogRecord",
    "SourceDescriptor",
    "SourceEvent",
    "Window",
]
