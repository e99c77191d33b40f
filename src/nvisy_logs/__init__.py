"""Time-ordered log retrieval from paginated, result-capped log backends."""

from nvisy_logs.client import LogClient
from nvisy_logs.cursor import SourceCursor
from nvisy_logs.drivers import QueryDriver, StreamMergeDriver
from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models import LogRecord
from nvisy_logs.protocols import LogBackend, LogDriver, Provider

__all__ = [
    "ErrorKind",
    "LogBackend",
    "LogClient",
    "LogDriver",
    "LogRecord",
    "LogsError",
    "Provider",
    "QueryDriver",
    "SourceCursor",
    "StreamMergeDriver",
]
