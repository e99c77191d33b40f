"""Log client facade over the query and stream-merge drivers."""

import logging
from collections.abc import AsyncIterator
from datetime import datetime
from types import TracebackType
from typing import TYPE_CHECKING, ClassVar, Self

from nvisy_logs.backends.cloudwatch import CloudWatchBackend, CloudWatchCredentials, CloudWatchParams
from nvisy_logs.drivers.merge import StreamMergeDriver
from nvisy_logs.drivers.query import QueryDriver
from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.datatypes import LogRecord, require_aware
from nvisy_logs.models.params import ClientParams, DriverKind

if TYPE_CHECKING:
    from nvisy_logs.protocols import LogBackend, LogDriver

logger = logging.getLogger(__name__)


def _check_range(start: datetime, end: datetime) -> None:
    require_aware(start=start, end=end)
    if start >= end:
        msg = f"Empty time range [{start.isoformat()}, {end.isoformat()})"
        raise LogsError(msg, kind=ErrorKind.INVALID_INPUT)


class LogClient:
    """Retrieve time-ordered logs, picking a driver per log category.

    Named log groups and task log groups each use the driver configured in
    `ClientParams`. Every method returns a lazy async iterator that ends at
    the end of the requested range; restarting requires a fresh call.
    """

    __slots__: ClassVar[tuple[str, ...]] = ("_backend", "_drivers", "_params")

    _backend: "LogBackend"
    _params: ClientParams

    def __init__(self, backend: "LogBackend", params: ClientParams | None = None) -> None:
        self._backend = backend
        self._params = params or ClientParams()
        self._drivers: dict[DriverKind, LogDriver] = {
            DriverKind.QUERY: QueryDriver(backend, self._params.query),
            DriverKind.STREAM: StreamMergeDriver(backend, self._params.merge),
        }

    @classmethod
    async def connect(
        cls,
        credentials: CloudWatchCredentials,
        backend_params: CloudWatchParams | None = None,
        params: ClientParams | None = None,
    ) -> Self:
        """Connect a CloudWatch backend and wrap it in a client."""
        backend = await CloudWatchBackend.connect(credentials, backend_params or CloudWatchParams())
        return cls(backend, params)

    async def aclose(self) -> None:
        """Disconnect the backend, if it supports disconnecting."""
        disconnect = getattr(self._backend, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def driver(self, kind: DriverKind) -> "LogDriver":
        return self._drivers[kind]

    def task_group(self, task: str) -> str:
        """Return the log group name of a task."""
        return f"{self._params.task_group_prefix}{task}"

    async def find_group(self, marker: str) -> str:
        """Return the first log group whose name contains `marker`."""
        token: str | None = None
        while True:
            page = await self._backend.list_groups(token)
            for group in page.groups:
                if marker in group.name:
                    return group.name
            token = page.next_token
            if not token:
                break
        msg = f"No log group matching {marker!r}"
        raise LogsError(msg, kind=ErrorKind.NOT_FOUND)

    def get_group_logs(self, group: str, start: datetime, end: datetime) -> AsyncIterator[LogRecord]:
        """Yield every record of a named log group in the range."""
        _check_range(start, end)
        logger.debug("Reading group %s with the %s driver", group, self._params.group_driver.value)
        return self.driver(self._params.group_driver).stream_full_range(group, start, end)

    def get_task_logs(self, task: str, start: datetime, end: datetime) -> AsyncIterator[LogRecord]:
        """Yield every record of a task's log group in the range."""
        _check_range(start, end)
        return self.driver(self._params.task_driver).stream_full_range(
            self.task_group(task), start, end
        )

    def get_task_execution_logs(
        self,
        task: str,
        execution_id: str,
        start: datetime,
        end: datetime,
    ) -> AsyncIterator[LogRecord]:
        """Yield the records of one task execution, by its correlation id."""
        _check_range(start, end)
        return self.driver(self._params.task_driver).stream_by_correlation(
            self.task_group(task), execution_id, start, end
        )
