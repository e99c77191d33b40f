"""CloudWatch Logs backend using boto3."""

import asyncio
import logging
import os
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, ClassVar, Self

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, Field

from nvisy_logs.errors import ErrorKind, LogsError
from nvisy_logs.models.contexts import (
    EventPage,
    GroupPage,
    SearchResult,
    SearchStatus,
    SourcePage,
)
from nvisy_logs.models.datatypes import LogGroup, SourceDescriptor, SourceEvent

if TYPE_CHECKING:
    from mypy_boto3_logs import CloudWatchLogsClient

logger = logging.getLogger(__name__)

_STATUSES: dict[str, SearchStatus] = {
    "Scheduled": SearchStatus.PENDING,
    "Running": SearchStatus.PENDING,
    "Unknown": SearchStatus.PENDING,
    "Complete": SearchStatus.COMPLETE,
    "Failed": SearchStatus.FAILED,
    "Cancelled": SearchStatus.CANCELLED,
    "Timeout": SearchStatus.TIMEOUT,
}

_ERROR_KINDS: dict[str, ErrorKind] = {
    "ResourceNotFoundException": ErrorKind.NOT_FOUND,
    "InvalidParameterException": ErrorKind.INVALID_INPUT,
    "MalformedQueryException": ErrorKind.INVALID_INPUT,
    "AccessDeniedException": ErrorKind.CONNECTION,
    "UnrecognizedClientException": ErrorKind.CONNECTION,
}


class CloudWatchCredentials(BaseModel, frozen=True):
    """Credentials for CloudWatch Logs connection."""

    access_key_id: str
    secret_access_key: str
    session_token: str | None = None
    region: str = "eu-central-1"
    endpoint_url: str | None = None

    role_arn: str | None = None
    """Role assumed through STS before creating the logs client."""

    role_session_name: str = "nvisy-logs"

    @classmethod
    def from_env(cls) -> Self:
        """Read credentials from `AWS_KEY`, `AWS_KEY_SECRET`, `AWS_ROLE` and `AWS_REGION`."""
        missing = [name for name in ("AWS_KEY", "AWS_KEY_SECRET") if not os.environ.get(name)]
        if missing:
            msg = f"Environment variables not defined: {', '.join(missing)}"
            raise LogsError(msg, kind=ErrorKind.INVALID_INPUT)
        return cls(
            access_key_id=os.environ["AWS_KEY"],
            secret_access_key=os.environ["AWS_KEY_SECRET"],
            role_arn=os.environ.get("AWS_ROLE") or None,
            region=os.environ.get("AWS_REGION", "eu-central-1"),
        )


class CloudWatchParams(BaseModel, frozen=True):
    """Parameters for CloudWatch Logs operations."""

    connect_timeout: float = Field(default=10, gt=0)
    read_timeout: float = Field(default=60, gt=0)

    max_attempts: int = Field(default=5, ge=1)
    """Total attempts per request, including botocore's own retries."""

    group_page_limit: int = Field(default=50, ge=1, le=50)
    """Groups requested per DescribeLogGroups page."""


def _epoch_seconds(value: datetime) -> int:
    return int(value.timestamp())


def _epoch_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


def _open_client(credentials: CloudWatchCredentials, config: Config) -> "CloudWatchLogsClient":
    """Build a verified logs client. Blocks on STS and CloudWatch."""
    session = boto3.Session(
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
        region_name=credentials.region,
    )
    if credentials.role_arn:
        sts = session.client("sts", config=config)  # pyright: ignore[reportUnknownMemberType]
        assumed = sts.assume_role(
            RoleArn=credentials.role_arn,
            RoleSessionName=credentials.role_session_name,
        )["Credentials"]
        session = boto3.Session(
            aws_access_key_id=assumed["AccessKeyId"],
            aws_secret_access_key=assumed["SecretAccessKey"],
            aws_session_token=assumed["SessionToken"],
            region_name=credentials.region,
        )
    client: CloudWatchLogsClient = session.client(  # pyright: ignore[reportUnknownMemberType]
        "logs",
        endpoint_url=credentials.endpoint_url,
        config=config,
    )
    # Verify credentials with the cheapest listing call
    _ = client.describe_log_groups(limit=1)
    return client


class CloudWatchBackend:
    """CloudWatch Logs backend for Insights searches and log stream pagination.

    Implements Provider[CloudWatchCredentials, CloudWatchParams] and
    LogBackend. boto3 calls block, so each one runs in a worker thread.
    """

    __slots__: ClassVar[tuple[str, str]] = ("_client", "_params")

    _client: "CloudWatchLogsClient"
    _params: CloudWatchParams

    def __init__(self, client: "CloudWatchLogsClient", params: CloudWatchParams) -> None:
        self._client = client
        self._params = params

    @classmethod
    async def connect(cls, credentials: CloudWatchCredentials, params: CloudWatchParams) -> Self:
        """Create the logs client, assuming the configured role first."""
        config = Config(
            connect_timeout=params.connect_timeout,
            read_timeout=params.read_timeout,
            retries={"max_attempts": params.max_attempts, "mode": "standard"},
        )
        try:
            client = await asyncio.to_thread(_open_client, credentials, config)
        except ClientError as e:
            kind = _ERROR_KINDS.get(_error_code(e), ErrorKind.CONNECTION)
            msg = f"Failed to connect to CloudWatch Logs: {e}"
            raise LogsError(msg, kind=kind, source=e) from e
        except Exception as e:
            msg = f"Failed to connect to CloudWatch Logs: {e}"
            raise LogsError(msg, kind=ErrorKind.CONNECTION, source=e) from e

        return cls(client, params)

    async def disconnect(self) -> None:
        """Close the logs client."""
        self._client.close()

    async def _call(self, action: str, method: Callable[..., Any], **kwargs: Any) -> Any:
        """Run one boto3 call in a worker thread, mapping its errors."""
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as e:
            kind = _ERROR_KINDS.get(_error_code(e), ErrorKind.PROVIDER)
            msg = f"Failed to {action}: {e}"
            raise LogsError(msg, kind=kind, source=e) from e
        except BotoCoreError as e:
            msg = f"Failed to {action}: {e}"
            raise LogsError(msg, kind=ErrorKind.CONNECTION, source=e) from e

    async def submit_search(
        self,
        group_id: str,
        query_text: str,
        start: datetime,
        end: datetime,
        row_cap: int,
    ) -> str:
        """Start a Logs Insights query."""
        response = await self._call(
            "start query",
            self._client.start_query,
            logGroupName=group_id,
            startTime=_epoch_seconds(start),
            endTime=_epoch_seconds(end),
            queryString=query_text,
            limit=row_cap,
        )
        query_id = response.get("queryId")
        if not query_id:
            msg = f"No query id returned for {group_id}"
            raise LogsError(msg)
        return query_id

    async def poll_search(self, job_id: str) -> SearchResult:
        """Fetch the status and, once complete, the rows of a query."""
        response = await self._call(
            "get query results",
            self._client.get_query_results,
            queryId=job_id,
        )
        status = _STATUSES.get(response.get("status", "Unknown"), SearchStatus.PENDING)
        if status != SearchStatus.COMPLETE:
            return SearchResult(status=status)

        rows = [
            {f["field"]: f.get("value", "") for f in result if "field" in f}
            for result in response.get("results", [])
        ]
        return SearchResult(status=status, rows=rows)

    async def stop_search(self, job_id: str) -> None:
        """Stop a running Logs Insights query."""
        _ = await self._call("stop query", self._client.stop_query, queryId=job_id)

    async def list_sources(
        self,
        group_id: str,
        name_prefix: str | None = None,
        token: str | None = None,
    ) -> SourcePage:
        """List one page of log streams, skipping streams without events."""
        kwargs: dict[str, Any] = {"logGroupName": group_id}
        if name_prefix:
            kwargs["logStreamNamePrefix"] = name_prefix
        if token:
            kwargs["nextToken"] = token

        response = await self._call("describe log streams", self._client.describe_log_streams, **kwargs)

        sources: list[SourceDescriptor] = []
        for stream in response.get("logStreams", []):
            first = stream.get("firstEventTimestamp")
            last = stream.get("lastEventTimestamp")
            name = stream.get("logStreamName")
            if not name or first is None or last is None:
                continue
            sources.append(
                SourceDescriptor(
                    id=name,
                    first_event_time=_from_millis(first),
                    last_event_time=_from_millis(last),
                )
            )
        return SourcePage(sources=sources, next_token=response.get("nextToken"))

    async def list_events(
        self,
        group_id: str,
        source_id: str,
        start: datetime,
        end: datetime,
        token: str | None = None,
    ) -> EventPage:
        """Read one forward page of a log stream."""
        kwargs: dict[str, Any] = {
            "logGroupName": group_id,
            "logStreamName": source_id,
            "startTime": _epoch_millis(start),
            "endTime": _epoch_millis(end),
            "startFromHead": True,
        }
        if token:
            kwargs["nextToken"] = token

        response = await self._call("get log events", self._client.get_log_events, **kwargs)

        events = [
            SourceEvent(timestamp=_from_millis(e["timestamp"]), message=e.get("message", ""))
            for e in response.get("events", [])
            if e.get("timestamp") is not None
        ]
        return EventPage(events=events, next_token=response.get("nextForwardToken"))

    async def list_groups(self, token: str | None = None) -> GroupPage:
        """List one page of log groups."""
        kwargs: dict[str, Any] = {"limit": self._params.group_page_limit}
        if token:
            kwargs["nextToken"] = token

        response = await self._call("describe log groups", self._client.describe_log_groups, **kwargs)

        groups = [
            LogGroup(
                name=g["logGroupName"],
                created=_from_millis(g["creationTime"]) if "creationTime" in g else None,
                stored_bytes=g.get("storedBytes"),
            )
            for g in response.get("logGroups", [])
            if g.get("logGroupName")
        ]
        return GroupPage(groups=groups, next_token=response.get("nextToken"))


Backend = CloudWatchBackend
