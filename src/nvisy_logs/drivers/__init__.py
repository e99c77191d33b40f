"""Retrieval drivers.

Both drivers implement the `LogDriver` protocol:
- query: adaptive-window search queries (CloudWatch Logs Insights)
- merge: sliding-window merge of per-source pagination (log streams)
"""

from nvisy_logs.drivers.merge import StreamMergeDriver
from nvisy_logs.drivers.query import QueryDriver

__all__ = [
    "QueryDriver",
    "StreamMergeDriver",
]
