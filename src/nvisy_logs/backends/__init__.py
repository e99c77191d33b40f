"""Backend implementations for remote log stores.

Each backend module exports a `Backend` alias for the main backend class,
along with its credentials and params types.

Available backends:
- cloudwatch: AWS CloudWatch Logs via boto3
"""

from nvisy_logs.backends import cloudwatch

__all__ = [
    "cloudwatch",
]
