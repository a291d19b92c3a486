"""Graph API transport: HTTP client, throttling and resilient request execution."""

from plannerbridge.transport.client import GraphClient
from plannerbridge.transport.executor import (
    ApiOperation,
    FailureKind,
    RequestExecutor,
    classify_failure,
)
from plannerbridge.transport.throttle import RequestThrottle

__all__ = [
    "ApiOperation",
    "FailureKind",
    "GraphClient",
    "RequestExecutor",
    "RequestThrottle",
    "classify_failure",
]
