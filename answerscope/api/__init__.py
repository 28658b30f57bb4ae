"""HTTP API and health checks."""

from answerscope.api.checks import CheckStatus, HealthChecker, HealthStatus
from answerscope.api.server import create_app, run_server_async

__all__ = [
    "CheckStatus",
    "HealthChecker",
    "HealthStatus",
    "create_app",
    "run_server_async",
]
