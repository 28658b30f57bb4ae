"""Health checks for a running collection service.

Checks:
- Credential pool: operations whose every credential is backing off
- Reconciliation backlog: number of pending async-job handoffs
- Storage: the JSON store directory is writable

Usage:
    checker = HealthChecker(service)
    report = await checker.check_all()
"""

import asyncio
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List

import structlog

from answerscope.orchestration.service import CollectionService

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


@dataclass
class CheckResult:
    """Result of a single health check."""

    name: str
    status: CheckStatus
    message: str
    duration_ms: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "duration_ms": round(self.duration_ms, 2),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class HealthReport:
    """All check results plus the overall status."""

    status: HealthStatus
    checks: List[CheckResult]
    config_version: str = "1"
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "config_version": self.config_version,
            "checks": [c.to_dict() for c in self.checks],
            "timestamp": self.timestamp.isoformat(),
        }


class HealthChecker:
    """Evaluates service health from live state"""

    def __init__(
        self,
        service: CollectionService,
        handoff_warning_threshold: int = 50,
    ):
        self.service = service
        self.handoff_warning_threshold = handoff_warning_threshold

    async def check_all(self) -> HealthReport:
        checks = list(
            await asyncio.gather(
                self.check_key_pool(),
                self.check_pending_handoffs(),
                self.check_storage(),
            )
        )

        if any(c.status == CheckStatus.FAIL for c in checks):
            overall = HealthStatus.UNHEALTHY
        elif any(c.status == CheckStatus.WARN for c in checks):
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        if overall != HealthStatus.HEALTHY:
            logger.warning(
                "health_check_degraded",
                status=overall.value,
                failing=[c.name for c in checks if c.status != CheckStatus.PASS],
            )
        return HealthReport(
            status=overall,
            checks=checks,
            config_version=self.service.config.version,
        )

    async def check_key_pool(self) -> CheckResult:
        """WARN when every credential of some operation is backing off."""
        start = time.monotonic()
        snapshots = self.service.key_pool.snapshot()

        by_operation: Dict[str, List[bool]] = {}
        for snap in snapshots:
            key = f"{snap.provider}/{snap.operation.value}"
            by_operation.setdefault(key, []).append(snap.backing_off)
        cooling = sorted(k for k, flags in by_operation.items() if all(flags))

        return CheckResult(
            name="key_pool",
            status=CheckStatus.WARN if cooling else CheckStatus.PASS,
            message=(
                f"All credentials backing off for: {', '.join(cooling)}"
                if cooling
                else f"{len(snapshots)} credential slots available"
            ),
            duration_ms=(time.monotonic() - start) * 1000,
            details={
                "slots": [s.model_dump(mode="json") for s in snapshots],
                "cooling_operations": cooling,
            },
        )

    async def check_pending_handoffs(self) -> CheckResult:
        start = time.monotonic()
        pending = await self.service.pending_handoff_count()
        over = pending > self.handoff_warning_threshold
        return CheckResult(
            name="pending_handoffs",
            status=CheckStatus.WARN if over else CheckStatus.PASS,
            message=f"{pending} async jobs awaiting reconciliation",
            duration_ms=(time.monotonic() - start) * 1000,
            details={
                "pending": pending,
                "threshold": self.handoff_warning_threshold,
            },
        )

    async def check_storage(self) -> CheckResult:
        start = time.monotonic()
        storage = self.service.config.storage
        if storage.backend == "memory":
            return CheckResult(
                name="storage",
                status=CheckStatus.PASS,
                message="In-memory store",
                duration_ms=(time.monotonic() - start) * 1000,
            )

        path = Path(storage.path)
        writable = path.is_dir() and os.access(path, os.W_OK)
        return CheckResult(
            name="storage",
            status=CheckStatus.PASS if writable else CheckStatus.FAIL,
            message=(
                f"Store directory writable: {path}"
                if writable
                else f"Store directory missing or read-only: {path}"
            ),
            duration_ms=(time.monotonic() - start) * 1000,
            details={"backend": storage.backend, "path": str(path)},
        )
