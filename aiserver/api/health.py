"""FastAPI server exposing health probes and circuit breaker metrics."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import BaseModel

from aiserver.exceptions import NotFoundError, UnauthorizedError
from aiserver.providers.base import BaseProvider
from aiserver.services.circuit_breaker import (
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)

HealthStatus = Literal["healthy", "degraded", "unhealthy"]

# Gauge values for circuit_breaker_state
STATE_GAUGE = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class HealthCheckResult(BaseModel):
    service: str
    status: HealthStatus
    response_time_ms: float
    error: str | None = None


class HealthSummary(BaseModel):
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    total: int = 0


def overall_status(checks: list[HealthCheckResult]) -> HealthStatus:
    """All healthy → healthy, all unhealthy → unhealthy, anything else → degraded."""
    if not checks or all(c.status == "healthy" for c in checks):
        return "healthy"
    if all(c.status == "unhealthy" for c in checks):
        return "unhealthy"
    return "degraded"


def summarize(checks: list[HealthCheckResult]) -> HealthSummary:
    summary = HealthSummary(total=len(checks))
    for check in checks:
        setattr(summary, check.status, getattr(summary, check.status) + 1)
    return summary


def render_prometheus(stats: dict[str, CircuitBreakerStats]) -> str:
    lines = [
        "# HELP circuit_breaker_state Circuit breaker state (0=CLOSED, 1=HALF_OPEN, 2=OPEN)",
        "# TYPE circuit_breaker_state gauge",
    ]
    for name, s in sorted(stats.items()):
        lines.append(f'circuit_breaker_state{{name="{name}"}} {STATE_GAUGE[s.state]}')
    lines.append("")

    lines.append("# HELP circuit_breaker_failures_total Total circuit breaker failures")
    lines.append("# TYPE circuit_breaker_failures_total counter")
    for name, s in sorted(stats.items()):
        lines.append(f'circuit_breaker_failures_total{{name="{name}"}} {s.total_failures}')
    lines.append("")
    return "\n".join(lines)


class HealthServer:
    """HTTP server for health probes and circuit breaker operations."""

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        providers: list[BaseProvider] | None = None,
        admin_token: str = "",
        version: str = "1.0.0",
    ):
        self.registry = registry
        self.providers = providers or []
        self.admin_token = admin_token
        self.version = version
        self.started_at = time.monotonic()
        self.app = FastAPI(title="AI Server Health")

        # Register routes
        self.app.get("/health")(self.basic_health)
        self.app.get("/health/detailed")(self.detailed_health)
        self.app.get("/health/ready")(self.readiness)
        self.app.get("/health/live")(self.liveness)
        self.app.get("/metrics", response_class=PlainTextResponse)(self.prometheus_metrics)
        self.app.get("/metrics/circuit-breakers")(self.circuit_breaker_metrics)
        self.app.post("/metrics/circuit-breakers/reset")(self.reset_all)
        self.app.post("/metrics/circuit-breakers/{name}/reset")(self.reset_one)

    def _base(self, status: HealthStatus) -> dict[str, Any]:
        return {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - self.started_at, 3),
            "version": self.version,
        }

    def _check_admin(self, token: str | None) -> None:
        if self.admin_token and token != self.admin_token:
            raise UnauthorizedError("Invalid admin token")

    async def basic_health(self):
        """Liveness-style health check for Docker/K8s."""
        return {
            **self._base("healthy"),
            "checks": [],
            "summary": HealthSummary(healthy=1, total=1).model_dump(),
        }

    async def _check_provider(self, provider: BaseProvider) -> HealthCheckResult:
        start = time.monotonic()
        if not provider.is_configured():
            return HealthCheckResult(
                service=provider.service_id,
                status="degraded",
                response_time_ms=0.0,
                error="not configured",
            )

        healthy = await provider.health_check(f"health-check-{provider.service_id}")
        return HealthCheckResult(
            service=provider.service_id,
            status="healthy" if healthy else "unhealthy",
            response_time_ms=round((time.monotonic() - start) * 1000, 1),
        )

    async def detailed_health(self):
        """Probe every provider and attach circuit breaker state."""
        checks = list(
            await asyncio.gather(*(self._check_provider(p) for p in self.providers))
        )
        status = overall_status(checks)
        body = {
            **self._base(status),
            "checks": [c.model_dump() for c in checks],
            "summary": summarize(checks).model_dump(),
            "circuit_breakers": self.registry.get_all_status(),
        }
        if status == "unhealthy":
            logger.warning("Detailed health check: all dependencies unhealthy")
        return JSONResponse(body, status_code=503 if status == "unhealthy" else 200)

    async def readiness(self):
        """Not ready while any dependency's circuit is open."""
        open_circuits = self.registry.get_open_circuits()
        ready = not open_circuits
        return JSONResponse(
            {"ready": ready, "open_circuits": open_circuits},
            status_code=200 if ready else 503,
        )

    async def liveness(self):
        return {"alive": True}

    async def prometheus_metrics(self):
        """Circuit breaker state and failure totals in Prometheus text format."""
        return PlainTextResponse(
            render_prometheus(self.registry.get_all_stats()),
            media_type="text/plain; version=0.0.4",
        )

    async def circuit_breaker_metrics(self):
        stats = self.registry.get_all_status()
        states = [s["state"] for s in stats.values()]
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "circuit_breakers": stats,
            "summary": {
                "total": len(stats),
                "open": states.count(CircuitState.OPEN.value),
                "half_open": states.count(CircuitState.HALF_OPEN.value),
                "closed": states.count(CircuitState.CLOSED.value),
            },
        }

    async def reset_all(self, x_admin_token: str | None = Header(None)):
        self._check_admin(x_admin_token)
        self.registry.reset_all()
        logger.info("All circuit breakers reset via API")
        return {"reset": self.registry.names()}

    async def reset_one(self, name: str, x_admin_token: str | None = Header(None)):
        self._check_admin(x_admin_token)
        if not self.registry.reset(name):
            raise NotFoundError(f"Unknown circuit breaker: {name}")
        logger.info(f"Circuit breaker '{name}' reset via API")
        return {"reset": [name]}


def create_health_server(
    registry: CircuitBreakerRegistry,
    providers: list[BaseProvider] | None = None,
    admin_token: str = "",
) -> FastAPI:
    """Create FastAPI app for health and circuit breaker endpoints.

    Args:
        registry: Circuit breakers to report on and reset
        providers: Providers probed by /health/detailed
        admin_token: Required X-Admin-Token for reset endpoints (empty disables)

    Returns:
        FastAPI app
    """
    server = HealthServer(registry, providers, admin_token=admin_token)
    return server.app
