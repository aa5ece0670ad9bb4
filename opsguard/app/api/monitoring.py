"""Read-only health, metrics and alert history endpoints."""

import hmac
from collections import Counter
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from opsguard.app.core.logging import get_logger
from opsguard.app.engine import Engine
from opsguard.app.exceptions import CounterStoreError
from opsguard.app.monitoring.models import AlertState, MetricSample
from opsguard.app.monitoring.probes import record_server_error

logger = get_logger(__name__)

router = APIRouter()


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Monitoring engine not initialized")
    return engine


def get_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.replace("Bearer ", "", 1).strip()


def require_admin(request: Request) -> str:
    """Validate admin token for protected endpoints.

    Raises:
        HTTPException: 401 if admin token is missing or invalid,
            503 if no admin token is configured
    """
    settings = getattr(request.app.state, "settings", None)
    expected_token = settings.admin_token if settings is not None else ""
    if not expected_token:
        raise HTTPException(status_code=503, detail="Admin token not configured")

    # Always compare, even without a token, so timing does not leak presence
    token = get_bearer_token(request) or ""
    if not hmac.compare_digest(token, expected_token):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    return "admin"


def _components(samples: List[MetricSample]) -> Dict[str, Dict[str, Any]]:
    return {s.component: s.to_dict() for s in samples}


@router.get("/health")
async def health(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """Live probe of every monitored component."""
    samples = await engine.sampler.sample()
    degraded = any(not s.available for s in samples)
    return {
        "status": "degraded" if degraded else "ok",
        "components": _components(samples),
    }


@router.get("/monitoring/metrics")
async def monitoring_metrics(
    engine: Engine = Depends(get_engine),
    admin: str = Depends(require_admin),
) -> dict[str, Any]:
    """Samples from the last tick (admin only).

    Falls back to a live sample before the first tick has run.
    """
    samples = engine.sampler.latest() or await engine.sampler.sample()
    return {
        "samples": [s.to_dict() for s in samples],
        "ticks": engine.pipeline.ticks,
        "throttle": engine.throttle.snapshot(),
    }


@router.get("/monitoring/metrics/prometheus", response_class=PlainTextResponse)
async def prometheus_metrics(
    engine: Engine = Depends(get_engine),
    admin: str = Depends(require_admin),
) -> PlainTextResponse:
    """Prometheus text exposition of samples and alert counts (admin only)."""
    samples = engine.sampler.latest() or await engine.sampler.sample()
    return PlainTextResponse(
        render_prometheus(engine, samples),
        media_type="text/plain; version=0.0.4",
    )


@router.get("/monitoring/alerts")
async def recent_alerts(
    limit: int = Query(20, ge=1, le=1000),
    engine: Engine = Depends(get_engine),
    admin: str = Depends(require_admin),
) -> dict[str, Any]:
    """Last N alert records, newest first (admin only)."""
    records = engine.history.recent(limit)
    return {"alerts": [r.to_dict() for r in records], "count": len(records)}


def render_prometheus(engine: Engine, samples: List[MetricSample]) -> str:
    lines = []

    lines.append("# HELP opsguard_metric_value Last sampled value per component")
    lines.append("# TYPE opsguard_metric_value gauge")
    for sample in samples:
        if sample.available:
            lines.append(
                f'opsguard_metric_value{{component="{sample.component}",unit="{sample.unit}"}} {sample.value}'
            )

    lines.append("\n# HELP opsguard_metric_available Probe status (1=ok, 0=unavailable)")
    lines.append("# TYPE opsguard_metric_available gauge")
    for sample in samples:
        lines.append(
            f'opsguard_metric_available{{component="{sample.component}"}} {1 if sample.available else 0}'
        )

    states = Counter(r.state for r in engine.history.recent())
    lines.append("\n# HELP opsguard_alerts_recorded Alerts in recent history by final state")
    lines.append("# TYPE opsguard_alerts_recorded gauge")
    for state in AlertState:
        if state.is_terminal:
            lines.append(f'opsguard_alerts_recorded{{state="{state.value}"}} {states.get(state, 0)}')

    lines.append("\n# HELP opsguard_monitoring_ticks_total Monitoring ticks run")
    lines.append("# TYPE opsguard_monitoring_ticks_total counter")
    lines.append(f"opsguard_monitoring_ticks_total {engine.pipeline.ticks}")

    return "\n".join(lines) + "\n"


class ErrorRateMiddleware:
    """Counts 5xx responses toward the error-rate probe.

        Example:
            app.add_middleware(ErrorRateMiddleware)
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        status_code = 500

        async def wrapped_send(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 200)
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        finally:
            if status_code >= 500:
                await self._record(scope)

    @staticmethod
    async def _record(scope) -> None:
        app = scope.get("app")
        engine = getattr(getattr(app, "state", None), "engine", None)
        if engine is None:
            return
        try:
            await record_server_error(engine.counter)
        except CounterStoreError as e:
            logger.warning(f"Could not record server error: {e}")
