"""
edge_orchestrator.orchestrator.verification

Post-deployment verification and validation engine.

Responsibilities:
- Poll a deployed worker's health endpoint (bounded by a timeout) until enough
  consecutive healthy responses are observed.
- Check the deployed result against the session's business requirements.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.state import Requirements

log = get_logger(__name__)

_HEALTHY_STATES = frozenset({"ok", "healthy", "pass"})


@dataclass(slots=True)
class HealthProbe:
    attempt: int
    status_code: int | None
    healthy: bool
    latency_ms: float
    message: str


@dataclass(slots=True)
class HealthReport:
    url: str
    healthy: bool
    required_checks: int
    consecutive_healthy: int
    probes: list[HealthProbe] = field(default_factory=list)
    timed_out: bool = False

    @property
    def max_latency_ms(self) -> float | None:
        latencies = [p.latency_ms for p in self.probes if p.healthy]
        return max(latencies) if latencies else None

    def to_payload(self) -> dict[str, Any]:
        out = asdict(self)
        out["max_latency_ms"] = self.max_latency_ms
        return out


@dataclass(slots=True)
class ComplianceReport:
    compliant: bool
    violations: list[str]
    endpoint_results: dict[str, int | None]

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


class VerificationEngine:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        poll_interval: float = 2.0,
        poll_timeout: float = 30.0,
        request_timeout: float = 10.0,
    ) -> None:
        self._http = http
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._request_timeout = request_timeout

    async def poll_health(self, url: str, *, required_checks: int) -> HealthReport:
        """
        Probe until `required_checks` consecutive healthy responses (at least one) or the
        poll timeout. Network errors count as unhealthy probes, they never raise.
        """

        needed = max(required_checks, 1)
        report = HealthReport(url=url, healthy=False, required_checks=needed, consecutive_healthy=0)
        deadline = time.monotonic() + self._poll_timeout
        attempt = 0

        while True:
            attempt += 1
            probe = await self._probe(url, attempt)
            report.probes.append(probe)
            report.consecutive_healthy = report.consecutive_healthy + 1 if probe.healthy else 0
            if report.consecutive_healthy >= needed:
                report.healthy = True
                break
            if time.monotonic() + self._poll_interval > deadline:
                report.timed_out = True
                break
            await asyncio.sleep(self._poll_interval)

        log.info(
            "health_poll_finished",
            url=url,
            healthy=report.healthy,
            probes=len(report.probes),
            timed_out=report.timed_out,
        )
        return report

    async def _probe(self, url: str, attempt: int) -> HealthProbe:
        started = time.perf_counter()
        try:
            r = await self._http.get(
                url,
                headers={"User-Agent": "edge-orchestrator/verify"},
                timeout=self._request_timeout,
            )
        except httpx.HTTPError as e:
            return HealthProbe(
                attempt=attempt,
                status_code=None,
                healthy=False,
                latency_ms=_elapsed_ms(started),
                message=f"request failed: {e!r}",
            )

        latency = _elapsed_ms(started)
        if r.status_code != 200:
            return HealthProbe(attempt, r.status_code, False, latency, f"HTTP {r.status_code}")
        try:
            body = r.json()
        except ValueError:
            # Plain-text 200 counts as healthy.
            return HealthProbe(attempt, r.status_code, True, latency, "ok")
        status = str(body.get("status", "ok")).lower() if isinstance(body, dict) else "ok"
        if status in _HEALTHY_STATES:
            return HealthProbe(attempt, r.status_code, True, latency, status)
        return HealthProbe(attempt, r.status_code, False, latency, f"reported {status}")

    async def check_compliance(
        self,
        *,
        base_url: str,
        requirements: Requirements,
        health: dict[str, Any] | None,
    ) -> ComplianceReport:
        violations: list[str] = []
        health = health or {}

        observed = int(health.get("consecutive_healthy", 0) or 0)
        if observed < requirements.min_health_checks:
            violations.append(
                f"health checks passed {observed} < required {requirements.min_health_checks}"
            )

        max_latency = health.get("max_latency_ms")
        if requirements.max_response_time_ms is not None and max_latency is not None:
            if float(max_latency) > requirements.max_response_time_ms:
                violations.append(
                    f"response time {float(max_latency):.1f}ms > {requirements.max_response_time_ms}ms"
                )

        endpoint_results: dict[str, int | None] = {}
        for path in requirements.required_endpoints:
            code = await self._status_of(base_url.rstrip("/") + path)
            endpoint_results[path] = code
            if code is None or code >= 400:
                violations.append(f"endpoint {path} returned {code}")

        return ComplianceReport(
            compliant=not violations, violations=violations, endpoint_results=endpoint_results
        )

    async def _status_of(self, url: str) -> int | None:
        try:
            r = await self._http.get(url, timeout=self._request_timeout)
        except httpx.HTTPError:
            return None
        return r.status_code


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


# --- Module Notes -----------------------------------------------------------
# Verification never raises for an unhealthy deployment: the session runner applies
# Settings.verification_failure_policy to the reports produced here.
