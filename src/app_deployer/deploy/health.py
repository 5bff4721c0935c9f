"""Bounded-retry HTTP health probe for a freshly started release."""

from __future__ import annotations

import time
from typing import Callable, Optional

import httpx
import structlog

from app_deployer.core.models import HealthResult, HealthStatus

logger = structlog.get_logger()


class HealthChecker:
    """Polls ``GET http://localhost:<port><path>`` until it returns 2xx.

    Connection errors, timeouts and non-2xx statuses all count as one failed
    attempt. The checker sleeps between attempts but never after the last,
    so an unhealthy verdict arrives after exactly ``max_attempts`` probes.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    def check(
        self,
        port: int,
        path: str = "/api/health",
        max_attempts: int = 30,
        interval_seconds: float = 2.0,
    ) -> HealthResult:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        url = f"http://localhost:{port}{path}"
        logger.info("Running health check", url=url, max_attempts=max_attempts)

        client = self._client or httpx.Client(timeout=self.timeout_seconds)
        last_status: Optional[int] = None
        last_error: Optional[str] = None
        try:
            for attempt in range(1, max_attempts + 1):
                logger.debug("Health check attempt", attempt=attempt, max_attempts=max_attempts)
                try:
                    response = client.get(url)
                    last_status = response.status_code
                    last_error = None
                    if response.is_success:
                        logger.info("Health check passed", url=url, attempt=attempt)
                        return HealthResult(
                            status=HealthStatus.HEALTHY,
                            url=url,
                            attempts=attempt,
                            last_status_code=last_status,
                        )
                    last_error = f"HTTP {last_status}"
                except httpx.HTTPError as e:
                    last_status = None
                    last_error = f"{type(e).__name__}: {e}"

                logger.debug("Health check attempt failed", attempt=attempt, error=last_error)
                if attempt < max_attempts:
                    self._sleep(interval_seconds)
        finally:
            if self._client is None:
                client.close()

        logger.warning("Health check failed", url=url, attempts=max_attempts, last_error=last_error)
        return HealthResult(
            status=HealthStatus.UNHEALTHY,
            url=url,
            attempts=max_attempts,
            last_status_code=last_status,
            last_error=last_error,
        )
