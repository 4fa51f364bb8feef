"""
Storefront Backend — Resilient Upstream HTTP Client
=====================================================

What:  Base class for calls to third-party APIs (Printify, Stripe).
Why:   Upstream APIs fail transiently (timeouts, 502s, rate limits) and
       sometimes for minutes at a time. Requests must neither hang on a dead
       service nor hammer one that is recovering.
How:   httpx.AsyncClient for transport, wrapped in:
       1. Tenacity retry with exponential backoff + jitter for transient
          failures (network errors, 429, 5xx)
       2. A circuit breaker per upstream that fails fast after repeated
          failures and lets a single trial request through to test recovery
       3. Timing of every call written to performance.log

Error Handling Chain:
    Call fails → tenacity retries (RETRY_MAX_ATTEMPTS with backoff)
    → All retries fail → record circuit breaker failure → UpstreamServiceError (502)
    → Threshold reached → future calls raise CircuitBreakerOpenError (503) instantly
    → Recovery timeout → one test call allowed (HALF_OPEN)
    → Test succeeds → CLOSED
"""

import time
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from storefront.context import RequestContext
from storefront.exceptions import CircuitBreakerOpenError, NotFoundError, UpstreamServiceError
from storefront.logger import get_logger, log_performance

log = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not shared across processes; each worker keeps its own counters.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, name: str = "upstream", failure_threshold: int = 5, recovery_timeout: int = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a request is allowed through the circuit breaker.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                log.info(
                    "Circuit breaker %s transitioning to HALF_OPEN after %.1fs",
                    self.name,
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = max(int(self.recovery_timeout - elapsed), 1)
            raise CircuitBreakerOpenError(recovery_time=remaining, service=self.name)

        # HALF_OPEN: allow the test request through
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            log.info("Circuit breaker %s transitioning to CLOSED (service recovered)", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            log.warning("Circuit breaker %s returning to OPEN (test request failed)", self.name)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            log.warning(
                "Circuit breaker %s OPENING after %d consecutive failures",
                self.name,
                self.failure_count,
            )
            self.state = self.OPEN

    def snapshot(self) -> Dict[str, Any]:
        return {"state": self.state, "failures": self.failure_count}


# ══════════════════════════════════════════════════════════════════════════
# Upstream Client
# ══════════════════════════════════════════════════════════════════════════

class RetryableStatusError(Exception):
    """An upstream response whose status is worth retrying (429, 5xx)."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"upstream returned {response.status_code}")


RETRYABLE_ERRORS = (httpx.TransportError, RetryableStatusError)


class UpstreamClient:
    """
    Shared request path for every third-party API.

    Subclasses set `service_name` and add typed helper methods.
    `transport` lets tests plug in an httpx.MockTransport.
    """

    service_name = "upstream"

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_min_wait: float = 1,
        retry_max_wait: float = 10,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.circuit_breaker = CircuitBreaker(
            name=self.service_name,
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
        )
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def retry_kwargs(cls, settings) -> Dict[str, Any]:
        return {
            "timeout": settings.upstream_timeout,
            "retry_attempts": settings.retry_max_attempts,
            "retry_min_wait": settings.retry_min_wait,
            "retry_max_wait": settings.retry_max_wait,
            "failure_threshold": settings.cb_failure_threshold,
            "recovery_timeout": settings.cb_recovery_timeout,
        }

    async def request(
        self,
        method: str,
        path: str,
        ctx: Optional[RequestContext] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Send a request and return the decoded JSON body.

        Raises:
            CircuitBreakerOpenError: circuit is open
            NotFoundError: upstream answered 404
            UpstreamServiceError: retries exhausted or a non-retryable error status
        """
        self.circuit_breaker.can_execute()

        started = time.perf_counter()
        try:
            response = await self._send_with_retry(method, path, ctx, **kwargs)
        except RetryableStatusError as e:
            self.circuit_breaker.record_failure()
            log.error(
                "%s %s %s failed after %d attempts with status %d",
                self.service_name, method, path, self.retry_attempts, e.response.status_code,
                ctx=ctx, service=self.service_name, upstream_status=e.response.status_code,
            )
            raise UpstreamServiceError(
                service=self.service_name,
                upstream_status=e.response.status_code,
                context={"path": path, "attempts": self.retry_attempts},
            )
        except httpx.HTTPError as e:
            self.circuit_breaker.record_failure()
            log.error(
                "%s %s %s failed after %d attempts: %s",
                self.service_name, method, path, self.retry_attempts, e,
                ctx=ctx, service=self.service_name, error_type=type(e).__name__,
            )
            raise UpstreamServiceError(
                service=self.service_name,
                message=f"{self.service_name} request failed: {type(e).__name__}",
                context={"path": path, "attempts": self.retry_attempts},
            )
        finally:
            log_performance(
                f"{self.service_name} {method} {path}",
                (time.perf_counter() - started) * 1000,
                ctx=ctx,
            )

        # The service answered; client-side errors don't count against the breaker
        self.circuit_breaker.record_success()

        if response.status_code == 404:
            raise NotFoundError(resource=self.service_name, context={"path": path})
        if response.status_code >= 400:
            raise UpstreamServiceError(
                service=self.service_name,
                message=f"{self.service_name} rejected {method} {path}: {response.text[:200]}",
                upstream_status=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    async def _send_with_retry(
        self, method: str, path: str, ctx: Optional[RequestContext], **kwargs: Any
    ) -> httpx.Response:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "%s %s %s attempt %d failed (%s), retrying in %.2fs",
                self.service_name, method, path, retry_state.attempt_number, error,
                retry_state.next_action.sleep if retry_state.next_action else 0.0,
                ctx=ctx, service=self.service_name, attempt=retry_state.attempt_number,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry_min_wait,
                max=self.retry_max_wait,
                jitter=min(1, self.retry_max_wait),
            ),
            before_sleep=log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.request(method, path, **kwargs)
                if response.status_code == 429 or response.status_code >= 500:
                    raise RetryableStatusError(response)
        return response

    async def aclose(self) -> None:
        await self._client.aclose()
