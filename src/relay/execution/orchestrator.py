"""Request orchestration: rate limit, circuit breaker, retry and cancellation.

Manifesto:
    A call to an unreliable dependency needs four guards that interact:
    the rate limiter caps how many attempts may start, the circuit breaker
    stops calling a dependency that keeps failing, the retry policy spaces
    out repeated attempts, and the caller's cancellation token can stop all
    of it. ``RequestOrchestrator`` composes them for one logical call and
    surfaces exactly one terminal outcome.

Architecture:
    ::

        execute(request, token)
          │
          ├─▶ 1. token cancelled? ──────────────────────▶ CancellationError
          ├─▶ 2. limiter.admit()  ── deferred ──▶ cancellable_sleep(retry_after) ─┐
          │        ▲                                                               │
          │        └───────────────────────────────────────────────────────────────┘
          ├─▶ 3. breaker.acquire() ── reject ───────────▶ CircuitOpenError
          ├─▶ 4. transport.invoke(request) → CallAttempt
          ├─▶ 5. breaker.on_result(...)
          ├─▶ 6. Success ───────────────────────────────▶ value
          ├─▶ 7. PermanentFailure ──────────────────────▶ PermanentCallError
          └─▶ 8. RetryableFailure → policy.next_delay()
                   ├── no retry ────────────────────────▶ RetryableCallError
                   └── cancellable_sleep(delay) → back to 1 with attempt + 1

    The limiter and breaker are shared per dependency and injected; the
    orchestrator owns no cross-call state of its own. A transport call that
    is already in flight is never interrupted by cancellation.

Examples:
    >>> orchestrator = RequestOrchestrator(
    ...     transport,
    ...     name="billing",
    ...     limiter=SlidingWindowLimiter(max_calls=10, window_seconds=1.0),
    ...     breaker=CircuitBreaker(name="billing", failure_threshold=5),
    ...     retry_policy=RetryPolicy(max_retries=4, initial_delay=0.2),
    ... )
    >>> token = CancellationToken()
    >>> invoice = await orchestrator.execute({"invoice": 42}, token, timeout=5.0)

Tags:
    orchestration, retry, circuit-breaker, rate-limit, cancellation, relay

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Callable
from typing import Any

from relay.core.errors import (
    CancellationError,
    CircuitOpenError,
    DeadlineExceeded,
    PermanentCallError,
    RelayError,
    RetryableCallError,
)
from relay.core.logging import get_logger
from relay.core.protocols import Clock, SleepFn, Transport
from relay.core.result import Err, Ok, Result
from relay.execution.cancellation import CancellationToken, cancellable_sleep
from relay.execution.circuit_breaker import CircuitBreaker, Permission
from relay.execution.models import (
    CallAttempt,
    CallReport,
    FailureKind,
    Outcome,
    PermanentFailure,
    RetryableFailure,
    Success,
    as_outcome,
)
from relay.execution.rate_limit import SlidingWindowLimiter
from relay.execution.retry import RetryPolicy
from relay.observability.metrics import CallMetrics

logger = get_logger(__name__)

# Shortest rate-limit wait; bounds the poll rate when retry_after rounds to 0
MIN_ADMISSION_WAIT = 0.001

AttemptHook = Callable[[CallAttempt], None]
RetryHook = Callable[[int, str, float], None]


def classify_exception(exc: Exception) -> RetryableFailure | PermanentFailure:
    """Turn an exception raised by a transport into an outcome.

    Relay errors carry their own ``retryable`` flag; OS-level errors
    (timeouts, refused or reset connections) are retryable; anything else
    is a permanent failure.
    """
    reason = str(exc) or type(exc).__name__
    if isinstance(exc, RelayError):
        retryable = exc.retryable
    else:
        retryable = isinstance(exc, OSError)

    if retryable:
        return RetryableFailure(reason, error=exc)
    return PermanentFailure(reason, error=exc)


def _final_status(error: RelayError) -> str:
    if isinstance(error, DeadlineExceeded):
        return "deadline_exceeded"
    if isinstance(error, CancellationError):
        return "cancelled"
    if isinstance(error, CircuitOpenError):
        return "circuit_open"
    if isinstance(error, PermanentCallError):
        return "permanent_failure"
    if isinstance(error, RetryableCallError):
        return "retries_exhausted"
    return "error"


class RequestOrchestrator:
    """Executes logical calls against one dependency through all guards.

    Args:
        transport: Object with ``invoke(request)`` or a plain callable;
            sync or async
        name: Dependency name used for logs, metrics and errors
        limiter: Shared sliding-window limiter for the dependency
        breaker: Shared circuit breaker for the dependency
        retry_policy: Backoff policy for retryable failures
        clock: Monotonic time source for attempt timestamps
        sleep: Async sleep used for every wait
        default_timeout: Per-call deadline in seconds when ``execute`` is
            given none; None means no deadline
        classify_error: Maps exceptions raised by the transport to outcomes
        metrics: Metrics side channel
        on_attempt: Called with each settled ``CallAttempt``
        on_retry: Called as (attempt, reason, delay) before each backoff
    """

    def __init__(
        self,
        transport: Transport | Callable[[Any], Any],
        *,
        name: str | None = None,
        limiter: SlidingWindowLimiter | None = None,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Clock = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        default_timeout: float | None = None,
        classify_error: Callable[[Exception], RetryableFailure | PermanentFailure] = classify_exception,
        metrics: CallMetrics | None = None,
        on_attempt: AttemptHook | None = None,
        on_retry: RetryHook | None = None,
    ):
        self.name = name or (breaker.name if breaker is not None else "default")
        self._invoke = getattr(transport, "invoke", transport)
        if not callable(self._invoke):
            raise TypeError(f"transport must be callable or define invoke(), got {transport!r}")
        self.limiter = limiter or SlidingWindowLimiter(clock=clock)
        self.breaker = breaker or CircuitBreaker(name=self.name, clock=clock)
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_timeout = default_timeout
        self.metrics = metrics or CallMetrics()
        self._clock = clock
        self._sleep = sleep
        self._classify = classify_error
        self._on_attempt = on_attempt
        self._on_retry = on_retry

    async def execute(
        self,
        request: Any,
        token: CancellationToken | None = None,
        *,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> Any:
        """Run one logical call and return its value.

        Raises:
            RetryableCallError: Last retryable failure after retries ran out
            PermanentCallError: First permanent failure
            CircuitOpenError: The breaker rejected the call
            CancellationError: The token was cancelled (DeadlineExceeded if
                the deadline elapsed)
        """
        return await self._execute(request, token, timeout, request_id, [])

    async def execute_report(
        self,
        request: Any,
        token: CancellationToken | None = None,
        *,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> CallReport:
        """Run one logical call and return its disposition with all attempts."""
        attempts: list[CallAttempt] = []
        started = self._clock()
        try:
            value = await self._execute(request, token, timeout, request_id, attempts)
        except RelayError as exc:
            return CallReport(error=exc, attempts=tuple(attempts), elapsed=self._clock() - started)
        return CallReport(value=value, attempts=tuple(attempts), elapsed=self._clock() - started)

    async def try_execute(
        self,
        request: Any,
        token: CancellationToken | None = None,
        *,
        timeout: float | None = None,
        request_id: str | None = None,
    ) -> Result[Any]:
        """Run one logical call, returning ``Ok(value)`` or ``Err(error)``."""
        try:
            value = await self._execute(request, token, timeout, request_id, [])
        except RelayError as exc:
            return Err(exc)
        return Ok(value)

    async def _execute(
        self,
        request: Any,
        token: CancellationToken | None,
        timeout: float | None,
        request_id: str | None,
        attempts: list[CallAttempt],
    ) -> Any:
        deadline = timeout if timeout is not None else self.default_timeout
        call_token = token
        if deadline is not None:
            call_token = CancellationToken.linked(token) if token is not None else CancellationToken()
            call_token.cancel_after(deadline)

        log = logger.bind(dependency=self.name, request_id=request_id)
        try:
            value = await self._run(request, call_token, attempts, log)
        except RelayError as exc:
            exc.with_context(dependency=self.name, request_id=request_id, attempt=len(attempts) or None)
            status = _final_status(exc)
            self.metrics.record_call(self.name, status)
            if isinstance(exc, CancellationError):
                log.info("call_cancelled", status=status, reason=exc.reason, attempts=len(attempts))
            else:
                log.warning("call_failed", status=status, error=exc.message, attempts=len(attempts))
            raise
        finally:
            if deadline is not None:
                call_token.close()

        self.metrics.record_call(self.name, "success")
        log.info("call_succeeded", attempts=len(attempts))
        return value

    async def _run(
        self,
        request: Any,
        token: CancellationToken | None,
        attempts: list[CallAttempt],
        log: Any,
    ) -> Any:
        attempt = 1
        while True:
            await self._admit(token, log)

            permission = self.breaker.acquire()
            if not permission.allowed:
                self.metrics.record_circuit_rejection(self.name)
                self.metrics.record_circuit_state(self.name, self.breaker.state.value)
                retry_after = self.breaker.remaining_cool_down()
                log.info("circuit_rejected", attempt=attempt, retry_after=retry_after)
                raise CircuitOpenError(self.name, retry_after=retry_after)

            outcome = await self._attempt(request, attempt, permission, attempts, log)

            if isinstance(outcome, Success):
                return outcome.value

            if isinstance(outcome, PermanentFailure):
                raise PermanentCallError(outcome.reason, attempts=attempt, cause=outcome.error)

            decision = self.retry_policy.next_delay(attempt, FailureKind.RETRYABLE)
            if not decision.retry:
                raise RetryableCallError(outcome.reason, attempts=attempt, cause=outcome.error)

            log.info("retry_scheduled", attempt=attempt, delay=decision.delay, reason=outcome.reason)
            self.metrics.record_retry(self.name)
            if self._on_retry is not None:
                self._on_retry(attempt, outcome.reason, decision.delay)

            await cancellable_sleep(decision.delay, token, sleep=self._sleep)
            attempt += 1

    async def _admit(self, token: CancellationToken | None, log: Any) -> None:
        """Wait until the rate limiter admits a start, honoring cancellation."""
        while True:
            if token is not None:
                token.raise_if_cancelled()

            admission = self.limiter.admit()
            if admission.allowed:
                return

            self.metrics.record_rate_limit_wait(self.name)
            log.debug("rate_limit_wait", retry_after=admission.retry_after)
            await cancellable_sleep(
                max(admission.retry_after, MIN_ADMISSION_WAIT), token, sleep=self._sleep
            )

    async def _attempt(
        self,
        request: Any,
        index: int,
        permission: Permission,
        attempts: list[CallAttempt],
        log: Any,
    ) -> Outcome:
        """Invoke the transport once and report the outcome to the breaker."""
        attempts.append(CallAttempt(index=index, started_at=self._clock()))
        log.debug("attempt_started", attempt=index, probe=permission is Permission.PROBE)

        reported = False
        try:
            try:
                result = self._invoke(request)
                if inspect.isawaitable(result):
                    result = await result
                outcome = as_outcome(result)
            except Exception as exc:
                outcome = self._classify(exc)

            if isinstance(outcome, Success):
                self.breaker.on_result(True, permission)
                reported = True
            elif isinstance(outcome, RetryableFailure):
                self.breaker.on_result(False, permission)
                reported = True
        finally:
            if not reported and permission is Permission.PROBE:
                self.breaker.release_probe()

        settled = attempts[-1].finish(outcome, self._clock())
        attempts[-1] = settled

        self.metrics.record_attempt(self.name, settled.status.value, settled.latency or 0.0)
        self.metrics.record_circuit_state(self.name, self.breaker.state.value)
        log.debug(
            "attempt_finished",
            attempt=index,
            status=settled.status.value,
            latency=settled.latency,
            reason=settled.reason,
        )
        if self._on_attempt is not None:
            self._on_attempt(settled)
        return outcome
