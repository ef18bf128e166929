"""
Resilient query execution against the remote semantic model service.

Each call walks a small state machine:

    Created -> Attempting(n) -> Succeeded
                             -> Retrying -> Attempting(n + 1)
                             -> FailedFatal
                             -> FailedExhausted

Attempts are bounded by the retry policy's timeout. A timed-out attempt is
cancelled through asyncio, so its late response is never observed.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from .config import RetryPolicy
from .errors import (
    ErrorKind,
    GatewayQueryError,
    QueryTimeoutError,
    SessionCreationError,
    classify_error,
    is_retryable,
    requires_session_invalidation,
    sanitize_error_message,
)
from .models import (
    BatchOutcome,
    ExecutorStats,
    PoolKey,
    QueryOutcome,
    SessionDescriptor,
    TabularResult,
    ValidationResult,
)
from .pool import SessionPool
from .providers import RemoteQueryService

T = TypeVar("T")

MAX_QUERY_LENGTH = 50_000
REQUIRED_KEYWORDS = ("EVALUATE", "DEFINE")
DANGEROUS_KEYWORDS = ("DELETE", "DROP")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class QueryExecutor:
    """Executes DAX queries through pooled sessions with retry and backoff."""

    def __init__(
        self,
        pool: SessionPool,
        remote_service: RemoteQueryService,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self.remote_service = remote_service
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._stats = ExecutorStats()
        self.logger = structlog.get_logger(__name__).bind(component="query_executor")

    async def execute(
        self, identity: PoolKey, dataset_id: str, query: str
    ) -> QueryOutcome:
        """
        Execute a query and return its outcome.

        Never raises for remote or credential failures; the outcome carries
        the classified error instead.
        """
        start = time.perf_counter()
        self._stats.total_queries += 1

        async def run(session: SessionDescriptor) -> TabularResult:
            return await self.remote_service.execute_query(session, dataset_id, query)

        try:
            result, attempts, invalidated = await self._run_with_retry(
                identity, run, operation="execute_query", dataset_id=dataset_id
            )
        except GatewayQueryError as e:
            elapsed = _elapsed_ms(start)
            self._stats.failed_queries += 1
            self._stats.total_execution_time_ms += elapsed
            self.logger.error(
                "query_execution_failed",
                pool_key=identity.key,
                dataset_id=dataset_id,
                error=str(e),
                error_kind=e.kind.value,
                attempts=e.attempts,
                execution_time_ms=elapsed,
            )
            return QueryOutcome(
                success=False,
                query=query,
                error=str(e),
                error_kind=e.kind,
                execution_time_ms=elapsed,
                attempts=e.attempts,
                session_invalidated=e.session_invalidated,
                dataset_id=dataset_id,
                workspace_id=identity.workspace_id,
            )

        elapsed = _elapsed_ms(start)
        self._stats.successful_queries += 1
        self._stats.total_execution_time_ms += elapsed
        if attempts > 1:
            self._stats.retried_queries += 1

        return QueryOutcome(
            success=True,
            query=query,
            result=result,
            execution_time_ms=elapsed,
            row_count=result.row_count,
            attempts=attempts,
            session_invalidated=invalidated,
            dataset_id=dataset_id,
            workspace_id=identity.workspace_id,
        )

    async def describe(self, identity: PoolKey, dataset_id: str) -> dict[str, Any]:
        """
        Read the dataset's descriptive view through the same retry loop.

        Raises:
            GatewayQueryError: When the call fails terminally.
        """

        async def run(session: SessionDescriptor) -> dict[str, Any]:
            return await self.remote_service.describe_dataset(session, dataset_id)

        payload, _, _ = await self._run_with_retry(
            identity, run, operation="describe_dataset", dataset_id=dataset_id
        )
        return payload

    async def _run_with_retry(
        self,
        identity: PoolKey,
        call: Callable[[SessionDescriptor], Awaitable[T]],
        operation: str,
        dataset_id: str | None = None,
    ) -> tuple[T, int, bool]:
        """Return ``(result, attempts, session_invalidated)`` or raise."""
        attempt = 0
        invalidated = False
        last_error: BaseException | None = None
        last_kind = ErrorKind.FATAL

        while attempt < self.policy.max_attempts:
            attempt += 1
            self.logger.debug(
                "query_attempt",
                operation=operation,
                attempt=attempt,
                max_attempts=self.policy.max_attempts,
                dataset_id=dataset_id,
            )

            try:
                session = await self.pool.acquire(identity)
            except SessionCreationError as e:
                raise GatewayQueryError(
                    str(e),
                    ErrorKind.CREATION_ERROR,
                    attempts=attempt,
                    session_invalidated=invalidated,
                ) from e

            try:
                result = await asyncio.wait_for(
                    call(session), timeout=self.policy.timeout_seconds
                )
            except TimeoutError:
                error: Exception = QueryTimeoutError(self.policy.timeout_seconds)
            except Exception as e:
                error = e
            else:
                if attempt > 1:
                    self.logger.info(
                        "query_succeeded_after_retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result, attempt, invalidated

            last_error = error
            last_kind = classify_error(error)
            message = sanitize_error_message(str(error))

            if requires_session_invalidation(error):
                await self.pool.invalidate(identity)
                invalidated = True
                self.logger.info(
                    "session_invalidated_after_error",
                    pool_key=identity.key,
                    error=message,
                )

            if not is_retryable(last_kind):
                self.logger.warning(
                    "non_retryable_error",
                    operation=operation,
                    attempt=attempt,
                    error=message,
                    error_kind=last_kind.value,
                )
                break

            if attempt >= self.policy.max_attempts:
                self.logger.error(
                    "retries_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=message,
                )
                break

            delay = self.policy.compute_backoff(attempt)
            self.logger.warning(
                "retrying_query",
                operation=operation,
                attempt=attempt,
                next_attempt=attempt + 1,
                delay_seconds=round(delay, 3),
                error=message,
                error_kind=last_kind.value,
            )
            await self._sleep(delay)

        kind = last_kind
        if last_error is not None and requires_session_invalidation(last_error):
            kind = ErrorKind.AUTH_EXPIRED

        raise GatewayQueryError(
            sanitize_error_message(str(last_error)),
            kind,
            attempts=attempt,
            session_invalidated=invalidated,
        ) from last_error

    def validate(self, query: Any) -> ValidationResult:
        """
        Static pre-flight checks.

        Every independent defect is reported, not just the first one.
        """
        if not query or not isinstance(query, str):
            return ValidationResult(
                is_valid=False, errors=["Query must be a non-empty string"]
            )

        trimmed = query.strip()
        if not trimmed:
            return ValidationResult(is_valid=False, errors=["Query cannot be empty"])

        errors: list[str] = []
        warnings: list[str] = []
        upper = trimmed.upper()

        if not any(keyword in upper for keyword in REQUIRED_KEYWORDS):
            errors.append("Query must contain EVALUATE or DEFINE statement")

        open_parens, close_parens = trimmed.count("("), trimmed.count(")")
        if open_parens != close_parens:
            errors.append(
                f"Unbalanced parentheses ({open_parens} open, {close_parens} close)"
            )

        open_brackets, close_brackets = trimmed.count("["), trimmed.count("]")
        if open_brackets != close_brackets:
            errors.append(
                f"Unbalanced square brackets ({open_brackets} open, "
                f"{close_brackets} close)"
            )

        if len(trimmed) > MAX_QUERY_LENGTH:
            errors.append(
                f"Query exceeds maximum length of {MAX_QUERY_LENGTH:,} characters"
            )

        if any(keyword in upper for keyword in DANGEROUS_KEYWORDS):
            warnings.append("Query contains potentially dangerous operations")
            self.logger.warning("dangerous_query_operations", query_length=len(trimmed))

        return ValidationResult(
            is_valid=not errors, errors=errors, warnings=warnings
        )

    async def execute_batch(
        self, identity: PoolKey, dataset_id: str, queries: list[str]
    ) -> BatchOutcome:
        """Run independent queries concurrently; one failure never fails the batch."""
        start = time.perf_counter()
        self.logger.info(
            "executing_batch", query_count=len(queries), dataset_id=dataset_id
        )

        try:
            settled = await asyncio.gather(
                *(self.execute(identity, dataset_id, query) for query in queries),
                return_exceptions=True,
            )
        except Exception as e:
            self.logger.error("batch_dispatch_failed", error=str(e))
            return BatchOutcome(
                success=False,
                total_queries=len(queries),
                total_execution_time_ms=_elapsed_ms(start),
                error=str(e),
            )

        results: list[QueryOutcome] = []
        for query, item in zip(queries, settled, strict=True):
            if isinstance(item, QueryOutcome):
                results.append(item)
            else:
                results.append(
                    QueryOutcome(
                        success=False,
                        query=query,
                        error=str(item),
                        error_kind=ErrorKind.FATAL,
                        execution_time_ms=_elapsed_ms(start),
                    )
                )

        successful = sum(1 for r in results if r.success)
        return BatchOutcome(
            success=True,
            total_queries=len(queries),
            successful_queries=successful,
            failed_queries=len(results) - successful,
            results=results,
            total_execution_time_ms=_elapsed_ms(start),
        )

    def stats(self) -> ExecutorStats:
        """Counters with average duration and success rate."""
        stats = self._stats.model_copy()
        if stats.total_queries:
            stats.average_execution_time_ms = round(
                stats.total_execution_time_ms / stats.total_queries
            )
            stats.success_rate = (
                f"{stats.successful_queries / stats.total_queries * 100:.2f}%"
            )
        return stats

    def reset_stats(self) -> None:
        self._stats = ExecutorStats()
        self.logger.info("executor_statistics_reset")
