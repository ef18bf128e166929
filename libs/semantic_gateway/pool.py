"""
Session pooling for the remote semantic model service.

Sessions are keyed by (tenant, workspace, principal). Validity is recomputed on
every lookup; a single periodic sweep removes entries that went stale between
lookups.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from .config import SessionPoolConfig
from .errors import SessionCreationError, sanitize_error_message
from .models import (
    EndpointDescriptor,
    PoolKey,
    PoolStats,
    SessionDescriptor,
    SessionSummary,
)
from .providers import TokenProvider, build_xmla_endpoint

EndpointBuilder = Callable[[str], EndpointDescriptor]


def utc_now() -> datetime:
    return datetime.now(UTC)


class SessionPool:
    """
    Bounded cache of session descriptors with LRU eviction.

    Concurrent first-time acquisitions of the same key share a single
    creation. Every mutation of the map or of a descriptor happens under
    ``self._lock``.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        config: SessionPoolConfig | None = None,
        endpoint_builder: EndpointBuilder = build_xmla_endpoint,
        service_name: str = "powerbi",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token_provider = token_provider
        self.config = config or SessionPoolConfig()
        self.endpoint_builder = endpoint_builder
        self.service_name = service_name
        self._clock = clock

        self._sessions: dict[str, SessionDescriptor] = {}
        self._pending: dict[str, asyncio.Future[SessionDescriptor | None]] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: asyncio.Task | None = None

        self._created = 0
        self._reused = 0
        self._expired = 0
        self._evicted = 0
        self._errored = 0

        self.logger = structlog.get_logger(__name__).bind(component="session_pool")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: PoolKey) -> bool:
        return identity.key in self._sessions

    def is_session_valid(self, session: SessionDescriptor) -> bool:
        """Token outside the expiry buffer, age within bound, not invalidated."""
        now = self._clock()
        if session.token_seconds_remaining(now) <= self.config.token_expiry_buffer_seconds:
            return False
        if session.age_seconds(now) >= self.config.max_connection_age_seconds:
            return False
        return session.is_valid

    async def acquire(self, identity: PoolKey) -> SessionDescriptor:
        """
        Return a valid session for ``identity``, creating one if needed.

        Concurrent callers for the same key share one creation. A waiter
        re-checks the shared session before returning it and starts over if
        the session was invalidated, evicted or never created because the
        creating task was cancelled.

        Raises:
            SessionCreationError: If no valid token can be obtained.
        """
        key = identity.key

        while True:
            async with self._lock:
                session = self._sessions.get(key)
                if session is not None:
                    if self.is_session_valid(session):
                        session.touch(self._clock())
                        self._reused += 1
                        self.logger.debug(
                            "session_reused",
                            pool_key=key,
                            usage_count=session.usage_count,
                        )
                        return session

                    del self._sessions[key]
                    self._expired += 1
                    self.logger.debug("session_expired", pool_key=key)

                pending = self._pending.get(key)
                if pending is None:
                    pending = asyncio.get_running_loop().create_future()
                    self._pending[key] = pending
                    owner = True
                else:
                    owner = False

            if owner:
                return await self._create_pending(identity, pending)

            session = await asyncio.shield(pending)
            if session is None:
                self.logger.debug("session_creation_abandoned", pool_key=key)
                continue

            async with self._lock:
                current = self._sessions.get(key)
                if current is session and self.is_session_valid(session):
                    session.touch(self._clock())
                    self._reused += 1
                    return session
            self.logger.debug("shared_session_stale", pool_key=key)

    async def _create_pending(
        self, identity: PoolKey, pending: asyncio.Future
    ) -> SessionDescriptor:
        """Create the session for ``identity`` and resolve ``pending`` for waiters."""
        key = identity.key
        try:
            session = await self._create_session(identity)
            async with self._lock:
                if (
                    key not in self._sessions
                    and len(self._sessions) >= self.config.max_pool_size
                ):
                    self._evict_least_recently_used()
                self._sessions[key] = session
                self._created += 1
                self.logger.debug(
                    "session_added", pool_key=key, pool_size=len(self._sessions)
                )
        except asyncio.CancelledError:
            # None tells waiters to start over.
            self._pending.pop(key, None)
            pending.set_result(None)
            raise
        except Exception as e:
            self._pending.pop(key, None)
            self._errored += 1
            pending.set_exception(e)
            # Waiters may not exist; the owner re-raises the error itself.
            pending.exception()
            raise

        self._pending.pop(key, None)
        pending.set_result(session)
        return session

    async def _create_session(self, identity: PoolKey) -> SessionDescriptor:
        """Obtain a token and build a fresh descriptor."""
        self.logger.info(
            "creating_session",
            pool_key=identity.key,
            workspace_id=identity.workspace_id,
        )
        try:
            grant = await self.token_provider.get_valid_token(
                identity.principal_id, self.service_name
            )
        except SessionCreationError:
            raise
        except Exception as e:
            sanitized = sanitize_error_message(str(e))
            self.logger.error(
                "token_lookup_failed", pool_key=identity.key, error=sanitized
            )
            raise SessionCreationError(
                f"Token lookup failed: {sanitized}", pool_key=identity.key
            ) from e

        if grant is None:
            self.logger.error("no_valid_token", pool_key=identity.key)
            raise SessionCreationError(
                f"No valid {self.service_name} token found. "
                "Please reconnect the account.",
                pool_key=identity.key,
            )

        token_expiry = grant.expires_at
        if token_expiry.tzinfo is None:
            token_expiry = token_expiry.replace(tzinfo=UTC)

        now = self._clock()
        session = SessionDescriptor(
            identity=identity,
            access_token=grant.access_token,
            token_expiry=token_expiry,
            endpoint=self.endpoint_builder(identity.workspace_id),
            created_at=now,
        )

        if not self.is_session_valid(session):
            self.logger.error(
                "token_inside_expiry_buffer",
                pool_key=identity.key,
                token_expires_in_seconds=int(session.token_seconds_remaining(now)),
            )
            raise SessionCreationError(
                "Token expires within the safety buffer", pool_key=identity.key
            )

        self.logger.info("session_created", pool_key=identity.key)
        return session

    def _evict_least_recently_used(self) -> None:
        """Drop the entry with the oldest ``last_used``, valid or not."""
        if not self._sessions:
            return
        oldest_key = min(self._sessions, key=lambda k: self._sessions[k].last_used)
        del self._sessions[oldest_key]
        self._evicted += 1
        self.logger.debug("session_evicted", pool_key=oldest_key)

    async def invalidate(self, identity: PoolKey) -> None:
        """Mark the session invalid in place; the next acquire recreates it."""
        async with self._lock:
            session = self._sessions.get(identity.key)
            if session is not None:
                session.mark_invalid()
                self.logger.info("session_invalidated", pool_key=identity.key)

    async def remove(self, identity: PoolKey) -> bool:
        """Delete the entry outright."""
        async with self._lock:
            if self._sessions.pop(identity.key, None) is None:
                return False
            self.logger.info("session_removed", pool_key=identity.key)
            return True

    async def evict_expired(self) -> int:
        """Remove every entry failing the validity predicate."""
        async with self._lock:
            stale = [
                key
                for key, session in self._sessions.items()
                if not self.is_session_valid(session)
            ]
            for key in stale:
                del self._sessions[key]
            self._expired += len(stale)

        if stale:
            self.logger.info(
                "expired_sessions_cleaned",
                removed=len(stale),
                pool_size=len(self._sessions),
            )
        return len(stale)

    async def clear(self) -> int:
        """Drop all sessions."""
        async with self._lock:
            size = len(self._sessions)
            self._sessions.clear()
        self.logger.info("pool_cleared", removed=size)
        return size

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            self.logger.info(
                "cleanup_job_started",
                interval_seconds=self.config.cleanup_interval_seconds,
            )

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            self.logger.info("cleanup_job_stopped")

    @property
    def running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            try:
                await self.evict_expired()
            except Exception as e:
                self.logger.error("cleanup_error", error=str(e))

    def stats(self) -> PoolStats:
        """Counters plus a per-entry summary."""
        now = self._clock()
        return PoolStats(
            total_connections=self._created,
            reuse_count=self._reused,
            expiry_count=self._expired,
            eviction_count=self._evicted,
            error_count=self._errored,
            current_pool_size=len(self._sessions),
            max_pool_size=self.config.max_pool_size,
            connections=[
                SessionSummary(
                    key=key,
                    created_at=session.created_at,
                    last_used=session.last_used,
                    age_seconds=session.age_seconds(now),
                    usage_count=session.usage_count,
                    is_valid=self.is_session_valid(session),
                    token_expires_in_seconds=int(session.token_seconds_remaining(now)),
                )
                for key, session in list(self._sessions.items())
            ],
        )

    def reset_stats(self) -> None:
        self._created = 0
        self._reused = 0
        self._expired = 0
        self._evicted = 0
        self._errored = 0
        self.logger.info("pool_statistics_reset")

    async def test_connection(self, identity: PoolKey) -> dict[str, Any]:
        """Acquire a session and report on it instead of raising."""
        try:
            session = await self.acquire(identity)
        except SessionCreationError as e:
            return {"success": False, "error": str(e)}

        now = self._clock()
        return {
            "success": True,
            "connection_key": identity.key,
            "endpoint": session.endpoint.server,
            "token_expires_in_seconds": int(session.token_seconds_remaining(now)),
            "usage_count": session.usage_count,
            "created_at": session.created_at,
            "last_used": session.last_used,
        }
