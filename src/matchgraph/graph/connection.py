"""Pooled Neo4j connection with supervised reconnect and health checks.

``ConnectionManager`` owns the single ``AsyncDriver`` of the process.  It
never raises on connectivity problems: operations run through
``with_session`` degrade to ``None`` while the store is unreachable, and a
background supervisor task (``start``/``stop``) performs bounded reconnect
attempts and periodic liveness probes.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable
from collections.abc import Callable
from time import perf_counter
from typing import Any
from typing import TypeVar

from neo4j import AsyncDriver
from neo4j import AsyncGraphDatabase
from neo4j import AsyncSession
from neo4j.exceptions import DriverError
from neo4j.exceptions import Neo4jError
from neo4j.exceptions import ServiceUnavailable
from neo4j.exceptions import SessionExpired
from neo4j.exceptions import TransientError

from matchgraph.config import GraphConfig
from matchgraph.config import RetryConfig
from matchgraph.observability import record_latency
from matchgraph.observability import record_skipped

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionOperation = Callable[[AsyncSession], Awaitable[T]]
DriverFactory = Callable[[GraphConfig], AsyncDriver]

# Errors the driver surfaces for store-side or network failures.
GRAPH_ERRORS: tuple[type[BaseException], ...] = (
    Neo4jError,
    DriverError,
    OSError,
    TimeoutError,
)

# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

_CONFLICT_RE = re.compile(
    r"conflicting transactions|deadlock|lock client stopped|serialization",
    re.IGNORECASE,
)
_CONNECTIVITY_RE = re.compile(
    r"connection (?:closed|refused|reset|lost|timed out|aborted)|"
    r"network (?:error|unreachable)|socket|closed by server|defunct|"
    r"econnrefused|econnreset|etimedout|timed? ?out|unreachable",
    re.IGNORECASE,
)


def is_transient_conflict(exc: BaseException) -> bool:
    """True for transaction conflicts that are safe to retry."""
    if isinstance(exc, TransientError):
        return True
    return bool(_CONFLICT_RE.search(str(exc)))


def is_connectivity_error(exc: BaseException) -> bool:
    """True when *exc* means the connection itself is unusable."""
    if isinstance(exc, (ServiceUnavailable, SessionExpired, TimeoutError, OSError)):
        return True
    return bool(_CONNECTIVITY_RE.search(str(exc)))


def _default_driver_factory(config: GraphConfig) -> AsyncDriver:
    return AsyncGraphDatabase.driver(
        config.uri,
        auth=config.auth,
        max_connection_pool_size=config.max_pool_size,
        connection_acquisition_timeout=config.acquisition_timeout_seconds,
        connection_timeout=config.connection_timeout_seconds,
        max_connection_lifetime=config.max_connection_lifetime_seconds,
    )


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------


class ConnectionManager:
    """Owns the driver, its liveness state and the reconnect supervisor."""

    def __init__(
        self,
        config: GraphConfig | None = None,
        retry: RetryConfig | None = None,
        *,
        driver_factory: DriverFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or GraphConfig()
        self.retry = retry or RetryConfig()
        self._driver_factory = driver_factory or _default_driver_factory
        self._sleep = sleep
        self._clock = clock
        self._driver: AsyncDriver | None = None
        self._connected = False
        self._connect_lock = asyncio.Lock()
        self._last_health_check: float | None = None
        self._reconnect_requested = False
        self._reconnect_delay: float | None = None
        self._wakeup = asyncio.Event()
        self._supervisor: asyncio.Task | None = None
        self._stopping = False
        self._connect_listeners: list[Callable[[], Awaitable[Any]]] = []

    @property
    def is_connected(self) -> bool:
        return self._connected and self._driver is not None

    @property
    def driver(self) -> AsyncDriver | None:
        return self._driver

    def add_connect_listener(self, callback: Callable[[], Awaitable[Any]]) -> None:
        """Run *callback* after every successful (re)connect."""
        self._connect_listeners.append(callback)

    async def _notify_connected(self) -> None:
        for callback in self._connect_listeners:
            try:
                await callback()
            except GRAPH_ERRORS as exc:
                logger.error("Connect listener %r failed: %s", callback, exc)

    # ----- Connect / close -----

    async def connect(self) -> bool:
        """Open the driver and probe it.  Never raises.

        On failure a reconnect is requested from the supervisor and
        ``False`` is returned.
        """
        async with self._connect_lock:
            if self.is_connected:
                return True
            ok = await self._open()
        if not ok:
            self.request_reconnect()
            return False
        await self._notify_connected()
        return True

    async def close(self) -> None:
        """Close the driver without stopping the supervisor."""
        self._connected = False
        await self._discard_driver()

    async def _open(self) -> bool:
        await self._discard_driver()
        try:
            driver = self._driver_factory(self.config)
        except GRAPH_ERRORS as exc:
            logger.error("Could not create graph driver for %s: %s", self.config.uri, exc)
            return False
        try:
            await asyncio.wait_for(
                self._probe(driver),
                timeout=self.config.probe_timeout_seconds,
            )
        except GRAPH_ERRORS as exc:
            logger.warning("Graph store at %s is unreachable: %s", self.config.uri, exc)
            try:
                await driver.close()
            except GRAPH_ERRORS as close_exc:
                logger.debug("Ignoring error while closing failed driver: %s", close_exc)
            return False
        self._driver = driver
        self._connected = True
        self._last_health_check = self._clock()
        logger.info("Connected to graph store at %s", self.config.uri)
        return True

    async def _probe(self, driver: AsyncDriver) -> None:
        async with driver.session(database=self.config.database) as session:
            result = await session.run("RETURN 1 AS ok")
            await result.consume()

    async def _discard_driver(self) -> None:
        driver, self._driver = self._driver, None
        if driver is None:
            return
        try:
            await driver.close()
        except GRAPH_ERRORS as exc:
            logger.debug("Ignoring error while closing graph driver: %s", exc)

    def _mark_dead(self) -> None:
        if self._connected:
            logger.warning("Marking graph connection as dead")
        self._connected = False

    # ----- Supervision -----

    def request_reconnect(self, delay: float | None = None) -> None:
        """Ask the supervisor to re-establish the connection."""
        if self._stopping:
            return
        if not self._reconnect_requested:
            self._reconnect_delay = delay
        self._reconnect_requested = True
        self._wakeup.set()

    async def start(self) -> None:
        """Connect (if needed) and launch the supervisor task."""
        self._stopping = False
        if self._supervisor is None or self._supervisor.done():
            self._supervisor = asyncio.create_task(
                self._supervise(), name="matchgraph-connection-supervisor"
            )
        if not self.is_connected:
            await self.connect()

    async def stop(self) -> None:
        """Stop the supervisor and close the driver."""
        self._stopping = True
        self._wakeup.set()
        task, self._supervisor = self._supervisor, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.close()

    async def _supervise(self) -> None:
        interval = self.config.health_check_interval_seconds
        while not self._stopping:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=interval)
            except TimeoutError:
                pass
            self._wakeup.clear()
            if self._stopping:
                return
            if self._reconnect_requested and not self.is_connected:
                await self._reconnect_loop()
            elif self.is_connected:
                self._reconnect_requested = False
                await self.health_check()

    async def _reconnect_loop(self) -> None:
        max_attempts = self.config.max_reconnect_attempts
        delay = self._reconnect_delay
        if delay is None:
            delay = self.config.reconnect_delay_seconds
        attempt = 0
        while attempt < max_attempts and not self._stopping:
            attempt += 1
            await self._sleep(delay)
            delay = self.config.reconnect_delay_seconds
            async with self._connect_lock:
                reconnected = self.is_connected or await self._open()
            if reconnected:
                logger.info("Reconnected to graph store after %d attempt(s)", attempt)
                await self._notify_connected()
                break
            logger.warning("Reconnect attempt %d/%d failed", attempt, max_attempts)
        else:
            if not self.is_connected:
                logger.error(
                    "Giving up on graph store after %d reconnect attempt(s)",
                    max_attempts,
                )
        self._reconnect_requested = False
        self._reconnect_delay = None

    async def health_check(self, *, force: bool = False) -> bool:
        """Probe the store, at most once per minimum spacing unless *force*."""
        now = self._clock()
        if (
            not force
            and self._last_health_check is not None
            and now - self._last_health_check < self.config.health_check_min_spacing_seconds
        ):
            return self.is_connected
        self._last_health_check = now
        driver = self._driver
        if driver is None:
            return False
        try:
            await asyncio.wait_for(
                self._probe(driver),
                timeout=self.config.probe_timeout_seconds,
            )
        except GRAPH_ERRORS as exc:
            logger.warning("Graph health check failed: %s", exc)
            self._mark_dead()
            await self._discard_driver()
            self.request_reconnect(self.config.failed_health_reconnect_delay_seconds)
            return False
        return True

    # ----- Operations -----

    async def with_retry(
        self,
        op: Callable[[], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> T:
        """Run *op*, retrying transaction conflicts with exponential backoff.

        The wait before retry ``n`` (0-based) is ``base_delay * 2 ** n``, so
        the first retry waits ``base_delay``.  Non-conflict errors propagate
        immediately.  After ``max_attempts`` conflicting attempts the last
        error propagates.
        """
        attempts = max(1, max_attempts if max_attempts is not None else self.retry.max_attempts)
        delay = base_delay if base_delay is not None else self.retry.base_delay_seconds
        attempt = 0
        while True:
            try:
                return await op()
            except (Neo4jError, DriverError) as exc:
                attempt += 1
                if attempt >= attempts or not is_transient_conflict(exc):
                    raise
                wait = delay * 2 ** (attempt - 1)
                logger.warning(
                    "Transaction conflict (attempt %d/%d), retrying in %.3fs: %s",
                    attempt,
                    attempts,
                    wait,
                    exc,
                )
                await self._sleep(wait)

    async def with_session(
        self,
        op: SessionOperation[T],
        *,
        operation: str = "graph.session",
        retry: bool = True,
    ) -> T | None:
        """Run ``op(session)`` with a timeout; ``None`` on any store failure."""
        driver = self._driver
        if not self._connected or driver is None:
            logger.warning("Graph store unavailable; skipping %s", operation)
            record_skipped(operation=operation)
            self.request_reconnect()
            return None

        async def _attempt() -> T:
            async def _in_session() -> T:
                async with driver.session(database=self.config.database) as session:
                    return await op(session)

            return await asyncio.wait_for(
                _in_session(),
                timeout=self.config.operation_timeout_seconds,
            )

        start = perf_counter()
        ok = False
        try:
            if retry:
                result = await self.with_retry(_attempt)
            else:
                result = await _attempt()
            ok = True
            return result
        except GRAPH_ERRORS as exc:
            if is_connectivity_error(exc):
                logger.warning("Connectivity failure during %s: %s", operation, exc)
                self._mark_dead()
                self.request_reconnect()
            else:
                logger.error("Graph operation %s failed: %s", operation, exc)
            return None
        finally:
            record_latency(
                operation=operation,
                duration_ms=(perf_counter() - start) * 1000,
                ok=ok,
            )
