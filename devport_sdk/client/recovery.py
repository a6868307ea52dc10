"""Automatic connection recovery.

Runs the reconnect loop after the socket closes unexpectedly:
exponential backoff between attempts, a bounded retry budget, and a
single cancellable task so an explicit disconnect stops everything.

Features:
- Delay ``min(base_delay * 2**attempt, max_delay)`` with optional jitter
- Permanent errors (authentication) stop retrying immediately
- Status callbacks for UI updates
- Configurable retry behavior via RecoveryConfig

Usage:
    supervisor = ReconnectionSupervisor(
        config=RecoveryConfig(),
        reconnect=client_reconnect_coroutine,
        on_exhausted=surface_error,
    )
    supervisor.schedule()      # after an unsolicited close
    await supervisor.cancel()  # on explicit disconnect
"""

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from devport_sdk.client.config import RecoveryConfig
from devport_sdk.client.state import ConnectionState
from devport_sdk.errors import AuthenticationFailed, DevportError, ReconnectExhausted
from devport_sdk.trace import trace

logger = logging.getLogger(__name__)


@dataclass
class ConnectionStatus:
    """Reconnection progress for UI display.

    Attributes:
        state: Current connection state.
        reconnecting: True while the reconnect task is running.
        attempt: Failed attempts so far in this recovery.
        max_attempts: Maximum reconnection attempts configured.
        next_retry_in: Seconds until the next attempt (None if not waiting).
        last_error: Description of the last error encountered.
        session_id: Session that will be re-attached.
    """
    state: ConnectionState
    reconnecting: bool = False
    attempt: int = 0
    max_attempts: int = 0
    next_retry_in: Optional[float] = None
    last_error: Optional[str] = None
    session_id: Optional[str] = None


StatusCallback = Callable[[ConnectionStatus], None]
ReconnectFn = Callable[[], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


def calculate_backoff(attempt: int, config: RecoveryConfig) -> float:
    """Delay before reconnection attempt ``attempt`` (0-based).

    Args:
        attempt: Number of failed attempts so far.
        config: Recovery configuration.

    Returns:
        Delay in seconds.
    """
    delay = min(config.max_delay, config.base_delay * (2 ** attempt))

    if config.jitter_factor:
        jitter_range = delay * config.jitter_factor
        delay = max(0.0, delay + random.uniform(-jitter_range, jitter_range))

    return delay


def classify_error(exc: BaseException) -> str:
    """Classify a reconnection error for retry decisions.

    Returns:
        "permanent" for errors retrying cannot fix, else "transient".
    """
    if isinstance(exc, AuthenticationFailed):
        return "permanent"
    return "transient"


class ReconnectionSupervisor:
    """Owns the reconnect task and its retry budget.

    The supervisor knows nothing about sockets or sessions: ``reconnect``
    performs one full attempt (open, authenticate, re-attach, sync) and
    raises on failure.
    """

    def __init__(
        self,
        config: RecoveryConfig,
        reconnect: ReconnectFn,
        on_exhausted: Optional[Callable[[DevportError], Any]] = None,
        on_status_change: Optional[StatusCallback] = None,
        get_state: Optional[Callable[[], ConnectionState]] = None,
        get_session_id: Optional[Callable[[], Optional[str]]] = None,
        sleep: Optional[SleepFn] = None,
    ):
        """Initialize the supervisor.

        Args:
            config: Recovery configuration.
            reconnect: Coroutine function performing one attempt.
            on_exhausted: Called with the terminal error when recovery
                gives up (budget spent or permanent failure). May be a
                coroutine function; it is awaited before the final status.
            on_status_change: Receives a ConnectionStatus on progress.
            get_state: Reads the current connection state for status reports.
            get_session_id: Reads the session being recovered.
            sleep: Awaitable used for the backoff wait.
        """
        self._config = config
        self._reconnect = reconnect
        self._on_exhausted = on_exhausted
        self._on_status_change = on_status_change
        self._get_state = get_state or (lambda: ConnectionState.DISCONNECTED)
        self._get_session_id = get_session_id or (lambda: None)
        self._sleep = sleep or asyncio.sleep

        self._attempt = 0
        self._task: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> RecoveryConfig:
        return self._config

    @property
    def attempt(self) -> int:
        """Failed attempts in the current recovery."""
        return self._attempt

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Control
    # =========================================================================

    def reset(self) -> None:
        """Forget past failures (after a successful connect)."""
        self._attempt = 0
        self._last_error = None

    def schedule(self) -> bool:
        """Start the reconnect task unless one is already running.

        Returns:
            True if a new task was started.
        """
        if not self._config.enabled:
            logger.info("Automatic reconnection disabled")
            return False
        if self.is_running:
            return False

        self._task = asyncio.create_task(self._reconnection_loop())
        return True

    async def cancel(self) -> None:
        """Cancel the reconnect task and wait until it has stopped."""
        task = self._task
        self._task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def wait(self) -> None:
        """Wait for the running reconnect task, if any, to finish."""
        task = self._task
        if task is not None and task is not asyncio.current_task():
            await asyncio.wait({task})

    def get_status(
        self,
        next_retry_in: Optional[float] = None,
        reconnecting: Optional[bool] = None,
    ) -> ConnectionStatus:
        if reconnecting is None:
            reconnecting = self.is_running
        return ConnectionStatus(
            state=self._get_state(),
            reconnecting=reconnecting,
            attempt=self._attempt,
            max_attempts=self._config.max_attempts,
            next_retry_in=next_retry_in,
            last_error=self._last_error,
            session_id=self._get_session_id(),
        )

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _notify_status(self, status: ConnectionStatus) -> None:
        if self._on_status_change:
            try:
                self._on_status_change(status)
            except Exception as e:
                logger.warning("Error in status callback: %s", e)

    async def _give_up(self, error: DevportError) -> None:
        logger.error("Reconnection stopped: %s", error)
        trace("recovery", f"gave up: {error}")
        if self._on_exhausted:
            result = self._on_exhausted(error)
            if inspect.isawaitable(result):
                await result
        self._notify_status(self.get_status(reconnecting=False))

    async def _reconnection_loop(self) -> None:
        """Background task that reconnects with exponential backoff."""
        logger.info("Starting reconnection (max %d attempts)", self._config.max_attempts)

        while self._attempt < self._config.max_attempts:
            delay = calculate_backoff(self._attempt, self._config)
            logger.info(
                "Reconnection attempt %d/%d in %.1fs",
                self._attempt + 1, self._config.max_attempts, delay,
            )
            self._notify_status(self.get_status(next_retry_in=delay))

            await self._sleep(delay)

            try:
                await self._reconnect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._attempt += 1
                self._last_error = str(e)
                logger.warning("Reconnection attempt %d failed: %s", self._attempt, e)
                trace("recovery", f"attempt {self._attempt} failed: {e}")

                if classify_error(e) == "permanent":
                    error = e if isinstance(e, DevportError) else DevportError(str(e))
                    await self._give_up(error)
                    return
                continue

            logger.info("Reconnection successful")
            trace("recovery", f"recovered after {self._attempt + 1} attempt(s)")
            self.reset()
            self._notify_status(self.get_status(reconnecting=False))
            return

        await self._give_up(ReconnectExhausted(self._attempt))


__all__ = [
    "ConnectionStatus",
    "ReconnectionSupervisor",
    "SleepFn",
    "StatusCallback",
    "calculate_backoff",
    "classify_error",
]
