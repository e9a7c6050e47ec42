# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Concurrent notification delivery with per-channel retries.

Each alert fans out to every enabled channel.  Every channel runs its own
retry loop on a worker thread, so a slow or failing provider never delays
the others.  The loop is a small state machine::

    ATTEMPTING --success--> SUCCEEDED
    ATTEMPTING --failure, attempts left--> BACKING_OFF --delay--> ATTEMPTING
    ATTEMPTING --failure, no attempts left--> EXHAUSTED

SUCCEEDED and EXHAUSTED are terminal.  Exhausted deliveries are logged
and dropped.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from mailalert.channels.base import DeliveryError, NotificationChannel


if TYPE_CHECKING:
    from mailalert.config import DeliveryConfig
    from mailalert.hook.metadata import Metadata


logger = logging.getLogger(__name__)


class DeliveryState(Enum):
    """Position of a channel's retry loop."""

    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[DeliveryState, frozenset[DeliveryState]] = {
    DeliveryState.ATTEMPTING: frozenset(
        {
            DeliveryState.SUCCEEDED,
            DeliveryState.BACKING_OFF,
            DeliveryState.EXHAUSTED,
        }
    ),
    DeliveryState.BACKING_OFF: frozenset({DeliveryState.ATTEMPTING}),
    DeliveryState.SUCCEEDED: frozenset(),
    DeliveryState.EXHAUSTED: frozenset(),
}


def transition(current: DeliveryState, target: DeliveryState) -> DeliveryState:
    """Move a retry loop to its next state.

    Args:
        current: Current state.
        target: Requested state.

    Returns:
        The new state (``target``).

    Raises:
        RuntimeError: If the transition is not allowed.
    """
    if target not in _TRANSITIONS[current]:
        raise RuntimeError(
            f"Illegal delivery state transition: "
            f"{current.value} -> {target.value}"
        )
    return target


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a channel is retried.

    Attributes:
        max_attempts: Attempts before giving up.
        backoff_base: Delay unit in seconds.  The wait after attempt n is
            ``n * backoff_base``.
    """

    max_attempts: int = 3
    backoff_base: float = 0.5

    def __post_init__(self) -> None:
        """Validate policy.

        Raises:
            ValueError: If the policy is invalid.
        """
        if self.max_attempts < 1:
            raise ValueError(f"Max attempts must be >= 1: {self.max_attempts}")
        if self.backoff_base < 0:
            raise ValueError(f"Backoff must be >= 0s: {self.backoff_base}")

    @classmethod
    def from_config(cls, delivery: DeliveryConfig) -> RetryPolicy:
        return cls(
            max_attempts=delivery.max_attempts,
            backoff_base=delivery.backoff_seconds,
        )

    def delay_after(self, attempt: int) -> float:
        """Return the wait in seconds after failed attempt ``attempt``."""
        return attempt * self.backoff_base


@dataclass(frozen=True)
class DeliveryOutcome:
    """Final result of one channel's retry loop.

    Attributes:
        channel_id: Channel identifier.
        state: Terminal state (SUCCEEDED or EXHAUSTED).
        attempts: Number of send attempts made.
        last_error: Reason for the most recent failure, if any.
    """

    channel_id: str
    state: DeliveryState
    attempts: int
    last_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is DeliveryState.SUCCEEDED


def deliver(
    channel: NotificationChannel,
    metadata: Metadata,
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> DeliveryOutcome:
    """Deliver one alert through one channel, retrying on failure.

    Never raises.  Unexpected exceptions from the adapter count as a
    failed attempt.

    Args:
        channel: Channel adapter.
        metadata: Alert contents.
        policy: Retry policy.
        sleep: Blocking sleep used between attempts.

    Returns:
        Outcome in a terminal state.
    """
    state = DeliveryState.ATTEMPTING
    attempts = 0
    last_error: str | None = None

    while True:
        attempts += 1
        try:
            channel.send(metadata.sender, metadata.to, metadata.subject)
        except DeliveryError as e:
            last_error = e.reason
            logger.warning(
                "%s delivery attempt %d/%d failed: %s",
                channel.name,
                attempts,
                policy.max_attempts,
                e.reason,
            )
        except Exception as e:
            last_error = f"{type(e).__name__}: {e}"
            logger.exception(
                "%s delivery attempt %d/%d raised unexpectedly",
                channel.name,
                attempts,
                policy.max_attempts,
            )
        else:
            state = transition(state, DeliveryState.SUCCEEDED)
            logger.info("Notification sent via %s", channel.name)
            return DeliveryOutcome(channel.channel_id, state, attempts)

        if attempts >= policy.max_attempts:
            state = transition(state, DeliveryState.EXHAUSTED)
            logger.error(
                "Giving up on %s after %d attempts: %s",
                channel.name,
                attempts,
                last_error,
            )
            return DeliveryOutcome(
                channel.channel_id, state, attempts, last_error
            )

        state = transition(state, DeliveryState.BACKING_OFF)
        sleep(policy.delay_after(attempts))
        state = transition(state, DeliveryState.ATTEMPTING)


class Dispatcher:
    """Fans alerts out to channels, one thread pool per channel.

    ``dispatch`` only submits work and returns at once; nothing on the
    webhook path waits for delivery.  A retry loop holds its worker while
    it backs off, so each channel gets its own pool: a provider that is
    down can only queue up its own deliveries.
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        policy: RetryPolicy | None = None,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize dispatcher.

        Args:
            channels: Enabled channel adapters, in dispatch order.
            policy: Retry policy.  Defaults to ``RetryPolicy()``.
            max_workers: Delivery threads per channel.
            sleep: Blocking sleep used for backoff (tests inject a fake).
        """
        self.channels = tuple(channels)
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._executor_pools = tuple(
            ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix=f"ChannelWorker-{channel.channel_id}",
            )
            for channel in self.channels
        )
        self._pending_futures: set[Future[DeliveryOutcome]] = set()
        self._futures_lock = threading.Lock()
        self._stopped = False

    @property
    def pending_count(self) -> int:
        """Number of retry loops not yet finished."""
        with self._futures_lock:
            return len(self._pending_futures)

    def dispatch(self, metadata: Metadata) -> list[Future[DeliveryOutcome]]:
        """Start one retry loop per channel.

        Args:
            metadata: Alert contents.

        Returns:
            One future per channel, in channel order.  Empty if the
            dispatcher has been shut down.
        """
        futures: list[Future[DeliveryOutcome]] = []
        with self._futures_lock:
            if self._stopped:
                logger.warning("Dispatcher stopped, dropping alert")
                return futures
            for channel, pool in zip(
                self.channels, self._executor_pools, strict=True
            ):
                future = pool.submit(
                    deliver, channel, metadata, self.policy, self._sleep
                )
                self._pending_futures.add(future)
                futures.append(future)

        for future in futures:
            future.add_done_callback(self._on_future_complete)
        return futures

    def _on_future_complete(self, future: Future[DeliveryOutcome]) -> None:
        """Callback when a retry loop completes."""
        with self._futures_lock:
            self._pending_futures.discard(future)

        try:
            exception = future.exception()
            if exception:
                logger.error("Delivery loop failed: %s", exception)
        except concurrent.futures.CancelledError:
            logger.debug("Delivery loop was cancelled")

    def shutdown(self, timeout: float) -> None:
        """Wait for in-flight deliveries, then stop the pool.

        Args:
            timeout: Seconds to wait for in-flight deliveries.
        """
        with self._futures_lock:
            if self._stopped:
                return
            self._stopped = True
            futures_copy = set(self._pending_futures)

        if futures_copy:
            logger.info(
                "Waiting for %d pending deliveries (timeout: %ss)...",
                len(futures_copy),
                timeout,
            )
            _, not_done = concurrent.futures.wait(futures_copy, timeout=timeout)
            if not_done:
                logger.warning(
                    "%d deliveries did not complete within timeout",
                    len(not_done),
                )
                for future in not_done:
                    future.cancel()

        for pool in self._executor_pools:
            pool.shutdown(wait=False, cancel_futures=True)
        logger.info("Delivery pools shut down")
