"""Rollout watching.

After a workload manifest is submitted, its status is polled on a fixed
interval until the readiness rules for its kind are met, a deadline
passes, a newer rollout supersedes it, or status fetches keep failing.

States::

    INITIAL --delay--> POLLING --> READY | TIMEOUT | SUPERSEDED | FETCH_FAILED
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from kd.config.settings import format_duration
from kd.engine.readiness import Readiness, evaluate
from kd.errors import ClusterClientError, FetchExhaustedError, WatchSupersededError, WatchTimeoutError
from kd.kubernetes.client import ClusterClient
from kd.observability.logging import get_logger
from kd.resources.models import ManagedResource, ResourceKind, StatusSnapshot


log = get_logger(__name__)

DEFAULT_INITIAL_DELAY = 3.0
DEFAULT_FETCH_RETRIES = 3
DEFAULT_FETCH_RETRY_DELAY = 2.0


class WatchState(str, Enum):
    """Watch loop states."""

    INITIAL = "Initial"
    POLLING = "Polling"
    READY = "Ready"
    TIMEOUT = "Timeout"
    SUPERSEDED = "Superseded"
    FETCH_FAILED = "FetchFailed"


@dataclass
class WatchSession:
    """Bookkeeping for one resource's watch, discarded when it ends."""

    resource: ManagedResource
    interval: float
    deadline: float
    baseline_generation: int | None = None
    consecutive_failures: int = 0
    polls: int = 0
    state: WatchState = WatchState.INITIAL
    next_tick: float = field(default=0.0)


@dataclass(frozen=True)
class WatchResult:
    """Outcome of a watch that ended in READY."""

    state: WatchState
    available: int = 0
    polls: int = 0


def requires_rollout_watch(resource: ManagedResource) -> bool:
    """Whether the resource's rollout is polled to completion.

    StatefulSets and DaemonSets are only watched with the RollingUpdate
    strategy; other strategies do not roll pods on their own.
    """
    if not resource.is_watchable:
        return False
    if resource.resource_kind in (ResourceKind.STATEFULSET, ResourceKind.DAEMONSET):
        return resource.spec.is_rolling_update
    return True


class RolloutWatcher:
    """Polls a submitted resource until it reaches a terminal state."""

    def __init__(
        self,
        client: ClusterClient,
        *,
        interval: float,
        timeout: float,
        fail_superseded: bool = False,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        fetch_retries: int = DEFAULT_FETCH_RETRIES,
        fetch_retry_delay: float = DEFAULT_FETCH_RETRY_DELAY,
    ) -> None:
        self.client = client
        self.interval = interval
        self.timeout = timeout
        self.fail_superseded = fail_superseded
        self.initial_delay = initial_delay
        self.fetch_retries = fetch_retries
        self.fetch_retry_delay = fetch_retry_delay

    async def watch(self, resource: ManagedResource) -> WatchResult:
        """Watch ``resource`` until it is ready.

        Returns:
            WatchResult: With state READY and the available object count.

        Raises:
            WatchTimeoutError: If the deadline passed first.
            WatchSupersededError: If a newer rollout replaced this one and
                ``fail_superseded`` is set.
            FetchExhaustedError: If every fetch attempt of one poll failed.
        """
        if not requires_rollout_watch(resource):
            log.debug(
                "watch_skipped",
                kind=resource.kind,
                name=resource.name,
                reason="only RollingUpdate rollouts are watched for completion",
            )
            return WatchResult(state=WatchState.READY)

        log.debug("waiting_before_first_poll", kind=resource.kind, seconds=self.initial_delay)
        await asyncio.sleep(self.initial_delay)

        loop = asyncio.get_running_loop()
        now = loop.time()
        session = WatchSession(
            resource=resource,
            interval=self.interval,
            deadline=now + self.timeout,
            state=WatchState.POLLING,
            next_tick=now + self.interval,
        )
        resource.replace_status(StatusSnapshot())

        deadline = asyncio.create_task(asyncio.sleep(session.deadline - loop.time()))
        try:
            while True:
                tick = asyncio.create_task(asyncio.sleep(self._until_next_tick(session, loop.time())))
                done, _ = await asyncio.wait({deadline, tick}, return_when=asyncio.FIRST_COMPLETED)
                if deadline in done:
                    tick.cancel()
                    session.state = WatchState.TIMEOUT
                    raise WatchTimeoutError(
                        f'{resource.kind} "{resource.name}" rolling update timed out '
                        f"after {format_duration(self.timeout)}",
                        kind=resource.kind,
                        name=resource.name,
                        details={"timeout": self.timeout, "polls": session.polls},
                    )

                result = await self._poll(session)
                if result is not None:
                    return result
        finally:
            deadline.cancel()

    def _until_next_tick(self, session: WatchSession, now: float) -> float:
        # Fixed-rate ticker: ticks missed while a poll ran are dropped.
        while session.next_tick < now:
            session.next_tick += session.interval
        delay = session.next_tick - now
        session.next_tick += session.interval
        return delay

    async def _poll(self, session: WatchSession) -> WatchResult | None:
        resource = session.resource
        snapshot = await self._fetch(session)
        resource.replace_status(snapshot)
        session.polls += 1
        log.debug("fetched_status", kind=resource.kind, name=resource.name, status=snapshot.model_dump())

        if session.baseline_generation is None:
            session.baseline_generation = snapshot.observed_generation

        verdict: Readiness = evaluate(resource.resource_kind, resource.spec, snapshot)
        if verdict.ready:
            session.state = WatchState.READY
            log.info(
                "resource_ready",
                kind=resource.kind,
                name=resource.name,
                available=verdict.available,
            )
            return WatchResult(state=WatchState.READY, available=verdict.available, polls=session.polls)

        log.info(
            "resource_progress",
            kind=resource.kind,
            name=resource.name,
            waiting_for=verdict.unavailable,
        )

        if self.fail_superseded and snapshot.observed_generation != session.baseline_generation:
            session.state = WatchState.SUPERSEDED
            raise WatchSupersededError(
                f'{resource.kind} "{resource.name}" update failed. '
                "It has been superseded by another update",
                kind=resource.kind,
                name=resource.name,
                details={
                    "baseline_generation": session.baseline_generation,
                    "observed_generation": snapshot.observed_generation,
                },
            )
        return None

    async def _fetch(self, session: WatchSession) -> StatusSnapshot:
        """Fetch a snapshot, retrying failed attempts up to the bound."""
        resource = session.resource
        for attempt in range(self.fetch_retries):
            try:
                snapshot = await self.client.fetch_snapshot(resource.kind, resource.name)
            except ClusterClientError as e:
                session.consecutive_failures += 1
                if attempt == self.fetch_retries - 1:
                    session.state = WatchState.FETCH_FAILED
                    raise FetchExhaustedError(
                        f'{resource.kind} "{resource.name}" status could not be fetched '
                        f"after {self.fetch_retries} attempts: {e.message}",
                        kind=resource.kind,
                        name=resource.name,
                        last_error=e,
                        details={"attempts": self.fetch_retries},
                    ) from e
                log.warning(
                    "status_fetch_failed",
                    kind=resource.kind,
                    name=resource.name,
                    attempt=attempt + 1,
                    error=e.message,
                )
                await asyncio.sleep(self.fetch_retry_delay)
            else:
                session.consecutive_failures = 0
                return snapshot
        msg = "fetch_retries must be at least 1"
        raise ValueError(msg)


__all__ = [
    "RolloutWatcher",
    "WatchResult",
    "WatchSession",
    "WatchState",
    "requires_rollout_watch",
]
