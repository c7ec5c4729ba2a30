"""Fan-out of deployment events to server-sent event subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from enum import Enum
from typing import Any

from spages.models.events import (
    connected_event,
    deployment_event,
    format_sse,
    project_deleted_event,
    project_update_event,
    snapshot_event,
    state_event,
)

logger = logging.getLogger(__name__)

KEEP_ALIVE = ": keep-alive\n\n"


class Domain(str, Enum):
    """Subscriber registries kept by the broadcaster."""

    LOGS = "logs"
    PROJECT_STATE = "project_state"
    ALL_PROJECTS = "all_projects"
    DEPLOYMENTS = "deployments"


class Subscriber:
    """One stream consumer backed by a bounded queue.

    Publishing never blocks: when the queue is full the oldest pending
    message is discarded to make room.
    """

    def __init__(
        self,
        domain: Domain,
        project_id: str | None,
        *,
        maxsize: int = 256,
        heartbeat_seconds: float = 15.0,
    ) -> None:
        self.domain = domain
        self.project_id = project_id
        self.closed = False
        self.dropped = 0
        self._heartbeat_seconds = heartbeat_seconds
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)

    def put(self, payload: dict[str, Any] | None) -> bool:
        if self.closed and payload is not None:
            return False
        try:
            self._queue.put_nowait(payload)
            return True
        except asyncio.QueueFull:
            pass

        try:
            self._queue.get_nowait()
            self.dropped += 1
        except asyncio.QueueEmpty:
            return False

        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.put(None)

    def pending(self) -> list[dict[str, Any]]:
        """Drain queued payloads without waiting."""
        items: list[dict[str, Any]] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is not None:
                items.append(item)

    async def messages(self) -> AsyncIterator[str]:
        """Yield SSE frames until closed, with keep-alive comments when idle."""
        try:
            while True:
                try:
                    item = await asyncio.wait_for(self._queue.get(), self._heartbeat_seconds)
                except TimeoutError:
                    if self.closed:
                        return
                    yield KEEP_ALIVE
                    continue
                if item is None:
                    return
                yield format_sse(item)
        finally:
            self.closed = True


class EventBroadcaster:
    """Subscriber registries for logs, project state, and deployment history."""

    def __init__(self, *, queue_size: int = 256, heartbeat_seconds: float = 15.0) -> None:
        self._queue_size = queue_size
        self._heartbeat_seconds = heartbeat_seconds
        self._subscribers: dict[tuple[Domain, str | None], set[Subscriber]] = {}

    def _subscribe(
        self,
        domain: Domain,
        project_id: str | None,
        initial: Iterable[dict[str, Any]] = (),
    ) -> Subscriber:
        subscriber = Subscriber(
            domain,
            project_id,
            maxsize=self._queue_size,
            heartbeat_seconds=self._heartbeat_seconds,
        )
        for payload in initial:
            subscriber.put(payload)
        self._subscribers.setdefault((domain, project_id), set()).add(subscriber)
        logger.debug(
            "New %s subscriber for %s, total: %d",
            domain.value,
            project_id or "*",
            self.count(domain, project_id),
        )
        return subscriber

    def subscribe_logs(
        self, project_id: str, snapshot: Iterable[dict[str, Any]] = ()
    ) -> Subscriber:
        return self._subscribe(
            Domain.LOGS,
            project_id,
            [connected_event("Log stream connected"), *snapshot],
        )

    def subscribe_project_state(
        self, project_id: str, state: dict[str, Any] | None = None
    ) -> Subscriber:
        initial = [connected_event("Project state stream connected")]
        if state is not None:
            initial.append(state_event(state))
        return self._subscribe(Domain.PROJECT_STATE, project_id, initial)

    def subscribe_all_projects(self, projects: list[dict[str, Any]] | None = None) -> Subscriber:
        initial = [connected_event("Projects state stream connected")]
        if projects is not None:
            initial.append(snapshot_event(projects))
        return self._subscribe(Domain.ALL_PROJECTS, None, initial)

    def subscribe_deployments(self, project_id: str) -> Subscriber:
        return self._subscribe(
            Domain.DEPLOYMENTS,
            project_id,
            [connected_event("Deployment history stream connected")],
        )

    def unsubscribe(self, subscriber: Subscriber) -> None:
        subscriber.close()
        key = (subscriber.domain, subscriber.project_id)
        subscribers = self._subscribers.get(key)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            del self._subscribers[key]

    def count(self, domain: Domain, project_id: str | None = None) -> int:
        return len(self._subscribers.get((domain, project_id), ()))

    def _publish(self, domain: Domain, project_id: str | None, payload: dict[str, Any]) -> int:
        key = (domain, project_id)
        subscribers = self._subscribers.get(key)
        if not subscribers:
            return 0
        delivered = 0
        for subscriber in list(subscribers):
            if subscriber.closed or not subscriber.put(payload):
                subscribers.discard(subscriber)
                logger.debug("Removed closed %s subscriber for %s", domain.value, project_id or "*")
                continue
            delivered += 1
        if not subscribers:
            del self._subscribers[key]
        return delivered

    def publish_log(self, project_id: str, entry: dict[str, Any]) -> int:
        return self._publish(Domain.LOGS, project_id, entry)

    def publish_project_state(self, project_id: str, state: dict[str, Any]) -> None:
        self._publish(Domain.PROJECT_STATE, project_id, state_event(state))
        self._publish(Domain.ALL_PROJECTS, None, project_update_event(project_id, state))

    def publish_project_deleted(self, project_id: str) -> None:
        logger.info("Broadcasting project deleted: %s", project_id)
        self._publish(Domain.ALL_PROJECTS, None, project_deleted_event(project_id))
        for subscriber in list(self._subscribers.get((Domain.PROJECT_STATE, project_id), ())):
            self.unsubscribe(subscriber)

    def publish_deployment(self, project_id: str, deployment: dict[str, Any]) -> int:
        return self._publish(Domain.DEPLOYMENTS, project_id, deployment_event(deployment))

    def close_all(self) -> None:
        for subscribers in list(self._subscribers.values()):
            for subscriber in list(subscribers):
                self.unsubscribe(subscriber)
