"""Lifecycle event fan-out.

Writers call ``FanoutNotifier.publish`` after their transaction commits. The
call only enqueues; a dispatcher thread delivers to in-process subscribers
and to any configured sinks, so a slow or missing consumer never touches the
write path.
"""

import itertools
import json
import queue
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol

import redis

from portal.core.config import OUTBOX_SIZE, SUBSCRIBER_QUEUE_SIZE, VERSION_CACHE_SIZE
from portal.core.logger_factory import setup_logger
from portal.core.time_helpers import utcnow
from portal.domain.actors import Role

logger = setup_logger(__name__)

REGISTRATION_CREATED = "registration-created"
REGISTRATION_STATUS_CHANGED = "registration-status-changed"
REGISTRATION_CANCELLED = "registration-cancelled"
REGISTRATION_UPDATED = "registration-updated"

BROADCAST = "broadcast"

# Redis pub/sub channel shared by every instance for relayed messages
LIFECYCLE_CHANNEL = "portal:lifecycle"

# Marks messages relayed by this process so its own listener can skip them
INSTANCE_ID = uuid.uuid4().hex


def role_topic(role: Role) -> str:
    return f"role:{role.value}"


def subject_topic(subject_id: int) -> str:
    return f"subject:{subject_id}"


@dataclass
class Subscription:
    """One connected client. Messages beyond ``maxsize`` are dropped."""

    role: Role
    subject_id: int | None = None
    maxsize: int = SUBSCRIBER_QUEUE_SIZE
    id: int = 0
    dropped: int = 0
    _queue: queue.Queue = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._queue = queue.Queue(maxsize=self.maxsize)

    def matches(self, topic: str) -> bool:
        if topic == BROADCAST:
            return True
        if topic == role_topic(self.role):
            return True
        return self.subject_id is not None and topic == subject_topic(self.subject_id)

    def matches_any(self, topics: Iterable[str]) -> bool:
        return any(self.matches(topic) for topic in topics)

    def offer(self, message: dict) -> bool:
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: float | None = None) -> dict | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[dict]:
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages


class SubscriberHub:
    """Connected subscribers, matched to topics by role and subject."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(self, role: Role, subject_id: int | None = None, maxsize: int = SUBSCRIBER_QUEUE_SIZE) -> Subscription:
        subscription = Subscription(role=role, subject_id=subject_id, maxsize=maxsize)
        with self._lock:
            subscription.id = next(self._ids)
            self._subscriptions[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(subscription.id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def deliver(self, topics: Iterable[str], message: dict) -> int:
        """Offer ``message`` once to every subscriber in any of ``topics``.

        Returns how many subscribers took it.
        """
        topics = list(topics)
        with self._lock:
            targets = [s for s in self._subscriptions.values() if s.matches_any(topics)]
        delivered = 0
        for subscription in targets:
            if subscription.offer(message):
                delivered += 1
            else:
                logger.warning(f"Subscriber {subscription.id} is full, dropped {message['event']}")
        return delivered


class FanoutSink(Protocol):
    def send(self, message: dict) -> None:
        ...


class CeleryRelaySink:
    """Hands messages to a Celery task for delivery to other instances."""

    def __init__(self, task, origin: str = INSTANCE_ID) -> None:
        self._task = task
        self._origin = origin

    def send(self, message: dict) -> None:
        self._task.delay({**message, "origin": self._origin})


class RedisRelayListener:
    """Feeds messages relayed by other instances into the local hub.

    Subscribes to ``LIFECYCLE_CHANNEL`` and delivers each message to local
    subscribers by its ``topics``. Messages this instance relayed itself were
    already delivered by the local dispatcher and are skipped.
    """

    def __init__(
        self,
        client: redis.Redis,
        hub: SubscriberHub,
        channel: str = LIFECYCLE_CHANNEL,
        origin: str = INSTANCE_ID,
        poll_interval: float = 1.0,
    ) -> None:
        self._client = client
        self.hub = hub
        self.channel = channel
        self._origin = origin
        self._poll_interval = poll_interval
        self._pubsub = None
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(self.channel)
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="fanout-relay-listener", daemon=True)
        self._thread.start()
        logger.info(f"Listening for relayed lifecycle events on {self.channel}")

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        self._stopping.set()
        self._thread.join(timeout)  # type: ignore
        self._thread = None
        self._pubsub.close()  # type: ignore
        self._pubsub = None
        logger.info("Relay listener stopped")

    def handle(self, data) -> int:
        """Deliver one raw pub/sub payload; returns how many subscribers took it."""
        try:
            message = json.loads(data)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring malformed relay payload on {self.channel}")
            return 0
        if message.pop("origin", None) == self._origin:
            return 0
        return self.hub.deliver(message.get("topics", []), message)

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                raw = self._pubsub.get_message(timeout=self._poll_interval)  # type: ignore
            except redis.exceptions.RedisError as e:  # type: ignore
                logger.error(f"Relay listener lost {self.channel}: {e}")
                self._stopping.wait(self._poll_interval)
                continue
            if raw is None or raw.get("type") != "message":
                continue
            try:
                self.handle(raw["data"])
            except Exception:
                logger.exception(f"Relay delivery failed on {self.channel}")


_STOP = object()


class FanoutNotifier:
    def __init__(
        self,
        hub: SubscriberHub,
        sinks: Iterable[FanoutSink] = (),
        maxsize: int = OUTBOX_SIZE,
        version_cache_size: int = VERSION_CACHE_SIZE,
    ) -> None:
        self.hub = hub
        self._sinks = list(sinks)
        self._outbox: queue.Queue = queue.Queue(maxsize=maxsize)
        self._thread: threading.Thread | None = None
        # registration_id -> highest version delivered, least recently touched first
        self._delivered_versions: OrderedDict[str, int] = OrderedDict()
        self._version_cache_size = version_cache_size

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="fanout-dispatcher", daemon=True)
        self._thread.start()
        logger.info("Fan-out dispatcher started")

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        self._outbox.put(_STOP)
        self._thread.join(timeout)  # type: ignore
        self._thread = None
        logger.info("Fan-out dispatcher stopped")

    def publish(self, topic: str | Iterable[str], event_name: str, payload: dict[str, Any]) -> bool:
        """Queue one message for ``topic`` (or several topics).

        Never blocks; returns False if the message was dropped. A subscriber
        in more than one of the topics still receives it once.
        """
        topics = [topic] if isinstance(topic, str) else list(topic)
        message = {"event": event_name, "topics": topics, "data": payload}
        try:
            self._outbox.put_nowait(message)
        except queue.Full:
            logger.warning(f"Fan-out outbox full, dropped {event_name} for {', '.join(topics)}")
            return False
        return True

    def publish_registration(self, event_name: str, registration, topics: Iterable[str]) -> bool:
        payload = {
            "registrationId": registration.registration_id,
            "eventId": registration.event_id,
            "subjectId": registration.subject_id,
            "status": registration.status,
            "version": registration.version,
            "timestamp": utcnow().isoformat(),
        }
        return self.publish(list(topics), event_name, payload)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until everything queued so far has been dispatched."""
        deadline = time.monotonic() + timeout
        while self._outbox.unfinished_tasks:
            if time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        return True

    def _run(self) -> None:
        while True:
            message = self._outbox.get()
            try:
                if message is _STOP:
                    return
                self._dispatch(message)
            except Exception:
                logger.exception(f"Fan-out dispatch failed for {message.get('event')}")
            finally:
                self._outbox.task_done()

    def _is_stale(self, message: dict) -> bool:
        data = message["data"]
        registration_id = data.get("registrationId")
        version = data.get("version")
        if registration_id is None or version is None:
            return False
        last = self._delivered_versions.get(registration_id, 0)
        if version < last:
            return True
        self._delivered_versions[registration_id] = version
        self._delivered_versions.move_to_end(registration_id)
        while len(self._delivered_versions) > self._version_cache_size:
            self._delivered_versions.popitem(last=False)
        return False

    def _dispatch(self, message: dict) -> None:
        if self._is_stale(message):
            logger.debug(f"Skipping out-of-order {message['event']} for {message['data']['registrationId']}")
            return
        self.hub.deliver(message["topics"], message)
        for sink in self._sinks:
            try:
                sink.send(message)
            except Exception:
                logger.exception(f"Fan-out sink {type(sink).__name__} failed for {message['event']}")
