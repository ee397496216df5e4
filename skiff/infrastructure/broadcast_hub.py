"""
Broadcast Hub

Architectural Intent:
- Fans out each job's live log events to every connected subscriber
- Keeps a bounded replay buffer per job so late or reconnecting
  subscribers catch up before receiving live events
- Emits a single completion event per job and closes its subscriptions
  after a grace delay
- Safe to call from the asyncio loop and from HTTP handler threads

Concurrency:
- One lock per job channel; publishes to different jobs never contend
- The registry lock is held only while creating, looking up or evicting
  a channel (registry lock is always taken before a channel lock)
- Every subscription owns a bounded queue; a subscriber that falls
  behind is disconnected instead of blocking the publisher
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional, Sequence, Union
import logging
import queue
import threading
import time
import uuid

from skiff.domain.value_objects.log_event import (
    CompletionEvent,
    LogEvent,
    matches_legacy_completion,
)

logger = logging.getLogger(__name__)


class SubscriptionState(Enum):
    CONNECTING = auto()
    OPEN = auto()
    CLOSED = auto()


class _Keepalive:
    def __repr__(self) -> str:
        return "KEEPALIVE"


KEEPALIVE = _Keepalive()
_CLOSE = object()

Delivery = Union[LogEvent, CompletionEvent, _Keepalive]


class Subscription:
    """
    One subscriber's view of a job channel.

    The cursor is the sequence of the last log event handed to the
    subscriber; anything at or below it is skipped, so replay and live
    delivery never duplicate an event.
    """

    def __init__(self, job_id: str, queue_size: int, after_sequence: Optional[int] = None):
        self.id = uuid.uuid4().hex[:12]
        self.job_id = job_id
        self.state = SubscriptionState.CONNECTING
        self.cursor = after_sequence or 0
        self.close_reason: Optional[str] = None
        self.created_at = time.monotonic()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._drain = True

    @property
    def closed(self) -> bool:
        return self.state is SubscriptionState.CLOSED

    def offer(self, item) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            return False
        return True

    def close(self, reason: str, drain: bool = True) -> None:
        if self.closed:
            return
        self.state = SubscriptionState.CLOSED
        self.close_reason = reason
        self._drain = drain
        try:
            self._queue.put_nowait(_CLOSE)
        except queue.Full:
            pass

    def next(self, timeout: float) -> Optional[Delivery]:
        """
        Wait up to ``timeout`` seconds for the next delivery.

        Returns KEEPALIVE when nothing arrived in time and None once the
        subscription is closed and drained.
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.closed and (not self._drain or self._queue.empty()):
                return None
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None if self.closed else KEEPALIVE
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                return None if self.closed else KEEPALIVE
            if item is _CLOSE:
                return None
            if isinstance(item, LogEvent):
                if item.sequence <= self.cursor:
                    continue
                self.cursor = item.sequence
            return item

    def __repr__(self) -> str:
        return f"Subscription({self.id}, job={self.job_id}, state={self.state.name})"


@dataclass
class _Channel:
    job_id: str
    buffer: deque
    subscriptions: dict[str, Subscription] = field(default_factory=dict)
    completion: Optional[CompletionEvent] = None
    last_sequence: int = 0
    owner: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


class BroadcastHub:
    def __init__(
        self,
        buffer_size: int = 100,
        queue_size: int = 256,
        grace_seconds: float = 2.0,
        channel_ttl_seconds: float = 600.0,
        legacy_completion_matching: bool = False,
    ):
        self.buffer_size = buffer_size
        self.queue_size = queue_size
        self.grace_seconds = grace_seconds
        self.channel_ttl_seconds = channel_ttl_seconds
        self.legacy_completion_matching = legacy_completion_matching
        self._channels: dict[str, _Channel] = {}
        self._registry_lock = threading.Lock()
        self._timers: set[threading.Timer] = set()
        self._timers_lock = threading.Lock()
        self._closed = False
        if legacy_completion_matching:
            logger.warning(
                "Legacy completion matching is enabled; completion will be "
                "inferred from message text. This mode is deprecated."
            )

    def _channel(self, job_id: str, create: bool = False) -> Optional[_Channel]:
        with self._registry_lock:
            channel = self._channels.get(job_id)
            if channel is None and create:
                channel = _Channel(job_id=job_id, buffer=deque(maxlen=self.buffer_size))
                self._channels[job_id] = channel
            return channel

    def _is_terminal(self, event: LogEvent) -> bool:
        if event.terminal:
            return True
        return self.legacy_completion_matching and matches_legacy_completion(event)

    def publish(self, event: LogEvent) -> int:
        """Buffer and fan out one event. Returns the number of subscribers reached."""
        channel = self._channel(event.job_id, create=True)
        delivered = 0
        with channel.lock:
            channel.buffer.append(event)
            channel.last_sequence = max(channel.last_sequence, event.sequence)

            for sub in list(channel.subscriptions.values()):
                if sub.offer(event):
                    delivered += 1
                else:
                    self._drop(channel, sub, "subscriber queue full")

            if channel.completion is None and self._is_terminal(event):
                channel.completion = CompletionEvent.for_terminal(event)
                logger.info(
                    "Job %s reached %s; closing %d subscription(s) in %.1fs",
                    event.job_id,
                    channel.completion.type,
                    len(channel.subscriptions),
                    self.grace_seconds,
                )
                for sub in list(channel.subscriptions.values()):
                    if not sub.offer(channel.completion):
                        self._drop(channel, sub, "subscriber queue full")
                self._schedule(self.grace_seconds, self._close_channel, channel)
        return delivered

    def subscribe(
        self,
        job_id: str,
        after_sequence: Optional[int] = None,
        completed: Optional[CompletionEvent] = None,
        history: Sequence[LogEvent] = (),
    ) -> tuple[Subscription, list[LogEvent]]:
        """
        Register a subscriber and return it with the events to replay.

        Replay and registration happen under the channel lock, so no event
        published concurrently can fall between the two.

        ``completed`` and ``history`` describe a job that already finished
        from its stored record. They seed a channel that has seen no events
        (evicted, or lost with a restart), so the subscriber gets the
        persisted tail and the completion, and the channel closes and
        evicts like any other.
        """
        channel = self._channel(job_id, create=True)
        with channel.lock:
            if completed is not None and channel.completion is None and not channel.last_sequence:
                self._seed_completed(channel, completed, history)
            sub = Subscription(job_id, self.queue_size, after_sequence)
            replay = [
                event for event in channel.buffer
                if after_sequence is None or event.sequence > after_sequence
            ]
            if replay:
                sub.cursor = max(sub.cursor, replay[-1].sequence)
            sub.state = SubscriptionState.OPEN
            channel.subscriptions[sub.id] = sub
            if channel.completion is not None:
                sub.offer(channel.completion)
                self._schedule(self.grace_seconds, self._close_subscription, channel, sub)
        logger.debug("Subscribed %s (replay=%d)", sub, len(replay))
        return sub, replay

    def _seed_completed(
        self, channel: _Channel, completed: CompletionEvent, history: Sequence[LogEvent]
    ) -> None:
        """Caller holds channel.lock."""
        channel.buffer.extend(history)
        if history:
            channel.last_sequence = max(event.sequence for event in history)
        channel.completion = completed
        logger.info(
            "Job %s finished before this channel existed; replaying %d stored event(s)",
            channel.job_id,
            len(history),
        )
        self._schedule(self.grace_seconds, self._close_channel, channel)

    def claim(self, job_id: str, owner: str) -> None:
        """Record who submitted a job so streams can be scoped before its record exists."""
        channel = self._channel(job_id, create=True)
        with channel.lock:
            channel.owner = owner

    def owner_of(self, job_id: str) -> Optional[str]:
        channel = self._channel(job_id)
        return channel.owner if channel else None

    def unsubscribe(self, sub: Subscription) -> None:
        channel = self._channel(sub.job_id)
        if channel is not None:
            with channel.lock:
                channel.subscriptions.pop(sub.id, None)
        sub.close("unsubscribed", drain=False)
        logger.debug("Unsubscribed %s", sub)

    def _drop(self, channel: _Channel, sub: Subscription, reason: str) -> None:
        channel.subscriptions.pop(sub.id, None)
        sub.close(reason, drain=False)
        logger.warning("Disconnected subscriber %s for job %s: %s", sub.id, channel.job_id, reason)

    def _close_subscription(self, channel: _Channel, sub: Subscription) -> None:
        with channel.lock:
            channel.subscriptions.pop(sub.id, None)
        sub.close("completed")

    def _close_channel(self, channel: _Channel) -> None:
        with channel.lock:
            subs = list(channel.subscriptions.values())
            channel.subscriptions.clear()
        for sub in subs:
            sub.close("completed")
        self._schedule(self.channel_ttl_seconds, self._evict, channel)

    def _evict(self, channel: _Channel) -> None:
        with self._registry_lock:
            if self._channels.get(channel.job_id) is not channel:
                return
            with channel.lock:
                if channel.subscriptions:
                    # Late subscribers still attached; retry after another TTL.
                    self._schedule(self.channel_ttl_seconds, self._evict, channel)
                    return
                del self._channels[channel.job_id]
        logger.debug("Evicted channel for job %s", channel.job_id)

    def _schedule(self, delay: float, fn: Callable, *args) -> None:
        if self._closed:
            return
        timer: threading.Timer

        def run():
            with self._timers_lock:
                self._timers.discard(timer)
            try:
                fn(*args)
            except Exception:
                logger.exception("Broadcast hub timer %s failed", getattr(fn, "__name__", fn))

        timer = threading.Timer(delay, run)
        timer.daemon = True
        with self._timers_lock:
            self._timers.add(timer)
        timer.start()

    def knows(self, job_id: str) -> bool:
        return self._channel(job_id) is not None

    def is_completed(self, job_id: str) -> bool:
        channel = self._channel(job_id)
        return channel is not None and channel.completion is not None

    def completion_for(self, job_id: str) -> Optional[CompletionEvent]:
        channel = self._channel(job_id)
        return channel.completion if channel else None

    def buffered(self, job_id: str) -> list[LogEvent]:
        channel = self._channel(job_id)
        if channel is None:
            return []
        with channel.lock:
            return list(channel.buffer)

    def subscriber_count(self, job_id: str) -> int:
        channel = self._channel(job_id)
        if channel is None:
            return 0
        with channel.lock:
            return len(channel.subscriptions)

    def shutdown(self) -> None:
        """Cancel pending timers and close every open subscription."""
        self._closed = True
        with self._timers_lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        with self._registry_lock:
            channels = list(self._channels.values())
        for channel in channels:
            with channel.lock:
                subs = list(channel.subscriptions.values())
                channel.subscriptions.clear()
            for sub in subs:
                sub.close("server shutdown")
        logger.info("Broadcast hub shut down (%d channels)", len(channels))
