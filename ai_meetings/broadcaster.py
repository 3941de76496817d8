"""Fan-out of live meeting events (mood changes, step completions) to observers.

Publishing never blocks: each subscriber owns a bounded buffer and the
oldest buffered event is dropped when it is full. There is no replay log;
late joiners are hydrated from the current snapshot instead. Publishers may
run on any thread; subscribers are consumed on one event loop.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ai_meetings.mood import MoodRules, MoodState, MoodUpdate, neutral_state

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    SNAPSHOT = "snapshot"
    MOOD_UPDATE = "mood_update"
    STEP_COMPLETED = "step_completed"
    RUN_FINISHED = "run_finished"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True)
class MeetingEvent:
    kind: EventKind
    meeting_id: str
    payload: Any = None
    timestamp: float = field(default_factory=time.time)


class Subscription:
    """Handle for one observer of one meeting.

    Iterate with ``async for``; the first event is always the snapshot. A
    heartbeat event is produced when nothing arrives for ``heartbeat_sec``.
    """

    def __init__(
        self,
        broadcaster: "MoodStateBroadcaster",
        meeting_id: str,
        queue_size: int,
        heartbeat_sec: float | None,
    ) -> None:
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")
        self.meeting_id = meeting_id
        self.dropped = 0
        self.closed = False
        self._broadcaster = broadcaster
        self._heartbeat_sec = heartbeat_sec
        self._buffer: deque[MeetingEvent] = deque(maxlen=queue_size)
        self._wakeup = asyncio.Event()
        # Loop of the consumer; publishers on other threads hop onto it
        self._loop: asyncio.AbstractEventLoop | None = None

    def _wake(self) -> None:
        loop = self._loop
        if loop is None:
            self._wakeup.set()
            return
        try:
            on_loop = asyncio.get_running_loop() is loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            self._wakeup.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._wakeup.set)

    def _offer(self, event: MeetingEvent) -> None:
        if self.closed:
            return
        if len(self._buffer) == self._buffer.maxlen:
            self.dropped += 1
            logger.debug("Subscriber buffer full for meeting %s, dropped oldest event", self.meeting_id)
        self._buffer.append(event)
        self._wake()

    async def get(self) -> MeetingEvent:
        """Next buffered event, or a heartbeat after a quiet interval.

        Raises StopAsyncIteration once the subscription is closed and drained.
        """
        self._loop = asyncio.get_running_loop()
        while not self._buffer:
            if self.closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._heartbeat_sec)
            except TimeoutError:
                if not self._buffer and not self.closed:
                    return MeetingEvent(kind=EventKind.HEARTBEAT, meeting_id=self.meeting_id)
        return self._buffer.popleft()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._wake()
        self._broadcaster.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> MeetingEvent:
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class _Channel:
    __slots__ = ("subscribers", "moods", "released")

    def __init__(self) -> None:
        self.subscribers: set[Subscription] = set()
        self.moods: dict[str, MoodState] = {}
        self.released = False


class MoodStateBroadcaster:
    """Per-meeting mood snapshot plus subscriber registry, sharded by meeting id.

    Each shard has its own lock, held only while the registry or snapshot is
    read or changed; fan-out to subscriber buffers happens outside it.
    """

    def __init__(
        self,
        rules: MoodRules | None = None,
        queue_size: int = 100,
        heartbeat_sec: float | None = 15.0,
        shards: int = 16,
    ) -> None:
        if shards < 1:
            raise ValueError(f"shards must be >= 1, got {shards}")
        self._rules = rules or MoodRules()
        self._queue_size = queue_size
        self._heartbeat_sec = heartbeat_sec
        self._shards: list[tuple[threading.Lock, dict[str, _Channel]]] = [
            (threading.Lock(), {}) for _ in range(shards)
        ]

    def _shard(self, meeting_id: str) -> tuple[threading.Lock, dict[str, _Channel]]:
        return self._shards[hash(meeting_id) % len(self._shards)]

    @staticmethod
    def _fan_out(subscribers: Iterable[Subscription], event: MeetingEvent) -> None:
        for sub in subscribers:
            sub._offer(event)

    def initialize(self, meeting_id: str, agent_ids: Iterable[str]) -> dict[str, MoodState]:
        """Reset every listed agent to the neutral default and announce it."""
        lock, channels = self._shard(meeting_id)
        states = {agent_id: neutral_state(meeting_id, agent_id) for agent_id in agent_ids}
        with lock:
            channel = channels.setdefault(meeting_id, _Channel())
            channel.released = False
            channel.moods.update(states)
            subscribers = tuple(channel.subscribers)
        for state in states.values():
            self._fan_out(subscribers, MeetingEvent(EventKind.MOOD_UPDATE, meeting_id, state))
        return dict(states)

    def subscribe(self, meeting_id: str, queue_size: int | None = None) -> Subscription:
        sub = Subscription(self, meeting_id, queue_size or self._queue_size, self._heartbeat_sec)
        lock, channels = self._shard(meeting_id)
        with lock:
            channel = channels.setdefault(meeting_id, _Channel())
            channel.subscribers.add(sub)
            # Offered under the lock so no publish can slip in ahead of the snapshot
            sub._offer(MeetingEvent(EventKind.SNAPSHOT, meeting_id, dict(channel.moods)))
        logger.debug("Subscriber joined meeting %s", meeting_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        lock, channels = self._shard(sub.meeting_id)
        with lock:
            channel = channels.get(sub.meeting_id)
            if channel is None:
                return
            channel.subscribers.discard(sub)
            if channel.released and not channel.subscribers:
                del channels[sub.meeting_id]
                logger.debug("Discarded mood state for meeting %s", sub.meeting_id)
        if not sub.closed:
            sub.close()

    def publish(self, meeting_id: str, update: MoodUpdate) -> MoodState:
        """Apply the update to the snapshot and deliver it to current subscribers."""
        lock, channels = self._shard(meeting_id)
        with lock:
            channel = channels.setdefault(meeting_id, _Channel())
            state = self._rules.apply(meeting_id, channel.moods.get(update.agent_id), update)
            channel.moods[update.agent_id] = state
            subscribers = tuple(channel.subscribers)
        self._fan_out(subscribers, MeetingEvent(EventKind.MOOD_UPDATE, meeting_id, state))
        return state

    def notify(self, meeting_id: str, kind: EventKind, payload: Any = None) -> None:
        """Deliver a non-mood event. The snapshot is untouched."""
        lock, channels = self._shard(meeting_id)
        with lock:
            channel = channels.get(meeting_id)
            subscribers = tuple(channel.subscribers) if channel else ()
        self._fan_out(subscribers, MeetingEvent(kind, meeting_id, payload))

    def get_current(self, meeting_id: str) -> dict[str, MoodState]:
        lock, channels = self._shard(meeting_id)
        with lock:
            channel = channels.get(meeting_id)
            return dict(channel.moods) if channel else {}

    def release(self, meeting_id: str) -> None:
        """Mark the meeting finished; its state goes once no observer remains."""
        lock, channels = self._shard(meeting_id)
        with lock:
            channel = channels.get(meeting_id)
            if channel is None:
                return
            channel.released = True
            if not channel.subscribers:
                del channels[meeting_id]
                logger.debug("Discarded mood state for meeting %s", meeting_id)

