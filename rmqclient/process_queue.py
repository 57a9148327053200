"""Messages pulled from one queue and waiting to be consumed.

A process queue caches pulled messages by queue offset. Concurrent consumers
receive pulled batches through a bounded hand-off. Orderly consumers take
messages out of the cache in offset order and commit them when done.
"""

from __future__ import annotations

import collections
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable

from rmqclient.offset_store import MessageQueue

PROPERTY_MAX_OFFSET = "MAX_OFFSET"
PROPERTY_MIN_OFFSET = "MIN_OFFSET"
PROPERTY_CONSUME_START_TIME = "CONSUME_START_TIME"

REBALANCE_LOCK_MAX_TIME = 30.0
REBALANCE_INTERVAL = 20.0
PULL_MAX_IDLE_TIME = 120.0

_CHANNEL_CAPACITY = 32
_TAKE_WAIT = 5.0
_MIB = 1024 * 1024


def _now_ms(seconds: float) -> int:
    return int(seconds * 1000)


@dataclass
class MessageExt:
    """A message as stored by the broker, with its position in the queue."""

    topic: str = ""
    body: bytes = b""
    queue_offset: int = 0
    msg_id: str = ""
    store_host: str = ""
    reconsume_times: int = 0
    born_timestamp: int = 0
    store_timestamp: int = 0
    queue: MessageQueue | None = None
    properties: dict[str, str] = field(default_factory=dict)

    def get_property(self, key: str) -> str:
        """Return the property's value, or an empty string if it is not set."""
        return self.properties.get(key, "")

    def with_property(self, key: str, value: str) -> None:
        self.properties[key] = value


@dataclass
class ProcessQueueInfo:
    """A snapshot of a process queue, as reported in consumer running info."""

    commit_offset: int = 0
    cached_msg_min_offset: int = 0
    cached_msg_max_offset: int = 0
    cached_msg_count: int = 0
    cached_msg_size_in_mib: int = 0
    transaction_msg_min_offset: int = 0
    transaction_msg_max_offset: int = 0
    transaction_msg_count: int = 0
    locked: bool = False
    try_unlock_times: int = 0
    last_lock_timestamp: int = 0
    dropped: bool = False
    last_pull_timestamp: int = 0
    last_consume_timestamp: int = 0


class ProcessQueue:
    """Cache of pulled messages for one message queue."""

    def __init__(self, order: bool = False) -> None:
        self.order = order
        self.cached_msg_count = 0
        self.cached_msg_size = 0
        self.try_unlock_times = 0
        self.queue_offset_max = 0
        self.msg_acc_cnt = 0
        self.max_offset_in_queue = -1
        self.consuming = False
        now = time.time()
        self.last_pull_time = now
        self.last_consume_time = now
        self.last_lock_time = now
        self._msg_cache: dict[int, MessageExt] = {}
        self._consuming_orderly: dict[int, MessageExt] = {}
        self._mutex = threading.RLock()
        self._cache_ready = threading.Condition(self._mutex)
        self._channel: collections.deque[list[MessageExt]] = collections.deque()
        self._channel_cond = threading.Condition()
        self._closed = False
        self._locked = False
        self._dropped = False

    # state flags

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def dropped(self) -> bool:
        return self._dropped

    def set_locked(self, locked: bool) -> None:
        self._locked = locked

    def set_dropped(self, dropped: bool) -> None:
        """Set the dropped flag and close the hand-off to consumers for good."""
        self._dropped = dropped
        with self._channel_cond:
            self._closed = True
            self._channel_cond.notify_all()

    def update_last_consume_time(self) -> None:
        self.last_consume_time = time.time()

    def update_last_lock_time(self) -> None:
        self.last_lock_time = time.time()

    def update_last_pull_time(self) -> None:
        self.last_pull_time = time.time()

    def is_lock_expired(self) -> bool:
        return time.time() - self.last_lock_time > REBALANCE_LOCK_MAX_TIME

    def is_pull_expired(self) -> bool:
        return time.time() - self.last_pull_time > PULL_MAX_IDLE_TIME

    # messages

    def put_message(self, *args: MessageExt) -> None:
        """Cache newly pulled messages, skipping offsets already held."""
        messages = list(args)
        if not messages or self._dropped:
            return
        with self._cache_ready:
            valid = 0
            for msg in messages:
                offset = msg.queue_offset
                if offset in self._msg_cache or offset in self._consuming_orderly:
                    continue
                self._msg_cache[offset] = msg
                valid += 1
                self.queue_offset_max = offset
                self.cached_msg_size += len(msg.body)
            self.cached_msg_count += valid
            self._cache_ready.notify_all()

        if not self.order and not self._send(messages):
            return

        if self.cached_msg_count > 0 and not self.consuming:
            self.consuming = True

        last = messages[-1]
        try:
            max_offset = int(last.get_property(PROPERTY_MAX_OFFSET))
        except ValueError:
            return
        accumulated = max_offset - last.queue_offset
        if accumulated > 0:
            self.msg_acc_cnt = accumulated

    def _send(self, messages: list[MessageExt]) -> bool:
        with self._channel_cond:
            while not self._closed and len(self._channel) >= _CHANNEL_CAPACITY:
                self._channel_cond.wait()
            if self._closed:
                return False
            self._channel.append(messages)
            self._channel_cond.notify_all()
            return True

    def get_messages(self, timeout: float | None = None) -> list[MessageExt] | None:
        """Wait for the next pulled batch; None once closed or when the wait times out."""
        with self._channel_cond:
            self._channel_cond.wait_for(lambda: self._closed or bool(self._channel), timeout)
            if self._closed or not self._channel:
                return None
            batch = self._channel.popleft()
            self._channel_cond.notify_all()
            return batch

    def remove_message(self, *args: MessageExt) -> int:
        """Drop consumed messages; return the offset from which consumption may resume.

        Returns -1 when nothing was cached.
        """
        with self._mutex:
            self.update_last_consume_time()
            result = -1
            if self._msg_cache:
                result = self.queue_offset_max + 1
                removed = 0
                for msg in args:
                    if self._msg_cache.pop(msg.queue_offset, None) is None:
                        continue
                    removed += 1
                    self.cached_msg_size -= len(msg.body)
                self.cached_msg_count -= removed
            if self._msg_cache:
                result = min(self._msg_cache)
            return result

    def make_message_to_consume_again(self, *args: MessageExt) -> None:
        """Return messages taken for orderly consumption to the cache."""
        with self._mutex:
            for msg in args:
                self._consuming_orderly.pop(msg.queue_offset, None)
                self._msg_cache[msg.queue_offset] = msg

    def take_messages(self, number: int) -> list[MessageExt]:
        """Move up to ``number`` lowest-offset messages into the consuming set.

        Waits a few seconds for messages to arrive; returns an empty list if none do.
        """
        with self._cache_ready:
            if not self._cache_ready.wait_for(lambda: bool(self._msg_cache), _TAKE_WAIT):
                return []
            taken = []
            for offset in sorted(self._msg_cache)[: max(number, 0)]:
                msg = self._msg_cache.pop(offset)
                self._consuming_orderly[offset] = msg
                taken.append(msg)
            return taken

    def get_max_span(self) -> int:
        with self._mutex:
            if not self._msg_cache:
                return 0
            return max(self._msg_cache) - min(self._msg_cache)

    def min_offset(self) -> int:
        with self._mutex:
            return min(self._msg_cache, default=-1)

    def max_offset(self) -> int:
        with self._mutex:
            return max(self._msg_cache, default=-1)

    def min_orderly_cache(self) -> int:
        with self._mutex:
            return min(self._consuming_orderly, default=-1)

    def max_orderly_cache(self) -> int:
        with self._mutex:
            return max(self._consuming_orderly, default=-1)

    def clear(self) -> None:
        with self._mutex:
            self._msg_cache.clear()
            self.cached_msg_count = 0
            self.cached_msg_size = 0
            self.queue_offset_max = 0
            self.max_offset_in_queue = -1

    def commit(self) -> int:
        """Finish the messages being consumed orderly; return the next offset to commit."""
        with self._mutex:
            offset = max(self._consuming_orderly, default=0)
            self.cached_msg_count -= len(self._consuming_orderly)
            for msg in self._consuming_orderly.values():
                self.cached_msg_size -= len(msg.body)
            self._consuming_orderly.clear()
            return offset + 1

    def current_info(self) -> ProcessQueueInfo:
        with self._mutex:
            info = ProcessQueueInfo(
                locked=self._locked,
                try_unlock_times=self.try_unlock_times,
                last_lock_timestamp=_now_ms(self.last_lock_time),
                dropped=self._dropped,
                last_pull_timestamp=_now_ms(self.last_pull_time),
                last_consume_timestamp=_now_ms(self.last_consume_time),
            )
            if self._msg_cache:
                info.cached_msg_min_offset = self.min_offset()
                info.cached_msg_max_offset = self.max_offset()
                info.cached_msg_count = len(self._msg_cache)
                info.cached_msg_size_in_mib = self.cached_msg_size // _MIB
            if self._consuming_orderly:
                info.transaction_msg_min_offset = self.min_orderly_cache()
                info.transaction_msg_max_offset = self.max_orderly_cache()
                info.transaction_msg_count = len(self._consuming_orderly)
            return info