"""Counters and rolling snapshots for producer and consumer benchmarks.

Workers update a shared counter object as messages flow. A ticker takes a
snapshot of the counters every second, and the last ten snapshots give the
throughput and latency over that window.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

WINDOW_SIZE = 10

_LONG_TEXT = "0123456789" * 100


def build_msg(size: int) -> str:
    """Return a message body of ``size`` characters, at most 1000."""
    if size < 0 or size > len(_LONG_TEXT):
        raise ValueError(f"message size must be between 0 and {len(_LONG_TEXT)}, got {size}")
    return _LONG_TEXT[:size]


def _average(total: int, count: int) -> float:
    return total / count if count else 0.0


def _tps(count: int, seconds: float) -> int:
    return int(count / seconds) if seconds > 0 else 0


class ConsumerCounters:
    """Running totals of received messages and their delivery latencies (ms)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.receive_message_total = 0
        self.born2consumer_total_rt = 0
        self.store2consumer_total_rt = 0
        self.born2consumer_max_rt = 0
        self.store2consumer_max_rt = 0

    def record(self, born_timestamp: int, store_timestamp: int, now: int | None = None) -> None:
        """Count one received message; timestamps are in milliseconds."""
        if now is None:
            now = time.time_ns() // 1_000_000
        b2c = now - born_timestamp
        s2c = now - store_timestamp
        with self._lock:
            self.receive_message_total += 1
            self.born2consumer_total_rt += b2c
            self.store2consumer_total_rt += s2c
            self.born2consumer_max_rt = max(self.born2consumer_max_rt, b2c)
            self.store2consumer_max_rt = max(self.store2consumer_max_rt, s2c)

    def _values(self) -> tuple[int, int, int, int, int]:
        with self._lock:
            return (
                self.receive_message_total,
                self.born2consumer_total_rt,
                self.store2consumer_total_rt,
                self.born2consumer_max_rt,
                self.store2consumer_max_rt,
            )


class ProducerCounters:
    """Running totals of sent messages and their round-trip times (ms)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.send_request_success_count = 0
        self.send_request_failed_count = 0
        self.receive_response_success_count = 0
        self.receive_response_failed_count = 0
        self.send_message_success_time_total = 0
        self.send_message_max_rt = 0

    def record_success(self, rt_ms: int) -> None:
        """Count one message acknowledged with send-OK after ``rt_ms`` milliseconds."""
        with self._lock:
            self.receive_response_success_count += 1
            self.send_request_success_count += 1
            self.send_message_success_time_total += rt_ms
            self.send_message_max_rt = max(self.send_message_max_rt, rt_ms)

    def record_failure(self) -> None:
        """Count one send that failed."""
        with self._lock:
            self.send_request_failed_count += 1

    @property
    def max_rt(self) -> int:
        with self._lock:
            return self.send_message_max_rt

    def _values(self) -> tuple[int, int, int, int, int, int]:
        with self._lock:
            return (
                self.send_request_success_count,
                self.send_request_failed_count,
                self.receive_response_success_count,
                self.receive_response_failed_count,
                self.send_message_success_time_total,
                self.send_message_max_rt,
            )


@dataclass(frozen=True)
class ConsumerSnapshot:
    receive_message_total: int
    born2consumer_total_rt: int
    store2consumer_total_rt: int
    born2consumer_max_rt: int
    store2consumer_max_rt: int
    created_at: float


@dataclass(frozen=True)
class ProducerSnapshot:
    send_request_success_count: int
    send_request_failed_count: int
    receive_response_success_count: int
    receive_response_failed_count: int
    send_message_success_time_total: int
    send_message_max_rt: int
    created_at: float


class ConsumerSnapshots:
    """The last ten snapshots of a set of consumer counters."""

    def __init__(
        self, counters: ConsumerCounters, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.counters = counters
        self._clock = clock
        self._lock = threading.Lock()
        self._window: deque[ConsumerSnapshot] = deque(maxlen=WINDOW_SIZE)

    def __len__(self) -> int:
        with self._lock:
            return len(self._window)

    def take_snapshot(self) -> ConsumerSnapshot:
        snapshot = ConsumerSnapshot(*self.counters._values(), created_at=self._clock())
        with self._lock:
            self._window.append(snapshot)
        return snapshot

    def summary(self) -> dict[str, float | int] | None:
        """Statistics over the window, or None until ten snapshots have been taken."""
        with self._lock:
            if len(self._window) < WINDOW_SIZE:
                return None
            first, last = self._window[0], self._window[-1]
        count = last.receive_message_total - first.receive_message_total
        return {
            "consumeTPS": _tps(count, last.created_at - first.created_at),
            "average(B2C)RT": _average(
                last.born2consumer_total_rt - first.born2consumer_total_rt, count
            ),
            "average(S2C)RT": _average(
                last.store2consumer_total_rt - first.store2consumer_total_rt, count
            ),
            "max(B2C)RT": last.born2consumer_max_rt,
            "max(S2C)RT": last.store2consumer_max_rt,
        }


class ProducerSnapshots:
    """The last ten snapshots of a set of producer counters."""

    def __init__(
        self, counters: ProducerCounters, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.counters = counters
        self._clock = clock
        self._lock = threading.Lock()
        self._window: deque[ProducerSnapshot] = deque(maxlen=WINDOW_SIZE)

    def __len__(self) -> int:
        with self._lock:
            return len(self._window)

    def take_snapshot(self) -> ProducerSnapshot:
        snapshot = ProducerSnapshot(*self.counters._values(), created_at=self._clock())
        with self._lock:
            self._window.append(snapshot)
        return snapshot

    def summary(self) -> dict[str, float | int] | None:
        """Statistics over the window, or None until ten snapshots have been taken."""
        with self._lock:
            if len(self._window) < WINDOW_SIZE:
                return None
            first, last = self._window[0], self._window[-1]
        count = last.receive_response_success_count - first.receive_response_success_count
        return {
            "sendTps": _tps(count, last.created_at - first.created_at),
            "maxRt": self.counters.max_rt,
            "averageRt": _average(
                last.send_message_success_time_total - first.send_message_success_time_total,
                count,
            ),
            "sendFailed": last.send_request_failed_count,
            "responseFailed": last.receive_response_failed_count,
            "total": last.receive_response_success_count,
        }