"""Offset stores, a per-queue message cache, admin response decoding and benchmark statistics for a RocketMQ-style message queue client."""

__version__ = "0.1.0"

__all__ = [
    "topic_options",
    "admin_response",
    "offset_store",
    "process_queue",
    "bench_stats",
]