"""Where a consumer keeps the offset it has reached in each message queue.

Broadcasting consumers keep offsets in a local JSON file; clustering consumers
keep them on the broker that owns the queue.
"""

from __future__ import annotations

import enum
import json
import logging
import os
import shutil
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

STORE_DIR_ENV = "rocketmq.client.localOffsetStoreDir"

REQ_QUERY_CONSUMER_OFFSET = 14
REQ_UPDATE_CONSUMER_OFFSET = 15
RES_SUCCESS = 0
RES_QUERY_NOT_FOUND = 22

_FETCH_TIMEOUT = 3.0
_UPDATE_TIMEOUT = 5.0


def default_store_dir() -> Path:
    """Directory that holds local offset files, taken from the environment."""
    configured = os.environ.get(STORE_DIR_ENV, "")
    if configured:
        return Path(configured)
    return Path(os.environ.get("HOME", ""), ".rocketmq_client_go")


@dataclass(frozen=True)
class MessageQueue:
    """One queue of a topic on a named broker."""

    topic: str = ""
    broker_name: str = ""
    queue_id: int = 0

    def key_text(self) -> str:
        """The JSON text used for this queue as a key in an offset file."""
        return json.dumps(
            {"topic": self.topic, "brokerName": self.broker_name, "queueId": self.queue_id},
            separators=(",", ":"),
        )

    def __str__(self) -> str:
        return (
            f"MessageQueue [topic={self.topic}, brokerName={self.broker_name}, "
            f"queueId={self.queue_id}]"
        )


def parse_queue_key(text: str) -> MessageQueue:
    """Read a queue back from the key text written by :meth:`MessageQueue.key_text`."""
    try:
        obj = json.loads(text)
    except ValueError as exc:
        raise ValueError(f"invalid message queue key: {text!r}") from exc
    if not isinstance(obj, dict):
        raise ValueError(f"invalid message queue key: {text!r}")
    return MessageQueue(
        topic=str(obj.get("topic") or ""),
        broker_name=str(obj.get("brokerName") or ""),
        queue_id=int(obj.get("queueId") or 0),
    )


class ReadType(enum.IntEnum):
    MEMORY = 0
    STORE = 1
    MEMORY_THEN_STORE = 2


@dataclass
class RemotingRequest:
    code: int
    ext_fields: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class RemotingResponse:
    code: int = RES_SUCCESS
    remark: str = ""
    ext_fields: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class BrokerNotFoundError(LookupError):
    """No address is known for the broker that owns a queue."""

    def __init__(self, broker_name: str) -> None:
        super().__init__(f"broker: {broker_name} address not found")
        self.broker_name = broker_name


class BrokerResponseError(RuntimeError):
    """The broker answered with a failure code."""

    def __init__(self, code: int, remark: str) -> None:
        super().__init__(f"broker response code: {code}, remarks: {remark}")
        self.code = code
        self.remark = remark


class _RemotingClient(Protocol):
    def invoke_sync(
        self, addr: str, request: RemotingRequest, timeout: float
    ) -> RemotingResponse: ...

    def invoke_oneway(self, addr: str, request: RemotingRequest, timeout: float) -> None: ...


class _NameServer(Protocol):
    def find_broker_addr_by_name(self, broker_name: str) -> str: ...

    def update_topic_route_info(self, topic: str) -> object: ...


class OffsetStore(ABC):
    """Keeps the next offset to consume for each queue."""

    @abstractmethod
    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        """Write the offsets held in memory to durable storage."""

    @abstractmethod
    def remove(self, mq: MessageQueue) -> None:
        """Forget a queue that is no longer consumed here."""

    @abstractmethod
    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        """Return the offset of ``mq``, or -1 if none is known."""

    @abstractmethod
    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        """Record a new offset; with ``increase_only`` a smaller one is ignored."""


def _store_offset(table: dict, key, offset: int, increase_only: bool) -> None:
    current = table.get(key)
    if current is None or not increase_only or current < offset:
        table[key] = offset


class LocalFileOffsetStore(OffsetStore):
    """Offsets kept in ``<store_dir>/<client_id>/<group>/offset.json``."""

    def __init__(self, client_id: str, group: str, store_dir: str | os.PathLike | None = None):
        base = Path(store_dir) if store_dir is not None else default_store_dir()
        self.group = group
        self.path = Path(base, client_id, group, "offset.json")
        self._table: dict[MessageQueue, int] = {}
        self._lock = threading.RLock()
        self.load()

    @property
    def _backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def load(self) -> None:
        """Merge the offsets found in the offset file into memory."""
        with self._lock:
            try:
                data = self.path.read_bytes()
            except FileNotFoundError:
                return
            except OSError as exc:
                logger.info("read from local store error, try to use bak file: %s", exc)
                try:
                    data = self._backup_path.read_bytes()
                except OSError as bak_exc:
                    logger.info("read from local store bak file error: %s", bak_exc)
                    return
            try:
                wrapper = json.loads(data)
                raw = wrapper.get("offsetTable") or {}
                if not isinstance(raw, dict):
                    raise ValueError("offsetTable is not an object")
                loaded = {parse_queue_key(key): int(value) for key, value in raw.items()}
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("unmarshal local offset %s error: %s", self.path, exc)
                return
            self._table.update(loaded)

    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        with self._lock:
            if read_type in (ReadType.MEMORY, ReadType.MEMORY_THEN_STORE):
                offset = self._table.get(mq, -1)
                if offset >= 0 or (offset == -1 and read_type == ReadType.MEMORY):
                    return offset
            self.load()
            return self._table.get(mq, -1)

    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        with self._lock:
            logger.debug("update offset of %s to %d", mq, offset)
            _store_offset(self._table, mq, offset, increase_only)

    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        if not list(mqs):
            return
        with self._lock:
            table = {mq.key_text(): off for mq, off in self._table.items()}
            text = json.dumps({"offsetTable": dict(sorted(table.items()))})
            try:
                self._write(text)
            except OSError as exc:
                logger.error("persist offset to %s error: %s", self.path, exc)

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.is_file():
            shutil.copyfile(self.path, self._backup_path)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, self.path)

    def remove(self, mq: MessageQueue) -> None:
        """Local offsets are kept even for queues no longer consumed."""

    def forget(self, mq: MessageQueue) -> None:
        """Drop the in-memory offset of ``mq``, leaving the file as it is."""
        with self._lock:
            self._table.pop(mq, None)


class RemoteOffsetStore(OffsetStore):
    """Offsets cached in memory and committed to the broker that owns each queue."""

    def __init__(self, group: str, client: _RemotingClient, namesrv: _NameServer) -> None:
        self.group = group
        self.client = client
        self.namesrv = namesrv
        self._table: dict[MessageQueue, int] = {}
        self._lock = threading.Lock()

    def persist(self, mqs: Iterable[MessageQueue]) -> None:
        used = set(mqs)
        with self._lock:
            if not used:
                return
            for mq, offset in list(self._table.items()):
                if mq not in used:
                    del self._table[mq]
                    continue
                try:
                    self._update_offset_to_broker(mq, offset)
                except Exception as exc:  # a failed commit is retried on the next persist
                    logger.warning(
                        "update offset to broker error: group=%s mq=%s offset=%d: %s",
                        self.group, mq, offset, exc,
                    )
                else:
                    logger.info(
                        "update offset to broker success: group=%s mq=%s offset=%d",
                        self.group, mq, offset,
                    )

    def remove(self, mq: MessageQueue) -> None:
        with self._lock:
            self._table.pop(mq, None)
        logger.info("delete mq from offset table: group=%s mq=%s", self.group, mq)

    def read(self, mq: MessageQueue, read_type: ReadType) -> int:
        if read_type in (ReadType.MEMORY, ReadType.MEMORY_THEN_STORE):
            with self._lock:
                offset = self._table.get(mq)
            if offset is not None:
                return offset
            if read_type == ReadType.MEMORY:
                return -1
        try:
            offset = self._fetch_offset_from_broker(mq)
        except Exception as exc:
            logger.error(
                "fetch offset of mq from broker error: group=%s mq=%s: %s", self.group, mq, exc
            )
            raise
        logger.info(
            "fetch offset of mq from broker success: group=%s mq=%s offset=%d",
            self.group, mq, offset,
        )
        self.update(mq, offset, True)
        return offset

    def update(self, mq: MessageQueue, offset: int, increase_only: bool) -> None:
        with self._lock:
            _store_offset(self._table, mq, offset, increase_only)

    def _broker_addr(self, mq: MessageQueue) -> str:
        broker = self.namesrv.find_broker_addr_by_name(mq.broker_name)
        if not broker:
            self.namesrv.update_topic_route_info(mq.topic)
            broker = self.namesrv.find_broker_addr_by_name(mq.broker_name)
        if not broker:
            raise BrokerNotFoundError(mq.broker_name)
        return broker

    def _fetch_offset_from_broker(self, mq: MessageQueue) -> int:
        broker = self._broker_addr(mq)
        request = RemotingRequest(
            REQ_QUERY_CONSUMER_OFFSET,
            {"consumerGroup": self.group, "topic": mq.topic, "queueId": str(mq.queue_id)},
        )
        response = self.client.invoke_sync(broker, request, _FETCH_TIMEOUT)
        if response.code == RES_QUERY_NOT_FOUND:
            return -1
        if response.code != RES_SUCCESS:
            raise BrokerResponseError(response.code, response.remark)
        return int(response.ext_fields.get("offset", ""))

    def _update_offset_to_broker(self, mq: MessageQueue, offset: int) -> None:
        broker = self._broker_addr(mq)
        request = RemotingRequest(
            REQ_UPDATE_CONSUMER_OFFSET,
            {
                "consumerGroup": self.group,
                "topic": mq.topic,
                "queueId": str(mq.queue_id),
                "commitOffset": str(offset),
            },
        )
        self.client.invoke_oneway(broker, request, _UPDATE_TIMEOUT)