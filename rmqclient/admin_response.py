"""Response bodies returned by brokers and name servers to admin requests.

Brokers write JSON with object and number keys, which standard JSON does not
allow; :func:`replace_java_json` turns such text into valid JSON first.
"""

from __future__ import annotations

import json
import re
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from typing import Any, Callable

_JAVA_OBJECT_KEY = re.compile(r"[{,]{.*?}:")
_JAVA_NUMBER_KEY = re.compile(r"[{,]\d*?:", re.ASCII)


def _replacer(*pairs: str) -> Callable[[str], str]:
    olds = pairs[::2]
    table = dict(zip(olds, pairs[1::2]))
    pattern = re.compile("|".join(re.escape(old) for old in olds))
    return lambda text: pattern.sub(lambda m: table[m.group(0)], text)


_quote_object_key = _replacer("{{", '{"{', ",{", ',"{', "}:", '}":', '"', '\\"')
_quote_number_key = _replacer("{", '{"', ",", ',"', ":", '":')

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}
_HTML_PATTERN = re.compile("[<>&\u2028\u2029]")


def replace_java_json(text: str) -> str:
    """Quote object keys and bare number keys so the text becomes valid JSON."""
    text = _JAVA_OBJECT_KEY.sub(lambda m: _quote_object_key(m.group(0)), text)
    return _JAVA_NUMBER_KEY.sub(lambda m: _quote_number_key(m.group(0)), text)


def decode_json(data: bytes | str) -> Any:
    """Parse a response body, repairing non-standard keys first."""
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    return json.loads(replace_java_json(text))


def _to_jsonable(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.metadata.get("json", f.name): _to_jsonable(getattr(obj, f.name))
            for f in fields(obj)
        }
    if isinstance(obj, dict):
        return {
            str(key): _to_jsonable(value)
            for key, value in sorted(obj.items(), key=lambda item: str(item[0]))
        }
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(item) for item in obj]
    return obj


def to_json(obj: Any, pretty: bool = False) -> str:
    """Serialise a response object; returns an empty string if it cannot be encoded."""
    try:
        value = _to_jsonable(obj)
        if pretty:
            text = json.dumps(value, ensure_ascii=False, indent=2)
        else:
            text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return ""
    return _HTML_PATTERN.sub(lambda m: _HTML_ESCAPES[m.group(0)], text)


def _json(name: str, **kwargs: Any) -> Any:
    return field(metadata={"json": name}, **kwargs)


@dataclass
class TopicList:
    topic_list: list[str] = _json("TopicList", default_factory=list)
    broker_addr: str = _json("BrokerAddr", default="")


@dataclass
class DataVersion:
    timestamp: int = _json("Timestamp", default=0)
    counter: int = _json("Counter", default=0)


@dataclass
class SubscriptionGroupConfig:
    group_name: str = _json("GroupName", default="")
    consume_enable: bool = _json("ConsumeEnable", default=False)
    consume_from_min_enable: bool = _json("ConsumeFromMinEnable", default=False)
    consume_broadcast_enable: bool = _json("ConsumeBroadcastEnable", default=False)
    retry_max_times: int = _json("RetryMaxTimes", default=0)
    retry_queue_nums: int = _json("RetryQueueNums", default=0)
    broker_id: int = _json("BrokerId", default=0)
    which_broker_when_consume_slowly: int = _json("WhichBrokerWhenConsumeSlowly", default=0)
    notify_consumer_ids_changed_enable: bool = _json(
        "NotifyConsumerIdsChangedEnable", default=False
    )


@dataclass
class SubscriptionGroupWrapper:
    subscription_group_table: dict[str, SubscriptionGroupConfig] = _json(
        "SubscriptionGroupTable", default_factory=dict
    )
    data_version: DataVersion = _json("DataVersion", default_factory=DataVersion)


@dataclass
class GroupList:
    group_list: list[str] = _json("GroupList", default_factory=list)


@dataclass
class ConsumeStatsOffsetMeta:
    broker_name: str = _json("brokerName", default="")
    queue_id: int = _json("queueId", default=0)
    topic: str = _json("topic", default="")


@dataclass
class OffsetEntry:
    meta: ConsumeStatsOffsetMeta = _json("meta", default_factory=ConsumeStatsOffsetMeta)
    broker_offset: int = _json("brokerOffset", default=0)
    consumer_offset: int = _json("consumerOffset", default=0)
    last_timestamp: int = _json("lastTimestamp", default=0)


@dataclass
class ConsumeStats:
    consume_tps: float = _json("consumeTps", default=0.0)
    offset_table: dict[str, OffsetEntry] = _json("offsetTable", default_factory=dict)

    def compute_total_diff(self) -> int:
        """Total number of messages the broker holds beyond the consumer's offsets."""
        return sum(e.broker_offset - e.consumer_offset for e in self.offset_table.values())


@dataclass
class ClusterBrokerEntry:
    broker_addrs: dict[str, str] = _json("brokerAddrs", default_factory=dict)
    broker_name: str = _json("brokerName", default="")
    cluster: str = _json("cluster", default="")


@dataclass
class ClusterInfo:
    broker_addr_table: dict[str, ClusterBrokerEntry] = _json(
        "brokerAddrTable", default_factory=dict
    )
    cluster_addr_table: dict[str, list[str]] = _json("clusterAddrTable", default_factory=dict)


@dataclass
class BrokerData:
    cluster: str = _json("cluster", default="")
    broker_name: str = _json("brokerName", default="")
    broker_addrs: dict[int, str] = _json("brokerAddrs", default_factory=dict)

    def select_broker_addr(self) -> str:
        """Return the master's address, else any address, else an empty string."""
        if 0 in self.broker_addrs:
            return self.broker_addrs[0]
        return next(iter(self.broker_addrs.values()), "")


@dataclass
class QueueData:
    broker_name: str = _json("brokerName", default="")
    read_queue_nums: int = _json("readQueueNums", default=0)
    write_queue_nums: int = _json("writeQueueNums", default=0)
    perm: int = _json("perm", default=0)
    topic_sys_flag: int = _json("topicSysFlag", default=0)


@dataclass
class TopicRouteData:
    order_topic_conf: str = _json("orderTopicConf", default="")
    queue_datas: list[QueueData] = _json("queueDatas", default_factory=list)
    broker_datas: list[BrokerData] = _json("brokerDatas", default_factory=list)
    filter_server_table: dict[str, list[str]] = _json("filterServerTable", default_factory=dict)


def _object(value: Any, what: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{what}: expected a JSON object, got {type(value).__name__}")
    return value


def _array(value: Any, what: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{what}: expected a JSON array, got {type(value).__name__}")
    return value


def _field(obj: dict, name: str, default: Any) -> Any:
    """Look a key up the way the broker's keys are matched: exactly or ignoring case."""
    folded = name.casefold()
    value = None
    for key, item in obj.items():
        if item is not None and (key == name or key.casefold() == folded):
            value = item
    return default if value is None else value


def _fill(cls: type, obj: dict, **overrides: Any) -> Any:
    values = {}
    for f in fields(cls):
        if f.name in overrides:
            values[f.name] = overrides[f.name]
            continue
        default = f.default if f.default is not MISSING else f.default_factory()
        values[f.name] = _field(obj, f.metadata["json"], default)
    return cls(**values)


def decode_topic_list(data: bytes | str) -> TopicList:
    obj = _object(decode_json(data), "TopicList")
    return _fill(
        TopicList, obj, topic_list=list(_array(_field(obj, "TopicList", None), "TopicList"))
    )


def decode_group_list(data: bytes | str) -> GroupList:
    obj = _object(decode_json(data), "GroupList")
    return _fill(
        GroupList, obj, group_list=list(_array(_field(obj, "GroupList", None), "GroupList"))
    )


def decode_subscription_groups(data: bytes | str) -> SubscriptionGroupWrapper:
    obj = _object(decode_json(data), "SubscriptionGroupWrapper")
    raw_table = _object(_field(obj, "SubscriptionGroupTable", None), "SubscriptionGroupTable")
    table = {
        name: _fill(SubscriptionGroupConfig, _object(cfg, name))
        for name, cfg in raw_table.items()
    }
    version = _fill(DataVersion, _object(_field(obj, "DataVersion", None), "DataVersion"))
    return SubscriptionGroupWrapper(subscription_group_table=table, data_version=version)


def _meta_from_key(key: str, entry: dict) -> ConsumeStatsOffsetMeta:
    merged = dict(_object(_field(entry, "meta", None), "meta"))
    try:
        parsed = json.loads(key)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        merged.update(parsed)
    return _fill(ConsumeStatsOffsetMeta, merged)


def decode_consume_stats(data: bytes | str) -> ConsumeStats:
    obj = _object(decode_json(data), "ConsumeStats")
    table = {}
    for key, raw in _object(_field(obj, "offsetTable", None), "offsetTable").items():
        entry = _object(raw, key)
        table[key] = _fill(OffsetEntry, entry, meta=_meta_from_key(key, entry))
    return _fill(ConsumeStats, obj, offset_table=table)


def decode_cluster_info(data: bytes | str) -> ClusterInfo:
    obj = _object(decode_json(data), "ClusterInfo")
    brokers = {
        name: _fill(ClusterBrokerEntry, _object(raw, name))
        for name, raw in _object(_field(obj, "brokerAddrTable", None), "brokerAddrTable").items()
    }
    clusters = {
        name: list(_array(raw, name))
        for name, raw in _object(_field(obj, "clusterAddrTable", None), "clusterAddrTable").items()
    }
    return ClusterInfo(broker_addr_table=brokers, cluster_addr_table=clusters)


def _broker_data(raw: Any) -> BrokerData:
    obj = _object(raw, "BrokerData")
    addrs = {
        int(key): value
        for key, value in _object(_field(obj, "brokerAddrs", None), "brokerAddrs").items()
    }
    return _fill(BrokerData, obj, broker_addrs=addrs)


def decode_topic_route(data: bytes | str) -> TopicRouteData:
    obj = _object(decode_json(data), "TopicRouteData")
    queues = [
        _fill(QueueData, _object(raw, "QueueData"))
        for raw in _array(_field(obj, "queueDatas", None), "queueDatas")
    ]
    brokers = [_broker_data(raw) for raw in _array(_field(obj, "brokerDatas", None), "brokerDatas")]
    filters = {
        name: list(_array(raw, name))
        for name, raw in _object(
            _field(obj, "filterServerTable", None), "filterServerTable"
        ).items()
    }
    return _fill(
        TopicRouteData, obj, queue_datas=queues, broker_datas=brokers, filter_server_table=filters
    )


def decode_runtime_stats(data: bytes | str) -> dict[str, str]:
    """Return the broker's runtime statistics table."""
    obj = _object(decode_json(data), "BrokerRuntimeStats")
    return dict(_object(_field(obj, "table", None), "table"))