# rmqclient

Client-side building blocks for a RocketMQ-style message queue. The package is
plain Python and has no third-party runtime dependencies.

## Modules

### `rmqclient.topic_options`

`TopicConfigCreate` and `TopicConfigDelete` are dataclasses that hold the
settings for creating and deleting a topic.

`TopicConfigCreate` has the broker's usual defaults:

- 8 read queues and 8 write queues
- `perm` 6
- `SINGLE_TAG` filter type
- not ordered

`to_header()` returns the request header fields as strings.

### `rmqclient.admin_response`

This module decodes the replies that brokers and name servers send to admin
requests.

- `replace_java_json(text)` quotes object keys and bare number keys. Text that
  is not valid JSON because of such keys becomes valid JSON.
- `decode_json(data)` applies that fix and then parses the text.
- These functions return dataclasses:
  - `decode_topic_list` returns `TopicList`.
  - `decode_group_list` returns `GroupList`.
  - `decode_subscription_groups` returns `SubscriptionGroupWrapper`.
  - `decode_consume_stats` returns `ConsumeStats`.
  - `decode_cluster_info` returns `ClusterInfo`.
  - `decode_topic_route` returns `TopicRouteData`.
- `decode_runtime_stats` returns a `dict[str, str]`.
- `ConsumeStats.compute_total_diff()` sums broker offset minus consumer offset
  over all queues.
- `BrokerData.select_broker_addr()` prefers the master, which has broker id 0.
- `to_json(obj, pretty)` serialises these objects back to JSON. It returns an
  empty string if the object cannot be encoded.

### `rmqclient.offset_store`

This module stores the offset a consumer has reached in each `MessageQueue`.
All stores implement the `OffsetStore` interface:

- `persist`
- `remove`
- `read(mq, read_type)`, where `read_type` is `ReadType.MEMORY`,
  `ReadType.STORE` or `ReadType.MEMORY_THEN_STORE`
- `update(mq, offset, increase_only)`

`read` returns -1 when no offset is known.

`LocalFileOffsetStore` keeps offsets in `<store_dir>/<client_id>/<group>/offset.json`.

- The default directory comes from the `rocketmq.client.localOffsetStoreDir`
  environment variable. If that is not set, it is `$HOME/.rocketmq_client_go`.
- Before it writes the file, it copies the old one to `offset.json.bak`.
- `forget(mq)` drops an offset from memory only.

`RemoteOffsetStore` caches offsets in memory and commits them to the broker that
owns each queue. You supply two objects:

- a client with `invoke_sync(addr, request, timeout)` and
  `invoke_oneway(addr, request, timeout)`
- a name server with `find_broker_addr_by_name(name)` and
  `update_topic_route_info(topic)`

Errors are reported as follows:

- `BrokerNotFoundError` is raised when no broker address can be found.
- `BrokerResponseError` is raised when the broker returns a failure code.

### `rmqclient.process_queue`

`ProcessQueue` caches the `MessageExt` objects pulled from one queue, keyed by
queue offset.

For concurrent consumption:

- `put_message` caches the messages and hands each batch to `get_messages`.
- The hand-off holds at most 32 batches.

For orderly consumption:

- `take_messages(n)` moves the lowest offsets into a consuming set. It waits up
  to five seconds for messages to arrive.
- `commit()` clears that set and returns the next offset.
- `make_message_to_consume_again()` puts those messages back in the cache.

Other methods:

- `remove_message` returns the offset from which consumption may resume.
- `set_dropped(True)` closes the hand-off.
- `current_info()` returns a `ProcessQueueInfo` snapshot.

### `rmqclient.bench_stats`

Counters and rolling windows for benchmark runs:

- `ConsumerCounters.record` tracks born-to-consumer and store-to-consumer
  latency.
- `ProducerCounters.record_success` and `ProducerCounters.record_failure` track
  sends.
- `ConsumerSnapshots` and `ProducerSnapshots` keep the last ten
  `take_snapshot()` results.
- `summary()` returns throughput and latency over that window. It returns
  `None` until ten snapshots exist.
- `build_msg(size)` returns a payload of up to 1000 characters. It raises
  `ValueError` for any other size.

## Install

```
pip install .
pip install ".[test]"
```

## Examples

```python
import tempfile

from rmqclient.offset_store import LocalFileOffsetStore, MessageQueue, ReadType

mq = MessageQueue(topic="orders", broker_name="broker-a", queue_id=0)
with tempfile.TemporaryDirectory() as store_dir:
    store = LocalFileOffsetStore("client-1", "order-group", store_dir=store_dir)
    store.update(mq, 42, False)
    store.persist([mq])
    store.forget(mq)
    assert store.read(mq, ReadType.MEMORY_THEN_STORE) == 42
```

```python
from rmqclient.admin_response import decode_consume_stats

body = (
    '{"consumeTps":0.0,"offsetTable":{{"brokerName":"broker-a","queueId":0,'
    '"topic":"t"}:{"brokerOffset":10,"consumerOffset":4,"lastTimestamp":0}}}'
)
stats = decode_consume_stats(body)
assert stats.compute_total_diff() == 6
```

```python
from rmqclient.process_queue import MessageExt, ProcessQueue

pq = ProcessQueue(order=True)
pq.put_message(MessageExt(queue_offset=0, body=b"a"), MessageExt(queue_offset=1, body=b"b"))
taken = pq.take_messages(2)
assert [m.queue_offset for m in taken] == [0, 1]
assert pq.commit() == 2
```

## What this package does not do

This package has no network layer. Nothing here:

- opens connections
- speaks the wire protocol
- resolves name servers

`RemoteOffsetStore` works only through the client and name-server objects that
you pass in.

The package also does not include:

- a producer
- a push or pull consumer
- subscription handling
- rebalancing
- an admin client that sends requests

It has no command-line programs. The benchmark statistics are a library that
you drive from your own code.

## Tests

```
pytest
```