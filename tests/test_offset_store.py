import json
from pathlib import Path

import pytest

from rmqclient.offset_store import (
    REQ_QUERY_CONSUMER_OFFSET,
    REQ_UPDATE_CONSUMER_OFFSET,
    RES_QUERY_NOT_FOUND,
    RES_SUCCESS,
    STORE_DIR_ENV,
    BrokerNotFoundError,
    BrokerResponseError,
    LocalFileOffsetStore,
    MessageQueue,
    ReadType,
    RemoteOffsetStore,
    RemotingResponse,
    default_store_dir,
    parse_queue_key,
)

MQ = MessageQueue(topic="testTopic", broker_name="default", queue_id=1)


class FakeNamesrv:
    def __init__(self, addrs=None, after_update=None):
        self.addrs = dict(addrs or {})
        self.after_update = dict(after_update or {})
        self.updated = []

    def find_broker_addr_by_name(self, broker_name):
        return self.addrs.get(broker_name, "")

    def update_topic_route_info(self, topic):
        self.updated.append(topic)
        self.addrs.update(self.after_update)


class FakeClient:
    def __init__(self, response=None):
        self.response = response or RemotingResponse(code=RES_SUCCESS, ext_fields={"offset": "1"})
        self.sync_calls = []
        self.oneway_calls = []

    def invoke_sync(self, addr, request, timeout):
        self.sync_calls.append((addr, request, timeout))
        return self.response

    def invoke_oneway(self, addr, request, timeout):
        self.oneway_calls.append((addr, request, timeout))


@pytest.mark.parametrize(
    "client_id, group, tail",
    [
        ("", "testGroup", "testGroup/offset.json"),
        ("192.168.24.1@default", "", "192.168.24.1@default/offset.json"),
        ("192.168.24.1@default", "testGroup", "192.168.24.1@default/testGroup/offset.json"),
    ],
)
def test_local_store_path(tmp_path, client_id, group, tail):
    store = LocalFileOffsetStore(client_id, group, tmp_path)
    assert store.group == group
    assert store.path == Path(tmp_path, tail)


def test_default_store_dir_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv(STORE_DIR_ENV, str(tmp_path))
    assert default_store_dir() == tmp_path


def test_default_store_dir_from_home(monkeypatch, tmp_path):
    monkeypatch.delenv(STORE_DIR_ENV, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert default_store_dir() == tmp_path / ".rocketmq_client_go"


def test_key_text_exact():
    assert MQ.key_text() == '{"topic":"testTopic","brokerName":"default","queueId":1}'


def test_parse_queue_key_round_trip():
    assert parse_queue_key(MQ.key_text()) == MQ


def test_parse_queue_key_invalid():
    with pytest.raises(ValueError):
        parse_queue_key("not json")


@pytest.fixture
def local_store(tmp_path):
    return LocalFileOffsetStore("192.168.24.1@default", "testGroup", tmp_path)


def test_local_update_not_increase_only(local_store):
    for set_offset, expected in [(3, 3), (1, 1)]:
        local_store.update(MQ, set_offset, False)
        assert local_store.read(MQ, ReadType.MEMORY) == expected


def test_local_update_increase_only(local_store):
    local_store.update(MQ, 0, False)
    for set_offset, expected in [(3, 3), (1, 3)]:
        local_store.update(MQ, set_offset, True)
        assert local_store.read(MQ, ReadType.MEMORY) == expected


def test_local_persist(local_store):
    local_store.update(MQ, 1, False)
    assert local_store.read(MQ, ReadType.MEMORY) == 1
    local_store.persist([MQ])
    assert local_store.read(MQ, ReadType.STORE) == 1
    local_store.forget(MQ)
    assert local_store.read(MQ, ReadType.MEMORY) == -1
    assert local_store.read(MQ, ReadType.MEMORY_THEN_STORE) == 1


def test_local_persist_file_format(local_store):
    local_store.update(MQ, 7, False)
    local_store.persist([MQ])
    data = json.loads(local_store.path.read_text())
    assert data == {"offsetTable": {MQ.key_text(): 7}}


def test_local_persist_empty_list_writes_nothing(local_store):
    local_store.update(MQ, 7, False)
    local_store.persist([])
    assert not local_store.path.exists()


def test_local_new_store_loads_file(tmp_path, local_store):
    local_store.update(MQ, 42, False)
    local_store.persist([MQ])
    fresh = LocalFileOffsetStore("192.168.24.1@default", "testGroup", tmp_path)
    assert fresh.read(MQ, ReadType.MEMORY) == 42


def test_local_corrupt_file_ignored(tmp_path):
    path = Path(tmp_path, "c", "g", "offset.json")
    path.parent.mkdir(parents=True)
    path.write_text("{broken")
    store = LocalFileOffsetStore("c", "g", tmp_path)
    assert store.read(MQ, ReadType.MEMORY_THEN_STORE) == -1


def test_local_falls_back_to_backup(tmp_path):
    path = Path(tmp_path, "c", "g", "offset.json")
    path.mkdir(parents=True)
    backup = path.with_name("offset.json.bak")
    backup.write_text(json.dumps({"offsetTable": {MQ.key_text(): 9}}))
    store = LocalFileOffsetStore("c", "g", tmp_path)
    assert store.read(MQ, ReadType.MEMORY) == 9


def test_local_remove_keeps_offset(local_store):
    local_store.update(MQ, 5, False)
    local_store.remove(MQ)
    assert local_store.read(MQ, ReadType.MEMORY) == 5


@pytest.fixture
def namesrv():
    return FakeNamesrv({"default": "192.168.24.1:10911"})


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def remote_store(client, namesrv):
    return RemoteOffsetStore("testGroup", client, namesrv)


def test_remote_update_not_increase_only(remote_store):
    for set_offset, expected in [(3, 3), (1, 1)]:
        remote_store.update(MQ, set_offset, False)
        assert remote_store.read(MQ, ReadType.MEMORY) == expected


def test_remote_update_increase_only(remote_store):
    remote_store.update(MQ, 0, False)
    for set_offset, expected in [(3, 3), (1, 3)]:
        remote_store.update(MQ, set_offset, True)
        assert remote_store.read(MQ, ReadType.MEMORY) == expected


def test_remote_persist_and_read(remote_store, client):
    remote_store.persist([MQ])
    assert remote_store.read(MQ, ReadType.STORE) == 1
    remote_store.remove(MQ)
    assert remote_store.read(MQ, ReadType.MEMORY) == -1
    assert remote_store.read(MQ, ReadType.MEMORY_THEN_STORE) == 1
    assert len(client.sync_calls) == 2
    addr, request, _ = client.sync_calls[0]
    assert addr == "192.168.24.1:10911"
    assert request.code == REQ_QUERY_CONSUMER_OFFSET
    assert request.ext_fields == {"consumerGroup": "testGroup", "topic": "testTopic", "queueId": "1"}


def test_remote_remove(remote_store):
    remote_store.update(MQ, 1, False)
    assert remote_store.read(MQ, ReadType.MEMORY) == 1
    remote_store.remove(MQ)
    assert remote_store.read(MQ, ReadType.MEMORY) == -1


def test_remote_persist_commits_used_and_drops_unused(remote_store, client):
    other = MessageQueue("testTopic", "default", 2)
    remote_store.update(MQ, 10, False)
    remote_store.update(other, 20, False)
    remote_store.persist([MQ])
    assert len(client.oneway_calls) == 1
    _, request, _ = client.oneway_calls[0]
    assert request.code == REQ_UPDATE_CONSUMER_OFFSET
    assert request.ext_fields["commitOffset"] == "10"
    assert remote_store.read(other, ReadType.MEMORY) == -1
    assert remote_store.read(MQ, ReadType.MEMORY) == 10


def test_remote_read_from_memory_does_not_call_broker(remote_store, client):
    remote_store.update(MQ, 4, False)
    assert remote_store.read(MQ, ReadType.MEMORY_THEN_STORE) == 4
    assert client.sync_calls == []


def test_remote_query_not_found_gives_minus_one(namesrv):
    client = FakeClient(RemotingResponse(code=RES_QUERY_NOT_FOUND))
    store = RemoteOffsetStore("g", client, namesrv)
    assert store.read(MQ, ReadType.STORE) == -1


def test_remote_error_code_raises(namesrv):
    client = FakeClient(RemotingResponse(code=1, remark="boom"))
    store = RemoteOffsetStore("g", client, namesrv)
    with pytest.raises(BrokerResponseError) as info:
        store.read(MQ, ReadType.STORE)
    assert info.value.code == 1
    assert info.value.remark == "boom"


def test_remote_bad_offset_raises(namesrv):
    client = FakeClient(RemotingResponse(code=RES_SUCCESS, ext_fields={"offset": "x"}))
    store = RemoteOffsetStore("g", client, namesrv)
    with pytest.raises(ValueError):
        store.read(MQ, ReadType.STORE)


def test_remote_broker_not_found(client):
    namesrv = FakeNamesrv()
    store = RemoteOffsetStore("g", client, namesrv)
    with pytest.raises(BrokerNotFoundError):
        store.read(MQ, ReadType.STORE)
    assert namesrv.updated == ["testTopic"]


def test_remote_route_refresh_finds_broker(client):
    namesrv = FakeNamesrv(after_update={"default": "10.0.0.1:10911"})
    store = RemoteOffsetStore("g", client, namesrv)
    assert store.read(MQ, ReadType.STORE) == 1
    assert client.sync_calls[0][0] == "10.0.0.1:10911"


def test_remote_persist_failure_keeps_offset(client):
    store = RemoteOffsetStore("g", client, FakeNamesrv())
    store.update(MQ, 8, False)
    store.persist([MQ])
    assert client.oneway_calls == []
    assert store.read(MQ, ReadType.MEMORY) == 8