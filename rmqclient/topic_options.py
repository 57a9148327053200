"""Settings for creating and deleting topics through the admin API."""

from __future__ import annotations

from dataclasses import dataclass, field


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass
class TopicConfigCreate:
    """Parameters of a create-topic request, with the broker's usual defaults."""

    topic: str = ""
    broker_addr: str = ""
    default_topic: str = "defaultTopic"
    read_queue_nums: int = 8
    write_queue_nums: int = 8
    perm: int = 6
    topic_filter_type: str = "SINGLE_TAG"
    topic_sys_flag: int = 0
    order: bool = False

    def to_header(self) -> dict[str, str]:
        """Return the request header fields as they are sent to the broker."""
        return {
            "topic": self.topic,
            "defaultTopic": self.default_topic,
            "readQueueNums": str(self.read_queue_nums),
            "writeQueueNums": str(self.write_queue_nums),
            "perm": str(self.perm),
            "topicFilterType": self.topic_filter_type,
            "topicSysFlag": str(self.topic_sys_flag),
            "order": _flag(self.order),
        }


@dataclass
class TopicConfigDelete:
    """Parameters of a delete-topic request.

    An empty ``broker_addr`` or ``name_srv_addr`` means the addresses are
    looked up from the topic's route.
    """

    topic: str = ""
    cluster_name: str = ""
    name_srv_addr: list[str] = field(default_factory=list)
    broker_addr: str = ""