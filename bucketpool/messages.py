# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Admin channel messages for BucketPool.

This module defines the messages pool members exchange:
- Heartbeat: proves a host's channel is working
- Identification: announces a host and its last-known assignments
- Query: asks every host to identify itself again
- Offline: announces that a host is leaving the pool
- Leader: distributes a new bucket table
- Forward: carries a business event to the host owning its bucket

Every message shares an envelope of ``source`` (sending host) and
``channel`` (a host id, or ADMIN_CHANNEL for broadcasts). All messages are
serializable to JSON; the ``type`` field selects the variant.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Type

from bucketpool.assignments import BucketAssignments
from bucketpool.exceptions import InvalidMessageError
from bucketpool.utils.clock import now_ms

# Channel read by every host
ADMIN_CHANNEL = "_admin"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class MessageType(str, Enum):
    """Types of admin channel messages."""
    HEARTBEAT = "heartbeat"
    IDENTIFICATION = "identification"
    QUERY = "query"
    OFFLINE = "offline"
    LEADER = "leader"
    FORWARD = "forward"


@dataclass
class Message:
    """Base class for all pool messages.

    Attributes:
        source: Host that created the message
        channel: Destination host, or ADMIN_CHANNEL
    """
    message_type: ClassVar[MessageType]

    source: str = ""
    channel: str = ""

    def check_validity(self) -> None:
        """Verify the envelope.

        Raises:
            InvalidMessageError: if source or channel is missing or is not
                a string
        """
        if not self.source:
            raise InvalidMessageError("missing message source")
        if not isinstance(self.source, str):
            raise InvalidMessageError("message source must be a string")
        if not self.channel:
            raise InvalidMessageError("missing message channel")
        if not isinstance(self.channel, str):
            raise InvalidMessageError("message channel must be a string")

    def is_valid(self) -> bool:
        """Check validity without raising."""
        try:
            self.check_validity()
        except InvalidMessageError:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "type": self.message_type.value,
            "source": self.source,
            "channel": self.channel,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Deserialize from dictionary."""
        return cls(
            source=data.get("source", ""),
            channel=data.get("channel", ""),
        )


@dataclass
class Heartbeat(Message):
    """Sent by a host to itself, and to its ring successor while active.

    Attributes:
        timestamp_ms: Identifies the heartbeat, so a starting host can tell
            its own from an old one
    """
    message_type: ClassVar[MessageType] = MessageType.HEARTBEAT

    timestamp_ms: int = 0

    def check_validity(self) -> None:
        super().check_validity()
        if not _is_int(self.timestamp_ms):
            raise InvalidMessageError("heartbeat timestamp must be an integer")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["timestamp_ms"] = self.timestamp_ms
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Heartbeat":
        return cls(
            source=data.get("source", ""),
            channel=data.get("channel", ""),
            timestamp_ms=data.get("timestamp_ms", 0),
        )


@dataclass
class MessageWithAssignments(Message):
    """A message that carries a bucket table.

    Attributes:
        assignments: The table, or None if the sender has none yet
    """

    assignments: Optional[BucketAssignments] = None

    def check_validity(self) -> None:
        super().check_validity()
        if self.assignments is not None:
            self.assignments.validate()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["assignments"] = (
            self.assignments.to_list() if self.assignments is not None else None
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageWithAssignments":
        return cls(
            source=data.get("source", ""),
            channel=data.get("channel", ""),
            assignments=BucketAssignments.from_list(data.get("assignments")),
        )


@dataclass
class Identification(MessageWithAssignments):
    """Announces a host and the last table it knows about."""
    message_type: ClassVar[MessageType] = MessageType.IDENTIFICATION


@dataclass
class Leader(MessageWithAssignments):
    """Distributes a new bucket table.

    Only the elected leader of a table may send it: the source must own a
    bucket in the table and must be the table's smallest host.
    """
    message_type: ClassVar[MessageType] = MessageType.LEADER

    def check_validity(self) -> None:
        super().check_validity()

        if self.assignments is None:
            raise InvalidMessageError("missing message bucket assignments")

        if not self.assignments.has_assignment(self.source):
            raise InvalidMessageError("leader is missing from message bucket assignments")

        leader = self.assignments.leader()
        if leader != self.source:
            raise InvalidMessageError(
                f"leader {self.source} does not match bucket assignments leader {leader}"
            )


@dataclass
class Query(Message):
    """Asks every host to send an Identification."""
    message_type: ClassVar[MessageType] = MessageType.QUERY


@dataclass
class Offline(Message):
    """Announces that the source is leaving the pool."""
    message_type: ClassVar[MessageType] = MessageType.OFFLINE


@dataclass
class Forward(Message):
    """A business event on its way to the host that owns its bucket.

    Attributes:
        num_hops: Number of times the event has been re-forwarded
        create_time_ms: When the event was first received, epoch millis
        protocol: Transport the event arrived on (e.g. "UEB", "NOOP")
        topic: Topic the event arrived on
        payload: Raw event text, possibly empty
        request_id: Routing key of the event
    """
    message_type: ClassVar[MessageType] = MessageType.FORWARD

    num_hops: int = 0
    create_time_ms: int = 0
    protocol: str = ""
    topic: str = ""
    payload: Optional[str] = ""
    request_id: str = ""

    @classmethod
    def create(
        cls,
        source: str,
        protocol: str,
        topic: str,
        payload: str,
        request_id: str,
        create_time_ms: Optional[int] = None,
    ) -> "Forward":
        """Create a validated Forward for a newly received event.

        The channel is set to the source; it is replaced with the target
        host when the event is published.

        Raises:
            InvalidMessageError: if any field is missing
        """
        msg = cls(
            source=source,
            channel=source,
            num_hops=0,
            create_time_ms=create_time_ms if create_time_ms is not None else now_ms(),
            protocol=protocol,
            topic=topic,
            payload=payload,
            request_id=request_id,
        )
        msg.check_validity()
        return msg

    def bump_num_hops(self) -> None:
        """Record one more re-forward."""
        self.num_hops += 1

    def is_expired(self, min_create_time_ms: int) -> bool:
        """Check whether the event was created before a threshold.

        Args:
            min_create_time_ms: Oldest acceptable creation time

        Returns:
            True if the event is older than the threshold
        """
        return self.create_time_ms < min_create_time_ms

    def check_validity(self) -> None:
        super().check_validity()

        if not self.protocol or not isinstance(self.protocol, str):
            raise InvalidMessageError("missing message protocol")
        if not self.topic or not isinstance(self.topic, str):
            raise InvalidMessageError("missing message topic")
        # an empty payload is allowed
        if self.payload is None:
            raise InvalidMessageError("missing message payload")
        if not isinstance(self.payload, str):
            raise InvalidMessageError("message payload must be a string")
        if not self.request_id or not isinstance(self.request_id, str):
            raise InvalidMessageError("missing message requestId")
        if not _is_int(self.num_hops) or self.num_hops < 0:
            raise InvalidMessageError("invalid message hop count")
        if not _is_int(self.create_time_ms):
            raise InvalidMessageError("invalid message creation time")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "num_hops": self.num_hops,
            "create_time_ms": self.create_time_ms,
            "protocol": self.protocol,
            "topic": self.topic,
            "payload": self.payload,
            "request_id": self.request_id,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Forward":
        return cls(
            source=data.get("source", ""),
            channel=data.get("channel", ""),
            num_hops=data.get("num_hops", 0),
            create_time_ms=data.get("create_time_ms", 0),
            protocol=data.get("protocol", ""),
            topic=data.get("topic", ""),
            payload=data.get("payload"),
            request_id=data.get("request_id", ""),
        )


MESSAGE_CLASSES: Dict[MessageType, Type[Message]] = {
    MessageType.HEARTBEAT: Heartbeat,
    MessageType.IDENTIFICATION: Identification,
    MessageType.QUERY: Query,
    MessageType.OFFLINE: Offline,
    MessageType.LEADER: Leader,
    MessageType.FORWARD: Forward,
}


def parse_message(data: Dict[str, Any]) -> Message:
    """Parse a dictionary into the appropriate message type.

    Raises:
        ValueError: if the type tag is missing or unknown
    """
    msg_type = MessageType(data.get("type", ""))
    return MESSAGE_CLASSES[msg_type].from_dict(data)
