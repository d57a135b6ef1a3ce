# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for message serialization."""

import json

import pytest

from bucketpool.assignments import BucketAssignments
from bucketpool.exceptions import SerializationError
from bucketpool.messages import (
    ADMIN_CHANNEL,
    Forward,
    Heartbeat,
    Identification,
    Leader,
    Message,
    Offline,
    Query,
)
from bucketpool.serializer import Serializer


@pytest.fixture
def serializer():
    """Create a serializer."""
    return Serializer()


class TestEncode:
    """Tests for encoding messages."""

    def test_encode_leader(self, serializer):
        """Test a Leader is written with its table as a list."""
        msg = Leader(
            source="host-a",
            channel=ADMIN_CHANNEL,
            assignments=BucketAssignments(["host-a", "host-b"]),
        )

        data = json.loads(serializer.encode_msg(msg))

        assert data["type"] == "leader"
        assert data["assignments"] == ["host-a", "host-b"]

    def test_encode_unknown_variant(self, serializer):
        """Test the bare base class cannot be encoded."""
        with pytest.raises(SerializationError):
            serializer.encode_msg(Message(source="host-a", channel=ADMIN_CHANNEL))

    def test_round_trip(self, serializer):
        """Test every variant survives encode and decode."""
        messages = [
            Heartbeat(source="host-a", channel="host-b", timestamp_ms=1234),
            Identification(
                source="host-a",
                channel=ADMIN_CHANNEL,
                assignments=BucketAssignments(["host-a"]),
            ),
            Identification(source="host-b", channel=ADMIN_CHANNEL),
            Query(source="host-a", channel=ADMIN_CHANNEL),
            Offline(source="host-a", channel=ADMIN_CHANNEL),
            Leader(
                source="host-a",
                channel=ADMIN_CHANNEL,
                assignments=BucketAssignments(["host-b", "host-a"]),
            ),
            Forward(
                source="host-a",
                channel="host-b",
                num_hops=2,
                create_time_ms=99,
                protocol="UEB",
                topic="orders",
                payload="",
                request_id="request-1",
            ),
        ]

        for msg in messages:
            decoded = serializer.decode_msg(serializer.encode_msg(msg))
            assert type(decoded) is type(msg)
            assert decoded == msg


class TestDecode:
    """Tests for decoding messages."""

    def test_not_json(self, serializer):
        """Test malformed text is rejected."""
        with pytest.raises(SerializationError):
            serializer.decode_msg("{not json")

    def test_not_an_object(self, serializer):
        """Test a JSON value that is not an object is rejected."""
        with pytest.raises(SerializationError, match="not a JSON object"):
            serializer.decode_msg("[1, 2]")

    def test_missing_type(self, serializer):
        """Test a message without a type tag is rejected."""
        with pytest.raises(SerializationError, match="type"):
            serializer.decode_msg('{"source": "host-a", "channel": "_admin"}')

    def test_unknown_type(self, serializer):
        """Test a message naming an unknown variant is rejected."""
        with pytest.raises(SerializationError, match="gossip"):
            serializer.decode_msg('{"type": "gossip", "source": "host-a"}')

    def test_non_string_type(self, serializer):
        """Test a type tag that is not a string is rejected."""
        with pytest.raises(SerializationError):
            serializer.decode_msg('{"type": 7}')

    def test_decode_does_not_validate(self, serializer):
        """Test decoding leaves validation to the receiver."""
        msg = serializer.decode_msg('{"type": "query"}')

        assert isinstance(msg, Query)
        assert not msg.is_valid()

    def test_assignments_string_rejected(self, serializer):
        """Test a table sent as a string is not split into hosts."""
        text = '{"type": "leader", "source": "a", "channel": "_admin", "assignments": "abc"}'

        with pytest.raises(SerializationError, match="list"):
            serializer.decode_msg(text)

    def test_assignments_non_string_host_rejected(self, serializer):
        """Test every assigned host must be a string."""
        text = '{"type": "identification", "source": "a", "channel": "_admin", "assignments": ["a", 7]}'

        with pytest.raises(SerializationError, match="string"):
            serializer.decode_msg(text)

    def test_assignments_null_slot_decodes(self, serializer):
        """Test an empty slot survives decoding and fails validation later."""
        msg = serializer.decode_msg(
            '{"type": "leader", "source": "a", "channel": "_admin", "assignments": ["a", null]}'
        )

        assert msg.assignments.hosts == ("a", None)
        assert not msg.is_valid()

    @pytest.mark.parametrize("field,value", [
        ("payload", '{"x": 1}'),
        ("num_hops", '"1"'),
        ("num_hops", "true"),
        ("create_time_ms", '"yesterday"'),
        ("request_id", "42"),
    ])
    def test_forward_wrong_field_types_invalid(self, serializer, field, value):
        """Test a decoded Forward with a mistyped field fails validation."""
        fields = {
            "source": '"a"',
            "channel": '"b"',
            "num_hops": "0",
            "create_time_ms": "1000",
            "protocol": '"UEB"',
            "topic": '"orders"',
            "payload": '"{}"',
            "request_id": '"request-1"',
        }
        fields[field] = value
        body = ", ".join(f'"{k}": {v}' for k, v in fields.items())

        msg = serializer.decode_msg('{"type": "forward", ' + body + "}")

        assert isinstance(msg, Forward)
        assert not msg.is_valid()

    def test_decode_dict(self, serializer):
        """Test decoding an already-parsed dictionary."""
        msg = serializer.decode_dict(
            {"type": "heartbeat", "source": "host-a", "channel": "host-a", "timestamp_ms": 3}
        )

        assert msg == Heartbeat(source="host-a", channel="host-a", timestamp_ms=3)
