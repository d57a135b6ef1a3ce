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
Wire serialization for BucketPool messages.

Messages travel as JSON objects; the ``type`` field names the variant.
Decoding is the one place where an unknown variant can appear, so it is
reported there as a SerializationError rather than surfacing later.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from bucketpool.exceptions import SerializationError
from bucketpool.messages import MESSAGE_CLASSES, Message, MessageType, parse_message

TYPE_FIELD = "type"


class Serializer:
    """Encodes and decodes admin channel messages.

    Example:
        >>> from bucketpool.messages import ADMIN_CHANNEL, Query
        >>> serializer = Serializer()
        >>> text = serializer.encode_msg(Query(source="host-a", channel=ADMIN_CHANNEL))
        >>> serializer.decode_msg(text)
        Query(source='host-a', channel='_admin')
    """

    def encode_msg(self, msg: Message) -> str:
        """Serialize a message to JSON text.

        Raises:
            SerializationError: if the message is not a known variant
        """
        if type(msg) not in MESSAGE_CLASSES.values():
            raise SerializationError(f"cannot serialize {type(msg).__name__}")
        try:
            return json.dumps(msg.to_dict())
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot serialize {type(msg).__name__}: {e}") from e

    def decode_msg(self, text: str) -> Message:
        """Deserialize JSON text into the message variant it names.

        Raises:
            SerializationError: if the text is not JSON, is not an object,
                or does not name a known variant
        """
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot decode message: {e}") from e

        if not isinstance(data, dict):
            raise SerializationError("cannot decode message: not a JSON object")

        return self.decode_dict(data)

    def decode_dict(self, data: Dict[str, Any]) -> Message:
        """Build a message variant from an already-parsed dictionary."""
        type_name = data.get(TYPE_FIELD)
        if type_name is None:
            raise SerializationError(
                f"cannot decode message because it does not contain a field named {TYPE_FIELD}"
            )

        if not isinstance(type_name, str) or type_name not in {t.value for t in MessageType}:
            raise SerializationError(f"cannot decode message of type {type_name!r}")

        try:
            return parse_message(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise SerializationError(f"cannot decode {type_name} message: {e}") from e
