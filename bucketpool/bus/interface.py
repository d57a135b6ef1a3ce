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

"""Message bus interface for the BucketPool admin channel.

The bus behaves like a single shared topic: every published message reaches
every subscriber, and each host keeps only the messages whose channel is
ADMIN_CHANNEL or its own host id. Implementations make no ordering or
exactly-once promises.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, List

from bucketpool.utils.logger import logger

# Receives the encoded text of one message
MessageListener = Callable[[str], None]


class MessageBus(ABC):
    """Abstract transport for encoded pool messages."""

    def __init__(self) -> None:
        self._listeners: List[MessageListener] = []

    async def start(self) -> None:
        """Open the transport. The default does nothing."""

    async def stop(self) -> None:
        """Close the transport. The default does nothing."""

    @abstractmethod
    async def publish(self, channel: str, message: str) -> None:
        """Publish an encoded message.

        Args:
            channel: Destination host id, or ADMIN_CHANNEL
            message: Encoded message text
        """

    def subscribe(self, listener: MessageListener) -> None:
        """Register a listener for every message on the bus."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: MessageListener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _deliver(self, message: str) -> None:
        """Hand a message to every listener, isolating listener failures."""
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as e:
                logger.error(f"Message listener failed: {e}")
