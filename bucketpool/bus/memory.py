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

"""In-process message bus, for pools whose hosts share one event loop."""

from __future__ import annotations

from bucketpool.bus.interface import MessageBus


class InMemoryMessageBus(MessageBus):
    """Delivers every published message to every subscriber.

    Delivery is synchronous, in publish order. Setting ``paused`` drops
    published messages, which simulates a failed topic.

    Example:
        >>> bus = InMemoryMessageBus()
        >>> host_a = PoolCoordinator(bus, handler, PoolingConfig(host_id="a"))
        >>> host_b = PoolCoordinator(bus, handler, PoolingConfig(host_id="b"))
    """

    def __init__(self) -> None:
        super().__init__()
        self.paused = False
        self.published_count = 0

    async def publish(self, channel: str, message: str) -> None:
        if self.paused:
            return
        self.published_count += 1
        self._deliver(message)
