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

"""Queue of events received before any bucket assignments are known."""

from __future__ import annotations

from collections import deque
from typing import Deque, Optional

from bucketpool.messages import Forward
from bucketpool.utils.clock import Clock, now_ms
from bucketpool.utils.logger import logger


class EventQueue:
    """Bounded FIFO of Forward messages with a maximum age.

    When the queue is full the oldest event is discarded to make room.
    Events older than ``max_age_ms`` are skipped when polled.
    """

    def __init__(self, max_events: int, max_age_ms: int, clock: Clock = now_ms) -> None:
        self.max_events = max_events
        self.max_age_ms = max_age_ms
        self._clock = clock
        self._events: Deque[Forward] = deque()

    def __len__(self) -> int:
        return len(self._events)

    def is_empty(self) -> bool:
        return not self._events

    def size(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        self._events.clear()

    def add(self, event: Forward) -> None:
        """Append an event, discarding the oldest one if the queue is full."""
        if len(self._events) >= self.max_events:
            logger.warning(f"full queue - discarded event for topic {event.topic}")
            self._events.popleft()
        self._events.append(event)

    def poll(self) -> Optional[Forward]:
        """Remove and return the oldest event that has not expired.

        Returns:
            The event, or None if no unexpired event remains
        """
        tmin = self._clock() - self.max_age_ms
        while self._events:
            event = self._events.popleft()
            if not event.is_expired(tmin):
                return event
            logger.warning(f"discarded expired event {event.request_id} for topic {event.topic}")
        return None
