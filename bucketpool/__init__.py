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
BucketPool - bucket-based work sharing for a pool of redundant event processors.

Every host in a pool consumes the same external event streams. The routing-key
space is cut into buckets, each owned by exactly one live host; events landing
on the wrong host are forwarded to the owner. Ownership is recomputed by the
pool's leader, the smallest host id in the current table, whenever hosts
join or leave.

Example:
    >>> from bucketpool import InMemoryMessageBus, PoolCoordinator, PoolingConfig
    >>> bus = InMemoryMessageBus()
    >>> coordinator = PoolCoordinator(bus, handler, PoolingConfig(host_id="host-a"))
    >>> await coordinator.start()
"""

__version__ = "0.3.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from bucketpool.assignments import MAX_BUCKETS, BucketAssignments, string_hash
from bucketpool.bus import HttpMessageBus, InMemoryMessageBus, MessageBus
from bucketpool.config import PoolingConfig
from bucketpool.coordinator import BusinessEventHandler, PoolCoordinator
from bucketpool.exceptions import (
    AlreadyStartedError,
    AssignmentsProblem,
    ConfigurationError,
    CoordinatorStateError,
    InvalidAssignmentsError,
    InvalidMessageError,
    NotStartedError,
    PoolingError,
    SerializationError,
)
from bucketpool.messages import (
    ADMIN_CHANNEL,
    Forward,
    Heartbeat,
    Identification,
    Leader,
    Message,
    MessageType,
    Offline,
    Query,
)
from bucketpool.serializer import Serializer
from bucketpool.states import PoolStatus

__all__ = [
    # Coordinator
    "BusinessEventHandler",
    "PoolCoordinator",
    "PoolingConfig",
    "PoolStatus",
    # Assignments
    "BucketAssignments",
    "MAX_BUCKETS",
    "string_hash",
    # Messages
    "ADMIN_CHANNEL",
    "Forward",
    "Heartbeat",
    "Identification",
    "Leader",
    "Message",
    "MessageType",
    "Offline",
    "Query",
    "Serializer",
    # Transport
    "HttpMessageBus",
    "InMemoryMessageBus",
    "MessageBus",
    # Errors
    "AlreadyStartedError",
    "AssignmentsProblem",
    "ConfigurationError",
    "CoordinatorStateError",
    "InvalidAssignmentsError",
    "InvalidMessageError",
    "NotStartedError",
    "PoolingError",
    "SerializationError",
]
