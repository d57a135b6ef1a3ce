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
Pooling Configuration for BucketPool.

This module provides the configuration class for a pool member, including
the routing limits and the timers that drive identification, heartbeats
and reactivation.
"""

from __future__ import annotations

import os
import uuid
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List

from bucketpool.exceptions import ConfigurationError

ENV_PREFIX = "BUCKETPOOL_"


@dataclass
class PoolingConfig:
    """Configuration for a pool member.

    Timing guidance:
    - inter_heartbeat_ms << active_heartbeat_ms, so that a couple of
      heartbeats can be lost before a neighbor is declared unresponsive
    - identification_ms must cover a round trip on the admin channel

    Attributes:
        host_id: Unique identifier for this host (generated when empty)
        topic: Name of the pool, used in log messages
        max_hops: Number of times a Forward may be re-forwarded
        forward_stale_ms: Age after which a Forward is discarded
        offline_queue_limit: Events held while no assignments are known
        offline_queue_age_ms: Age after which a held event is discarded
        offline_pub_wait_ms: Time allowed for the Offline message to go out on stop
        start_heartbeat_ms: Time allowed to see our own start-up heartbeat
        reactivate_ms: Time an inactive host waits before restarting
        identification_ms: Window for collecting Identification messages
        active_heartbeat_ms: Interval for checking heartbeats while active
        inter_heartbeat_ms: Interval between heartbeats while active
    """

    host_id: str = ""
    topic: str = "pool"

    # Routing
    max_hops: int = 5
    forward_stale_ms: int = 60000

    # Events received before the first assignments arrive
    offline_queue_limit: int = 1000
    offline_queue_age_ms: int = 60000
    offline_pub_wait_ms: int = 3000

    # Timers
    start_heartbeat_ms: int = 100000
    reactivate_ms: int = 50000
    identification_ms: int = 50000
    active_heartbeat_ms: int = 50000
    inter_heartbeat_ms: int = 15000

    def __post_init__(self) -> None:
        """Generate host_id if not provided."""
        if not self.host_id:
            self.host_id = str(uuid.uuid4())

    @classmethod
    def from_env(cls) -> "PoolingConfig":
        """Create PoolingConfig from environment variables.

        Each field maps to ``BUCKETPOOL_<FIELD>`` in upper case, for
        example ``BUCKETPOOL_MAX_HOPS`` or ``BUCKETPOOL_IDENTIFICATION_MS``.
        Unset variables keep their defaults.

        Returns:
            PoolingConfig with values from environment

        Raises:
            ConfigurationError: if a numeric variable is not an integer
        """
        values: Dict[str, Any] = {}
        errors: List[str] = []
        for f in fields(cls):
            name = ENV_PREFIX + f.name.upper()
            raw = os.environ.get(name)
            if raw is None or raw.strip() == "":
                continue
            if f.type in (str, "str"):
                values[f.name] = raw.strip()
                continue
            try:
                values[f.name] = int(raw)
            except ValueError:
                errors.append(f"{name} must be an integer, got {raw!r}")
        if errors:
            raise ConfigurationError(errors)
        return cls(**values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolingConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.host_id:
            errors.append("host_id is required")

        if not self.topic:
            errors.append("topic is required")

        if self.max_hops < 0:
            errors.append("max_hops must not be negative")

        if self.offline_queue_limit < 1:
            errors.append("offline_queue_limit must be at least 1")

        for name in (
            "forward_stale_ms",
            "offline_queue_age_ms",
            "offline_pub_wait_ms",
            "start_heartbeat_ms",
            "reactivate_ms",
            "identification_ms",
            "active_heartbeat_ms",
            "inter_heartbeat_ms",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.inter_heartbeat_ms >= self.active_heartbeat_ms:
            errors.append("inter_heartbeat_ms should be less than active_heartbeat_ms")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigurationError if the configuration is invalid."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(errors)
