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
Custom exceptions for BucketPool.

Protocol-level failures (bad messages, rejected Leader claims, invalid
tables) are raised inside the package and handled locally by the
coordinator. Only lifecycle misuse and bad configuration reach callers.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional


class PoolingError(Exception):
    """Base exception for pooling errors."""

    def __init__(self, message: str) -> None:
        """Initialize the pooling error.

        Args:
            message: Error message
        """
        super().__init__(message)
        self.message = message


class InvalidMessageError(PoolingError):
    """Raised when a message fails envelope or variant validation."""


class AssignmentsProblem(str, Enum):
    """Reasons a bucket table can be rejected."""

    EMPTY_TABLE = "empty_table"
    TOO_MANY_BUCKETS = "too_many_buckets"
    UNASSIGNED_SLOT = "unassigned_slot"


class InvalidAssignmentsError(InvalidMessageError):
    """Raised when a bucket table is not fit to be adopted or broadcast."""

    def __init__(
        self,
        reason: AssignmentsProblem,
        message: Optional[str] = None,
        bucket: Optional[int] = None,
    ) -> None:
        """Initialize the assignments error.

        Args:
            reason: Which invariant the table violates
            message: Optional custom error message
            bucket: Index of the offending slot, for UNASSIGNED_SLOT
        """
        if message is None:
            if reason == AssignmentsProblem.UNASSIGNED_SLOT:
                message = f"bucket {bucket} has no assignment"
            elif reason == AssignmentsProblem.TOO_MANY_BUCKETS:
                message = "too many buckets in assignments"
            else:
                message = "missing hosts in assignments"
        super().__init__(message)
        self.reason = reason
        self.bucket = bucket


class SerializationError(PoolingError):
    """Raised when a message cannot be encoded or decoded."""


class CoordinatorStateError(PoolingError):
    """Raised when the coordinator is used outside its lifecycle."""


class AlreadyStartedError(CoordinatorStateError):
    """Raised by start() on a coordinator that is already running."""

    def __init__(self, host: Optional[str] = None) -> None:
        message = "Coordinator already started"
        if host:
            message = f"{message} for host {host}"
        super().__init__(message)
        self.host = host


class NotStartedError(CoordinatorStateError):
    """Raised when events are submitted to a coordinator that is not running."""

    def __init__(self, message: str = "Coordinator has not been started") -> None:
        super().__init__(message)


class ConfigurationError(PoolingError):
    """Raised when pooling configuration is invalid."""

    def __init__(self, errors: List[str]) -> None:
        """Initialize the configuration error.

        Args:
            errors: Individual validation failures
        """
        super().__init__("Invalid pooling configuration: " + "; ".join(errors))
        self.errors = list(errors)
