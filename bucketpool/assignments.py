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
Bucket assignments for BucketPool.

The routing-key hash space is cut into a fixed number of buckets and each
bucket is owned by one host. Every host must compute the same owner for the
same key, so keys are hashed with a fixed 32-bit string hash rather than
Python's per-process randomized ``hash()``.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from bucketpool.exceptions import AssignmentsProblem, InvalidAssignmentsError
from bucketpool.utils.logger import logger

# Number of bits in the maximum number of buckets
MAX_BUCKET_BITS = 10

# Maximum number of buckets, a power of two
MAX_BUCKETS = 1 << MAX_BUCKET_BITS

# Keeps the bucket index inside the hash space
MAX_BUCKETS_MASK = MAX_BUCKETS - 1


def string_hash(key: str) -> int:
    """Hash a string to a signed 32-bit integer.

    Computes ``s[0]*31^(n-1) + ... + s[n-1]`` over UTF-16 code units with
    32-bit overflow, so the value is identical on every host and across
    interpreter runs.

    Args:
        key: String to hash

    Returns:
        Signed 32-bit hash value
    """
    data = key.encode("utf-16-be", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        h = (31 * h + ((data[i] << 8) | data[i + 1])) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


class BucketAssignments:
    """Immutable mapping of bucket index to owning host.

    A table is replaced wholesale whenever a new one is adopted; it is
    never edited in place.

    Example:
        >>> table = BucketAssignments(["host-a", "host-b"])
        >>> table.leader()
        'host-a'
        >>> table.assigned_host("request-42") in {"host-a", "host-b"}
        True
    """

    __slots__ = ("_hosts",)

    def __init__(self, hosts: Optional[Iterable[Optional[str]]] = None) -> None:
        """Initialize the assignments.

        Args:
            hosts: Host for each bucket, in bucket order. Empty or ``None``
                entries are allowed here but make the table invalid.
        """
        self._hosts: Tuple[Optional[str], ...] = tuple(hosts) if hosts is not None else ()

    @property
    def hosts(self) -> Tuple[Optional[str], ...]:
        """Host for each bucket."""
        return self._hosts

    def size(self) -> int:
        """Get the number of buckets."""
        return len(self._hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    def leader(self) -> Optional[str]:
        """Get the leader, which is the lexicographically smallest host.

        Returns:
            The leader, or None if no bucket has a host
        """
        leader = None
        for host in self._hosts:
            if host and (leader is None or host < leader):
                leader = host
        return leader

    def has_assignment(self, host: str) -> bool:
        """Check whether a host owns at least one bucket."""
        return host in self._hosts

    def all_hosts(self) -> FrozenSet[str]:
        """Get all of the hosts that own at least one bucket."""
        return frozenset(host for host in self._hosts if host)

    def bucket_of(self, key: Union[str, int]) -> Optional[int]:
        """Get the bucket index for a routing key.

        Args:
            key: Routing key, or an already-computed hash code

        Returns:
            Bucket index, or None if the table is empty
        """
        if not self._hosts:
            return None
        hash_code = key if isinstance(key, int) else string_hash(key)
        return (abs(hash_code) & MAX_BUCKETS_MASK) % len(self._hosts)

    def assigned_host(self, key: Union[str, int]) -> Optional[str]:
        """Get the host owning the bucket of a routing key.

        Args:
            key: Routing key, or an already-computed hash code

        Returns:
            The assigned host, or None if the table is empty
        """
        bucket = self.bucket_of(key)
        if bucket is None:
            logger.error("no buckets have been assigned")
            return None
        return self._hosts[bucket]

    def validate(self) -> None:
        """Verify that every bucket has been assigned to a host.

        Raises:
            InvalidAssignmentsError: if the table is empty, too large, or
                has an unassigned bucket
        """
        if not self._hosts:
            raise InvalidAssignmentsError(AssignmentsProblem.EMPTY_TABLE)

        if len(self._hosts) > MAX_BUCKETS:
            raise InvalidAssignmentsError(AssignmentsProblem.TOO_MANY_BUCKETS)

        for index, host in enumerate(self._hosts):
            if not host:
                raise InvalidAssignmentsError(
                    AssignmentsProblem.UNASSIGNED_SLOT, bucket=index
                )

    def is_valid(self) -> bool:
        """Check the table without raising."""
        try:
            self.validate()
        except InvalidAssignmentsError:
            return False
        return True

    def to_list(self) -> List[Optional[str]]:
        """Convert to a list for serialization."""
        return list(self._hosts)

    @classmethod
    def from_list(cls, data: Optional[Sequence[Optional[str]]]) -> Optional["BucketAssignments"]:
        """Create from a list, passing None through.

        Empty slots may be ``None``; anything else must be a host id.

        Raises:
            TypeError: if data is not a list of host ids
        """
        if data is None:
            return None
        if not isinstance(data, list):
            raise TypeError(f"assignments must be a list, not {type(data).__name__}")
        for host in data:
            if host is not None and not isinstance(host, str):
                raise TypeError(f"assigned host must be a string, not {type(host).__name__}")
        return cls(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BucketAssignments):
            return NotImplemented
        return self._hosts == other._hosts

    def __hash__(self) -> int:
        return hash(self._hosts)

    def __repr__(self) -> str:
        hosts = sorted(self.all_hosts())
        return f"BucketAssignments(size={len(self._hosts)}, hosts={hosts})"
