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
Bucket table computation for BucketPool.

When the leader learns of a membership change it computes a new table from
the current one:

1. hosts beyond the number of buckets are left out (largest ids first)
2. every bucket whose host is still alive stays where it is
3. orphaned buckets go, one at a time, to the host with the fewest buckets
4. buckets move from the most to the least loaded host until the two
   differ by at most one

Ties are broken by host id, so any host computing a table from the same
inputs produces the same result.
"""

from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

from bucketpool.assignments import MAX_BUCKETS, BucketAssignments
from bucketpool.utils.logger import logger


class HostBucket:
    """The bucket indices held by one host while a table is being built."""

    __slots__ = ("host", "buckets")

    def __init__(self, host: str) -> None:
        self.host = host
        self.buckets: Deque[int] = deque()

    def add(self, index: int) -> None:
        self.buckets.append(index)

    def remove(self) -> int:
        return self.buckets.popleft()

    def size(self) -> int:
        return len(self.buckets)

    def sort_key(self):
        return (len(self.buckets), self.host)


def make_assignments(
    alive: Iterable[str],
    current: Optional[BucketAssignments] = None,
    num_buckets: int = MAX_BUCKETS,
) -> BucketAssignments:
    """Compute a bucket table spreading buckets across the live hosts.

    Args:
        alive: Hosts that should own buckets
        current: Table to start from, to keep bucket movement low
        num_buckets: Table size to use when there is no current table

    Returns:
        The new table; every bucket is assigned if ``alive`` is not empty

    Raises:
        ValueError: if no hosts are alive
    """
    avail = sorted(set(alive))
    if not avail:
        raise ValueError("cannot assign buckets without any hosts")

    if current is not None and current.size() > 0:
        bucket2host: List[Optional[str]] = list(current.hosts)
    else:
        bucket2host = [None] * num_buckets

    # more hosts than buckets: the extra hosts get nothing
    while len(avail) > len(bucket2host):
        host = avail.pop()
        logger.warning(f"not using extra host {host}")

    host2hb: Dict[str, HostBucket] = {host: HostBucket(host) for host in avail}

    orphans: List[int] = []
    for index, host in enumerate(bucket2host):
        hb = host2hb.get(host) if host else None
        if hb is None:
            orphans.append(index)
        else:
            hb.add(index)

    _assign_orphans(orphans, host2hb.values())

    for hb in host2hb.values():
        for index in hb.buckets:
            bucket2host[index] = hb.host

    _rebalance(host2hb.values(), bucket2host)

    return BucketAssignments(bucket2host)


def _assign_orphans(orphans: List[int], coll: Iterable[HostBucket]) -> None:
    """Give each orphaned bucket to the host with the fewest buckets."""
    hbs = list(coll)
    for index in orphans:
        smallest = min(hbs, key=HostBucket.sort_key)
        smallest.add(index)


def _rebalance(coll: Iterable[HostBucket], bucket2host: List[Optional[str]]) -> None:
    """Move buckets from larger hosts to smaller ones until balanced."""
    hbs = list(coll)
    if len(hbs) <= 1:
        return

    while True:
        smaller = min(hbs, key=HostBucket.sort_key)
        larger = max(hbs, key=HostBucket.sort_key)
        if larger.size() - smaller.size() <= 1:
            break

        index = larger.remove()
        smaller.add(index)
        bucket2host[index] = smaller.host
