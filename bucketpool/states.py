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
Coordinator states for BucketPool.

Each state object handles the admin messages that arrive while it is
current and returns the next state, or None to stay put. A state owns the
timers it schedules; they are cancelled when the coordinator moves on.

State flow:
    Idle -> Start -> Query -> Active
                       ^        |
                       +--------+   (Query received, neighbor lost)
    Query/Start -> Inactive -> Start   (channel failure, no assignment)
    any -> Idle                        (stop)

Leadership is not elected separately: the leader of a table is its smallest
host, and only that host computes and distributes new tables.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set

from bucketpool.assignments import BucketAssignments
from bucketpool.exceptions import InvalidAssignmentsError
from bucketpool.messages import (
    ADMIN_CHANNEL,
    Heartbeat,
    Identification,
    Leader,
    Message,
    MessageType,
    Offline,
    Query,
)
from bucketpool.rebalance import make_assignments
from bucketpool.utils.logger import logger

if TYPE_CHECKING:
    from bucketpool.coordinator import PoolCoordinator, StateTimer

StateTimerTask = Callable[[], Optional["State"]]


class PoolStatus(str, Enum):
    """Externally visible status of a pool member."""
    IDLE = "idle"                  # never started
    INITIALIZING = "initializing"  # checking that our own channel works
    IDENTIFYING = "identifying"    # collecting peers, no assignments yet
    REBALANCING = "rebalancing"    # collecting peers, using a stale table
    ACTIVE = "active"              # processing with a usable table
    INACTIVE = "inactive"          # no assignment, waiting to restart
    OFFLINE = "offline"            # stopped


class State:
    """Base class for coordinator states.

    The default handlers ignore every message.
    """

    status: PoolStatus = PoolStatus.IDLE

    def __init__(self, mgr: "PoolCoordinator") -> None:
        self.mgr = mgr
        self._timers: List["StateTimer"] = []

    @property
    def host(self) -> str:
        return self.mgr.host

    @property
    def topic(self) -> str:
        return self.mgr.topic

    def accepts(self, channel: str) -> bool:
        """Check whether messages on a channel should reach this state."""
        return channel == ADMIN_CHANNEL or channel == self.host

    def start(self) -> None:
        """Called once the state becomes current."""

    def cancel_timers(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()

    def process(self, msg: Message) -> Optional["State"]:
        """Dispatch an admin message to its handler.

        Returns:
            The next state, or None to remain in this one
        """
        handler = self._handlers().get(msg.message_type)
        if handler is None:
            logger.warning(f"no processor for {msg.message_type.value} message on topic {self.topic}")
            return None
        return handler(msg)

    def _handlers(self) -> Dict[MessageType, Callable[[Any], Optional["State"]]]:
        return {
            MessageType.HEARTBEAT: self.process_heartbeat,
            MessageType.IDENTIFICATION: self.process_identification,
            MessageType.LEADER: self.process_leader,
            MessageType.OFFLINE: self.process_offline,
            MessageType.QUERY: self.process_query,
        }

    def process_heartbeat(self, msg: Heartbeat) -> Optional["State"]:
        return None

    def process_identification(self, msg: Identification) -> Optional["State"]:
        return None

    def process_leader(self, msg: Leader) -> Optional["State"]:
        return None

    def process_offline(self, msg: Offline) -> Optional["State"]:
        return None

    def process_query(self, msg: Query) -> Optional["State"]:
        return None

    def is_valid(self, msg: Leader) -> bool:
        """Check that a Leader message may replace our table.

        Leader messages from this host are ignored; the table was adopted
        when it was published.
        """
        if msg.source == self.host:
            return False
        if not msg.is_valid():
            logger.warning(f"rejected Leader message from {msg.source} on topic {self.topic}")
            return False
        return True

    def schedule(self, delay_ms: int, task: StateTimerTask) -> None:
        self._timers.append(self.mgr.schedule(delay_ms, task))

    def schedule_with_fixed_delay(self, initial_delay_ms: int, delay_ms: int, task: StateTimerTask) -> None:
        self._timers.append(self.mgr.schedule_with_fixed_delay(initial_delay_ms, delay_ms, task))

    def start_distributing(self, assignments: Optional[BucketAssignments]) -> None:
        if assignments is not None:
            self.mgr.start_distributing(assignments)

    def internal_topic_failed(self) -> Optional["State"]:
        """Give up on a channel that does not deliver our own messages."""
        logger.error(f"communication failed for topic {self.topic}")
        self.mgr.publish_admin(self.make_offline())
        return self.mgr.go_inactive()

    def make_heartbeat(self, timestamp_ms: int) -> Heartbeat:
        return Heartbeat(source=self.host, timestamp_ms=timestamp_ms)

    def make_identification(self) -> Identification:
        return Identification(source=self.host, assignments=self.mgr.current_assignments())

    def make_offline(self) -> Offline:
        return Offline(source=self.host)

    def make_query(self) -> Query:
        return Query(source=self.host)


class IdleState(State):
    """Not participating in the pool; everything is ignored."""

    def __init__(self, mgr: "PoolCoordinator", stopped: bool = False) -> None:
        super().__init__(mgr)
        self.status = PoolStatus.OFFLINE if stopped else PoolStatus.IDLE

    def accepts(self, channel: str) -> bool:
        return False


class StartState(State):
    """Verifies that the admin channel delivers our own messages.

    A heartbeat is sent to our own channel. Once it comes back, a Query is
    published so that every host identifies itself.
    """

    status = PoolStatus.INITIALIZING

    def __init__(self, mgr: "PoolCoordinator") -> None:
        super().__init__(mgr)
        self.hb_timestamp_ms = mgr.now_ms()

    def start(self) -> None:
        heartbeat = self.make_heartbeat(self.hb_timestamp_ms)
        self.mgr.publish(self.host, heartbeat)

        # resend in case the first one was published before the channel was ready
        interval = self.mgr.config.inter_heartbeat_ms
        self.schedule_with_fixed_delay(
            interval, interval, lambda: self._resend(heartbeat)
        )

        self.schedule(self.mgr.config.start_heartbeat_ms, self._missed_heartbeat)

    def _resend(self, heartbeat: Heartbeat) -> Optional[State]:
        self.mgr.publish(self.host, heartbeat)
        return None

    def _missed_heartbeat(self) -> Optional[State]:
        logger.error(f"missed heartbeat on topic {self.topic}")
        return self.internal_topic_failed()

    def process_heartbeat(self, msg: Heartbeat) -> Optional[State]:
        if msg.timestamp_ms == self.hb_timestamp_ms and msg.source == self.host:
            logger.info(f"saw our own heartbeat on topic {self.topic}")
            self.mgr.publish_admin(self.make_query())
            return self.mgr.go_query()

        logger.info(f"ignored old heartbeat message from {msg.source} on topic {self.topic}")
        return None


class ProcessingState(State):
    """A state that takes part in identification and table computation.

    Attributes:
        leader: The host this state currently considers the leader
    """

    def __init__(self, mgr: "PoolCoordinator", leader: str) -> None:
        super().__init__(mgr)
        if not leader:
            raise ValueError("null leader")
        self.leader = leader

    def is_leader(self) -> bool:
        return self.host == self.leader

    def set_leader(self, leader: str) -> None:
        if not leader:
            raise ValueError("null leader")
        self.leader = leader

    def process_query(self, msg: Query) -> Optional[State]:
        logger.info(f"received Query message on topic {self.topic}")
        self.mgr.publish_admin(self.make_identification())
        return self.mgr.go_query()

    def go_active(self, assignments: BucketAssignments) -> Optional[State]:
        self.start_distributing(assignments)
        return self.mgr.go_active()

    def become_leader(self, alive: Iterable[str]) -> Optional[State]:
        """Compute and distribute a table over the given hosts.

        Returns:
            The Active state, or None if the computed table was invalid
        """
        hosts = sorted(set(alive))
        if not hosts or hosts[0] != self.host:
            raise ValueError(f"{self.host} cannot replace {hosts[0] if hosts else None}")

        assignments = make_assignments(hosts, self.mgr.current_assignments())
        try:
            assignments.validate()
        except InvalidAssignmentsError as e:
            logger.error(f"computed invalid assignments for topic {self.topic}: {e}")
            return None

        msg = Leader(source=self.host, assignments=assignments)
        logger.info(
            f"{len(assignments.all_hosts())}/{len(hosts)} hosts have an assignment "
            f"on topic {self.topic}"
        )
        self.mgr.publish_admin(msg)
        return self.go_active(assignments)


class QueryState(ProcessingState):
    """Collects Identification messages to learn which hosts are alive.

    When the identification window closes the smallest live host becomes
    the leader and distributes a table over all live hosts.
    """

    def __init__(self, mgr: "PoolCoordinator") -> None:
        # this host is the leader, until a better candidate identifies itself
        super().__init__(mgr, mgr.host)
        self.alive: Set[str] = {mgr.host}
        self.saw_self_ident = False

    @property
    def status(self) -> PoolStatus:  # type: ignore[override]
        if self.mgr.current_assignments() is None:
            return PoolStatus.IDENTIFYING
        return PoolStatus.REBALANCING

    def start(self) -> None:
        self.schedule(self.mgr.config.identification_ms, self._identification_done)

    def _identification_done(self) -> Optional[State]:
        if not self.saw_self_ident:
            # didn't see our identification
            return self.internal_topic_failed()

        if self.is_leader():
            return self.become_leader(self.alive)

        if self.has_assignment():
            # not the leader, but may keep using the assignments we have
            return self.mgr.go_active()

        return self.mgr.go_inactive()

    def has_assignment(self) -> bool:
        assignments = self.mgr.current_assignments()
        return assignments is not None and assignments.has_assignment(self.host)

    def process_identification(self, msg: Identification) -> Optional[State]:
        if msg.source == self.host:
            self.saw_self_ident = True
        else:
            self._record_info(msg.source, msg.assignments)
        return None

    def process_leader(self, msg: Leader) -> Optional[State]:
        if not self.is_valid(msg):
            return None

        self.start_distributing(msg.assignments)

        # go active if this leader is the same or better than our candidate
        if msg.source <= self.leader:
            return self.mgr.go_active()

        # a better candidate is alive; keep collecting so it can take over
        self._record_info(msg.source, None)
        return None

    def process_offline(self, msg: Offline) -> Optional[State]:
        if msg.source and msg.source != self.host:
            self.alive.discard(msg.source)
            self.set_leader(min(self.alive))
        return None

    def _record_info(self, source: str, assignments: Optional[BucketAssignments]) -> None:
        if source:
            self.alive.add(source)
            self.set_leader(min(self.alive))

        if assignments is None or assignments.leader() is None:
            return

        current = self.mgr.current_assignments()
        if current is None:
            self.start_distributing(assignments)
            return

        # prefer the table with the better leader
        current_leader = current.leader()
        if current_leader is None or assignments.leader() < current_leader:
            self.start_distributing(assignments)


class ActiveState(ProcessingState):
    """Processing events with a usable table.

    The hosts of the table form a ring. Each host sends heartbeats to itself
    and to its successor, and watches for its own and its predecessor's.
    A silent predecessor triggers a new round of identification.
    """

    status = PoolStatus.ACTIVE

    def __init__(self, mgr: "PoolCoordinator") -> None:
        assignments = mgr.current_assignments()
        if assignments is None or assignments.leader() is None:
            raise ValueError("cannot be active without assignments")

        super().__init__(mgr, assignments.leader())
        self.assigned: List[str] = sorted(assignments.all_hosts())
        self.succ_host: Optional[str] = None
        self.pred_host = ""
        self.my_heartbeat_seen = False
        self.pred_heartbeat_seen = False
        self._detm_neighbors()

    def _detm_neighbors(self) -> None:
        if len(self.assigned) < 2 or self.host not in self.assigned:
            logger.info(f"this host has no neighbors on topic {self.topic}")
            self.succ_host = None
            self.pred_host = ""
            return

        index = self.assigned.index(self.host)
        self.succ_host = self.assigned[(index + 1) % len(self.assigned)]
        self.pred_host = self.assigned[index - 1]
        logger.info(
            f"this host's successor is {self.succ_host} and predecessor is "
            f"{self.pred_host} on topic {self.topic}"
        )

    def start(self) -> None:
        self._add_timers()
        self._gen_heartbeat()

    def _add_timers(self) -> None:
        gen_ms = self.mgr.config.inter_heartbeat_ms
        self.schedule_with_fixed_delay(gen_ms, gen_ms, self._gen_heartbeat)

        wait_ms = self.mgr.config.active_heartbeat_ms
        self.schedule_with_fixed_delay(wait_ms, wait_ms, self._check_my_heartbeat)

        if self.pred_host:
            self.schedule_with_fixed_delay(wait_ms, wait_ms, self._check_pred_heartbeat)

    def _gen_heartbeat(self) -> Optional[State]:
        msg = self.make_heartbeat(self.mgr.now_ms())
        self.mgr.publish(self.host, msg)
        if self.succ_host is not None:
            self.mgr.publish(self.succ_host, self.make_heartbeat(msg.timestamp_ms))
        return None

    def _check_my_heartbeat(self) -> Optional[State]:
        if self.my_heartbeat_seen:
            self.my_heartbeat_seen = False
            return None

        logger.error(f"missed my heartbeat on topic {self.topic}")
        return self.internal_topic_failed()

    def _check_pred_heartbeat(self) -> Optional[State]:
        if self.pred_heartbeat_seen:
            self.pred_heartbeat_seen = False
            return None

        logger.warning(f"missed predecessor's heartbeat on topic {self.topic}")
        self.mgr.publish_admin(self.make_query())
        return self.mgr.go_query()

    def process_heartbeat(self, msg: Heartbeat) -> Optional[State]:
        if msg.source == self.host:
            logger.debug(f"saw my heartbeat on topic {self.topic}")
            self.my_heartbeat_seen = True
        elif msg.source == self.pred_host:
            logger.debug(f"saw heartbeat from {msg.source} on topic {self.topic}")
            self.pred_heartbeat_seen = True
        else:
            logger.info(f"ignored heartbeat message from {msg.source} on topic {self.topic}")
        return None

    def process_identification(self, msg: Identification) -> Optional[State]:
        src = msg.source
        if not self.is_leader() or src == self.host or src in self.assigned:
            return None

        # a host we have not assigned anything to
        if src < self.host:
            logger.info(f"better leader candidate {src} identified on topic {self.topic}")
            self.mgr.publish_admin(self.make_query())
            return self.mgr.go_query()

        logger.info(f"new host {src} identified on topic {self.topic}")
        return self.become_leader(self.assigned + [src])

    def process_leader(self, msg: Leader) -> Optional[State]:
        if not self.is_valid(msg):
            return None

        if msg.assignments == self.mgr.current_assignments():
            # duplicate delivery
            return None

        self.start_distributing(msg.assignments)

        if self.host < msg.source:
            # our host would be a better leader - find out what's up
            logger.warning(f"unexpected Leader message from {msg.source} on topic {self.topic}")
            self.mgr.publish_admin(self.make_query())
            return self.mgr.go_query()

        logger.info(f"have a new leader {msg.source} on topic {self.topic}")
        return self.mgr.go_active()

    def process_offline(self, msg: Offline) -> Optional[State]:
        src = msg.source

        if src not in self.assigned:
            # no buckets to take over
            logger.info(f"ignore Offline message from unassigned source {src} on topic {self.topic}")
            return None

        if self.is_leader() or (src == self.pred_host and src == self.assigned[0]):
            # we are the leader, or the leader left and we are its successor
            logger.info(f"Offline message from source {src} on topic {self.topic}")
            remaining = [host for host in self.assigned if host != src]
            return self.become_leader(remaining)

        logger.info(f"ignore Offline message from source {src} on topic {self.topic}")
        return None


class InactiveState(State):
    """No assignment for this host; waits, then starts over."""

    status = PoolStatus.INACTIVE

    def start(self) -> None:
        self.schedule(self.mgr.config.reactivate_ms, self.mgr.go_start)

    def process_leader(self, msg: Leader) -> Optional[State]:
        if not self.is_valid(msg):
            return None

        self.start_distributing(msg.assignments)
        if msg.assignments.has_assignment(self.host):
            return self.mgr.go_active()
        return None

    def process_query(self, msg: Query) -> Optional[State]:
        self.mgr.publish_admin(self.make_identification())
        return self.mgr.go_query()
