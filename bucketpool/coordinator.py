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
Pool Coordinator for BucketPool.

The coordinator is one host's member of the pool. It handles:
- Membership, via Heartbeat/Identification/Query/Offline messages
- Adopting and, when this host is the leader, distributing bucket tables
- Routing external events to the host that owns their bucket
- Validating forwarded events against hop and age limits

Example:
    >>> bus = InMemoryMessageBus()
    >>> coordinator = PoolCoordinator(bus, handler, PoolingConfig(host_id="host-a"))
    >>> await coordinator.start()
    >>> await coordinator.submit_external_event("UEB", "orders", payload, "request-1")
    >>> await coordinator.stop()
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import threading
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Union

from bucketpool.assignments import BucketAssignments
from bucketpool.bus.interface import MessageBus
from bucketpool.config import PoolingConfig
from bucketpool.event_queue import EventQueue
from bucketpool.exceptions import (
    AlreadyStartedError,
    InvalidMessageError,
    NotStartedError,
    SerializationError,
)
from bucketpool.messages import ADMIN_CHANNEL, Forward, Message, Offline
from bucketpool.serializer import Serializer
from bucketpool.states import (
    ActiveState,
    IdleState,
    InactiveState,
    PoolStatus,
    QueryState,
    StartState,
    State,
    StateTimerTask,
)
from bucketpool.utils.clock import Clock, now_ms
from bucketpool.utils.logger import logger


class BusinessEventHandler(Protocol):
    """Processes events owned by this host."""

    def handle(
        self, request_id: str, protocol: str, topic: str, payload: str
    ) -> Union[None, Awaitable[None]]:
        ...


EventCallback = Callable[[str, str, str, str], Union[None, Awaitable[None]]]


class StateTimer:
    """A cancellable one-shot or fixed-delay timer on the event loop."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        delay_ms: int,
        callback: Callable[[], None],
        interval_ms: Optional[int] = None,
    ) -> None:
        self._loop = loop
        self._callback = callback
        self._interval_ms = interval_ms
        self._cancelled = False
        self._handle = loop.call_later(delay_ms / 1000, self._run)

    def _run(self) -> None:
        if self._cancelled:
            return
        if self._interval_ms is not None:
            self._handle = self._loop.call_later(self._interval_ms / 1000, self._run)
        self._callback()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class PoolCoordinator:
    """One host's member of a bucket pool.

    Three activities touch shared state: the listener task draining admin
    messages, timers fired by the event loop, and callers submitting
    external events. State transitions never await, so they are atomic on
    the event loop. The bucket table is swapped whole under a lock and read
    without waiting on state processing.

    Attributes:
        bus: Transport for the admin channel
        config: Pooling configuration
        host: This host's id
    """

    def __init__(
        self,
        bus: MessageBus,
        handler: Union[BusinessEventHandler, EventCallback],
        config: Optional[PoolingConfig] = None,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize the coordinator.

        Args:
            bus: Transport for the admin channel
            handler: Receives events owned by this host, either an object
                with a ``handle`` method or a callable; may be async
            config: Pooling configuration
            clock: Source of epoch milliseconds
        """
        self.bus = bus
        self.config = config or PoolingConfig()
        self.host = self.config.host_id
        self._handle: EventCallback = getattr(handler, "handle", handler)
        self._clock = clock
        self._serializer = Serializer()

        self._assignments: Optional[BucketAssignments] = None
        self._assignments_lock = threading.Lock()

        self._current: State = IdleState(self)
        self._event_queue = EventQueue(
            self.config.offline_queue_limit,
            self.config.offline_queue_age_ms,
            clock=clock,
        )

        self._running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._inbox: "asyncio.Queue[str]" = asyncio.Queue()
        self._outbox: "asyncio.Queue[Tuple[str, str]]" = asyncio.Queue()
        self._listener_task: Optional[asyncio.Task] = None
        self._sender_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None

    # ==================== Properties ====================

    @property
    def topic(self) -> str:
        return self.config.topic

    @property
    def status(self) -> PoolStatus:
        return self._current.status

    @property
    def current_state(self) -> State:
        return self._current

    @property
    def is_running(self) -> bool:
        return self._running

    def is_active(self) -> bool:
        """Check whether this host is processing with a usable table."""
        return self._running and self._current.status == PoolStatus.ACTIVE

    def now_ms(self) -> int:
        return self._clock()

    def current_assignments(self) -> Optional[BucketAssignments]:
        """Get a snapshot of the current bucket table."""
        with self._assignments_lock:
            return self._assignments

    def current_leader(self) -> Optional[str]:
        """Get the leader of the current table."""
        assignments = self.current_assignments()
        return assignments.leader() if assignments is not None else None

    def is_leader(self) -> bool:
        """Check whether this host leads the current table."""
        assignments = self.current_assignments()
        return (
            assignments is not None
            and assignments.is_valid()
            and assignments.leader() == self.host
        )

    def get_status(self) -> Dict[str, Any]:
        """Get diagnostic status for this host."""
        assignments = self.current_assignments()
        return {
            "host": self.host,
            "topic": self.topic,
            "status": self.status.value,
            "running": self._running,
            "leader": self.current_leader(),
            "is_leader": self.is_leader(),
            "bucket_count": assignments.size() if assignments is not None else 0,
            "hosts": sorted(assignments.all_hosts()) if assignments is not None else [],
            "queued_events": self._event_queue.size(),
        }

    # ==================== Lifecycle ====================

    async def start(self, host_id: Optional[str] = None) -> None:
        """Join the pool.

        Args:
            host_id: Overrides the configured host id

        Raises:
            AlreadyStartedError: if the coordinator is already running
            ConfigurationError: if the configuration is invalid
        """
        if self._running:
            raise AlreadyStartedError(self.host)

        if host_id:
            self.host = host_id
            self.config.host_id = host_id
        self.config.ensure_valid()

        logger.info(f"Starting pool coordinator for host {self.host} on topic {self.topic}")

        self._loop = asyncio.get_running_loop()
        self._inbox = asyncio.Queue()
        self._outbox = asyncio.Queue()
        self._event_queue.clear()
        self._set_assignments(None)

        self.bus.subscribe(self._on_bus_message)
        await self.bus.start()

        self._running = True
        self._listener_task = asyncio.create_task(self._listen_loop())
        self._sender_task = asyncio.create_task(self._send_loop())

        self._change_state(self.go_start())

        logger.info(f"Pool coordinator started for host {self.host}")

    async def stop(self) -> None:
        """Leave the pool: announce Offline and discard the table."""
        if not self._running:
            return

        logger.info(f"Stopping pool coordinator for host {self.host}")

        self._change_state(IdleState(self, stopped=True))
        self.publish_admin(Offline(source=self.host))
        self._set_assignments(None)

        if not self._event_queue.is_empty():
            logger.warning(
                f"discarded {self._event_queue.size()} messages after stopping topic {self.topic}"
            )
            self._event_queue.clear()

        try:
            await asyncio.wait_for(
                self._outbox.join(), self.config.offline_pub_wait_ms / 1000
            )
        except asyncio.TimeoutError:
            logger.warning(f"Offline message for topic {self.topic} was not published in time")

        self._running = False

        for task in [self._listener_task, self._sender_task, self._drain_task]:
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._listener_task = self._sender_task = self._drain_task = None

        self.bus.unsubscribe(self._on_bus_message)
        await self.bus.stop()

        logger.info(f"Pool coordinator stopped for host {self.host}")

    async def __aenter__(self) -> "PoolCoordinator":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()

    # ==================== State management ====================

    def _change_state(self, new_state: Optional[State]) -> None:
        if new_state is None:
            return

        self._current.cancel_timers()
        self._current = new_state
        logger.info(f"host {self.host} is {new_state.status.value} on topic {self.topic}")
        new_state.start()

    def go_start(self) -> State:
        return StartState(self)

    def go_query(self) -> State:
        return QueryState(self)

    def go_active(self) -> State:
        return ActiveState(self)

    def go_inactive(self) -> State:
        return InactiveState(self)

    def schedule(self, delay_ms: int, task: StateTimerTask) -> StateTimer:
        """Run a state's task once, if that state is still current."""
        return StateTimer(self._require_loop(), delay_ms, self._timer_action(task))

    def schedule_with_fixed_delay(
        self, initial_delay_ms: int, delay_ms: int, task: StateTimerTask
    ) -> StateTimer:
        """Run a state's task repeatedly while that state is current."""
        return StateTimer(
            self._require_loop(), initial_delay_ms, self._timer_action(task), interval_ms=delay_ms
        )

    def _timer_action(self, task: StateTimerTask) -> Callable[[], None]:
        orig_state = self._current

        def fire() -> None:
            if self._current is orig_state:
                self._change_state(task())

        return fire

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise NotStartedError()
        return self._loop

    def _set_assignments(self, assignments: Optional[BucketAssignments]) -> None:
        with self._assignments_lock:
            self._assignments = assignments

    def start_distributing(self, assignments: BucketAssignments) -> None:
        """Adopt a table and route any events that were waiting for one."""
        if assignments is None:
            return

        logger.info(f"new assignments {assignments} for topic {self.topic}")
        self._set_assignments(assignments)

        if self._event_queue.is_empty():
            return
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = self._require_loop().create_task(self._drain_event_queue())

    async def _drain_event_queue(self) -> None:
        while self.current_assignments() is not None:
            event = self._event_queue.poll()
            if event is None:
                break
            # anything from elsewhere, or already re-forwarded, has been received
            received = event.source != self.host or event.num_hops > 0
            await self._handle_event(event, received=received)

    # ==================== Publishing ====================

    def publish_admin(self, msg: Message) -> None:
        self.publish(ADMIN_CHANNEL, msg)

    def publish(self, channel: str, msg: Message) -> None:
        """Validate, encode and queue a message for the bus."""
        msg.channel = channel
        try:
            # ensure it's valid before we send it
            msg.check_validity()
            text = self._serializer.encode_msg(msg)
        except (InvalidMessageError, SerializationError) as e:
            logger.error(f"failed to publish message for topic {self.topic} channel {channel}: {e}")
            return

        if isinstance(msg, Forward):
            logger.debug(f"publish forward {msg.request_id} to {channel} on topic {self.topic}")
        else:
            logger.info(f"publish {msg.message_type.value} to {channel} on topic {self.topic}")
        self._outbox.put_nowait((channel, text))

    async def _send_loop(self) -> None:
        while True:
            channel, text = await self._outbox.get()
            try:
                await self.bus.publish(channel, text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"failed to publish to channel {channel} on topic {self.topic}: {e}")
            finally:
                self._outbox.task_done()

    # ==================== Receiving ====================

    def _on_bus_message(self, text: str) -> None:
        if self._running:
            self._inbox.put_nowait(text)

    async def _listen_loop(self) -> None:
        while True:
            text = await self._inbox.get()
            try:
                await self.handle_internal(text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"failed to process message for topic {self.topic}: {e}")

    async def handle_internal(self, text: str) -> None:
        """Decode, validate and process one admin channel message."""
        try:
            msg = self._serializer.decode_msg(text)
        except SerializationError as e:
            logger.warning(f"failed to decode message for topic {self.topic}: {e}")
            return

        try:
            msg.check_validity()
        except InvalidMessageError as e:
            logger.warning(
                f"discarded invalid {msg.message_type.value} message from "
                f"{msg.source or '?'} on topic {self.topic}: {e}"
            )
            return

        if not self._current.accepts(msg.channel):
            return

        if isinstance(msg, Forward):
            await self.on_forward_received(msg)
        else:
            self._change_state(self._current.process(msg))

    # ==================== Routing ====================

    async def submit_external_event(
        self, protocol: str, topic: str, payload: str, request_id: str
    ) -> bool:
        """Hand off an inbound event for routing.

        The event is processed here if this host owns its bucket, and is
        forwarded to the owner otherwise.

        Returns:
            True if the event was accepted for processing, False if it was
            dropped as invalid

        Raises:
            NotStartedError: if the coordinator is not running
        """
        if not self._running:
            raise NotStartedError("cannot route events before the coordinator is started")

        try:
            event = Forward.create(
                self.host, protocol, topic, payload, request_id, create_time_ms=self._clock()
            )
        except InvalidMessageError as e:
            logger.warning(f"constructed an invalid Forward message on topic {self.topic}: {e}")
            return False

        return await self._handle_event(event, received=False)

    def submit_external_event_threadsafe(
        self, protocol: str, topic: str, payload: str, request_id: str
    ) -> "concurrent.futures.Future[bool]":
        """Submit an event from a thread other than the event loop's."""
        loop = self._require_loop()
        return asyncio.run_coroutine_threadsafe(
            self.submit_external_event(protocol, topic, payload, request_id), loop
        )

    async def on_forward_received(self, msg: Forward) -> bool:
        """Process a Forward addressed to this host.

        Returns:
            True if the event was dispatched, queued or re-forwarded
        """
        try:
            msg.check_validity()
        except InvalidMessageError as e:
            logger.warning(f"discarded invalid forward on topic {self.topic}: {e}")
            return False

        if msg.is_expired(self._clock() - self.config.forward_stale_ms):
            logger.warning(
                f"message discarded - request {msg.request_id} expired for topic {msg.topic}"
            )
            return False

        return await self._handle_event(msg, received=True)

    async def _handle_event(self, event: Forward, received: bool) -> bool:
        assignments = self.current_assignments()
        if assignments is None:
            # no bucket assignments yet - hold it until we have some
            self._event_queue.add(event)
            return True

        target = assignments.assigned_host(event.request_id)
        if target is None:
            logger.warning(f"discarded event for unassigned bucket from topic {event.topic}")
            return False

        if target == self.host:
            await self._dispatch(event)
            return True

        if received:
            if event.num_hops >= self.config.max_hops:
                logger.warning(
                    f"message discarded - hop count {event.num_hops} reached "
                    f"{self.config.max_hops} for topic {event.topic}"
                )
                return False

            logger.warning(f"reforward event hop-count={event.num_hops} from topic {event.topic}")
            event.bump_num_hops()

        self.publish(target, event)
        return True

    async def _dispatch(self, event: Forward) -> None:
        try:
            result = self._handle(event.request_id, event.protocol, event.topic, event.payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"event handler failed for request {event.request_id} on topic {event.topic}: {e}"
            )
