# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for coordinator states."""

from unittest.mock import MagicMock

import pytest

from bucketpool.assignments import BucketAssignments
from bucketpool.config import PoolingConfig
from bucketpool.messages import (
    ADMIN_CHANNEL,
    Heartbeat,
    Identification,
    Leader,
    Offline,
    Query,
)
from bucketpool.states import (
    ActiveState,
    IdleState,
    InactiveState,
    PoolStatus,
    QueryState,
    StartState,
)


@pytest.fixture
def mgr():
    """Create a mock coordinator for host-b."""
    mgr = MagicMock()
    mgr.host = "host-b"
    mgr.topic = "pool"
    mgr.config = PoolingConfig(host_id="host-b")
    mgr.now_ms.return_value = 1000
    mgr.current_assignments.return_value = None
    return mgr


def leader_msg(source, hosts):
    return Leader(source=source, channel=ADMIN_CHANNEL, assignments=BucketAssignments(hosts))


def scheduled_task(mock_method, delay_ms):
    """Find the task passed to schedule() or schedule_with_fixed_delay() for a delay."""
    for call in mock_method.call_args_list:
        if call.args[0] == delay_ms:
            return call.args[-1]
    raise AssertionError(f"nothing scheduled after {delay_ms}ms")


def published(mock_method):
    return [call.args[-1] for call in mock_method.call_args_list]


class TestIdleState:
    """Tests for IdleState."""

    def test_ignores_all_channels(self, mgr):
        """Test an idle host accepts nothing."""
        state = IdleState(mgr)

        assert not state.accepts(ADMIN_CHANNEL)
        assert not state.accepts("host-b")
        assert state.status == PoolStatus.IDLE

    def test_stopped_status(self, mgr):
        """Test a stopped host reports offline."""
        assert IdleState(mgr, stopped=True).status == PoolStatus.OFFLINE


class TestStartState:
    """Tests for StartState."""

    def test_start_sends_heartbeat_to_self(self, mgr):
        """Test the start-up heartbeat goes to our own channel."""
        state = StartState(mgr)
        state.start()

        mgr.publish.assert_called_once()
        channel, msg = mgr.publish.call_args.args
        assert channel == "host-b"
        assert isinstance(msg, Heartbeat)
        assert msg.timestamp_ms == 1000
        mgr.schedule.assert_called_once()
        assert mgr.schedule.call_args.args[0] == mgr.config.start_heartbeat_ms
        mgr.schedule_with_fixed_delay.assert_called_once()

    def test_accepts_admin_and_own_channel(self, mgr):
        """Test channel filtering."""
        state = StartState(mgr)

        assert state.accepts(ADMIN_CHANNEL)
        assert state.accepts("host-b")
        assert not state.accepts("host-c")

    def test_own_heartbeat_starts_query(self, mgr):
        """Test seeing our heartbeat publishes a Query."""
        state = StartState(mgr)

        result = state.process(Heartbeat(source="host-b", channel="host-b", timestamp_ms=1000))

        assert result is mgr.go_query.return_value
        assert isinstance(published(mgr.publish_admin)[0], Query)

    def test_old_heartbeat_ignored(self, mgr):
        """Test a heartbeat with another timestamp is ignored."""
        state = StartState(mgr)

        assert state.process(Heartbeat(source="host-b", channel="host-b", timestamp_ms=5)) is None
        mgr.publish_admin.assert_not_called()

    def test_missed_heartbeat_goes_inactive(self, mgr):
        """Test a channel that never delivers gives up."""
        state = StartState(mgr)
        state.start()

        task = scheduled_task(mgr.schedule, mgr.config.start_heartbeat_ms)

        assert task() is mgr.go_inactive.return_value
        assert isinstance(published(mgr.publish_admin)[0], Offline)

    def test_query_ignored(self, mgr):
        """Test queries are not answered before the channel is verified."""
        state = StartState(mgr)

        assert state.process(Query(source="host-a", channel=ADMIN_CHANNEL)) is None


class TestQueryState:
    """Tests for QueryState."""

    def test_status(self, mgr):
        """Test the status depends on whether a table is held."""
        state = QueryState(mgr)
        assert state.status == PoolStatus.IDENTIFYING

        mgr.current_assignments.return_value = BucketAssignments(["host-b"])
        assert state.status == PoolStatus.REBALANCING

    def test_start_schedules_identification_window(self, mgr):
        """Test the identification timer."""
        QueryState(mgr).start()

        assert mgr.schedule.call_args.args[0] == mgr.config.identification_ms

    def test_missing_self_identification(self, mgr):
        """Test the channel is failed if our own Identification never arrives."""
        state = QueryState(mgr)
        state.start()

        task = scheduled_task(mgr.schedule, mgr.config.identification_ms)

        assert task() is mgr.go_inactive.return_value
        assert isinstance(published(mgr.publish_admin)[0], Offline)

    def test_leader_distributes_to_all_identified(self, mgr):
        """Test the smallest host builds a table over every live host."""
        state = QueryState(mgr)
        state.start()
        state.process(Identification(source="host-b", channel=ADMIN_CHANNEL))
        state.process(Identification(source="host-c", channel=ADMIN_CHANNEL))

        result = scheduled_task(mgr.schedule, mgr.config.identification_ms)()

        assert result is mgr.go_active.return_value
        msg = published(mgr.publish_admin)[0]
        assert isinstance(msg, Leader)
        assert msg.source == "host-b"
        assert msg.assignments.all_hosts() == frozenset({"host-b", "host-c"})
        mgr.start_distributing.assert_called_once_with(msg.assignments)

    def test_non_leader_without_assignment(self, mgr):
        """Test a host with no bucket waits in Inactive."""
        state = QueryState(mgr)
        state.process(Identification(source="host-b", channel=ADMIN_CHANNEL))
        state.process(Identification(source="host-a", channel=ADMIN_CHANNEL))

        assert state.leader == "host-a"
        assert state._identification_done() is mgr.go_inactive.return_value

    def test_non_leader_with_assignment(self, mgr):
        """Test a host keeps processing with its current table."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b"])
        state = QueryState(mgr)
        state.process(Identification(source="host-b", channel=ADMIN_CHANNEL))
        state.process(Identification(source="host-a", channel=ADMIN_CHANNEL))

        assert state._identification_done() is mgr.go_active.return_value

    def test_identification_table_adopted(self, mgr):
        """Test a table is adopted when none is held."""
        state = QueryState(mgr)
        table = BucketAssignments(["host-a", "host-c"])

        state.process(Identification(source="host-c", channel=ADMIN_CHANNEL, assignments=table))

        mgr.start_distributing.assert_called_once_with(table)

    def test_identification_prefers_better_leader(self, mgr):
        """Test a table led by a smaller host replaces the current one."""
        mgr.current_assignments.return_value = BucketAssignments(["host-c"])
        state = QueryState(mgr)
        better = BucketAssignments(["host-a", "host-c"])
        worse = BucketAssignments(["host-d"])

        state.process(Identification(source="host-d", channel=ADMIN_CHANNEL, assignments=worse))
        mgr.start_distributing.assert_not_called()

        state.process(Identification(source="host-a", channel=ADMIN_CHANNEL, assignments=better))
        mgr.start_distributing.assert_called_once_with(better)

    def test_leader_from_better_host(self, mgr):
        """Test a Leader from a smaller host is adopted at once."""
        state = QueryState(mgr)
        msg = leader_msg("host-a", ["host-a", "host-b"])

        assert state.process(msg) is mgr.go_active.return_value
        mgr.start_distributing.assert_called_once_with(msg.assignments)

    def test_leader_from_worse_host(self, mgr):
        """Test a Leader from a larger host is recorded but not followed."""
        state = QueryState(mgr)

        assert state.process(leader_msg("host-c", ["host-c"])) is None
        assert "host-c" in state.alive
        assert state.leader == "host-b"

    def test_invalid_leader_rejected(self, mgr):
        """Test a Leader that is not its table's leader is ignored."""
        state = QueryState(mgr)

        assert state.process(leader_msg("host-c", ["host-a", "host-c"])) is None
        mgr.start_distributing.assert_not_called()

    def test_offline_removes_host(self, mgr):
        """Test a departing host is forgotten."""
        state = QueryState(mgr)
        state.process(Identification(source="host-a", channel=ADMIN_CHANNEL))

        state.process(Offline(source="host-a", channel=ADMIN_CHANNEL))

        assert state.alive == {"host-b"}
        assert state.leader == "host-b"

    def test_query_restarts_identification(self, mgr):
        """Test a Query is answered and identification starts over."""
        state = QueryState(mgr)

        result = state.process(Query(source="host-c", channel=ADMIN_CHANNEL))

        assert result is mgr.go_query.return_value
        assert isinstance(published(mgr.publish_admin)[0], Identification)


class TestActiveState:
    """Tests for ActiveState."""

    def test_requires_assignments(self, mgr):
        """Test Active cannot be entered without a table."""
        with pytest.raises(ValueError):
            ActiveState(mgr)

    def test_ring_neighbors(self, mgr):
        """Test successor and predecessor wrap around the sorted hosts."""
        mgr.current_assignments.return_value = BucketAssignments(["host-c", "host-a", "host-b"])
        state = ActiveState(mgr)

        assert state.succ_host == "host-c"
        assert state.pred_host == "host-a"
        assert state.leader == "host-a"
        assert not state.is_leader()

    def test_no_neighbors_when_alone(self, mgr):
        """Test a lone host has no ring."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b"])
        state = ActiveState(mgr)

        assert state.succ_host is None
        assert state.pred_host == ""

    def test_start_heartbeats(self, mgr):
        """Test heartbeats go to ourselves and our successor."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b", "host-c"])
        state = ActiveState(mgr)
        state.start()

        channels = [call.args[0] for call in mgr.publish.call_args_list]
        assert channels == ["host-b", "host-c"]
        assert mgr.schedule_with_fixed_delay.call_count == 3

    def test_missed_predecessor_heartbeat(self, mgr):
        """Test a silent predecessor triggers a Query."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b"])
        state = ActiveState(mgr)

        state.process(Heartbeat(source="host-a", channel="host-b", timestamp_ms=1))
        assert state._check_pred_heartbeat() is None

        assert state._check_pred_heartbeat() is mgr.go_query.return_value
        assert isinstance(published(mgr.publish_admin)[0], Query)

    def test_missed_own_heartbeat(self, mgr):
        """Test a channel that stops delivering our heartbeats is failed."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b"])
        state = ActiveState(mgr)

        state.process(Heartbeat(source="host-b", channel="host-b", timestamp_ms=1))
        assert state._check_my_heartbeat() is None
        assert state._check_my_heartbeat() is mgr.go_inactive.return_value

    def test_leader_adds_new_host(self, mgr):
        """Test the leader extends the table to a newly identified host."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b", "host-c"] * 4)
        state = ActiveState(mgr)

        result = state.process(Identification(source="host-d", channel=ADMIN_CHANNEL))

        assert result is mgr.go_active.return_value
        msg = published(mgr.publish_admin)[0]
        assert isinstance(msg, Leader)
        assert msg.assignments.all_hosts() == frozenset({"host-b", "host-c", "host-d"})
        assert msg.assignments.size() == 8

    def test_better_candidate_identified(self, mgr):
        """Test a smaller unknown host starts a new round."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b", "host-c"])
        state = ActiveState(mgr)

        result = state.process(Identification(source="host-a", channel=ADMIN_CHANNEL))

        assert result is mgr.go_query.return_value
        assert isinstance(published(mgr.publish_admin)[0], Query)

    def test_non_leader_ignores_identification(self, mgr):
        """Test only the leader reacts to new hosts."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b"])
        state = ActiveState(mgr)

        assert state.process(Identification(source="host-d", channel=ADMIN_CHANNEL)) is None
        mgr.publish_admin.assert_not_called()

    def test_duplicate_leader_ignored(self, mgr):
        """Test a repeated table is not adopted again."""
        table = BucketAssignments(["host-a", "host-b"])
        mgr.current_assignments.return_value = table
        state = ActiveState(mgr)

        assert state.process(Leader(source="host-a", channel=ADMIN_CHANNEL, assignments=table)) is None
        mgr.start_distributing.assert_not_called()

    def test_new_leader_adopted(self, mgr):
        """Test a table from a better leader is adopted."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b", "host-c"])
        state = ActiveState(mgr)
        msg = leader_msg("host-a", ["host-a", "host-b", "host-c"])

        assert state.process(msg) is mgr.go_active.return_value
        mgr.start_distributing.assert_called_once_with(msg.assignments)

    def test_leader_from_worse_host_requeries(self, mgr):
        """Test a table from a larger host is adopted and then questioned."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b"])
        state = ActiveState(mgr)

        assert state.process(leader_msg("host-c", ["host-c"])) is mgr.go_query.return_value
        mgr.start_distributing.assert_called_once()

    def test_leader_offline_successor_takes_over(self, mgr):
        """Test the leader's successor recomputes the table when it leaves."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b", "host-c"])
        state = ActiveState(mgr)

        result = state.process(Offline(source="host-a", channel=ADMIN_CHANNEL))

        assert result is mgr.go_active.return_value
        msg = published(mgr.publish_admin)[0]
        assert msg.source == "host-b"
        assert msg.assignments.all_hosts() == frozenset({"host-b", "host-c"})

    def test_leader_handles_offline(self, mgr):
        """Test the leader recomputes when any assigned host leaves."""
        mgr.current_assignments.return_value = BucketAssignments(["host-b", "host-c", "host-d"])
        state = ActiveState(mgr)

        state.process(Offline(source="host-d", channel=ADMIN_CHANNEL))

        msg = published(mgr.publish_admin)[0]
        assert msg.assignments.all_hosts() == frozenset({"host-b", "host-c"})

    def test_offline_ignored_by_non_leader(self, mgr):
        """Test a non-leader leaves recomputation to the leader."""
        mgr.current_assignments.return_value = BucketAssignments(["host-a", "host-b", "host-c"])
        state = ActiveState(mgr)

        assert state.process(Offline(source="host-c", channel=ADMIN_CHANNEL)) is None
        assert state.process(Offline(source="host-z", channel=ADMIN_CHANNEL)) is None
        mgr.publish_admin.assert_not_called()


class TestInactiveState:
    """Tests for InactiveState."""

    def test_start_schedules_restart(self, mgr):
        """Test the host restarts after the reactivation delay."""
        InactiveState(mgr).start()

        mgr.schedule.assert_called_once_with(mgr.config.reactivate_ms, mgr.go_start)

    def test_leader_with_assignment(self, mgr):
        """Test a table that includes us activates this host."""
        state = InactiveState(mgr)

        assert state.process(leader_msg("host-a", ["host-a", "host-b"])) is mgr.go_active.return_value

    def test_leader_without_assignment(self, mgr):
        """Test a table without us is adopted but we stay inactive."""
        state = InactiveState(mgr)

        assert state.process(leader_msg("host-a", ["host-a"])) is None
        mgr.start_distributing.assert_called_once()

    def test_query_answered(self, mgr):
        """Test an inactive host still identifies itself."""
        state = InactiveState(mgr)

        assert state.process(Query(source="host-a", channel=ADMIN_CHANNEL)) is mgr.go_query.return_value
        assert isinstance(published(mgr.publish_admin)[0], Identification)
