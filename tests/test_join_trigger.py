"""Tests for the join trigger coordinator."""

from meetwatch.meetings.join_trigger import IMMEDIATE_FIRE_MS, JoinTriggerCoordinator, create_coordinator
from meetwatch.meetings.meeting import MINUTE_MS, SchedulerConfig
from tests.conftest import NOW_MS, FakeAlarms, RecordingOpener, make_meeting

CONFIG = SchedulerConfig(join_before_minutes=1, max_minutes_after_start=30)


class TestScheduleNext:
    """Picking the single next trigger."""

    def test_schedules_earliest_trigger_only(self, alarms, opener):
        """Two future meetings: one alarm, for the earlier trigger time."""
        coordinator = create_coordinator(alarms, opener)
        meetings = [make_meeting("later", starts_in_minutes=30), make_meeting("sooner", starts_in_minutes=10)]
        coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)

        assert coordinator.scheduled_meeting.call_id == "sooner"
        assert alarms.when_ms == NOW_MS + 9 * MINUTE_MS
        assert opener.attempts == []

    def test_firing_then_picks_remaining(self, alarms, opener):
        """After the alarm fires and the meeting is joined, the other one is scheduled."""
        coordinator = create_coordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("a", starts_in_minutes=10), make_meeting("b", starts_in_minutes=30)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)

        alarms.fire()

        assert opener.opened == ["a"]
        assert joined == {"a"}
        assert coordinator.scheduled_meeting.call_id == "b"
        assert alarms.when_ms == NOW_MS + 29 * MINUTE_MS

        # A later periodic re-check keeps the same single alarm.
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS + 10 * MINUTE_MS)
        assert coordinator.scheduled_meeting.call_id == "b"

    def test_catch_up_fires_immediately(self, alarms, opener):
        """A meeting already past its trigger time but within the window opens right away."""
        coordinator = create_coordinator(alarms, opener)
        joined: set[str] = set()
        coordinator.schedule_next([make_meeting("late", starts_in_minutes=-5)], joined, CONFIG, NOW_MS)

        assert opener.opened == ["late"]
        assert joined == {"late"}
        assert alarms.when_ms is None
        assert coordinator.scheduled_meeting is None

    def test_trigger_within_epsilon_fires_immediately(self, alarms, opener):
        """Triggers less than a second away are not worth an alarm."""
        coordinator = create_coordinator(alarms, opener)
        meeting = make_meeting(starts_in_minutes=1)
        coordinator.schedule_next([meeting], set(), CONFIG, NOW_MS - IMMEDIATE_FIRE_MS)
        assert opener.opened == [meeting.call_id]
        assert alarms.registrations == 0

    def test_catch_up_outranks_future(self, alarms, opener):
        """Catch-up and future candidates share one axis: the earlier trigger time wins."""
        coordinator = create_coordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("future", starts_in_minutes=3), make_meeting("overdue", starts_in_minutes=-20)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)

        assert opener.attempts == ["overdue"]
        assert coordinator.scheduled_meeting.call_id == "future"
        assert alarms.when_ms == NOW_MS + 2 * MINUTE_MS

    def test_most_overdue_catch_up_wins(self, alarms, opener):
        """Between two catch-up candidates the one with the older trigger time goes first."""
        coordinator = create_coordinator(alarms, opener)
        meetings = [make_meeting("recent", starts_in_minutes=-2), make_meeting("older", starts_in_minutes=-25)]
        coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)
        assert opener.attempts == ["older", "recent"]

    def test_skips_joined_excluded_expired_and_ended(self, alarms, opener):
        """Only eligible meetings are considered."""
        coordinator = create_coordinator(alarms, opener)
        config = SchedulerConfig(join_before_minutes=1, max_minutes_after_start=30, title_exclude_filters=("Optional",))
        meetings = [
            make_meeting("joined", starts_in_minutes=5),
            make_meeting("excluded", title="Optional sync", starts_in_minutes=6),
            make_meeting("too-late", starts_in_minutes=-31, duration_minutes=120),
            make_meeting("ended", starts_in_minutes=-10, duration_minutes=5),
        ]
        coordinator.schedule_next(meetings, {"joined"}, config, NOW_MS)
        assert coordinator.scheduled_meeting is None
        assert alarms.when_ms is None
        assert opener.attempts == []

    def test_suppressed_after_trigger_time(self, alarms, opener):
        """A suppressed meeting is not reopened once due, but still counts before that."""
        coordinator = create_coordinator(alarms, opener)
        due = make_meeting("due", starts_in_minutes=0)
        coordinator.schedule_next([due], set(), CONFIG, NOW_MS, suppressed={"due": NOW_MS})
        assert opener.attempts == []

        future = make_meeting("future", starts_in_minutes=20)
        coordinator.schedule_next([future], set(), CONFIG, NOW_MS, suppressed={"future": NOW_MS})
        assert coordinator.scheduled_meeting.call_id == "future"

    def test_reschedule_replaces_alarm(self, alarms, opener):
        """Repeated schedule_next calls always leave exactly one registration."""
        coordinator = create_coordinator(alarms, opener)
        meetings = [make_meeting("a", starts_in_minutes=10)]
        for _ in range(3):
            coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)
        assert alarms.clears == 3
        assert alarms.when_ms == NOW_MS + 9 * MINUTE_MS

        coordinator.schedule_next([], set(), CONFIG, NOW_MS)
        assert alarms.when_ms is None
        assert coordinator.scheduled_meeting is None

    def test_config_change_moves_trigger(self, alarms, opener):
        """A longer lead time moves the alarm earlier."""
        coordinator = create_coordinator(alarms, opener)
        meetings = [make_meeting("a", starts_in_minutes=10)]
        coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)
        coordinator.schedule_next(meetings, set(), SchedulerConfig(join_before_minutes=5), NOW_MS)
        assert alarms.when_ms == NOW_MS + 5 * MINUTE_MS

    def test_inputs_not_mutated(self, alarms, opener):
        """Meeting list and config are left as they were."""
        coordinator = create_coordinator(alarms, opener)
        meetings = [make_meeting("a", starts_in_minutes=10)]
        coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)
        assert [m.call_id for m in meetings] == ["a"]
        assert CONFIG == SchedulerConfig(join_before_minutes=1, max_minutes_after_start=30)


class TestAlarmFire:
    """Alarm callback handling."""

    def test_stale_alarm_skips_joined_meeting(self, alarms, opener):
        """If the meeting was joined elsewhere, the alarm does not reopen it."""
        coordinator = JoinTriggerCoordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("a", starts_in_minutes=10), make_meeting("b", starts_in_minutes=30)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)

        joined.add("a")
        alarms.fire()

        assert opener.attempts == []
        assert coordinator.scheduled_meeting.call_id == "b"

    def test_alarm_without_scheduled_meeting(self, alarms, opener):
        """A spurious alarm just reschedules."""
        coordinator = JoinTriggerCoordinator(alarms, opener)
        coordinator.handle_alarm(NOW_MS)
        assert opener.attempts == []
        assert coordinator.scheduled_meeting is None

    def test_replaced_alarm_does_not_open_next_meeting_early(self, alarms, opener):
        """A late callback from a replaced registration must not fire the new target."""
        coordinator = JoinTriggerCoordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("a", starts_in_minutes=10), make_meeting("b", starts_in_minutes=40)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)
        old_callback, trigger_a = alarms.callback, alarms.when_ms

        # A poll at A's trigger time opens A inline and aims the alarm at B.
        coordinator.schedule_next(meetings, joined, CONFIG, trigger_a)
        assert opener.attempts == ["a"]
        assert alarms.when_ms == NOW_MS + 39 * MINUTE_MS

        old_callback(trigger_a)

        assert opener.attempts == ["a"]
        assert coordinator.scheduled_meeting.call_id == "b"
        assert alarms.when_ms == NOW_MS + 39 * MINUTE_MS

    def test_alarm_within_tolerance_still_fires(self, alarms, opener):
        """A timer that wakes slightly early still opens the meeting."""
        coordinator = JoinTriggerCoordinator(alarms, opener)
        coordinator.schedule_next([make_meeting("a", starts_in_minutes=10)], set(), CONFIG, NOW_MS)
        alarms.fire(NOW_MS + 9 * MINUTE_MS - IMMEDIATE_FIRE_MS)
        assert opener.opened == ["a"]

    def test_custom_alarm_callback(self, alarms, opener):
        """The registered callback can be routed through the host."""
        seen: list[int] = []
        coordinator = JoinTriggerCoordinator(alarms, opener, on_alarm=seen.append)
        coordinator.schedule_next([make_meeting("a", starts_in_minutes=10)], set(), CONFIG, NOW_MS)
        alarms.fire()
        assert seen == [NOW_MS + 9 * MINUTE_MS]
        assert opener.attempts == []

    def test_cancel_clears_alarm(self, alarms, opener):
        """cancel drops the pending alarm."""
        coordinator = JoinTriggerCoordinator(alarms, opener)
        coordinator.schedule_next([make_meeting("a", starts_in_minutes=10)], set(), CONFIG, NOW_MS)
        coordinator.cancel()
        assert alarms.when_ms is None
        assert coordinator.scheduled_meeting is None


class TestOpenFailure:
    """Failed opens are logged, not fatal, and not marked joined."""

    def test_failed_open_not_marked_joined(self, alarms):
        """The failing meeting is skipped inline and the next one is scheduled."""
        opener = RecordingOpener(fail_for={"a"})
        coordinator = JoinTriggerCoordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("a", starts_in_minutes=-1), make_meeting("b", starts_in_minutes=20)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)

        assert opener.attempts == ["a"]
        assert joined == set()
        assert coordinator.scheduled_meeting.call_id == "b"

    def test_failed_open_retried_next_cycle(self, alarms):
        """The next external re-check tries the failed meeting again."""
        opener = RecordingOpener(fail_for={"a"})
        coordinator = JoinTriggerCoordinator(alarms, opener)
        joined: set[str] = set()
        meetings = [make_meeting("a", starts_in_minutes=-1)]
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS)
        opener.fail_for.clear()
        coordinator.schedule_next(meetings, joined, CONFIG, NOW_MS + 30_000)

        assert opener.attempts == ["a", "a"]
        assert joined == {"a"}

    def test_failed_alarm_open_reschedules(self):
        """An alarm-driven failure still leaves the coordinator scheduling."""
        alarms = FakeAlarms()
        opener = RecordingOpener(fail_for={"a"})
        coordinator = JoinTriggerCoordinator(alarms, opener)
        meetings = [make_meeting("a", starts_in_minutes=10), make_meeting("b", starts_in_minutes=30)]
        coordinator.schedule_next(meetings, set(), CONFIG, NOW_MS)

        alarms.fire()

        assert opener.attempts == ["a"]
        assert coordinator.scheduled_meeting.call_id == "b"
