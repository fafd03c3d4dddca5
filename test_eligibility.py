import itertools
from datetime import datetime, timedelta

import pytest

from eligibility import (EligibilityMonitor, InvalidTransition, Reason, SessionState, SnapshotCache,
                         VoterSession, WindowSnapshot, evaluate)

T = datetime(2026, 10, 19, 8, 0)


def snapshot(start=T, end=T + timedelta(hours=2), duration=35, active=True, updated_at=None):
    return WindowSnapshot(start, end, duration, active, updated_at)


def test_voting_iff_all_conditions_hold():
    offsets = [-30, 0, 10, 44, 45, 46, 119, 120, 121]
    for active, login_offset, now_offset in itertools.product([True, False], [-20, 0, 10, 100], offsets):
        window = snapshot(active=active, updated_at=T - timedelta(days=1))
        login = T + timedelta(minutes=login_offset)
        now = T + timedelta(minutes=now_offset)
        expected = (active
                    and window.voting_start_time <= now <= window.voting_end_time
                    and now <= login + timedelta(minutes=window.login_duration))
        assert evaluate(window, now, login).can_vote == expected, (active, login_offset, now_offset)


def test_login_timeout_before_window_end():
    window = snapshot()
    login = T + timedelta(minutes=10)

    assert evaluate(window, T + timedelta(minutes=44), login).state is SessionState.VOTING

    result = evaluate(window, T + timedelta(minutes=46), login)
    assert result.state is SessionState.EXPIRED
    assert result.reason is Reason.LOGIN_TIMEOUT


def test_not_started_is_awaiting_window():
    result = evaluate(snapshot(), T - timedelta(minutes=5), T - timedelta(minutes=5))
    assert result.state is SessionState.AWAITING_WINDOW
    assert result.reason is Reason.NOT_STARTED
    assert result.remaining_seconds(T) == 0


def test_earliest_expiry_reason_wins():
    window = snapshot(end=T + timedelta(minutes=30))
    # window closed at T+30, login ran out at T+35
    result = evaluate(window, T + timedelta(minutes=50), T)
    assert result.reason is Reason.WINDOW_CLOSED

    # login ran out at T+35, window closed at T+120
    result = evaluate(snapshot(), T + timedelta(minutes=130), T)
    assert result.reason is Reason.LOGIN_TIMEOUT


def test_admin_disable_reported_by_time_of_change():
    disabled_early = snapshot(active=False, updated_at=T + timedelta(minutes=5))
    assert evaluate(disabled_early, T + timedelta(minutes=40), T).reason is Reason.ADMIN_DISABLED

    disabled_late = snapshot(active=False, updated_at=T + timedelta(minutes=50))
    assert evaluate(disabled_late, T + timedelta(minutes=55), T).reason is Reason.LOGIN_TIMEOUT


def test_remaining_seconds_uses_earliest_deadline():
    result = evaluate(snapshot(), T + timedelta(minutes=10), T)
    assert result.remaining_seconds(T + timedelta(minutes=10)) == 25 * 60
    status = result.to_dict(T + timedelta(minutes=10))
    assert status['state'] == 'voting'
    assert status['canVote'] is True


def test_session_lifecycle_to_submitted():
    session = VoterSession('stu00001')
    assert session.state is SessionState.LOGGED_OUT

    session.login(snapshot(), T - timedelta(minutes=1))
    assert session.state is SessionState.AWAITING_WINDOW

    session.tick(T + timedelta(minutes=1))
    assert session.state is SessionState.VOTING

    session.mark_submitted()
    assert session.state is SessionState.SUBMITTED
    assert session.is_terminal

    # terminal: later ticks change nothing
    session.tick(T + timedelta(hours=5))
    assert session.state is SessionState.SUBMITTED


def test_expired_session_drops_cached_login_and_snapshot():
    session = VoterSession('stu00001')
    session.login(snapshot(), T + timedelta(minutes=10))

    session.tick(T + timedelta(minutes=20), snapshot(active=False, updated_at=T + timedelta(minutes=15)))
    assert session.state is SessionState.EXPIRED
    assert session.reason is Reason.ADMIN_DISABLED
    assert session.login_timestamp is None
    assert session.snapshot is None

    # re-enabling voting does not revive an expired session
    session.tick(T + timedelta(minutes=21), snapshot())
    assert session.state is SessionState.EXPIRED

    with pytest.raises(InvalidTransition):
        session.mark_submitted()


def test_login_refused_when_window_closed():
    session = VoterSession('stu00001')
    result = session.login(snapshot(), T + timedelta(hours=3))
    assert result.reason is Reason.WINDOW_CLOSED
    assert session.state is SessionState.LOGGED_OUT
    assert session.login_timestamp is None


def test_login_twice_is_invalid():
    session = VoterSession('stu00001')
    session.login(snapshot(), T)
    with pytest.raises(InvalidTransition):
        session.login(snapshot(), T)


def test_snapshot_cache_refreshes_on_interval():
    clock = [0.0]
    calls = []

    def loader():
        calls.append(clock[0])
        return snapshot(duration=len(calls))

    cache = SnapshotCache(loader, refresh_seconds=5, clock=lambda: clock[0])
    assert cache.get().login_duration == 1
    clock[0] = 4.9
    assert cache.get().login_duration == 1
    clock[0] = 5.0
    assert cache.get().login_duration == 2
    assert len(calls) == 2


def test_snapshot_cache_keeps_previous_on_failure():
    clock = [0.0]
    responses = [snapshot(duration=20), RuntimeError('store down')]

    def loader():
        item = responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    cache = SnapshotCache(loader, refresh_seconds=5, clock=lambda: clock[0])
    assert cache.get().login_duration == 20
    clock[0] = 10
    assert cache.get().login_duration == 20

    def broken():
        raise RuntimeError('down')

    empty = SnapshotCache(broken)
    with pytest.raises(RuntimeError):
        empty.get()


def test_monitor_expires_session_when_admin_disables():
    now = [T + timedelta(minutes=10)]
    window = [snapshot()]
    changes = []

    cache = SnapshotCache(lambda: window[0], refresh_seconds=0)
    session = VoterSession('stu00001')
    session.login(cache.get(), now[0])
    monitor = EligibilityMonitor(session, cache, tick_seconds=0, clock=lambda: now[0],
                                 on_change=lambda s, result: changes.append(result.state))

    assert monitor.step().can_vote
    assert changes == []

    window[0] = snapshot(active=False, updated_at=T + timedelta(minutes=11))
    now[0] = T + timedelta(minutes=12)
    result = monitor.run()
    assert result.state is SessionState.EXPIRED
    assert changes == [SessionState.EXPIRED]


def test_monitor_does_not_loop_on_refused_login():
    loads = []

    def load():
        loads.append(1)
        return snapshot()

    cache = SnapshotCache(load, refresh_seconds=0)
    session = VoterSession('stu00001')
    session.login(cache.get(), T + timedelta(hours=2, minutes=1))
    assert session.state is SessionState.LOGGED_OUT

    monitor = EligibilityMonitor(session, cache, tick_seconds=60, clock=lambda: T + timedelta(hours=2, minutes=1))
    result = monitor.run()
    assert result.state is SessionState.LOGGED_OUT
    assert result.reason is Reason.WINDOW_CLOSED
    assert loads == [1]


def test_monitor_mark_submitted_is_terminal():
    now = [T + timedelta(minutes=5)]
    changes = []
    cache = SnapshotCache(snapshot, refresh_seconds=0)
    session = VoterSession('stu00001')
    session.login(cache.get(), now[0])
    monitor = EligibilityMonitor(session, cache, tick_seconds=0, clock=lambda: now[0],
                                 on_change=lambda s, result: changes.append(result.state))

    assert monitor.mark_submitted().state is SessionState.SUBMITTED
    assert changes == [SessionState.SUBMITTED]

    # well past the login deadline, the submitted session stays submitted
    now[0] = T + timedelta(minutes=90)
    assert monitor.run().state is SessionState.SUBMITTED
    assert session.tick(now[0]).state is SessionState.SUBMITTED


def test_monitor_mark_submitted_after_local_expiry_only_stops():
    now = [T + timedelta(minutes=5)]
    cache = SnapshotCache(snapshot, refresh_seconds=0)
    session = VoterSession('stu00001')
    session.login(cache.get(), now[0])
    monitor = EligibilityMonitor(session, cache, tick_seconds=0, clock=lambda: now[0])

    now[0] = T + timedelta(minutes=41)
    assert monitor.step().state is SessionState.EXPIRED
    assert monitor.mark_submitted().state is SessionState.EXPIRED
