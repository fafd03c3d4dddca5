"""Voter session eligibility.

A voter may cast a ballot only while the admin has voting switched on, the
clock is inside the voting window and the voter's login session has not timed
out. The window config can change at any moment, so a session is re-evaluated
on a fixed tick against a snapshot of the config that is refetched on its own,
slower, interval.
"""
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from errors import Conflict

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOGGED_OUT = 'logged_out'
    AWAITING_WINDOW = 'awaiting_window'
    VOTING = 'voting'
    SUBMITTED = 'submitted'
    EXPIRED = 'expired'


class Reason(str, Enum):
    NOT_STARTED = 'not_started'
    LOGIN_TIMEOUT = 'login_timeout'
    WINDOW_CLOSED = 'window_closed'
    ADMIN_DISABLED = 'admin_disabled'


MESSAGES = {
    Reason.NOT_STARTED: 'Voting has not started yet.',
    Reason.LOGIN_TIMEOUT: 'Your login session has expired. Please log in again.',
    Reason.WINDOW_CLOSED: 'The voting period has ended.',
    Reason.ADMIN_DISABLED: 'Voting has been disabled by the administrator.',
}

TERMINAL_STATES = (SessionState.SUBMITTED, SessionState.EXPIRED)


class InvalidTransition(Conflict):
    pass


@dataclass(frozen=True)
class WindowSnapshot:
    """Immutable copy of the window config taken at one point in time."""
    voting_start_time: datetime
    voting_end_time: datetime
    login_duration: int
    is_voting_active: bool
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config):
        return cls(
            voting_start_time=config.voting_start_time,
            voting_end_time=config.voting_end_time,
            login_duration=config.login_duration,
            is_voting_active=config.is_voting_active,
            updated_at=config.updated_at,
        )

    @classmethod
    def from_dict(cls, data):
        """Builds a snapshot from the JSON the settings endpoint returns."""
        updated = data.get('updatedAt')
        return cls(
            voting_start_time=datetime.fromisoformat(data['votingStartTime']),
            voting_end_time=datetime.fromisoformat(data['votingEndTime']),
            login_duration=int(data['loginDuration']),
            is_voting_active=bool(data['isVotingActive']),
            updated_at=datetime.fromisoformat(updated) if updated else None,
        )

    def login_deadline(self, login_timestamp):
        return login_timestamp + timedelta(minutes=self.login_duration)


@dataclass(frozen=True)
class Eligibility:
    state: SessionState
    reason: Optional[Reason] = None
    login_deadline: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @property
    def can_vote(self):
        return self.state is SessionState.VOTING

    @property
    def message(self):
        if self.reason is None:
            return None
        return MESSAGES[self.reason]

    def remaining_seconds(self, now):
        """Seconds until the first of login deadline and window end."""
        deadlines = [d for d in (self.login_deadline, self.window_end) if d is not None]
        if not self.can_vote or not deadlines:
            return 0
        return max(0.0, (min(deadlines) - now).total_seconds())

    def to_dict(self, now):
        return {
            'state': self.state.value,
            'reason': self.reason.value if self.reason else None,
            'message': self.message,
            'canVote': self.can_vote,
            'loginDeadline': self.login_deadline.isoformat() if self.login_deadline else None,
            'windowEnd': self.window_end.isoformat() if self.window_end else None,
            'remainingSeconds': self.remaining_seconds(now),
        }


def evaluate(snapshot, now, login_timestamp):
    """Eligibility of a session logged in at ``login_timestamp``.

    VOTING iff voting is active, start <= now <= end and
    now <= login_timestamp + login_duration. When several expiry conditions
    hold, the one that became true first is reported.
    """
    login_deadline = snapshot.login_deadline(login_timestamp)
    window_end = snapshot.voting_end_time

    triggered = []
    if now > login_deadline:
        triggered.append((login_deadline, Reason.LOGIN_TIMEOUT))
    if now > window_end:
        triggered.append((window_end, Reason.WINDOW_CLOSED))
    if not snapshot.is_voting_active:
        triggered.append((snapshot.updated_at or now, Reason.ADMIN_DISABLED))

    if triggered:
        _, reason = min(triggered, key=lambda item: item[0])
        return Eligibility(SessionState.EXPIRED, reason, login_deadline, window_end)
    if now < snapshot.voting_start_time:
        return Eligibility(SessionState.AWAITING_WINDOW, Reason.NOT_STARTED, login_deadline, window_end)
    return Eligibility(SessionState.VOTING, None, login_deadline, window_end)


class VoterSession:
    """State machine for one voter's login session."""

    def __init__(self, identifier):
        self.identifier = identifier
        self.state = SessionState.LOGGED_OUT
        self.reason = None
        self.login_timestamp = None
        self.snapshot = None
        self.eligibility = Eligibility(SessionState.LOGGED_OUT)

    @property
    def is_terminal(self):
        return self.state in TERMINAL_STATES

    def login(self, snapshot, now):
        """Starts the session. A login that would already be expired is refused."""
        if self.state is not SessionState.LOGGED_OUT:
            raise InvalidTransition(f'Cannot log in from state {self.state.value}.')

        result = evaluate(snapshot, now, now)
        if result.state is SessionState.EXPIRED:
            self.reason = result.reason
            self.eligibility = Eligibility(SessionState.LOGGED_OUT, result.reason)
            logger.info("Login refused for %s: %s", self.identifier, result.reason.value)
            return result

        self.login_timestamp = now
        self.snapshot = snapshot
        self._apply(result)
        return result

    def tick(self, now, snapshot=None):
        """Re-evaluates eligibility, optionally against a newer snapshot."""
        if self.state is SessionState.LOGGED_OUT or self.is_terminal:
            return self.eligibility
        if snapshot is not None:
            self.snapshot = snapshot

        result = evaluate(self.snapshot, now, self.login_timestamp)
        if result.state is SessionState.EXPIRED:
            self.expire(result.reason, result)
        else:
            self._apply(result)
        return self.eligibility

    def mark_submitted(self):
        if self.state is not SessionState.VOTING:
            raise InvalidTransition(f'Cannot submit from state {self.state.value}.')
        self.state = SessionState.SUBMITTED
        self.reason = None
        self.eligibility = Eligibility(SessionState.SUBMITTED)

    def expire(self, reason, result=None):
        """Ends the session; the cached login and snapshot are dropped."""
        if self.is_terminal:
            return
        self.state = SessionState.EXPIRED
        self.reason = reason
        self.eligibility = result or Eligibility(SessionState.EXPIRED, reason)
        self.login_timestamp = None
        self.snapshot = None
        logger.info("Session for %s expired: %s", self.identifier, reason.value)

    def _apply(self, result):
        self.state = result.state
        self.reason = result.reason
        self.eligibility = result


class SnapshotCache:
    """Serves the last window snapshot, refetching once it is ``refresh_seconds`` old.

    If a refetch fails the previous snapshot keeps being served and the fetch
    is retried on the next call.
    """

    def __init__(self, loader: Callable[[], WindowSnapshot], refresh_seconds=5.0,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._snapshot = None
        self._fetched_at = None
        self._lock = threading.Lock()

    def invalidate(self):
        with self._lock:
            self._snapshot = None
            self._fetched_at = None

    def get(self, force=False):
        with self._lock:
            now = self._clock()
            stale = self._fetched_at is None or now - self._fetched_at >= self.refresh_seconds
            if not (force or stale):
                return self._snapshot
            try:
                snapshot = self._loader()
            except Exception:
                if self._snapshot is None:
                    raise
                logger.warning("Window config refresh failed, keeping previous snapshot", exc_info=True)
                return self._snapshot
            self._snapshot = snapshot
            self._fetched_at = now
            return snapshot


class EligibilityMonitor:
    """Re-checks a session every ``tick_seconds`` until it reaches a terminal state.

    A session that never got past LOGGED_OUT is not monitored; ``run`` returns
    at once with the refused eligibility.
    """

    def __init__(self, session, cache, tick_seconds=1.0, clock=datetime.now, on_change=None):
        self.session = session
        self.cache = cache
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._on_change = on_change
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_active(self):
        return self.session.state is not SessionState.LOGGED_OUT and not self.session.is_terminal

    def step(self):
        with self._lock:
            before = self.session.state
            result = self.session.tick(self._clock(), self.cache.get())
            if self.session.state is SessionState.EXPIRED:
                self.cache.invalidate()
        if self.session.state is not before and self._on_change:
            self._on_change(self.session, result)
        return result

    def mark_submitted(self):
        """Records that the ballot was persisted and stops the monitor.

        The server is authoritative: if the local clock already expired the
        session, the state is left alone and only the monitor stops.
        """
        with self._lock:
            changed = self.session.state is SessionState.VOTING
            if changed:
                self.session.mark_submitted()
            else:
                logger.warning("Ballot for %s recorded while local session is %s",
                               self.session.identifier, self.session.state.value)
        self.stop()
        if changed and self._on_change:
            self._on_change(self.session, self.session.eligibility)
        return self.session.eligibility

    def run(self):
        while not self._stop.is_set() and self.is_active:
            self.step()
            if not self.is_active:
                break
            self._stop.wait(self.tick_seconds)
        return self.session.eligibility

    def stop(self):
        self._stop.set()
