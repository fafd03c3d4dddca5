"""HTTP client for voters.

Reads (settings, candidates, status, results) are idempotent and are retried
a bounded number of times. Casting a ballot is never retried automatically:
after an ambiguous failure the caller may resubmit once, and the server's
already-voted check rejects the duplicate if the first attempt went through.
"""
import logging
from datetime import datetime

import httpx
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import Config
from eligibility import EligibilityMonitor, SessionState, SnapshotCache, VoterSession, WindowSnapshot

logger = logging.getLogger(__name__)

RETRYABLE = (httpx.TransportError, httpx.HTTPStatusError)
RECORDED = 'recorded'


class ClientError(Exception):
    """The server answered a request with an error body."""

    def __init__(self, status_code, body):
        super().__init__(body.get('error') or f'HTTP {status_code}')
        self.status_code = status_code
        self.body = body


class SessionRefused(Exception):
    """The local clock puts a fresh login past its deadline."""

    def __init__(self, eligibility):
        super().__init__(eligibility.message or 'Login refused.')
        self.eligibility = eligibility


class ElectionClient:
    def __init__(self, base_url, timeout=10.0, attempts=3, retry_wait=None, transport=None):
        self._http = httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout), transport=transport)
        self._retrying = Retrying(
            retry=retry_if_exception_type(RETRYABLE),
            stop=stop_after_attempt(attempts),
            wait=retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4),
            reraise=True,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        self._http.close()

    def _get_once(self, path):
        response = self._http.get(path)
        if response.status_code >= 500:
            logger.warning("GET %s returned %d", path, response.status_code)
            response.raise_for_status()
        return self._body(response)

    def _get(self, path):
        return self._retrying(self._get_once, path)

    @staticmethod
    def _body(response):
        try:
            body = response.json()
        except ValueError:
            body = {'success': False, 'error': response.text or f'HTTP {response.status_code}'}
        if response.status_code >= 400 and 'outcome' not in body:
            raise ClientError(response.status_code, body)
        body.setdefault('statusCode', response.status_code)
        return body

    def get_settings(self):
        return WindowSnapshot.from_dict(self._get('/settings')['settings'])

    def get_candidates(self):
        return self._get('/candidates')['positions']

    def get_results(self):
        return self._get('/results')['results']

    def status(self):
        return self._get('/vote/status')['status']

    def login(self, identifier, full_name=None, department=None):
        response = self._http.post('/vote/login', json={
            'identifier': identifier,
            'fullName': full_name,
            'department': department,
        })
        return self._body(response)

    def cast_ballot(self, votes):
        """Submits once. Business rejections come back as the result body."""
        response = self._http.post('/vote/ballot', json={'votes': votes})
        return self._body(response)

    def logout(self):
        return self._body(self._http.post('/vote/logout'))


def start_session(client, identifier, full_name=None, department=None,
                  tick_seconds=Config.ELIGIBILITY_TICK_SECONDS,
                  refresh_seconds=Config.WINDOW_REFRESH_SECONDS, on_change=None, clock=datetime.now):
    """Logs in and returns an EligibilityMonitor tracking the session locally.

    The local countdown is advisory; the server re-checks eligibility when the
    ballot is cast. If the local clock already puts the login past its
    deadline, the server session is logged out and SessionRefused is raised.
    """
    body = client.login(identifier, full_name, department)
    if not body.get('success'):
        raise ClientError(body['statusCode'], body)
    cache = SnapshotCache(client.get_settings, refresh_seconds=refresh_seconds)
    session = VoterSession(identifier)
    session.login(cache.get(force=True), clock())
    if session.state is SessionState.LOGGED_OUT:
        client.logout()
        raise SessionRefused(session.eligibility)
    return EligibilityMonitor(session, cache, tick_seconds=tick_seconds, clock=clock, on_change=on_change)


def cast_session_ballot(client, monitor, votes):
    """Casts the ballot for a session from start_session.

    A recorded ballot moves the session to SUBMITTED and stops its monitor.
    """
    body = client.cast_ballot(votes)
    if body.get('outcome') == RECORDED:
        monitor.mark_submitted()
    return body
