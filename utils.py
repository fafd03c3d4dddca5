import re
import time
from datetime import datetime
from flask import session

VOTER_KEY = 'voter_identifier'
LOGIN_TIME_KEY = VOTER_KEY + '_time'
SUBMITTED_KEY = VOTER_KEY + '_submitted'

IDENTIFIER_PATTERN = re.compile(r'^[a-zA-Z0-9]{6,15}$')

def sanitize_input(value):
    """Trims and strips angle brackets."""
    if value is None:
        return ''
    return str(value).strip().replace('<', '').replace('>', '')

def normalize_identifier(identifier):
    return sanitize_input(identifier).lower()

def validate_identifier(identifier):
    return bool(identifier) and bool(IDENTIFIER_PATTERN.match(identifier))

def store_login_in_session(identifier, login_time=None):
    """Stores the voter identifier and login timestamp in session."""
    session.pop(SUBMITTED_KEY, None)
    session[VOTER_KEY] = identifier
    session[LOGIN_TIME_KEY] = login_time if login_time is not None else time.time()

def get_login_from_session():
    """Returns (identifier, login datetime) or (None, None) when logged out."""
    identifier = session.get(VOTER_KEY)
    stamp = session.get(LOGIN_TIME_KEY)
    if not identifier or stamp is None:
        return None, None
    return identifier, datetime.fromtimestamp(stamp)

def clear_voter_session():
    session.pop(VOTER_KEY, None)
    session.pop(LOGIN_TIME_KEY, None)
    session.pop(SUBMITTED_KEY, None)

def mark_submitted_in_session(identifier):
    """Ends the voting session, remembering who submitted."""
    clear_voter_session()
    session[SUBMITTED_KEY] = identifier

def get_submitted_from_session():
    return session.get(SUBMITTED_KEY)

def get_client_ip(request):
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip
    return request.remote_addr or 'unknown'

def format_remaining(seconds):
    """HH:MM:SS countdown text, 'Time Expired' once it runs out."""
    if seconds is None or seconds <= 0:
        return 'Time Expired'
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f'{hours:02d}:{minutes:02d}:{secs:02d}'

def form_error(form):
    """JSON 400 response naming the first invalid field."""
    for field, messages in form.errors.items():
        return {'success': False, 'error': f'{field}: {messages[0]}'}, 400
    return {'success': False, 'error': 'Invalid request'}, 400
