"""Store access for positions, candidates, voters and the voting window.

Every function here runs inside an application context and commits its own
transaction. Database failures are rolled back and surfaced as
:class:`errors.Unavailable` so callers can fail closed.
"""
import logging
from datetime import datetime
from functools import wraps

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import Conflict, NotFound, Unavailable, ValidationError
from models import db, Candidate, CandidateSequence, Position, Voter, WindowConfig
from utils import normalize_identifier, sanitize_input, validate_identifier

logger = logging.getLogger(__name__)

SEQUENCE_ROW_ID = 1
WINDOW_ROW_ID = 1
MIN_LOGIN_DURATION = 1
MAX_LOGIN_DURATION = 120

CANDIDATE_FIELDS = ('name', 'nickname', 'department', 'level', 'image')


def store_errors(func_):
    """Roll back and re-raise database failures as Unavailable."""
    @wraps(func_)
    def wrapper(*args, **kwargs):
        try:
            return func_(*args, **kwargs)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.exception("Store failure in %s", func_.__name__)
            raise Unavailable('The election store is currently unavailable.') from e
    return wrapper


# Positions

@store_errors
def list_positions(active_only=True):
    query = Position.query
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Position.name).all()

@store_errors
def get_position(name):
    position = Position.query.filter_by(name=name).first()
    if not position:
        raise NotFound(f'Position {name!r} not found.')
    return position

@store_errors
def create_position(name, allow_multiple=False):
    name = sanitize_input(name)
    if not name:
        raise ValidationError('Position name is required.')
    if Position.query.filter_by(name=name).first():
        raise Conflict(f'Position {name!r} already exists.')

    position = Position(name=name, allow_multiple=bool(allow_multiple), is_active=True)
    db.session.add(position)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict(f'Position {name!r} already exists.') from e
    logger.info("Created position %s (multiple=%s)", name, position.allow_multiple)
    return position

@store_errors
def delete_position(name):
    """Deletes a position together with all of its candidates."""
    position = Position.query.filter_by(name=name).first()
    if not position:
        raise NotFound(f'Position {name!r} not found.')

    removed = Candidate.query.filter_by(position=name).delete(synchronize_session=False)
    db.session.expire(position, ['candidates'])
    db.session.delete(position)
    db.session.commit()
    logger.info("Deleted position %s and %d candidate(s)", name, removed)
    return removed


# Candidates

@store_errors
def ensure_candidate_sequence():
    """Creates the id counter row, seeded past any existing candidate id."""
    if db.session.get(CandidateSequence, SEQUENCE_ROW_ID) is None:
        start = db.session.query(func.max(Candidate.id)).scalar() or 0
        db.session.add(CandidateSequence(id=SEQUENCE_ROW_ID, value=start))
        db.session.commit()

def next_candidate_id():
    """Allocates the next candidate id inside the caller's transaction.

    The increment is a single UPDATE, so concurrent allocations serialize on
    the counter row instead of racing on max(id) + 1.
    """
    changed = CandidateSequence.query.filter_by(id=SEQUENCE_ROW_ID).update(
        {'value': CandidateSequence.value + 1}, synchronize_session=False)
    if not changed:
        start = db.session.query(func.max(Candidate.id)).scalar() or 0
        db.session.add(CandidateSequence(id=SEQUENCE_ROW_ID, value=start + 1))
        db.session.flush()
        return start + 1
    return db.session.query(CandidateSequence.value).filter_by(id=SEQUENCE_ROW_ID).scalar()

@store_errors
def list_candidates():
    return Candidate.query.order_by(Candidate.id).all()

@store_errors
def positions_with_candidates():
    """Active positions (by name), each with its candidates ordered by id."""
    positions = list_positions()
    by_position = {}
    for candidate in list_candidates():
        by_position.setdefault(candidate.position, []).append(candidate)
    return [(position, by_position.get(position.name, [])) for position in positions]

@store_errors
def create_candidate(name, position, **metadata):
    name = sanitize_input(name)
    position = sanitize_input(position)
    if not name or not position:
        raise ValidationError('Name and position are required.')
    if not Position.query.filter_by(name=position).first():
        raise NotFound(f'Position {position!r} does not exist.')

    candidate = Candidate(id=next_candidate_id(), name=name, position=position)
    for field in CANDIDATE_FIELDS[1:]:
        setattr(candidate, field, sanitize_input(metadata.get(field)))
    db.session.add(candidate)
    db.session.commit()
    logger.info("Created candidate %d (%s) for %s", candidate.id, name, position)
    return candidate

@store_errors
def update_candidate(candidate_id, **fields):
    candidate = db.session.get(Candidate, candidate_id)
    if not candidate:
        raise NotFound(f'Candidate {candidate_id} not found.')
    if 'name' in fields and not sanitize_input(fields['name']):
        raise ValidationError('Candidate name cannot be empty.')

    for field in CANDIDATE_FIELDS:
        if field in fields and fields[field] is not None:
            setattr(candidate, field, sanitize_input(fields[field]))
    db.session.commit()
    return candidate

@store_errors
def delete_candidate(candidate_id):
    candidate = db.session.get(Candidate, candidate_id)
    if not candidate:
        raise NotFound(f'Candidate {candidate_id} not found.')
    db.session.delete(candidate)
    db.session.commit()
    logger.info("Deleted candidate %d", candidate_id)


# Voters

@store_errors
def get_voter(identifier):
    identifier = normalize_identifier(identifier)
    if not identifier:
        return None
    return Voter.query.filter_by(identifier=identifier).first()

@store_errors
def list_voters():
    return Voter.query.order_by(Voter.created_at.desc(), Voter.id.desc()).all()

@store_errors
def register_voter(identifier, full_name, department, image=''):
    identifier = normalize_identifier(identifier)
    full_name = sanitize_input(full_name)
    department = sanitize_input(department)

    if not identifier or not full_name or not department:
        raise ValidationError('All fields are required.')
    if not validate_identifier(identifier):
        raise ValidationError('Invalid identifier format.')
    if Voter.query.filter_by(identifier=identifier).first():
        raise Conflict('A voter with this identifier already exists.')

    voter = Voter(identifier=identifier, full_name=full_name, department=department,
                  image=sanitize_input(image), has_voted=False)
    db.session.add(voter)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict('A voter with this identifier already exists.') from e
    logger.info("Registered voter %s (%s)", identifier, department)
    return voter

def login_voter(identifier, full_name=None, department=None, image=''):
    """Looks the voter up, registering them on first login.

    Returns (voter, created).
    """
    voter = get_voter(identifier)
    if voter:
        return voter, False
    try:
        return register_voter(identifier, full_name, department, image), True
    except Conflict:
        # registered concurrently by another request
        return get_voter(identifier), False


# Voting window

def default_window(now=None):
    now = now or datetime.now()
    config = current_app.config
    start = now.replace(hour=config.get('DEFAULT_VOTING_START_HOUR', 6), minute=0, second=0, microsecond=0)
    end = now.replace(hour=config.get('DEFAULT_VOTING_END_HOUR', 20), minute=0, second=0, microsecond=0)
    return WindowConfig(
        id=WINDOW_ROW_ID,
        voting_start_time=start,
        voting_end_time=end,
        login_duration=config.get('DEFAULT_LOGIN_DURATION', 35),
        is_voting_active=False,
    )

@store_errors
def get_window_config(now=None):
    """Returns the window config singleton, creating the default when absent."""
    window = db.session.get(WindowConfig, WINDOW_ROW_ID)
    if window is None:
        window = default_window(now)
        db.session.add(window)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            window = db.session.get(WindowConfig, WINDOW_ROW_ID)
        else:
            logger.info("Created default voting window %s - %s",
                        window.voting_start_time, window.voting_end_time)
    return window

def _check_window(start, end, login_duration):
    if start >= end:
        raise ValidationError('Voting start time must be before end time.')
    if login_duration is None or not MIN_LOGIN_DURATION <= login_duration <= MAX_LOGIN_DURATION:
        raise ValidationError(
            f'Login duration must be between {MIN_LOGIN_DURATION} and {MAX_LOGIN_DURATION} minutes.')

@store_errors
def update_window_config(**changes):
    """Upserts the window config. Only keys that are present and not None change."""
    allowed = {'voting_start_time', 'voting_end_time', 'login_duration', 'is_voting_active'}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f'Unknown settings: {", ".join(sorted(unknown))}.')

    window = db.session.get(WindowConfig, WINDOW_ROW_ID)
    if window is None:
        window = default_window()
        db.session.add(window)

    start = changes.get('voting_start_time') or window.voting_start_time
    end = changes.get('voting_end_time') or window.voting_end_time
    duration = changes.get('login_duration')
    duration = window.login_duration if duration is None else duration
    try:
        _check_window(start, end, duration)
    except ValidationError:
        db.session.rollback()
        raise

    window.voting_start_time = start
    window.voting_end_time = end
    window.login_duration = duration
    if changes.get('is_voting_active') is not None:
        window.is_voting_active = bool(changes['is_voting_active'])
    window.updated_at = datetime.now()
    db.session.commit()
    logger.info("Voting window updated: %s - %s, active=%s, login=%dmin",
                window.voting_start_time, window.voting_end_time,
                window.is_voting_active, window.login_duration)
    return window
