from datetime import datetime
from flask import Blueprint, request, current_app
from ballots import submit_ballot
from eligibility import Eligibility, SessionState, WindowSnapshot, evaluate
from errors import ValidationError
from forms import VoterLoginForm, VoterRegistrationForm
from registry import get_voter, get_window_config, login_voter, positions_with_candidates, register_voter
from tally import compute_results
from utils import (store_login_in_session, get_login_from_session, clear_voter_session,
                   mark_submitted_in_session, get_submitted_from_session,
                   get_client_ip, format_remaining, normalize_identifier, form_error)

public_bp = Blueprint('public', __name__)

def _current_eligibility(now=None):
    """Eligibility of the logged-in voter against the current window config."""
    identifier, login_time = get_login_from_session()
    if not identifier:
        return None, None
    now = now or datetime.now()
    snapshot = WindowSnapshot.from_config(get_window_config(now))
    return identifier, evaluate(snapshot, now, login_time)

@public_bp.route('/settings')
def settings():
    window = get_window_config()
    return {
        'success': True,
        'settings': window.to_dict(),
        'polling': {
            'refreshSeconds': current_app.config['WINDOW_REFRESH_SECONDS'],
            'tickSeconds': current_app.config['ELIGIBILITY_TICK_SECONDS'],
        },
    }

@public_bp.route('/candidates')
def candidates():
    positions = [
        {
            'position': position.name,
            'allowMultiple': position.allow_multiple,
            'candidates': [{'id': c.id, 'name': c.name} for c in position_candidates],
        }
        for position, position_candidates in positions_with_candidates()
    ]
    return {'success': True, 'positions': positions}

@public_bp.route('/users', methods=['POST'])
def create_user():
    form = VoterRegistrationForm()
    if not form.validate_on_submit():
        return form_error(form)

    voter = register_voter(form.identifier.data, form.fullName.data, form.department.data, form.image.data)
    return {'success': True, 'user': voter.to_dict()}

@public_bp.route('/users')
def find_user():
    identifier = request.args.get('identifier')
    if not identifier:
        raise ValidationError('identifier is required')
    voter = get_voter(identifier)
    if not voter:
        return {'success': False, 'error': 'User not found'}, 404
    return {'success': True, 'user': voter.to_dict()}

@public_bp.route('/vote/login', methods=['POST'])
def vote_login():
    form = VoterLoginForm()
    if not form.validate_on_submit():
        return form_error(form)

    now = datetime.now()
    snapshot = WindowSnapshot.from_config(get_window_config(now))
    eligibility = evaluate(snapshot, now, now)
    if eligibility.state is SessionState.EXPIRED:
        return {'success': False, 'error': eligibility.message, 'status': eligibility.to_dict(now)}, 403

    voter, created = login_voter(form.identifier.data, form.fullName.data, form.department.data, form.image.data)
    if voter.has_voted:
        return {'success': False, 'error': 'You have already voted.', 'outcome': 'already_voted'}, 409

    store_login_in_session(voter.identifier, now.timestamp())
    current_app.logger.info("Voter %s logged in (%s)", voter.identifier, 'new' if created else 'returning')
    return {'success': True, 'user': voter.to_dict(), 'created': created, 'status': eligibility.to_dict(now)}

@public_bp.route('/vote/status')
def vote_status():
    now = datetime.now()
    submitted = get_submitted_from_session()
    if submitted:
        status = Eligibility(SessionState.SUBMITTED).to_dict(now)
        return {'success': True, 'identifier': submitted, 'status': status}

    identifier, eligibility = _current_eligibility(now)
    if not identifier:
        return {'success': True, 'status': {'state': SessionState.LOGGED_OUT.value, 'canVote': False}}

    status = eligibility.to_dict(now)
    status['remaining'] = format_remaining(status['remainingSeconds'])
    if eligibility.state is SessionState.EXPIRED:
        clear_voter_session()
        current_app.logger.info("Session for %s expired: %s", identifier, eligibility.reason.value)
    return {'success': True, 'identifier': identifier, 'status': status}

@public_bp.route('/vote/ballot', methods=['POST'])
def cast_ballot():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or 'votes' not in payload:
        raise ValidationError('Votes are required')

    now = datetime.now()
    if get_submitted_from_session():
        return {'success': False, 'error': 'You have already voted.', 'outcome': 'already_voted'}, 409
    identifier, eligibility = _current_eligibility(now)
    if not identifier:
        return {'success': False, 'error': 'Please log in to vote.', 'outcome': 'logged_out'}, 401
    if payload.get('identifier') and normalize_identifier(payload['identifier']) != identifier:
        return {'success': False, 'error': 'Ballot does not match the logged in voter.'}, 403
    if not eligibility.can_vote:
        if eligibility.state is SessionState.EXPIRED:
            clear_voter_session()
        return {'success': False, 'error': eligibility.message, 'status': eligibility.to_dict(now)}, 403

    result = submit_ballot(identifier, payload['votes'], now=now,
                           ip_address=get_client_ip(request),
                           user_agent=request.headers.get('User-Agent', ''))
    if result.recorded:
        mark_submitted_in_session(identifier)
    else:
        current_app.logger.info("Ballot from %s not recorded: %s", identifier, result.outcome.value)
    return result.to_dict(), result.status_code

@public_bp.route('/vote/logout', methods=['POST'])
def vote_logout():
    clear_voter_session()
    return {'success': True}

@public_bp.route('/results')
def results():
    return {'success': True, 'results': compute_results()}
