from flask import Blueprint, request, current_app
from flask_login import login_user, logout_user, login_required, current_user
from models import Admin
from forms import AdminLoginForm, PositionForm, CandidateForm, CandidateUpdateForm, WindowConfigForm
from registry import (list_positions, create_position, delete_position, list_candidates, create_candidate,
                      update_candidate, delete_candidate, list_voters, update_window_config)
from tally import compute_analytics, list_ballots
from utils import form_error

admin_bp = Blueprint('admin', __name__)

@admin_bp.route('/login', methods=['POST'])
def login():
    if current_user.is_authenticated:
        return {'success': True, 'user': {'username': current_user.username, 'role': 'admin'}}

    form = AdminLoginForm()
    if not form.validate_on_submit():
        return form_error(form)

    user = Admin.query.filter_by(username=form.username.data).first()
    if user and user.check_password(form.password.data):
        login_user(user)
        current_app.logger.info("Admin %s logged in", user.username)
        return {'success': True, 'user': {'username': user.username, 'role': 'admin'}}

    current_app.logger.warning("Failed admin login for %s", form.username.data)
    return {'success': False, 'error': 'Invalid credentials'}, 401

@admin_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return {'success': True}

@admin_bp.route('/settings', methods=['PUT', 'POST'])
@login_required
def update_settings():
    form = WindowConfigForm()
    if not form.validate_on_submit():
        return form_error(form)

    window = update_window_config(**form.changes())
    current_app.logger.info("Admin %s updated voting window", current_user.username)
    return {'success': True, 'settings': window.to_dict()}

@admin_bp.route('/positions')
@login_required
def positions():
    active_only = request.args.get('all') != '1'
    return {'success': True, 'positions': [p.to_dict() for p in list_positions(active_only=active_only)]}

@admin_bp.route('/positions', methods=['POST'])
@login_required
def add_position():
    form = PositionForm()
    if not form.validate_on_submit():
        return form_error(form)

    position = create_position(form.position.data, form.allowMultiple.data)
    return {'success': True, 'position': position.to_dict()}

@admin_bp.route('/positions/<path:name>', methods=['DELETE'])
@login_required
def remove_position(name):
    removed = delete_position(name)
    return {'success': True, 'message': 'Position and associated candidates deleted successfully',
            'candidatesDeleted': removed}

@admin_bp.route('/candidates')
@login_required
def candidates():
    return {'success': True, 'candidates': [c.to_dict() for c in list_candidates()]}

@admin_bp.route('/candidates', methods=['POST'])
@login_required
def add_candidate():
    form = CandidateForm()
    if not form.validate_on_submit():
        return form_error(form)

    candidate = create_candidate(
        form.name.data,
        form.position.data,
        nickname=form.nickname.data,
        department=form.department.data,
        level=form.level.data,
        image=form.image.data,
    )
    return {'success': True, 'candidate': candidate.to_dict()}

@admin_bp.route('/candidates/<int:candidate_id>', methods=['PUT'])
@login_required
def edit_candidate(candidate_id):
    form = CandidateUpdateForm()
    if not form.validate_on_submit():
        return form_error(form)

    fields = {name: field.data for name, field in form._fields.items() if field.raw_data}
    candidate = update_candidate(candidate_id, **fields)
    return {'success': True, 'candidate': candidate.to_dict()}

@admin_bp.route('/candidates/<int:candidate_id>', methods=['DELETE'])
@login_required
def remove_candidate(candidate_id):
    delete_candidate(candidate_id)
    return {'success': True, 'message': 'Candidate deleted successfully'}

@admin_bp.route('/voters')
@login_required
def voters():
    all_voters = list_voters()
    voted = sum(1 for v in all_voters if v.has_voted)
    return {'success': True, 'users': [v.to_dict() for v in all_voters],
            'total': len(all_voters), 'voted': voted}

@admin_bp.route('/votes')
@login_required
def votes():
    return {'success': True, 'votes': list_ballots()}

@admin_bp.route('/analytics')
@login_required
def analytics():
    return {'success': True, 'analytics': compute_analytics()}
