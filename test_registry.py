from datetime import datetime, timedelta

import pytest

from errors import Conflict, NotFound, ValidationError
from models import db, Candidate, Position, WindowConfig
from registry import (create_candidate, create_position, delete_candidate, delete_position, get_voter,
                      get_window_config, list_positions, login_voter, positions_with_candidates,
                      register_voter, update_candidate, update_window_config)


def test_default_window_created_when_absent(app):
    db.session.delete(db.session.get(WindowConfig, 1))
    db.session.commit()

    now = datetime(2026, 10, 19, 13, 45)
    window = get_window_config(now)
    assert window.voting_start_time == datetime(2026, 10, 19, 6, 0)
    assert window.voting_end_time == datetime(2026, 10, 19, 20, 0)
    assert window.login_duration == 35
    assert window.is_voting_active is False
    assert WindowConfig.query.count() == 1


def test_partial_window_update(app):
    before = get_window_config()
    window = update_window_config(is_voting_active=True)
    assert window.is_voting_active is True
    assert window.voting_start_time == before.voting_start_time

    window = update_window_config(login_duration=10)
    assert window.login_duration == 10
    assert window.is_voting_active is True


def test_invalid_window_update_rejected(app):
    start = datetime(2026, 10, 19, 10, 0)
    with pytest.raises(ValidationError):
        update_window_config(voting_start_time=start, voting_end_time=start - timedelta(hours=1))
    with pytest.raises(ValidationError):
        update_window_config(login_duration=0)
    with pytest.raises(ValidationError):
        update_window_config(maxVotes=3)
    assert get_window_config().login_duration == 35


def test_duplicate_position_conflicts(app):
    create_position('President')
    with pytest.raises(Conflict):
        create_position('President')
    with pytest.raises(ValidationError):
        create_position('  ')


def test_positions_listed_by_name(app):
    for name in ['Treasurer', 'President', 'Secretary']:
        create_position(name)
    assert [p.name for p in list_positions()] == ['President', 'Secretary', 'Treasurer']


def test_delete_position_cascades_to_candidates(election):
    removed = delete_position('Senate')
    assert removed == 3
    assert Position.query.filter_by(name='Senate').first() is None
    assert Candidate.query.filter_by(position='Senate').count() == 0
    assert Candidate.query.count() == 2

    with pytest.raises(NotFound):
        delete_position('Senate')


def test_candidate_ids_are_global_and_never_reused(app):
    create_position('President')
    create_position('Secretary')
    first = create_candidate('Ada', 'President').id
    second = create_candidate('Grace', 'Secretary').id
    assert second == first + 1

    delete_candidate(second)
    third = create_candidate('Linus', 'President').id
    assert third == second + 1


def test_candidate_requires_existing_position(app):
    with pytest.raises(NotFound):
        create_candidate('Ada', 'Nowhere')
    with pytest.raises(ValidationError):
        create_candidate('', 'Nowhere')


def test_update_candidate_fields(election):
    candidate = update_candidate(election['alice'], nickname='Al', name='<Alice B>')
    assert candidate.nickname == 'Al'
    assert candidate.name == 'Alice B'
    with pytest.raises(NotFound):
        update_candidate(9999, name='Ghost')
    with pytest.raises(ValidationError):
        update_candidate(election['alice'], name='   ')


def test_positions_with_candidates_groups_by_position(election):
    grouped = {position.name: [c.name for c in candidates]
               for position, candidates in positions_with_candidates()}
    assert grouped == {'Secretary': ['Alice', 'Bob'], 'Senate': ['Carol', 'Dave', 'Erin']}


def test_voter_identifier_case_insensitive(app):
    register_voter('ABC12345', 'Jane Doe', 'Physics')
    assert get_voter('abc12345').full_name == 'Jane Doe'
    assert get_voter(' Abc12345 ').identifier == 'abc12345'
    with pytest.raises(Conflict):
        register_voter('abc12345', 'Someone Else', 'Physics')


def test_voter_identifier_format(app):
    with pytest.raises(ValidationError):
        register_voter('ab1', 'Short Id', 'Physics')
    with pytest.raises(ValidationError):
        register_voter('abc-12345', 'Dashed Id', 'Physics')
    with pytest.raises(ValidationError):
        register_voter('abc12345', '', 'Physics')


def test_login_registers_on_first_visit(app):
    voter, created = login_voter('new000001', 'New Student', 'Biology')
    assert created is True
    assert voter.has_voted is False

    again, created = login_voter('NEW000001')
    assert created is False
    assert again.id == voter.id

    with pytest.raises(ValidationError):
        login_voter('unknown01')
