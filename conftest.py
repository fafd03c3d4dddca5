from datetime import datetime, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from registry import create_candidate, create_position, register_voter, update_window_config


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    response = client.post('/admin/login', json={'username': 'admin', 'password': 'admin123'})
    assert response.status_code == 200
    return client


@pytest.fixture
def open_window(app):
    now = datetime.now()
    return update_window_config(
        voting_start_time=now - timedelta(hours=1),
        voting_end_time=now + timedelta(hours=1),
        login_duration=35,
        is_voting_active=True,
    )


@pytest.fixture
def election(app):
    """Two positions: single-select Secretary and multi-select Senate."""
    create_position('Secretary', allow_multiple=False)
    create_position('Senate', allow_multiple=True)
    ids = {
        'alice': create_candidate('Alice', 'Secretary').id,
        'bob': create_candidate('Bob', 'Secretary').id,
        'carol': create_candidate('Carol', 'Senate', department='Physics').id,
        'dave': create_candidate('Dave', 'Senate').id,
        'erin': create_candidate('Erin', 'Senate').id,
    }
    return ids


@pytest.fixture
def voters(app):
    departments = ['Physics', 'Physics', 'Chemistry', 'Biology', 'Biology', 'Biology']
    return [
        register_voter(f'stu{i:05d}', f'Student {i}', department)
        for i, department in enumerate(departments, start=1)
    ]
