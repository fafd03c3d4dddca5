from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

class Admin(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

class Position(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    allow_multiple = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    candidates = db.relationship('Candidate', backref='position_ref', lazy=True, cascade="all, delete-orphan",
                                 order_by='Candidate.id')

    def to_dict(self):
        return {
            'position': self.name,
            'allowMultiple': self.allow_multiple,
            'isActive': self.is_active,
        }

class Candidate(db.Model):
    # ids come from CandidateSequence, never autoincrement
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    name = db.Column(db.String(100), nullable=False)
    nickname = db.Column(db.String(50), default='')
    department = db.Column(db.String(100), default='')
    level = db.Column(db.String(20), default='')
    image = db.Column(db.String(500), default='')
    position = db.Column(db.String(100), db.ForeignKey('position.name'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'nickname': self.nickname or '',
            'department': self.department or '',
            'level': self.level or '',
            'image': self.image or '',
            'position': self.position,
        }

class CandidateSequence(db.Model):
    """Single-row counter backing candidate ids."""
    id = db.Column(db.Integer, primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)

class Voter(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    identifier = db.Column(db.String(20), unique=True, nullable=False) # stored lower-case
    full_name = db.Column(db.String(100), nullable=False)
    department = db.Column(db.String(100), nullable=False, index=True)
    image = db.Column(db.String(500), default='')
    has_voted = db.Column(db.Boolean, default=False, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now)

    ballot = db.relationship('Ballot', backref='voter', uselist=False, lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'identifier': self.identifier,
            'fullName': self.full_name,
            'department': self.department,
            'hasVoted': self.has_voted,
        }

class WindowConfig(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    voting_start_time = db.Column(db.DateTime, nullable=False)
    voting_end_time = db.Column(db.DateTime, nullable=False)
    login_duration = db.Column(db.Integer, nullable=False, default=35) # minutes
    is_voting_active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'votingStartTime': self.voting_start_time.isoformat(),
            'votingEndTime': self.voting_end_time.isoformat(),
            'loginDuration': self.login_duration,
            'isVotingActive': self.is_voting_active,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }

class Ballot(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('voter.id'), unique=True, nullable=False)
    identifier = db.Column(db.String(20), nullable=False, index=True)
    submitted_at = db.Column(db.DateTime, default=datetime.now, index=True)
    ip_address = db.Column(db.String(64), default='')
    user_agent = db.Column(db.String(255), default='')

    entries = db.relationship('BallotEntry', backref='ballot', lazy=True, cascade="all, delete-orphan",
                              order_by='BallotEntry.id')

    def selections(self):
        return {entry.position: list(entry.candidate_ids) for entry in self.entries}

    def to_dict(self):
        return {
            'id': self.id,
            'identifier': self.identifier,
            'votes': [{'position': e.position, 'candidateIds': list(e.candidate_ids)} for e in self.entries],
            'submittedAt': self.submitted_at.isoformat() if self.submitted_at else None,
        }

class BallotEntry(db.Model):
    __table_args__ = (db.UniqueConstraint('ballot_id', 'position'),)

    id = db.Column(db.Integer, primary_key=True)
    ballot_id = db.Column(db.Integer, db.ForeignKey('ballot.id'), nullable=False)
    position = db.Column(db.String(100), nullable=False, index=True)
    candidate_ids = db.Column(db.JSON, nullable=False)
