"""Results and analytics, recomputed from the stored ballots on every read."""
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from errors import Unavailable
from models import db, Ballot, Candidate, Position, Voter

logger = logging.getLogger(__name__)


def percentage(votes, total):
    if total <= 0:
        return 0
    return round(votes / total * 100, 1)

def hour_key(moment):
    return f'{moment.hour}:00'

def _load():
    positions = Position.query.filter_by(is_active=True).order_by(Position.name).all()
    candidates = Candidate.query.order_by(Candidate.id).all()
    ballots = Ballot.query.options(selectinload(Ballot.entries), joinedload(Ballot.voter)).all()
    return positions, candidates, ballots

def tally_position(position, candidates, ballots):
    """Counts, ranks and picks the winner for one position.

    Each ballot with an entry for the position counts once towards the
    position total, whatever the number of candidates it selects. Candidates
    arrive ordered by id and the ranking sort is stable, so ties keep id order.
    """
    counts = {candidate.id: 0 for candidate in candidates}
    total = 0
    for ballot in ballots:
        entry = next((e for e in ballot.entries if e.position == position.name), None)
        if entry is None:
            continue
        total += 1
        for candidate_id in entry.candidate_ids:
            if candidate_id in counts:
                counts[candidate_id] += 1

    rows = [
        {
            'id': candidate.id,
            'name': candidate.name,
            'nickname': candidate.nickname or '',
            'department': candidate.department or '',
            'level': candidate.level or '',
            'votes': counts[candidate.id],
            'percentage': percentage(counts[candidate.id], total),
        }
        for candidate in candidates
    ]
    rows.sort(key=lambda row: row['votes'], reverse=True)

    return {
        'position': position.name,
        'allowMultiple': position.allow_multiple,
        'totalVotes': total,
        'candidates': rows,
        'winner': rows[0] if rows else None,
    }

def compute_results(now=None):
    """Full results snapshot.

    Raises Unavailable if the store cannot be read; a partial tally is never
    returned.
    """
    try:
        positions, candidates, ballots = _load()

        by_position = {}
        for candidate in candidates:
            by_position.setdefault(candidate.position, []).append(candidate)

        results = [tally_position(p, by_position.get(p.name, []), ballots) for p in positions]

        department_stats = {}
        hourly_votes = {}
        for ballot in ballots:
            if ballot.voter is not None and ballot.voter.department:
                department = ballot.voter.department
                department_stats[department] = department_stats.get(department, 0) + 1
            if ballot.submitted_at is not None:
                key = hour_key(ballot.submitted_at)
                hourly_votes[key] = hourly_votes.get(key, 0) + 1
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Failed to compute results")
        raise Unavailable('Failed to fetch election results', results=None) from e

    return {
        'positions': results,
        'statistics': {
            'totalVoters': len(ballots),
            'totalCandidates': len(candidates),
            'totalPositions': len(positions),
            'departmentStats': department_stats,
            'hourlyVotes': hourly_votes,
        },
        'lastUpdated': (now or datetime.now()).isoformat(),
    }

def compute_analytics():
    """Per-position raw counts across every stored entry, plus turnout breakdowns.

    Unlike compute_results this is not restricted to active positions, and
    departmentStats counts every registered voter rather than only those who
    voted.
    """
    try:
        ballots = Ballot.query.options(selectinload(Ballot.entries)).order_by(Ballot.submitted_at.desc()).all()
        voters = Voter.query.all()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Failed to compute analytics")
        raise Unavailable('Failed to fetch analytics') from e

    position_stats = {}
    hourly_votes = {}
    for ballot in ballots:
        for entry in ballot.entries:
            stats = position_stats.setdefault(entry.position, {'totalVotes': 0, 'candidates': {}})
            stats['totalVotes'] += 1
            for candidate_id in entry.candidate_ids:
                key = str(candidate_id)
                stats['candidates'][key] = stats['candidates'].get(key, 0) + 1
        if ballot.submitted_at is not None:
            key = hour_key(ballot.submitted_at)
            hourly_votes[key] = hourly_votes.get(key, 0) + 1

    department_stats = {}
    for voter in voters:
        if voter.department:
            department_stats[voter.department] = department_stats.get(voter.department, 0) + 1

    return {
        'totalVotes': len(ballots),
        'positionStats': position_stats,
        'hourlyVotes': hourly_votes,
        'departmentStats': department_stats,
    }

def list_ballots():
    """Every ballot with its voter's name and department, newest first."""
    try:
        ballots = (Ballot.query
                   .options(selectinload(Ballot.entries), joinedload(Ballot.voter))
                   .order_by(Ballot.submitted_at.desc(), Ballot.id.desc())
                   .all())
    except SQLAlchemyError as e:
        db.session.rollback()
        raise Unavailable('Failed to fetch votes') from e

    listing = []
    for ballot in ballots:
        row = ballot.to_dict()
        row['fullName'] = ballot.voter.full_name if ballot.voter else ''
        row['department'] = ballot.voter.department if ballot.voter else ''
        listing.append(row)
    return listing
