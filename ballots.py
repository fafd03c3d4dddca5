import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from errors import Unavailable, ValidationError
from models import db, Ballot, BallotEntry, Voter
from registry import get_voter, positions_with_candidates
from utils import sanitize_input

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    RECORDED = 'recorded'
    VOTER_NOT_FOUND = 'voter_not_found'
    ALREADY_VOTED = 'already_voted'
    INCOMPLETE_BALLOT = 'incomplete_ballot'
    INVALID_CANDIDATE = 'invalid_candidate'


STATUS_CODES = {
    Outcome.RECORDED: 200,
    Outcome.VOTER_NOT_FOUND: 404,
    Outcome.ALREADY_VOTED: 409,
    Outcome.INCOMPLETE_BALLOT: 400,
    Outcome.INVALID_CANDIDATE: 400,
}


@dataclass
class SubmissionResult:
    outcome: Outcome
    message: str
    ballot: Optional[Ballot] = None

    @property
    def recorded(self):
        return self.outcome is Outcome.RECORDED

    @property
    def status_code(self):
        return STATUS_CODES[self.outcome]

    def to_dict(self):
        body = {'success': self.recorded, 'outcome': self.outcome.value}
        if self.recorded:
            body['message'] = self.message
        else:
            body['error'] = self.message
        return body


def _candidate_id(value):
    if isinstance(value, bool):
        raise ValidationError(f'Invalid candidate id: {value!r}.')
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f'Invalid candidate id: {value!r}.')

def normalize_votes(votes):
    """Turns {position: id | [ids]} into {position: [int ids]}.

    Position names are sanitized first; two keys naming the same position
    are rejected rather than merged.
    """
    if not isinstance(votes, dict):
        raise ValidationError('Votes must map each position to the selected candidate(s).')

    selections = {}
    for position, chosen in votes.items():
        name = sanitize_input(position)
        if not name:
            raise ValidationError('Position names cannot be empty.')
        if name in selections:
            raise ValidationError(f'Position {name} appears more than once.')
        if isinstance(chosen, (list, tuple)):
            ids = [_candidate_id(value) for value in chosen]
        elif chosen is None:
            ids = []
        else:
            ids = [_candidate_id(chosen)]
        selections[name] = ids
    return selections

def check_ballot(selections, positions):
    """Returns a failed SubmissionResult if the ballot has the wrong shape, else None.

    ``positions`` is a list of (Position, [Candidate]) for the active positions.
    """
    if not positions:
        return SubmissionResult(Outcome.INCOMPLETE_BALLOT, 'No positions are open for voting.')

    known = {position.name for position, _ in positions}
    unknown = sorted(set(selections) - known)
    if unknown:
        return SubmissionResult(Outcome.INVALID_CANDIDATE, f'Unknown position(s): {", ".join(unknown)}.')

    for position, candidates in positions:
        ids = selections.get(position.name)
        if not ids:
            return SubmissionResult(Outcome.INCOMPLETE_BALLOT, f'No selection for {position.name}.')
        if not position.allow_multiple and len(ids) != 1:
            return SubmissionResult(Outcome.INVALID_CANDIDATE,
                                    f'{position.name} allows only one candidate.')
        if len(set(ids)) != len(ids):
            return SubmissionResult(Outcome.INVALID_CANDIDATE,
                                    f'A candidate was selected more than once for {position.name}.')
        valid_ids = {candidate.id for candidate in candidates}
        stray = [i for i in ids if i not in valid_ids]
        if stray:
            return SubmissionResult(Outcome.INVALID_CANDIDATE,
                                    f'Candidate {stray[0]} is not standing for {position.name}.')
    return None

def submit_ballot(identifier, votes, now=None, ip_address='', user_agent=''):
    """Records a voter's ballot, at most once per voter.

    The has_voted flag is claimed with a conditional UPDATE in the same
    transaction that inserts the ballot: of two concurrent submissions only
    one changes the row, the other sees ALREADY_VOTED.
    """
    selections = normalize_votes(votes)

    voter = get_voter(identifier)
    if not voter:
        return SubmissionResult(Outcome.VOTER_NOT_FOUND, 'Voter not found.')
    if voter.has_voted:
        logger.info("Rejected repeat ballot from %s", voter.identifier)
        return SubmissionResult(Outcome.ALREADY_VOTED, 'You have already voted.')

    positions = positions_with_candidates()
    problem = check_ballot(selections, positions)
    if problem:
        logger.info("Rejected ballot from %s: %s", voter.identifier, problem.message)
        return problem

    try:
        claimed = Voter.query.filter_by(id=voter.id, has_voted=False).update(
            {'has_voted': True}, synchronize_session=False)
        if not claimed:
            db.session.rollback()
            logger.info("Rejected concurrent ballot from %s", voter.identifier)
            return SubmissionResult(Outcome.ALREADY_VOTED, 'You have already voted.')

        ballot = Ballot(
            voter_id=voter.id,
            identifier=voter.identifier,
            submitted_at=now or datetime.now(),
            ip_address=(ip_address or '')[:64],
            user_agent=(user_agent or '')[:255],
        )
        for position, _ in positions:
            ballot.entries.append(BallotEntry(position=position.name, candidate_ids=selections[position.name]))
        db.session.add(ballot)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info("Duplicate ballot for %s blocked by unique constraint", voter.identifier)
        return SubmissionResult(Outcome.ALREADY_VOTED, 'You have already voted.')
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception("Failed to record ballot for %s", voter.identifier)
        raise Unavailable('Your vote could not be recorded. Please try again.') from e

    logger.info("Recorded ballot %d for %s", ballot.id, voter.identifier)
    return SubmissionResult(Outcome.RECORDED, 'Vote recorded successfully', ballot)
