from app import create_app
from models import Position, Candidate, Voter, Ballot
from registry import get_window_config

app = create_app()

with app.app_context():
    print("Initializing election database...")
    window = get_window_config()
    print(f"Voting window: {window.voting_start_time:%Y-%m-%d %H:%M} - {window.voting_end_time:%H:%M}, "
          f"login duration {window.login_duration} min, active={window.is_voting_active}")
    print(f"Positions: {Position.query.count()}, candidates: {Candidate.query.count()}, "
          f"voters: {Voter.query.count()}, ballots: {Ballot.query.count()}")
    print("Database initialization completed.")
