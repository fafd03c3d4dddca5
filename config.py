import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-prod'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///election.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # JSON API; clients authenticate through the session cookie
    WTF_CSRF_ENABLED = False

    # Default admin, created on first start
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME') or 'admin'
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD') or 'admin123'

    # Voting window defaults
    DEFAULT_LOGIN_DURATION = int(os.environ.get('DEFAULT_LOGIN_DURATION', 35))
    DEFAULT_VOTING_START_HOUR = 6
    DEFAULT_VOTING_END_HOUR = 20

    # Seconds between window config refetches / eligibility re-checks
    WINDOW_REFRESH_SECONDS = float(os.environ.get('WINDOW_REFRESH_SECONDS', 5))
    ELIGIBILITY_TICK_SECONDS = float(os.environ.get('ELIGIBILITY_TICK_SECONDS', 1))

    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # ballots and forms only


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test_secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    ADMIN_USERNAME = 'admin'
    ADMIN_PASSWORD = 'admin123'
