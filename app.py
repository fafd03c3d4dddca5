import logging
from flask import Flask
from flask_login import LoginManager
from dotenv import load_dotenv

load_dotenv()

from config import Config
from errors import ElectionError
from models import db, Admin

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(Admin, int(user_id))

@login_manager.unauthorized_handler
def unauthorized():
    return {'success': False, 'error': 'Admin login required'}, 401

def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    logging.getLogger().setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(app)
    login_manager.init_app(app)

    @app.errorhandler(ElectionError)
    def handle_election_error(e):
        if e.status_code >= 500:
            app.logger.error("%s: %s", type(e).__name__, e.message)
        return e.to_dict(), e.status_code

    @app.errorhandler(404)
    def page_not_found(e):
        return {'success': False, 'error': 'Not found'}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {'success': False, 'error': 'Method not allowed'}, 405

    from routes.admin import admin_bp
    from routes.public import public_bp

    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(public_bp, url_prefix='/')

    # Create database structure eagerly for this simple app
    with app.app_context():
        init_store(app)

    return app

def init_store(app):
    """Creates tables, the default window, the candidate id counter and the default admin."""
    from registry import ensure_candidate_sequence, get_window_config

    db.create_all()
    ensure_candidate_sequence()
    get_window_config()

    username = app.config['ADMIN_USERNAME']
    if not Admin.query.filter_by(username=username).first():
        admin = Admin(username=username)
        admin.set_password(app.config['ADMIN_PASSWORD'])
        db.session.add(admin)
        db.session.commit()
        app.logger.info("Default admin created: %s", username)

if __name__ == '__main__':
    app = create_app()
    app.run(debug=True)
