# behavioral_auth/__init__.py
"""
Application factory for the continuous behavioral authentication service
"""
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

# Initialize extensions
db = SQLAlchemy()


def create_app(config_name='development', profile_store=None):
    """Create and configure Flask application"""
    app = Flask(__name__)

    # Load configuration
    from behavioral_auth.config import config, service_config
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    # Initialize extensions
    db.init_app(app)
    from behavioral_auth.models import database  # noqa: F401  registers the tables

    from behavioral_auth.services.auth_service import ContinuousAuthenticationService
    from behavioral_auth.services.profile_store import SQLAlchemyProfileStore

    if profile_store is None:
        profile_store = SQLAlchemyProfileStore(app)
    app.extensions['auth_service'] = ContinuousAuthenticationService(
        service_config(app.config), profile_store=profile_store
    )

    # Register blueprints
    from behavioral_auth.api.sessions import sessions_bp
    app.register_blueprint(sessions_bp, url_prefix='/api')

    @app.route('/health')
    def health():
        return {'status': 'ok'}

    return app
