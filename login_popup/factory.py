"""Application factory for the login popup app."""

from flask import Flask

from .app_logging import setup_logger
from .routes import ui
from .service import LoginPopup
from .services import directory


def create_web_app() -> Flask:
    """Initialize and configure the login popup application."""
    app = Flask('login_popup')
    app.config.from_pyfile('config.py')
    setup_logger(app.config['LOGLEVEL'], app.config['LOG_JSON'])

    # Don't set SERVER_NAME, it switches flask blueprints to be
    # subdomain aware. The popup is served on every host name of the site.
    app.config['SERVER_NAME'] = None

    directory.init_app(app)
    LoginPopup.init_app(app)
    app.register_blueprint(ui.blueprint)

    if app.config['CREATE_DB']:
        with app.app_context():
            directory.create_all()

    return app
