"""
Main Flask Application
"""
import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from eol_checker.api.auto_check_routes import auto_check_bp
from eol_checker.api.common import EXTENSION_KEY
from eol_checker.api.dataset_routes import dataset_bp
from eol_checker.api.job_routes import job_bp
from eol_checker.api.log_routes import log_bp
from eol_checker.config import Settings, load_settings
from eol_checker.database.db_config import init_db
from eol_checker.services.central_log import configure_logging
from eol_checker.services.container import build_services
from eol_checker.services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, **service_overrides) -> Flask:
    """
    Build the Flask app

    Args:
        settings: Settings snapshot, read from the environment by default
        service_overrides: Replacement services passed to build_services

    Returns:
        Configured Flask application
    """
    settings = settings or load_settings()

    # Database first: the central log handler writes to it
    init_db(settings.database_url)
    configure_logging(settings.log_level, central=settings.central_logging)

    app = Flask(__name__)
    CORS(app)

    services = build_services(settings, **service_overrides)
    app.extensions[EXTENSION_KEY] = services

    # Register blueprints
    app.register_blueprint(job_bp, url_prefix='/api')
    app.register_blueprint(auto_check_bp, url_prefix='/api')
    app.register_blueprint(dataset_bp, url_prefix='/api')
    app.register_blueprint(log_bp, url_prefix='/api')

    if settings.enable_scheduler:
        scheduler = SchedulerService(services.auto_check)
        scheduler.start()
        app.extensions['eol_checker_scheduler'] = scheduler

    logger.info('EOL checker app created')
    return app
