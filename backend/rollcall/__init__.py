"""Rollcall Attendance Service - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200 per day", "50 per hour"]
)

__version__ = '1.0.0'

def create_app(config_name: str = None, clock=None) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Time source for every window computation
    from rollcall.utils.clock import SystemClock
    app.extensions['clock'] = clock or SystemClock()

    # Setup logging
    setup_logging(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database
    setup_database(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Rollcall Attendance Service',
            'version': __version__
        })

    return app

def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from rollcall.api.attendance import attendance_bp
    from rollcall.api.groups import groups_bp
    from rollcall.api.notifications import notifications_bp

    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(groups_bp, url_prefix='/api/groups')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')

def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from rollcall.utils.helpers import handle_error
    from rollcall.utils.errors import AttendanceError
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AttendanceError)
    def attendance_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401

def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    logging.getLogger('rollcall').setLevel(level)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        logging.getLogger('rollcall').addHandler(file_handler)

        app.logger.setLevel(logging.INFO)
        app.logger.info('Rollcall attendance service startup')

def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models
        from rollcall.models import (
            AttendanceSession, StudentAttendanceRecord,
            Group, GroupMember, Notification
        )

def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command()
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command()
    @click.option('--routine', type=click.Choice(['all', 'activate', 'close', 'finalize']),
                  default='all', help='Routine to run once')
    def tick(routine):
        """Run the lifecycle routines once against current data."""
        from rollcall.services.lifecycle_scheduler import LifecycleScheduler

        results = LifecycleScheduler.run_once(routine)
        for name, result in results.items():
            click.echo(f'{name}: {result.processed} processed, {len(result.failed)} failed')

    @app.cli.command()
    def run_scheduler():
        """Run the lifecycle routines periodically in the foreground."""
        from rollcall.services.lifecycle_scheduler import LifecycleScheduler

        scheduler = LifecycleScheduler(app)
        click.echo(f"Scheduler running every {app.config['SCHEDULER_INTERVAL_SECONDS']}s")
        scheduler.run_forever()
