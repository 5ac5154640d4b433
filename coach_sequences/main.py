import os
import logging
import click
from flask import Flask, jsonify

from coach_sequences.config import config
from coach_sequences.extensions import db

# Global scheduler instance - will be initialized lazily
sequence_scheduler = None

def create_app(config_name=None):
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(config[config_name])

    # Validate production configuration if needed
    if config_name == 'production':
        config[config_name].validate_config()

    # Initialize extensions
    db.init_app(app)

    # Configure logging
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    logging.getLogger('coach_sequences').setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    if not app.debug and not app.testing:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = logging.FileHandler('logs/coach_sequences.log')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        logging.getLogger('coach_sequences').addHandler(file_handler)
        app.logger.info('Coach sequence engine startup')

    # Create database tables (avoid fatal boot failures in production)
    try:
        with app.app_context():
            if config_name != 'production' or os.environ.get('STARTUP_DB_CREATE_ALL', 'false').lower() == 'true':
                db.create_all()
                app.logger.info("Database tables created/verified")
            else:
                app.logger.info("Skipping db.create_all() on startup in production")
    except Exception as e:
        app.logger.error(f"Failed to create/verify database tables on startup: {str(e)}")

    # Initialize scheduler with app context
    from coach_sequences.services.scheduler import get_sequence_scheduler
    global sequence_scheduler
    sequence_scheduler = get_sequence_scheduler()
    sequence_scheduler.init_app(app)
    app.extensions['sequence_scheduler'] = sequence_scheduler

    # Start scheduler in production or when explicitly requested
    if not app.testing and (config_name == 'production' or app.config.get('START_SCHEDULER', False)):
        try:
            sequence_scheduler.start()
            app.logger.info("Sequence scheduler started automatically")
        except Exception as e:
            app.logger.error(f"Failed to start scheduler: {str(e)}")

    @app.cli.command('run-tick')
    def run_tick_command():
        """Run a single sequence tick and print its summary."""
        summary = app.extensions['sequence_scheduler'].tick()
        if summary is None:
            click.echo("Tick skipped: another tick is in progress")
        else:
            click.echo(", ".join(f"{key}={value}" for key, value in summary.items()))

    # Simple health check endpoint
    @app.route('/')
    def index():
        scheduler = app.extensions['sequence_scheduler']
        return jsonify({
            'status': 'ok',
            'message': 'Coach sequence engine is running',
            'scheduler_running': scheduler.running,
            'last_tick_at': scheduler.last_tick_at.isoformat() if scheduler.last_tick_at else None
        })

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5001, debug=True)
