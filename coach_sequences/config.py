import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Scheduler configuration
    TICK_INTERVAL_SECONDS = int(os.environ.get('TICK_INTERVAL_SECONDS', '120'))  # 2 minutes
    TICK_WORKERS = int(os.environ.get('TICK_WORKERS', '1'))
    MAX_HOPS_PER_TICK = int(os.environ.get('MAX_HOPS_PER_TICK', '25'))
    START_SCHEDULER = os.environ.get('START_SCHEDULER', 'false').lower() == 'true'

    # Dispatch configuration
    DISPATCH_RETRY_CAP = int(os.environ.get('DISPATCH_RETRY_CAP', '3'))
    DISPATCH_TIMEOUT_SECONDS = int(os.environ.get('DISPATCH_TIMEOUT_SECONDS', '10'))
    MESSAGING_API_BASE_URL = os.environ.get('MESSAGING_API_BASE_URL')
    MESSAGING_API_KEY = os.environ.get('MESSAGING_API_KEY')

    # Enrollment policies
    DEACTIVATION_POLICY = os.environ.get('DEACTIVATION_POLICY', 'drain')  # drain, cancel
    RETRIGGER_POLICY = os.environ.get('RETRIGGER_POLICY', 'ignore')  # ignore, restart

    # Localisation
    DEFAULT_LOCALE = os.environ.get('DEFAULT_LOCALE', 'en')
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')

    # Owner notifications
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    NOTIFY_EMAIL_FROM = os.environ.get('NOTIFY_EMAIL_FROM', 'automations@coach-sequences.app')
    NOTIFY_EMAIL_TO = os.environ.get('NOTIFY_EMAIL_TO', '')
    NOTIFICATIONS_ENABLED = os.environ.get('NOTIFICATIONS_ENABLED', 'false').lower() == 'true'

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///coach_sequences.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    TESTING = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False

    # Production database (PostgreSQL)
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    SECRET_KEY = os.environ.get('SECRET_KEY')

    @classmethod
    def validate_config(cls):
        """Validate production configuration."""
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL environment variable is required for production")

        if not cls.SECRET_KEY:
            raise ValueError("SECRET_KEY environment variable is required for production")

        if not cls.MESSAGING_API_BASE_URL:
            raise ValueError("MESSAGING_API_BASE_URL environment variable is required for production")

        if cls.DEACTIVATION_POLICY not in ('drain', 'cancel'):
            raise ValueError(f"DEACTIVATION_POLICY must be 'drain' or 'cancel', got '{cls.DEACTIVATION_POLICY}'")

        if cls.RETRIGGER_POLICY not in ('ignore', 'restart'):
            raise ValueError(f"RETRIGGER_POLICY must be 'ignore' or 'restart', got '{cls.RETRIGGER_POLICY}'")


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    START_SCHEDULER = False
    NOTIFICATIONS_ENABLED = False
    DEACTIVATION_POLICY = 'drain'
    RETRIGGER_POLICY = 'ignore'
    DISPATCH_RETRY_CAP = 3
    DEFAULT_LOCALE = 'en'


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
