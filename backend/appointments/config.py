# config.py

""" Configuration settings for the Appointments booking service """
import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:3000,http://127.0.0.1:3000').split(',')
    PUBLIC_BASE_URL = os.environ.get('PUBLIC_BASE_URL', 'http://localhost:5000')

    # Calendar backend: 'memory' keeps events in process, 'google' talks to Google Calendar
    CALENDAR_BACKEND = os.environ.get('CALENDAR_BACKEND', 'memory')
    GOOGLE_CALENDAR_TOKEN_PATH = os.environ.get('GOOGLE_CALENDAR_TOKEN_PATH', 'credentials/token.json')
    CALENDAR_ID = os.environ.get('CALENDAR_ID', 'primary')
    CALENDAR_TIMEOUT_SECONDS = int(os.environ.get('CALENDAR_TIMEOUT_SECONDS', 10))

    # Organizer defaults (used until the organizer saves their own settings)
    BUSINESS_NAME = os.environ.get('BUSINESS_NAME', 'Appointments')
    BUSINESS_EMAIL = os.environ.get('BUSINESS_EMAIL', '')
    BUSINESS_PHONE = os.environ.get('BUSINESS_PHONE', '')
    BUSINESS_ADDRESS = os.environ.get('BUSINESS_ADDRESS', '')
    TIMEZONE = os.environ.get('TIMEZONE', 'UTC')
    PREP_TIME_MINUTES = int(os.environ.get('PREP_TIME_MINUTES', 60))

    # Booking
    RESERVATION_TTL = timedelta(minutes=int(os.environ.get('RESERVATION_TTL_MINUTES', 30)))
    BOOKING_HORIZON_DAYS = int(os.environ.get('BOOKING_HORIZON_DAYS', 7))
    HOLD_RESERVED_SLOTS = _env_bool('HOLD_RESERVED_SLOTS', True)

    # Reminders
    REMINDER_TICK_SECONDS = int(os.environ.get('REMINDER_TICK_SECONDS', 60))
    REMINDER_MAX_ATTEMPTS = int(os.environ.get('REMINDER_MAX_ATTEMPTS', 5))
    REMINDER_RETRY_BASE_SECONDS = int(os.environ.get('REMINDER_RETRY_BASE_SECONDS', 60))
    START_REMINDER_WORKER = _env_bool('START_REMINDER_WORKER', True)

    # Email
    SMTP_SERVER = os.environ.get('SMTP_SERVER', 'smtp.gmail.com')
    SMTP_PORT = int(os.environ.get('SMTP_PORT', 587))
    SMTP_USERNAME = os.environ.get('SMTP_USERNAME')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
    SMTP_TIMEOUT_SECONDS = int(os.environ.get('SMTP_TIMEOUT_SECONDS', 10))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def validate_config(cls):
        """Validate required configuration"""
        if cls.CALENDAR_BACKEND not in ('memory', 'google'):
            raise ValueError(f"Unsupported CALENDAR_BACKEND: {cls.CALENDAR_BACKEND}")

        if cls.CALENDAR_BACKEND == 'google' and not cls.GOOGLE_CALENDAR_TOKEN_PATH:
            raise ValueError("GOOGLE_CALENDAR_TOKEN_PATH is required for the google calendar backend")

        if cls.RESERVATION_TTL <= timedelta(0):
            raise ValueError("RESERVATION_TTL_MINUTES must be positive")

        if cls.REMINDER_MAX_ATTEMPTS < 1:
            raise ValueError("REMINDER_MAX_ATTEMPTS must be at least 1")


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'

    # Override with production values
    SECRET_KEY = os.environ.get('SECRET_KEY')  # Must be set in production

    @classmethod
    def validate_config(cls):
        """Additional validation for production"""
        super().validate_config()

        if not cls.SECRET_KEY or cls.SECRET_KEY == 'dev-key-change-in-production':
            raise ValueError("SECRET_KEY must be set to a secure value in production")


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    LOG_LEVEL = 'DEBUG'

    SECRET_KEY = 'testing-secret'
    CALENDAR_BACKEND = 'memory'
    CALENDAR_ID = 'test-calendar'
    BUSINESS_EMAIL = 'organizer@example.com'
    TIMEZONE = 'America/New_York'
    PREP_TIME_MINUTES = 0
    START_REMINDER_WORKER = False


# Configuration factory
def get_config():
    """Get configuration based on environment"""
    env = os.environ.get('FLASK_ENV', 'development').lower()

    if env == 'production':
        return ProductionConfig
    elif env == 'testing':
        return TestingConfig
    else:
        return DevelopmentConfig
