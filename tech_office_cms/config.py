import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _split_origins(value):
    return [origin.strip() for origin in value.split(',') if origin.strip()]


class Config:
    """
    Application configuration class
    """
    # Database configuration
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///office.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Security
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-please-change-in-production')

    # Browser UI
    CORS_ORIGINS = _split_origins(os.getenv('CORS_ORIGINS', 'http://localhost:5173'))
    FRONTEND_DIST = os.getenv('FRONTEND_DIST', '../frontend/dist')

    # Diavgeia open data API
    DIAVGEIA_BASE_URL = os.getenv('DIAVGEIA_BASE_URL', 'https://diavgeia.gov.gr/luminapi/opendata')
    DIAVGEIA_TIMEOUT = int(os.getenv('DIAVGEIA_TIMEOUT', '15'))
    DIAVGEIA_MAX_PAGE_SIZE = int(os.getenv('DIAVGEIA_MAX_PAGE_SIZE', '100'))
    DIAVGEIA_DEFAULT_PAGE_SIZE = int(os.getenv('DIAVGEIA_DEFAULT_PAGE_SIZE', '20'))

    # Network share holding the case folders
    NAS_BACKEND = os.getenv('NAS_BACKEND', 'smb')
    NAS_HOST = os.getenv('NAS_HOST')
    NAS_SHARE = os.getenv('NAS_SHARE')
    NAS_DOMAIN = os.getenv('NAS_DOMAIN', 'WORKGROUP')
    NAS_USERNAME = os.getenv('NAS_USERNAME')
    NAS_PASSWORD = os.getenv('NAS_PASSWORD')
    NAS_LOCAL_ROOT = os.getenv('NAS_LOCAL_ROOT', './share')
    NAS_BASE_DIR = os.getenv('NAS_BASE_DIR', 'cases')
    NAS_COMPLETED_DIR = os.getenv('NAS_COMPLETED_DIR', 'completed')

    # Development settings
    DEBUG = os.getenv('FLASK_ENV') == 'development'
    PORT = int(os.getenv('PORT', '4000'))

    @staticmethod
    def validate_config():
        """Validate that all required configuration is present"""
        required_vars = ['SECRET_KEY']
        if Config.NAS_BACKEND == 'smb':
            required_vars += ['NAS_HOST', 'NAS_SHARE']
        missing_vars = [var for var in required_vars if not os.getenv(var)]

        if missing_vars and not Config.DEBUG:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")


class TestConfig(Config):
    """Configuration used by the test-suite: in-memory store, local share."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    NAS_BACKEND = 'local'
    FRONTEND_DIST = None
