from .app import create_app
from .config import Config

Config.validate_config()

# Create the Flask application instance
app = create_app(Config)
