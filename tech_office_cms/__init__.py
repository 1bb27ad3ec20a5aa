"""Case, customer and task management for a small office, with a cached view of Diavgeia decisions."""

from .app import create_app

__version__ = '1.0.0'

__all__ = ['create_app', '__version__']
