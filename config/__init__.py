"""Configuration module for the application.

Supports multiple environments:
- development (default)
- staging
- production
- testing

Usage:
    from config import config

    mongo_uri = config.MONGO_URI
    if config.IS_PROD:
        config.validate_required()

Set environment via:
- FLASK_ENV=production
- APP_ENV=staging
"""
from .settings import config, Config

__all__ = ['config', 'Config']
