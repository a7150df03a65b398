"""Application configuration settings.

This module centralizes all configuration values loaded from:
1. config.base.yaml (shared defaults)
2. config.{env}.yaml (environment-specific: dev, staging, prod)
3. config.local.yaml (local overrides, git-ignored)
4. Environment variables (highest priority)

Default environment is 'development' (DEV).

Usage:
    from config.settings import config

    secret = config.JWT_SECRET
    max_len = config.MESSAGE_MAX_LENGTH

    env = config.ENV  # 'development', 'staging', or 'production'
"""
import os
from pathlib import Path
from typing import Optional, Any, Dict
import yaml


# Environment name mappings
ENV_ALIASES = {
    'dev': 'development',
    'development': 'development',
    'staging': 'staging',
    'stage': 'staging',
    'prod': 'production',
    'production': 'production',
    'test': 'testing',
    'testing': 'testing',
}

DEFAULT_ENV = 'development'


def _env_bool(name: str) -> Optional[bool]:
    env_val = os.getenv(name, '').lower()
    if env_val:
        return env_val in ('1', 'true', 'yes')
    return None


def _env_int(name: str) -> Optional[int]:
    env_val = os.getenv(name)
    if env_val:
        return int(env_val)
    return None


class Config:
    """Centralized application configuration.

    Loads configuration from YAML files based on environment.

    Priority (highest to lowest):
    1. Environment variables
    2. config.local.yaml (for local development overrides)
    3. config.{env}.yaml (environment-specific: dev, staging, prod)
    4. config.base.yaml (shared defaults)

    Environment is determined by:
    1. FLASK_ENV environment variable
    2. APP_ENV environment variable
    3. Default: 'development'
    """

    _config_data: Dict[str, Any] = {}
    _loaded: bool = False
    _current_env: str = DEFAULT_ENV

    def __init__(self):
        if not Config._loaded:
            self._load_config()

    @classmethod
    def _get_environment(cls) -> str:
        """Determine current environment from env vars or default to dev."""
        env = os.getenv('FLASK_ENV') or os.getenv('APP_ENV') or DEFAULT_ENV
        env = env.lower().strip()
        return ENV_ALIASES.get(env, DEFAULT_ENV)

    def _load_config(self):
        """Load configuration from YAML files based on environment."""
        config_dir = Path(__file__).parent
        Config._current_env = self._get_environment()

        Config._config_data = {}

        # 1. Load base config (shared defaults)
        base_config_path = config_dir / 'config.base.yaml'
        if base_config_path.exists():
            with open(base_config_path, 'r') as f:
                Config._config_data = yaml.safe_load(f) or {}

        # 2. Load environment-specific config
        env_config_map = {
            'development': 'config.dev.yaml',
            'staging': 'config.staging.yaml',
            'production': 'config.prod.yaml',
            'testing': 'config.test.yaml',
        }
        env_config_file = env_config_map.get(Config._current_env, 'config.dev.yaml')
        env_config_path = config_dir / env_config_file

        if env_config_path.exists():
            with open(env_config_path, 'r') as f:
                env_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, env_data)

        # 3. Load local overrides (not in git)
        local_config_path = config_dir / 'config.local.yaml'
        if local_config_path.exists():
            with open(local_config_path, 'r') as f:
                local_data = yaml.safe_load(f) or {}
                Config._config_data = self._deep_merge(Config._config_data, local_data)

        Config._loaded = True

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    def _get_yaml_value(self, *keys, default=None) -> Any:
        """Get a nested value from YAML config."""
        value = Config._config_data
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    @classmethod
    def reload(cls):
        """Reload configuration (useful for testing)."""
        cls._loaded = False
        cls._config_data = {}
        instance = cls()
        return instance

    # ==========================================================================
    # Environment Info
    # ==========================================================================

    @property
    def CURRENT_ENV(self) -> str:
        return Config._current_env

    @property
    def IS_PROD(self) -> bool:
        return Config._current_env == 'production'

    @property
    def ENV(self) -> str:
        """Application environment (development, staging, production, testing)."""
        return Config._current_env

    # ==========================================================================
    # Application Settings
    # ==========================================================================

    @property
    def DEBUG(self) -> bool:
        """Flask debug mode."""
        env_val = _env_bool('FLASK_DEBUG')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('app', 'debug', default=False)

    @property
    def PORT(self) -> int:
        """Server port."""
        env_val = _env_int('PORT')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('app', 'port', default=5000)

    # ==========================================================================
    # Security Settings
    # ==========================================================================

    @property
    def JWT_SECRET(self) -> Optional[str]:
        """JWT secret key for token verification. Required in production."""
        return os.getenv('JWT_SECRET') or self._get_yaml_value('security', 'jwt', 'secret')

    @property
    def JWT_ALGORITHM(self) -> str:
        """JWT algorithm (default: HS256)."""
        return os.getenv('JWT_ALGORITHM') or self._get_yaml_value('security', 'jwt', 'algorithm', default='HS256')

    @property
    def ACCESS_TOKEN_EXPIRE_MINUTES(self) -> int:
        env_val = _env_int('ACCESS_TOKEN_MINUTES')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('security', 'jwt', 'access_token_expire_minutes', default=10080)

    # ==========================================================================
    # Database Settings
    # ==========================================================================

    @property
    def MONGO_URI(self) -> str:
        """MongoDB connection URI."""
        return os.getenv('MONGO_URI') or self._get_yaml_value('database', 'mongo_uri', default='mongodb://localhost:27017')

    @property
    def MONGO_DB(self) -> str:
        """Messaging database name."""
        return os.getenv('MONGO_DB') or self._get_yaml_value('database', 'name', default='stage_db')

    # ==========================================================================
    # CORS Settings
    # ==========================================================================

    @property
    def CORS_ORIGINS(self) -> str:
        """Allowed CORS origins."""
        return os.getenv('CORS_ORIGINS') or self._get_yaml_value('cors', 'origins', default='*')

    @property
    def CORS_ORIGINS_LIST(self) -> list:
        """Get CORS origins as a list."""
        origins = self.CORS_ORIGINS
        if origins == '*':
            return ['*']
        return [o.strip() for o in origins.split(',') if o.strip()]

    # ==========================================================================
    # Logging Settings
    # ==========================================================================

    @property
    def LOG_LEVEL(self) -> str:
        """Logging level."""
        env_val = os.getenv('LOG_LEVEL')
        if env_val:
            return env_val.upper()
        return str(self._get_yaml_value('logging', 'level', default='INFO')).upper()

    @property
    def LOG_PATTERN(self) -> Optional[str]:
        """Explicit log format pattern; overrides the include_* switches."""
        return os.getenv('LOG_PATTERN') or self._get_yaml_value('logging', 'pattern')

    @property
    def LOG_INCLUDE_DATETIME(self) -> bool:
        env_val = _env_bool('LOG_INCLUDE_DATETIME')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('logging', 'include_datetime', default=True)

    @property
    def LOG_INCLUDE_NAME(self) -> bool:
        env_val = _env_bool('LOG_INCLUDE_NAME')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('logging', 'include_name', default=True)

    @property
    def LOG_DATE_FORMAT(self) -> str:
        return self._get_yaml_value('logging', 'date_format', default='%H:%M:%S')

    @property
    def LOG_FORMAT(self) -> str:
        """Build log format string based on config options."""
        pattern = self.LOG_PATTERN
        if pattern:
            return pattern

        parts = []
        if self.LOG_INCLUDE_DATETIME:
            parts.append('%(asctime)s')
        if self.LOG_INCLUDE_NAME:
            parts.append('%(name)s')
        parts.append('%(levelname)s')
        parts.append('%(message)s')
        return ' - '.join(parts)

    # ==========================================================================
    # Socket.IO Settings
    # ==========================================================================

    @property
    def SOCKETIO_ASYNC_MODE(self) -> str:
        return os.getenv('SOCKETIO_ASYNC_MODE') or self._get_yaml_value('socketio', 'async_mode', default='threading')

    @property
    def SOCKETIO_MESSAGE_QUEUE(self) -> Optional[str]:
        """Optional pub/sub URL (e.g. redis://) that relays emits between processes."""
        return os.getenv('SOCKETIO_MESSAGE_QUEUE') or self._get_yaml_value('socketio', 'message_queue')

    # ==========================================================================
    # Messaging Settings
    # ==========================================================================

    @property
    def MESSAGE_MAX_LENGTH(self) -> int:
        env_val = _env_int('MESSAGE_MAX_LENGTH')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('messaging', 'max_length', default=2000)

    @property
    def MESSAGE_EDIT_WINDOW_MINUTES(self) -> int:
        env_val = _env_int('MESSAGE_EDIT_WINDOW_MINUTES')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('messaging', 'edit_window_minutes', default=15)

    @property
    def DEFAULT_PAGE_SIZE(self) -> int:
        env_val = _env_int('DEFAULT_PAGE_SIZE')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('messaging', 'page_size', default=50)

    # ==========================================================================
    # Notification / Presence Settings
    # ==========================================================================

    @property
    def NOTIFICATION_TTL_DAYS(self) -> int:
        env_val = _env_int('NOTIFICATION_TTL_DAYS')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('notification', 'ttl_days', default=30)

    @property
    def PRESENCE_IDLE_TIMEOUT_SECONDS(self) -> int:
        env_val = _env_int('PRESENCE_IDLE_TIMEOUT_SECONDS')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('presence', 'idle_timeout_seconds', default=90)

    @property
    def PRESENCE_SWEEP_INTERVAL_SECONDS(self) -> int:
        env_val = _env_int('PRESENCE_SWEEP_INTERVAL_SECONDS')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('presence', 'sweep_interval_seconds', default=30)

    @property
    def PRESENCE_SWEEPER_ENABLED(self) -> bool:
        env_val = _env_bool('PRESENCE_SWEEPER_ENABLED')
        if env_val is not None:
            return env_val
        return self._get_yaml_value('presence', 'sweeper_enabled', default=True)

    # ==========================================================================
    # Validation Methods
    # ==========================================================================

    def validate_required(self) -> None:
        """Validate that required configuration values are set.

        Raises RuntimeError if required values are missing in production.
        """
        errors = []

        if self.IS_PROD:
            if not self.JWT_SECRET:
                errors.append('JWT_SECRET environment variable is required in production')
            if not self.MONGO_URI or self.MONGO_URI == 'mongodb://localhost:27017':
                errors.append('MONGO_URI should be set to production database in production')
            if self.CORS_ORIGINS == '*':
                errors.append('CORS_ORIGINS should not be "*" in production')

        if errors:
            raise RuntimeError('Configuration errors:\n' + '\n'.join(f'  - {e}' for e in errors))


# Singleton config instance
config = Config()
